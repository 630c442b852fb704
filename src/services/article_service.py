"""Article and section mutations.

All writes to articles and sections go through this service so status
transitions and progress monotonicity are enforced in one place.
"""

import uuid
from typing import Any

import structlog

from src.middleware.state_machine import ensure_article_transition, ensure_section_transition
from src.services.repositories import ArticleRepository
from src.utils.models import (
    Article,
    ArticleSection,
    ArticleStatus,
    Citation,
    Outline,
    SectionResearchData,
)

logger = structlog.get_logger()


class ArticleService:
    """Service-level access to articles and their sections."""

    def __init__(self, repository: ArticleRepository) -> None:
        self.repository = repository

    async def create_article(
        self,
        organization_id: str,
        user_id: str,
        keyword: str,
        target_word_count: int = 1500,
        writing_style: str = "professional",
        target_audience: str = "general",
    ) -> Article:
        article = Article(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            user_id=user_id,
            keyword=keyword,
            target_word_count=target_word_count,
            writing_style=writing_style,
            target_audience=target_audience,
        )
        created = await self.repository.create_article(article)
        logger.info("Article created", article_id=created.id, keyword=keyword)
        return created

    async def get_article(self, article_id: str) -> Article:
        return await self.repository.get_article(article_id)

    async def update_status(
        self,
        article_id: str,
        status: ArticleStatus,
        error_message: str | None = None,
    ) -> Article:
        """Move an article to a new status.

        Completing an article forces progress to 100. Moving back to queued
        or generating clears a previous error message.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
            NotFoundError: If the article does not exist.
        """
        article = await self.repository.get_article(article_id)
        ensure_article_transition(article_id, article.status, status)

        fields: dict[str, Any] = {"status": status}
        if status == "completed":
            fields["progress"] = 100
            fields["current_section"] = None
        if error_message is not None:
            fields["error_message"] = error_message
        elif status in ("queued", "generating"):
            fields["error_message"] = None

        updated = await self.repository.update_article(article_id, **fields)
        logger.info("Article status updated", article_id=article_id, status=status)
        return updated

    async def update_progress(
        self, article_id: str, progress: int, current_section: str | None = None
    ) -> Article:
        """Record progress; a lower value than the stored one is ignored while generating."""
        article = await self.repository.get_article(article_id)
        progress = max(0, min(progress, 100))
        if article.status == "generating":
            progress = max(progress, article.progress)

        fields: dict[str, Any] = {"progress": progress}
        if current_section is not None:
            fields["current_section"] = current_section
        return await self.repository.update_article(article_id, **fields)

    async def increment_retry_count(self, article_id: str) -> Article:
        article = await self.repository.get_article(article_id)
        return await self.repository.update_article(
            article_id, retry_count=article.retry_count + 1
        )

    async def merge_metadata(self, article_id: str, updates: dict[str, Any]) -> Article:
        article = await self.repository.get_article(article_id)
        return await self.repository.update_article(
            article_id, metadata={**article.metadata, **updates}
        )

    # --- Outline ---

    async def save_outline(self, article_id: str, outline: Outline) -> Article:
        updated = await self.repository.update_article(article_id, outline=outline)
        logger.info(
            "Outline saved",
            article_id=article_id,
            sections=len(outline.sections),
            estimated_words=outline.estimated_word_count,
        )
        return updated

    async def get_outline(self, article_id: str) -> Outline | None:
        article = await self.repository.get_article(article_id)
        return article.outline

    async def delete_outline(self, article_id: str) -> None:
        await self.repository.update_article(article_id, outline=None)
        await self.repository.delete_sections(article_id)
        logger.info("Outline deleted", article_id=article_id)

    # --- Sections ---

    async def create_sections_from_outline(
        self, article_id: str, outline: Outline, max_retries: int = 3
    ) -> list[ArticleSection]:
        """Replace the article's sections with one row per outline section."""
        await self.repository.delete_sections(article_id)
        sections = [
            ArticleSection(
                id=str(uuid.uuid4()),
                article_id=article_id,
                outline_section_id=section.id,
                section_type=section.section_type,
                section_title=section.title,
                section_order=section.order,
                max_retries=max_retries,
            )
            for section in outline.sections
        ]
        return await self.repository.create_sections(sections)

    async def get_sections(self, article_id: str) -> list[ArticleSection]:
        return await self.repository.get_sections(article_id)

    async def get_section(self, section_id: str) -> ArticleSection:
        return await self.repository.get_section(section_id)

    async def mark_section_researching(self, section: ArticleSection) -> ArticleSection:
        ensure_section_transition(section.id, section.status, "researching")
        return await self.repository.update_section(section.id, status="researching")

    async def complete_section(
        self,
        section_id: str,
        research_data: SectionResearchData,
        citations: list[Citation],
        retry_count: int = 0,
    ) -> ArticleSection:
        """Attach research results and mark the section completed."""
        section = await self.repository.get_section(section_id)
        ensure_section_transition(section_id, section.status, "completed")
        return await self.repository.update_section(
            section_id,
            status="completed",
            research_data=research_data,
            citations=citations,
            retry_count=max(section.retry_count, retry_count),
            error_message=None,
        )

    async def fail_section(
        self, section_id: str, error_message: str, retry_count: int = 0
    ) -> ArticleSection:
        section = await self.repository.get_section(section_id)
        ensure_section_transition(section_id, section.status, "failed")
        return await self.repository.update_section(
            section_id,
            status="failed",
            error_message=error_message,
            retry_count=max(section.retry_count, retry_count),
        )

    async def reset_section_for_retry(self, section: ArticleSection) -> ArticleSection:
        """Send a failed section back to pending and count the retry."""
        ensure_section_transition(section.id, section.status, "pending")
        return await self.repository.update_section(
            section.id,
            status="pending",
            retry_count=section.retry_count + 1,
            error_message=None,
        )
