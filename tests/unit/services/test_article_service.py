"""Unit tests for ArticleService."""

import pytest

from src.services.article_service import ArticleService
from src.services.repositories import InMemoryStore
from src.utils.exceptions import InvalidTransitionError, NotFoundError
from src.utils.models import Outline, OutlineMetadata, OutlineSection, SectionResearchData


def _outline(article_id: str) -> Outline:
    return Outline(
        article_id=article_id,
        keyword="kw",
        target_word_count=200,
        sections=[
            OutlineSection(id="section-1", section_type="introduction", title="Intro", order=1, estimated_words=100),
            OutlineSection(
                id="section-2",
                section_type="conclusion",
                title="End",
                order=2,
                estimated_words=100,
                dependencies=["section-1"],
            ),
        ],
        metadata=OutlineMetadata(
            seo_score=50,
            difficulty="hard",
            estimated_read_time_minutes=1,
            structure="linear",
            complexity="simple",
        ),
    )


@pytest.fixture
def service() -> ArticleService:
    return ArticleService(InMemoryStore())


@pytest.mark.unit
class TestArticleStatus:
    """Tests for status and progress updates."""

    @pytest.mark.asyncio
    async def test_completing_forces_full_progress(self, service: ArticleService) -> None:
        """A completed article should report 100% progress."""
        article = await service.create_article("org-1", "user-1", "kw")
        await service.update_status(article.id, "generating")
        await service.update_progress(article.id, 40, current_section="Intro")

        completed = await service.update_status(article.id, "completed")

        assert completed.progress == 100
        assert completed.current_section is None

    @pytest.mark.asyncio
    async def test_progress_is_monotonic_while_generating(self, service: ArticleService) -> None:
        """A lower progress value should not overwrite a higher one."""
        article = await service.create_article("org-1", "user-1", "kw")
        await service.update_status(article.id, "generating")

        await service.update_progress(article.id, 60)
        updated = await service.update_progress(article.id, 30)

        assert updated.progress == 60

    @pytest.mark.asyncio
    async def test_terminal_status_cannot_change(self, service: ArticleService) -> None:
        """Completed articles should reject further status changes."""
        article = await service.create_article("org-1", "user-1", "kw")
        await service.update_status(article.id, "generating")
        await service.update_status(article.id, "completed")

        with pytest.raises(InvalidTransitionError):
            await service.update_status(article.id, "failed")

    @pytest.mark.asyncio
    async def test_requeue_clears_error(self, service: ArticleService) -> None:
        """Retrying a failed article should clear its error message."""
        article = await service.create_article("org-1", "user-1", "kw")
        await service.update_status(article.id, "failed", error_message="boom")

        requeued = await service.update_status(article.id, "queued")

        assert requeued.error_message is None

    @pytest.mark.asyncio
    async def test_missing_article(self, service: ArticleService) -> None:
        """Unknown ids should raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await service.update_status("missing", "generating")

    @pytest.mark.asyncio
    async def test_merge_metadata_keeps_existing_keys(self, service: ArticleService) -> None:
        """Metadata updates should merge, not replace."""
        article = await service.create_article("org-1", "user-1", "kw")
        await service.merge_metadata(article.id, {"a": 1})

        merged = await service.merge_metadata(article.id, {"b": 2})

        assert merged.metadata == {"a": 1, "b": 2}


@pytest.mark.unit
class TestSections:
    """Tests for section lifecycle."""

    @pytest.mark.asyncio
    async def test_sections_follow_outline_order(self, service: ArticleService) -> None:
        """One pending section should be created per outline section."""
        article = await service.create_article("org-1", "user-1", "kw")

        sections = await service.create_sections_from_outline(article.id, _outline(article.id), max_retries=5)

        assert [s.outline_section_id for s in sections] == ["section-1", "section-2"]
        assert all(s.status == "pending" and s.max_retries == 5 for s in sections)

    @pytest.mark.asyncio
    async def test_section_lifecycle(self, service: ArticleService) -> None:
        """Sections should move pending, researching, failed, pending, completed."""
        article = await service.create_article("org-1", "user-1", "kw")
        section, _ = await service.create_sections_from_outline(article.id, _outline(article.id))

        researching = await service.mark_section_researching(section)
        failed = await service.fail_section(researching.id, "timeout", retry_count=2)
        reset = await service.reset_section_for_retry(failed)
        researching = await service.mark_section_researching(reset)
        done = await service.complete_section(researching.id, SectionResearchData(query="q"), [])

        assert failed.retry_count == 2
        assert reset.retry_count == 3
        assert reset.error_message is None
        assert done.status == "completed"
        assert done.retry_count == 3

    @pytest.mark.asyncio
    async def test_failed_section_cannot_complete(self, service: ArticleService) -> None:
        """A failed section must be reset before it can complete."""
        article = await service.create_article("org-1", "user-1", "kw")
        section, _ = await service.create_sections_from_outline(article.id, _outline(article.id))
        await service.fail_section(section.id, "bad request")

        with pytest.raises(InvalidTransitionError):
            await service.complete_section(section.id, SectionResearchData(query="q"), [])
