"""Section research coordination for a whole article.

A research plan holds one coordinator per outline section and a strategy
that decides how sections are scheduled:

- sequential: one section at a time (3 sections or fewer)
- hybrid: introduction and conclusion first, one at a time, then the rest
  in bounded batches (4 to 10 sections)
- parallel: every section in bounded batches (more than 10 sections)

A failed section never fails the plan. Progress is written after every
batch and cancellation is checked before every batch.
"""

import asyncio
import math
from collections.abc import Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, Field
from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from src.agents.citation_manager import CitationManager
from src.agents.real_time_researcher import RealTimeResearcher, SectionResearchRequest
from src.middleware.workflow_manager import BatchReport, WorkflowManager, make_batches
from src.services.article_service import ArticleService
from src.utils.config import settings
from src.utils.exceptions import OutlineError, is_retryable
from src.utils.models import (
    Article,
    ArticleSection,
    CitationStyleName,
    Outline,
    OutlineSection,
    ResearchProgress,
    ResearchStrategyName,
    SectionProgress,
    SectionResearchResult,
)

logger = structlog.get_logger()

SEQUENTIAL_MAX_SECTIONS = 3
HYBRID_MAX_SECTIONS = 10
SECONDS_PER_SECTION = 5.0
MAX_CITATIONS = 10


class ResearchConfig(BaseModel):
    """Scheduling and retry settings for section research."""

    max_concurrent: int = Field(default=3, ge=1, description="Sections per batch")
    max_retries: int = Field(default=3, ge=1, description="Attempts per section")
    backoff_multiplier: float = Field(default=2.0, gt=0, description="Seconds")
    max_delay: float = Field(default=10.0, gt=0, description="Seconds")
    citation_style: CitationStyleName = "apa"
    max_sources: int = Field(default=20, ge=1)


class SectionResearchCoordinator(BaseModel):
    """Everything needed to research and persist one section."""

    section_id: str = Field(description="Article section row id")
    outline_section: OutlineSection
    previous_sections: list[str] = Field(default_factory=list)
    citation_style: CitationStyleName = "apa"
    max_sources: int = Field(default=20, ge=1)
    max_citations: int = Field(default=MAX_CITATIONS, ge=0)


class ResearchPlan(BaseModel):
    article_id: str
    organization_id: str
    user_id: str
    main_keyword: str
    strategy: ResearchStrategyName
    coordinators: list[SectionResearchCoordinator] = Field(default_factory=list)
    estimated_cost: float = Field(default=0.0, ge=0.0)
    estimated_time_seconds: float = Field(default=0.0, ge=0.0)


class ResearchOutcome(BaseModel):
    """Results of executing a plan; failed and cancelled sections are listed apart."""

    article_id: str
    strategy: ResearchStrategyName
    results: list[SectionResearchResult] = Field(default_factory=list)
    failed_sections: dict[str, str] = Field(
        default_factory=dict, description="Section id to error message"
    )
    cancelled_sections: list[str] = Field(default_factory=list)
    total_cost: float = Field(default=0.0, ge=0.0)
    max_concurrent_observed: int = 0

    @property
    def cancelled(self) -> bool:
        return bool(self.cancelled_sections)


def select_strategy(section_count: int) -> ResearchStrategyName:
    if section_count <= SEQUENTIAL_MAX_SECTIONS:
        return "sequential"
    if section_count <= HYBRID_MAX_SECTIONS:
        return "hybrid"
    return "parallel"


class SectionResearcher:
    """Researches every section of an article and writes results back."""

    def __init__(
        self,
        article_service: ArticleService,
        researcher: RealTimeResearcher,
        citation_manager: CitationManager | None = None,
        config: ResearchConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Initialize the section researcher.

        Args:
            article_service: Article and section mutations.
            researcher: Per-section researcher.
            citation_manager: Citation formatting; a default one is created when omitted.
            config: Scheduling and retry settings.
            sleep: Awaitable sleep used between retry attempts.
        """
        self.article_service = article_service
        self.researcher = researcher
        self.citation_manager = citation_manager or CitationManager()
        self.config = config or ResearchConfig()
        self._sleep = sleep

    # --- Planning ---

    def _coordinators(
        self, outline: Outline, sections: list[ArticleSection]
    ) -> list[SectionResearchCoordinator]:
        by_outline_id = {s.id: s for s in outline.sections}
        coordinators = []
        for section in sorted(sections, key=lambda s: s.section_order):
            outline_section = by_outline_id.get(section.outline_section_id)
            if outline_section is None:
                raise OutlineError(
                    f"Section {section.id} refers to unknown outline section {section.outline_section_id}"
                )
            coordinators.append(
                SectionResearchCoordinator(
                    section_id=section.id,
                    outline_section=outline_section,
                    previous_sections=[
                        s.title
                        for s in sorted(outline.sections, key=lambda s: s.order)
                        if s.order < outline_section.order
                    ],
                    citation_style=self.config.citation_style,
                    max_sources=self.config.max_sources,
                    max_citations=min(self.config.max_sources, MAX_CITATIONS),
                )
            )
        return coordinators

    async def create_research_plan(
        self, article_id: str, sections: list[ArticleSection] | None = None
    ) -> ResearchPlan:
        """Plan research for an article's sections.

        Args:
            article_id: Article to research.
            sections: Sections to include; defaults to pending and interrupted sections.

        Raises:
            OutlineError: If the article has no outline.
        """
        article = await self.article_service.get_article(article_id)
        if article.outline is None:
            raise OutlineError(f"Article {article_id} has no outline")
        if sections is None:
            sections = [
                s
                for s in await self.article_service.get_sections(article_id)
                if s.status in ("pending", "researching")
            ]

        coordinators = self._coordinators(article.outline, sections)
        cost_per_section = self.researcher.search_client.cost_per_search
        plan = ResearchPlan(
            article_id=article_id,
            organization_id=article.organization_id,
            user_id=article.user_id,
            main_keyword=article.keyword,
            strategy=select_strategy(len(coordinators)),
            coordinators=coordinators,
            estimated_cost=cost_per_section * len(coordinators),
            estimated_time_seconds=SECONDS_PER_SECTION * len(coordinators),
        )
        logger.info(
            "Research plan created",
            article_id=article_id,
            strategy=plan.strategy,
            sections=len(coordinators),
            estimated_cost=plan.estimated_cost,
        )
        return plan

    def schedule(self, plan: ResearchPlan) -> list[list[str]]:
        """Batches of section ids in execution order for the plan's strategy."""
        ids = [c.section_id for c in plan.coordinators]
        if plan.strategy == "sequential":
            return make_batches(ids, 1)
        if plan.strategy == "parallel":
            return make_batches(ids, self.config.max_concurrent)

        priority = [
            c.section_id
            for c in plan.coordinators
            if c.outline_section.section_type in ("introduction", "conclusion")
        ]
        rest = [section_id for section_id in ids if section_id not in priority]
        return make_batches(priority, 1) + make_batches(rest, self.config.max_concurrent)

    # --- Execution ---

    async def research_article(self, article_id: str) -> ResearchOutcome:
        plan = await self.create_research_plan(article_id)
        return await self.execute_plan(plan)

    async def execute_plan(self, plan: ResearchPlan) -> ResearchOutcome:
        """Run every coordinator of the plan and persist the results.

        Article progress is the share of all the article's sections that are
        completed, rounded down, and is written after each batch.
        """
        coordinators = {c.section_id: c for c in plan.coordinators}
        all_sections = await self.article_service.get_sections(plan.article_id)
        total = len(all_sections)
        completed = sum(1 for s in all_sections if s.status == "completed")

        workflow = WorkflowManager()
        for coordinator in plan.coordinators:
            workflow.add_loop(coordinator.section_id, coordinator.outline_section.title)

        async def run(section_id: str) -> SectionResearchResult:
            return await self.execute_section_with_retry(plan, coordinators[section_id])

        async def should_stop() -> bool:
            return await self._is_cancelled(plan.article_id)

        async def on_batch_complete(report: BatchReport) -> None:
            nonlocal completed
            completed += report.completed
            progress = math.floor(completed / total * 100) if total else 100
            last = coordinators[report.loop_ids[-1]].outline_section.title
            await self.article_service.update_progress(plan.article_id, progress, current_section=last)

        results = await workflow.run_batches(
            self.schedule(plan), run, should_stop=should_stop, on_batch_complete=on_batch_complete
        )

        outcome = ResearchOutcome(
            article_id=plan.article_id,
            strategy=plan.strategy,
            cancelled_sections=[
                loop.loop_id for loop in workflow.get_all_loops() if loop.status == "cancelled"
            ],
            max_concurrent_observed=workflow.peak_running,
        )
        for coordinator in plan.coordinators:
            result = results.get(coordinator.section_id)
            if isinstance(result, SectionResearchResult):
                outcome.results.append(result)
                outcome.total_cost += result.research.cost
            elif isinstance(result, BaseException):
                outcome.failed_sections[coordinator.section_id] = str(result)

        await self._store_article_research(outcome)
        logger.info(
            "Article research finished",
            article_id=plan.article_id,
            strategy=plan.strategy,
            completed=len(outcome.results),
            failed=len(outcome.failed_sections),
            cancelled=len(outcome.cancelled_sections),
            total_cost=outcome.total_cost,
        )
        return outcome

    def _request(self, plan: ResearchPlan, coordinator: SectionResearchCoordinator) -> SectionResearchRequest:
        section = coordinator.outline_section
        return SectionResearchRequest(
            article_id=plan.article_id,
            organization_id=plan.organization_id,
            user_id=plan.user_id,
            section_id=coordinator.section_id,
            section_title=section.title,
            section_type=section.section_type,
            main_keyword=plan.main_keyword,
            research_topics=section.research_topics,
            previous_sections=coordinator.previous_sections,
            max_sources=coordinator.max_sources,
        )

    async def execute_section_with_retry(
        self, plan: ResearchPlan, coordinator: SectionResearchCoordinator
    ) -> SectionResearchResult:
        """Research one section, retrying retryable failures with backoff.

        The wait before retry ``n`` is ``backoff_multiplier * 2 ** (n - 1)``
        seconds, capped at ``max_delay``. Errors that are not retryable stop
        immediately. The section is marked failed when no attempt succeeds.

        Raises:
            Exception: The last error once the section has failed.
        """
        section_id = coordinator.section_id
        section = await self.article_service.get_section(section_id)
        await self.article_service.mark_section_researching(section)
        request = self._request(plan, coordinator)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.config.max_retries),
            wait=wait_exponential(multiplier=self.config.backoff_multiplier, max=self.config.max_delay),
            retry=retry_if_exception(is_retryable),
            sleep=self._sleep,
            reraise=True,
        )
        attempt_number = 1
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    if attempt_number > 1:
                        logger.info(
                            "Retrying section research",
                            section_id=section_id,
                            attempt=attempt_number,
                        )
                    research = await self.researcher.research_section(request)
        except Exception as e:
            logger.error(
                "Section research failed",
                section_id=section_id,
                attempts=attempt_number,
                error=str(e),
            )
            await self.article_service.fail_section(section_id, str(e), retry_count=attempt_number - 1)
            raise

        citations = self.citation_manager.generate_citations(
            research.sources,
            style=coordinator.citation_style,
            section_type=coordinator.outline_section.section_type,
            section_id=coordinator.outline_section.id,
            max_citations=coordinator.max_citations,
        )
        retry_count = attempt_number - 1
        await self.article_service.complete_section(section_id, research, citations, retry_count)
        return SectionResearchResult(
            section_id=section_id,
            section_title=coordinator.outline_section.title,
            section_type=coordinator.outline_section.section_type,
            research=research,
            citations=citations,
            retry_count=retry_count,
        )

    async def _is_cancelled(self, article_id: str) -> bool:
        article = await self.article_service.get_article(article_id)
        return article.status == "cancelled"

    async def _store_article_research(self, outcome: ResearchOutcome) -> None:
        """Merge per-section summaries and citations into article metadata."""
        if not outcome.results:
            return
        article = await self.article_service.get_article(outcome.article_id)
        research: dict[str, Any] = dict(article.metadata.get("research", {}))
        citations: dict[str, Any] = dict(article.metadata.get("citations", {}))
        for result in outcome.results:
            research[result.section_id] = {
                "title": result.section_title,
                "summary": result.research.summary,
                "key_points": result.research.key_points,
                "sources": len(result.research.sources),
                "from_cache": result.research.from_cache,
            }
            citations[result.section_id] = [c.reference for c in result.citations]
        try:
            await self.article_service.merge_metadata(
                outcome.article_id,
                {
                    "research": research,
                    "citations": citations,
                    "research_strategy": outcome.strategy,
                    "research_cost": article.metadata.get("research_cost", 0.0) + outcome.total_cost,
                },
            )
        except Exception as e:
            logger.error("Failed to store article research", article_id=outcome.article_id, error=str(e))

    # --- Read model and control ---

    async def get_research_progress(self, article_id: str) -> ResearchProgress:
        article: Article = await self.article_service.get_article(article_id)
        sections = await self.article_service.get_sections(article_id)
        done = [s for s in sections if s.status == "completed"]
        remaining = len(sections) - len(done)
        overall = math.floor(len(done) / len(sections) * 100) if sections else article.progress
        return ResearchProgress(
            article_id=article_id,
            status=article.status,
            overall_progress=max(overall, article.progress) if article.status == "generating" else overall,
            sections=[
                SectionProgress(
                    section_id=s.id,
                    title=s.section_title,
                    section_type=s.section_type,
                    status=s.status,
                    retry_count=s.retry_count,
                    error_message=s.error_message,
                )
                for s in sections
            ],
            estimated_time_remaining_seconds=remaining * SECONDS_PER_SECTION,
            cost_so_far=sum(s.research_data.cost for s in done if s.research_data is not None),
        )

    async def cancel_research(self, article_id: str) -> None:
        """Stop scheduling further sections; calls already issued run to completion."""
        await self.article_service.update_status(article_id, "cancelled")
        logger.info("Research cancelled", article_id=article_id)

    async def retry_failed_sections(self, article_id: str) -> ResearchOutcome:
        """Reset failed sections to pending and research them again."""
        sections = await self.article_service.get_sections(article_id)
        failed = [s for s in sections if s.status == "failed"]
        if not failed:
            logger.info("No failed sections to retry", article_id=article_id)
            return ResearchOutcome(article_id=article_id, strategy=select_strategy(0))
        reset = [await self.article_service.reset_section_for_retry(s) for s in failed]
        plan = await self.create_research_plan(article_id, sections=reset)
        return await self.execute_plan(plan)


def create_section_researcher(
    article_service: ArticleService,
    researcher: RealTimeResearcher,
    max_concurrent: int | None = None,
) -> SectionResearcher:
    """Create a SectionResearcher configured from settings."""
    return SectionResearcher(
        article_service,
        researcher,
        config=ResearchConfig(
            max_concurrent=max_concurrent or settings.research_max_concurrent,
            max_retries=settings.research_max_retries,
            backoff_multiplier=settings.research_backoff_multiplier,
            max_delay=settings.research_max_delay_seconds,
            citation_style=settings.default_citation_style,
            max_sources=settings.research_max_sources,
        ),
    )
