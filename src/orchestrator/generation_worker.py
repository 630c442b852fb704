"""Queue worker that turns queued articles into researched outlines.

Run with ``python -m src.orchestrator.generation_worker``.
"""

import argparse
import asyncio
import uuid
from collections.abc import Sequence
from datetime import timedelta

import structlog
from pydantic import BaseModel

from src.agents.real_time_researcher import RealTimeResearcher
from src.middleware.cost_tracker import CostTracker
from src.orchestrator.batch_research_optimizer import BatchResearchOptimizer
from src.orchestrator.outline_generator import OutlineGenerator, OutlineRequest
from src.orchestrator.section_researcher import ResearchOutcome, SectionResearcher, create_section_researcher
from src.services.article_service import ArticleService
from src.services.cache_manager import CacheManager
from src.services.queue_service import OptimizeResult, QueueService
from src.services.repositories import InMemoryStore
from src.services.supabase_store import create_supabase_store
from src.tools.dataforseo import create_dataforseo_client
from src.tools.tavily_search import create_tavily_client
from src.utils.config import configure_logging, settings
from src.utils.exceptions import ArticleGenerationError, InvalidTransitionError
from src.utils.models import QueueEntry

logger = structlog.get_logger()


class ProcessedEntry(BaseModel):
    entry: QueueEntry
    outcome: ResearchOutcome | None = None
    error: str | None = None


class GenerationWorker:
    """Claims queued articles and runs outline generation plus section research."""

    def __init__(
        self,
        queue_service: QueueService,
        article_service: ArticleService,
        outline_generator: OutlineGenerator,
        section_researcher: SectionResearcher,
        worker_id: str | None = None,
        caches: Sequence[CacheManager] = (),
    ) -> None:
        self.queue_service = queue_service
        self.article_service = article_service
        self.outline_generator = outline_generator
        self.section_researcher = section_researcher
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.caches = list(caches)

    async def process_next(self, worker_id: str | None = None) -> ProcessedEntry | None:
        """Claim and process one queue entry.

        Returns None when nothing could be claimed. Any failure while
        processing marks both the article and the queue entry failed; the
        error is reported in the returned value instead of raised. Store
        errors while claiming propagate.
        """
        worker_id = worker_id or self.worker_id
        entry = await self.queue_service.claim_next(worker_id)
        if entry is None:
            return None

        log = logger.bind(article_id=entry.article_id, queue_id=entry.id, worker_id=worker_id)
        try:
            outcome = await self._generate(entry.article_id)
        except Exception as e:
            log.error("Article generation failed", error=str(e))
            await self._fail_article(entry.article_id, str(e))
            failed = await self.queue_service.mark_failed(entry.id, str(e))
            return ProcessedEntry(entry=failed, error=str(e))

        finished = await self.queue_service.mark_completed(entry.id)
        log.info(
            "Article processed",
            completed_sections=len(outcome.results),
            failed_sections=len(outcome.failed_sections),
            cancelled=outcome.cancelled,
        )
        return ProcessedEntry(entry=finished, outcome=outcome)

    async def _generate(self, article_id: str) -> ResearchOutcome:
        article = await self.article_service.update_status(article_id, "generating")
        outline = await self.outline_generator.generate_outline(
            OutlineRequest(
                article_id=article.id,
                organization_id=article.organization_id,
                user_id=article.user_id,
                keyword=article.keyword,
                target_word_count=article.target_word_count,
                writing_style=article.writing_style,
                target_audience=article.target_audience,
            )
        )
        await self.article_service.create_sections_from_outline(
            article_id, outline, max_retries=self.section_researcher.config.max_retries
        )
        outcome = await self.section_researcher.research_article(article_id)

        if outcome.cancelled:
            return outcome
        if not outcome.results and outcome.failed_sections:
            raise ArticleGenerationError(
                f"All {len(outcome.failed_sections)} sections failed research"
            )
        await self.article_service.update_status(article_id, "completed")
        return outcome

    async def _fail_article(self, article_id: str, error_message: str) -> None:
        try:
            await self.article_service.update_status(article_id, "failed", error_message=error_message)
        except InvalidTransitionError as e:
            logger.warning("Article not marked failed", article_id=article_id, error=str(e))

    async def sweep(self) -> OptimizeResult:
        """Reset stale processing entries and renumber the queue."""
        return await self.queue_service.optimize()

    async def run(
        self,
        poll_interval: float = 5.0,
        stop_event: asyncio.Event | None = None,
        sweep_interval: float = 300.0,
    ) -> None:
        """Poll the queue until ``stop_event`` is set.

        A claimed entry is followed immediately by another claim; an empty
        poll waits ``poll_interval`` seconds. Errors in a poll cycle are
        logged and the loop continues. Expiry sweeps of the worker's caches
        run for as long as the loop does.
        """
        stop_event = stop_event or asyncio.Event()
        for cache in self.caches:
            cache.start_cleanup()
        logger.info("Generation worker started", worker_id=self.worker_id)
        try:
            await self._poll(poll_interval, stop_event, sweep_interval)
        finally:
            for cache in self.caches:
                await cache.close()
            logger.info("Generation worker stopped", worker_id=self.worker_id)

    async def _poll(self, poll_interval: float, stop_event: asyncio.Event, sweep_interval: float) -> None:
        loop = asyncio.get_running_loop()
        next_sweep = loop.time()
        while not stop_event.is_set():
            if loop.time() >= next_sweep:
                try:
                    result = await self.sweep()
                    logger.info("Queue swept", stale_reset=result.stale_reset, renumbered=result.renumbered)
                except Exception as e:
                    logger.error("Queue sweep failed", error=str(e))
                next_sweep = loop.time() + sweep_interval

            try:
                processed = await self.process_next()
            except Exception as e:
                logger.error("Queue poll failed", worker_id=self.worker_id, error=str(e))
                processed = None

            if processed is None:
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
                except TimeoutError:
                    pass


def create_generation_worker(
    worker_id: str | None = None,
    max_concurrent: int | None = None,
    research_concurrency: int | None = None,
) -> GenerationWorker:
    """Wire a worker from settings.

    Uses the Supabase store when it is configured, otherwise an in-memory store.

    Raises:
        ConfigurationError: If provider credentials are missing.
    """
    store = create_supabase_store() if settings.has_supabase else InMemoryStore()
    article_service = ArticleService(store)
    queue_service = QueueService(
        store,
        store,
        max_concurrent=max_concurrent or settings.max_concurrent_generations,
        stale_after=timedelta(seconds=settings.stale_processing_seconds),
    )

    cache = CacheManager(
        max_size=settings.cache_max_size,
        default_ttl=settings.cache_default_ttl_seconds,
        cleanup_interval=settings.cache_cleanup_interval_seconds,
        name="research",
    )
    cost_tracker = CostTracker()
    search_client = create_tavily_client()
    optimizer = BatchResearchOptimizer(
        create_dataforseo_client(),
        search_client,
        cache,
        cost_tracker,
        provider_ttl=settings.batch_research_ttl_seconds,
    )
    researcher = RealTimeResearcher(
        search_client, cache, cost_tracker, research_ttl=settings.section_research_ttl_seconds
    )
    return GenerationWorker(
        queue_service,
        article_service,
        OutlineGenerator(article_service, research_optimizer=optimizer),
        create_section_researcher(article_service, researcher, max_concurrent=research_concurrency),
        worker_id=worker_id,
        caches=[cache],
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Process queued article generation jobs.")
    parser.add_argument("--worker-id", default=None, help="Worker identifier (random when omitted)")
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=settings.queue_poll_interval_seconds,
        help="Seconds to wait after an empty poll",
    )
    parser.add_argument(
        "--sweep-interval",
        type=float,
        default=settings.queue_sweep_interval_seconds,
        help="Seconds between stale-entry sweeps",
    )
    parser.add_argument(
        "--max-concurrent", type=int, default=None, help="System-wide processing ceiling"
    )
    parser.add_argument(
        "--research-concurrency", type=int, default=None, help="Sections researched per batch"
    )
    parser.add_argument("--once", action="store_true", help="Process at most one entry and exit")
    parser.add_argument("--log-level", default=None, help="Log level (default from settings)")
    return parser


async def _main(args: argparse.Namespace) -> None:
    worker = create_generation_worker(args.worker_id, args.max_concurrent, args.research_concurrency)
    if args.once:
        processed = await worker.process_next()
        if processed is None:
            logger.info("Nothing to process")
        return
    await worker.run(poll_interval=args.poll_interval, sweep_interval=args.sweep_interval)


def main(argv: Sequence[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        asyncio.run(_main(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
