"""Generation queue with admission control.

The queue is the only place the system-wide ``max_concurrent`` ceiling is
enforced: ``claim_next`` refuses to hand out work while that many entries
are processing.
"""

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import BaseModel, Field

from src.services.repositories import ArticleRepository, QueueRepository
from src.utils.exceptions import NotFoundError, QueueError
from src.utils.models import QueueEntry, QueuePriority, QueueStatus, utc_now

logger = structlog.get_logger()

STALE_ERROR_MESSAGE = "Stale processing entry - reset to queued"

PRIORITY_RANK: dict[str, int] = {"high": 0, "normal": 1, "low": 2}


class QueueStatistics(BaseModel):
    """Throughput figures for one organization over a time window."""

    total_processed: int = 0
    average_processing_seconds: float = 0.0
    success_rate: float = Field(default=0.0, description="Percentage of finished entries without error")
    throughput_per_hour: float = 0.0
    peak_queue_size: int = 0


class WorkerStatus(BaseModel):
    worker_id: str
    current_entry: QueueEntry | None = None
    processed_count: int = 0
    average_processing_seconds: float = 0.0
    success_rate: float = 0.0
    last_activity: datetime | None = None


class OptimizeResult(BaseModel):
    stale_reset: int = 0
    renumbered: int = 0


class QueueService:
    """Admission-controlled queue of article generation jobs."""

    def __init__(
        self,
        queue_repository: QueueRepository,
        article_repository: ArticleRepository,
        max_concurrent: int = 50,
        stale_after: timedelta = timedelta(hours=1),
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the queue service.

        Args:
            queue_repository: Store for queue entries.
            article_repository: Store for articles (organization lookup, retries).
            max_concurrent: Ceiling on entries processing at once.
            stale_after: Processing time after which an entry is considered abandoned.
            clock: Returns the current time.
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self.queue = queue_repository
        self.articles = article_repository
        self._max_concurrent = max_concurrent
        self.stale_after = stale_after
        self._clock = clock
        # Serializes load check + claim within this process
        self._admission_lock = asyncio.Lock()

    async def enqueue(self, article_id: str, priority: QueuePriority = "normal") -> QueueEntry:
        """Add an article to the tail of the queue.

        Enqueuing an article that is already queued returns the existing entry.
        The check is serialized with the insert inside this process only; several
        processes sharing one store also need a unique-while-queued constraint on
        the entry table.

        Raises:
            NotFoundError: If the article does not exist.
        """
        article = await self.articles.get_article(article_id)
        async with self._admission_lock:
            existing = await self.queue.find_entry(article_id, status="queued")
            if existing is not None:
                logger.info("Article already queued", article_id=article_id, queue_id=existing.id)
                return existing

            position = await self.queue.max_queue_position() + 1
            entry = await self.queue.insert_entry(
                QueueEntry(
                    id=str(uuid.uuid4()),
                    article_id=article_id,
                    organization_id=article.organization_id,
                    priority=priority,
                    queue_position=position,
                    created_at=self._clock(),
                )
            )
        logger.info(
            "Article enqueued",
            article_id=article_id,
            queue_id=entry.id,
            position=position,
            priority=priority,
        )
        return entry

    async def claim_next(self, worker_id: str) -> QueueEntry | None:
        """Claim the head of the queue for a worker.

        Returns None when the system is at capacity or nothing is queued.
        Store errors propagate to the caller.

        The load check and the claim are atomic within this process. Worker
        processes on separate hosts sharing one store can briefly exceed the
        ceiling between their checks; a strict global limit needs the check
        inside the store's claim (a single conditional statement or RPC).
        """
        async with self._admission_lock:
            load = await self.get_current_load()
            if load >= self._max_concurrent:
                logger.info(
                    "Queue at capacity, not claiming",
                    worker_id=worker_id,
                    current_load=load,
                    max_concurrent=self._max_concurrent,
                )
                return None

            entry = await self.queue.claim_next(worker_id, self._clock())

        if entry is not None:
            logger.info(
                "Queue entry claimed",
                queue_id=entry.id,
                article_id=entry.article_id,
                worker_id=worker_id,
            )
        return entry

    async def mark_processing(self, queue_id: str, worker_id: str) -> QueueEntry:
        """Move an entry to processing outside of ``claim_next``.

        Re-marking an entry that is already processing only updates its worker.
        Any other entry is admitted under the same capacity check as a claim.

        Raises:
            QueueError: If the system is at capacity.
        """
        async with self._admission_lock:
            entry = await self.queue.get_entry(queue_id)
            if entry.status != "processing":
                load = await self.get_current_load()
                if load >= self._max_concurrent:
                    raise QueueError(
                        f"Cannot start {queue_id}: {load} entries processing "
                        f"(max {self._max_concurrent})"
                    )
            return await self.queue.update_entry(
                queue_id, status="processing", worker_id=worker_id, started_at=self._clock()
            )

    async def mark_completed(self, queue_id: str, error_message: str | None = None) -> QueueEntry:
        """Finish an entry; an error message records it as failed instead."""
        status = "failed" if error_message else "completed"
        entry = await self.queue.update_entry(
            queue_id, status=status, completed_at=self._clock(), error_message=error_message
        )
        logger.info("Queue entry finished", queue_id=queue_id, status=status)
        return entry

    async def mark_failed(self, queue_id: str, error_message: str) -> QueueEntry:
        return await self.mark_completed(queue_id, error_message=error_message)

    async def remove_from_queue(self, queue_id: str) -> None:
        await self.queue.delete_entry(queue_id)
        logger.info("Queue entry removed", queue_id=queue_id)

    async def get_status(self, organization_id: str) -> QueueStatus:
        """Queue read model for one organization."""
        counts = await self.queue.get_queue_counts(organization_id)
        return QueueStatus(
            **counts.model_dump(),
            organization_id=organization_id,
            max_concurrent=self._max_concurrent,
            current_load=await self.get_current_load(),
        )

    async def get_queue_position(self, article_id: str) -> int | None:
        """Position of a queued article, None when it is not queued."""
        entry = await self.queue.find_entry(article_id, status="queued")
        return entry.queue_position if entry else None

    async def get_queued_articles(self, organization_id: str, limit: int = 50) -> list[QueueEntry]:
        entries = await self.queue.list_entries(status="queued", organization_id=organization_id)
        return entries[:limit]

    async def get_processing_articles(self, organization_id: str) -> list[QueueEntry]:
        entries = await self.queue.list_entries(
            status="processing", organization_id=organization_id
        )
        return sorted(entries, key=lambda e: e.started_at or e.created_at)

    async def cancel_queued_article(self, article_id: str) -> None:
        """Remove a still-queued article from the queue.

        Raises:
            QueueError: If the article is not queued.
        """
        entry = await self.queue.find_entry(article_id, status="queued")
        if entry is None:
            raise QueueError(f"Article {article_id} is not queued")
        await self.queue.delete_entry(entry.id)
        logger.info("Queued article cancelled", article_id=article_id, queue_id=entry.id)

    async def retry_failed_article(self, article_id: str) -> QueueEntry:
        """Put a failed article back at the tail of the queue.

        Raises:
            QueueError: If the article has no failed entry.
        """
        entry = await self.queue.find_entry(article_id, status="failed")
        if entry is None:
            raise QueueError(f"Article {article_id} has no failed queue entry")

        async with self._admission_lock:
            position = await self.queue.max_queue_position() + 1
            retried = await self.queue.update_entry(
                entry.id,
                status="queued",
                queue_position=position,
                worker_id=None,
                started_at=None,
                completed_at=None,
                error_message=None,
            )

        try:
            article = await self.articles.get_article(article_id)
            await self.articles.update_article(article_id, retry_count=article.retry_count + 1)
        except NotFoundError:
            logger.warning("Retried queue entry has no article", article_id=article_id)

        logger.info("Failed article requeued", article_id=article_id, position=position)
        return retried

    async def get_current_load(self) -> int:
        return await self.queue.count_by_status("processing")

    async def get_queue_statistics(self, organization_id: str, hours: int = 24) -> QueueStatistics:
        """Throughput figures for entries created in the last ``hours``."""
        since = self._clock() - timedelta(hours=hours)
        entries = await self.queue.list_entries(organization_id=organization_id, since=since)
        finished = [e for e in entries if e.status in ("completed", "failed")]
        completed = [e for e in finished if e.status == "completed"]

        durations = [
            (e.completed_at - e.started_at).total_seconds()
            for e in finished
            if e.started_at is not None and e.completed_at is not None
        ]
        positions = [e.queue_position for e in entries if e.queue_position is not None]

        return QueueStatistics(
            total_processed=len(finished),
            average_processing_seconds=sum(durations) / len(durations) if durations else 0.0,
            success_rate=len(completed) / len(finished) * 100 if finished else 0.0,
            throughput_per_hour=len(finished) / hours if hours else 0.0,
            peak_queue_size=max(positions, default=0),
        )

    async def get_worker_status(self, worker_id: str) -> WorkerStatus:
        entries = [e for e in await self.queue.list_entries() if e.worker_id == worker_id]
        current = next((e for e in entries if e.status == "processing"), None)
        finished = [e for e in entries if e.status in ("completed", "failed")]
        durations = [
            (e.completed_at - e.started_at).total_seconds()
            for e in finished
            if e.started_at is not None and e.completed_at is not None
        ]
        activity = [t for e in entries for t in (e.started_at, e.completed_at) if t is not None]

        return WorkerStatus(
            worker_id=worker_id,
            current_entry=current,
            processed_count=len(finished),
            average_processing_seconds=sum(durations) / len(durations) if durations else 0.0,
            success_rate=(
                sum(1 for e in finished if e.status == "completed") / len(finished) * 100
                if finished
                else 0.0
            ),
            last_activity=max(activity, default=None),
        )

    async def optimize(self) -> OptimizeResult:
        """Reset abandoned processing entries and renumber the queued set from 1.

        An entry processing for longer than the staleness window goes back
        to queued with an explanatory error. Failures on individual resets
        are logged and skipped.
        """
        result = OptimizeResult()
        cutoff = self._clock() - self.stale_after

        async with self._admission_lock:
            for entry in await self.queue.list_entries(status="processing"):
                if entry.started_at is None or entry.started_at >= cutoff:
                    continue
                try:
                    await self.queue.update_entry(
                        entry.id,
                        status="queued",
                        worker_id=None,
                        started_at=None,
                        completed_at=None,
                        error_message=STALE_ERROR_MESSAGE,
                    )
                    result.stale_reset += 1
                    logger.warning(
                        "Stale queue entry reset",
                        queue_id=entry.id,
                        article_id=entry.article_id,
                        worker_id=entry.worker_id,
                    )
                except Exception as e:
                    logger.error("Failed to reset stale queue entry", queue_id=entry.id, error=str(e))

            queued = await self.queue.list_entries(status="queued")
            queued.sort(key=lambda e: (PRIORITY_RANK[e.priority], e.created_at))
            for position, entry in enumerate(queued, start=1):
                if entry.queue_position != position:
                    await self.queue.update_entry(entry.id, queue_position=position)
            result.renumbered = len(queued)

        logger.info("Queue optimized", **result.model_dump())
        return result

    def set_max_concurrent(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max_concurrent = max_concurrent
        logger.info("Queue concurrency updated", max_concurrent=max_concurrent)

    def get_max_concurrent(self) -> int:
        return self._max_concurrent
