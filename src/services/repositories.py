"""Repository contracts for articles, sections and queue entries.

The orchestration core only talks to these protocols. ``InMemoryStore`` is a
complete single-process implementation used by tests and local runs; the
Supabase-backed store lives in ``src.services.supabase_store``.
"""

import asyncio
from datetime import datetime
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel

from src.utils.exceptions import NotFoundError
from src.utils.models import (
    Article,
    ArticleSection,
    QueueCounts,
    QueueEntry,
    QueueEntryStatus,
    utc_now,
)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ArticleRepository(Protocol):
    """Persistence operations for articles and their sections.

    Lookups of missing rows raise NotFoundError; any other store failure
    raises StoreError.
    """

    async def create_article(self, article: Article) -> Article: ...

    async def get_article(self, article_id: str) -> Article: ...

    async def update_article(self, article_id: str, **fields: Any) -> Article: ...

    async def list_articles(self, organization_id: str) -> list[Article]: ...

    async def create_sections(self, sections: list[ArticleSection]) -> list[ArticleSection]: ...

    async def get_sections(self, article_id: str) -> list[ArticleSection]:
        """Return the article's sections ordered by section_order."""
        ...

    async def get_section(self, section_id: str) -> ArticleSection: ...

    async def update_section(self, section_id: str, **fields: Any) -> ArticleSection: ...

    async def delete_sections(self, article_id: str) -> int: ...


class QueueRepository(Protocol):
    """Persistence operations for generation queue entries."""

    async def insert_entry(self, entry: QueueEntry) -> QueueEntry: ...

    async def get_entry(self, queue_id: str) -> QueueEntry: ...

    async def find_entry(
        self, article_id: str, status: QueueEntryStatus | None = None
    ) -> QueueEntry | None: ...

    async def list_entries(
        self,
        status: QueueEntryStatus | None = None,
        organization_id: str | None = None,
        since: datetime | None = None,
    ) -> list[QueueEntry]:
        """List entries; queued entries come back ordered by queue_position."""
        ...

    async def count_by_status(self, status: QueueEntryStatus) -> int: ...

    async def max_queue_position(self) -> int:
        """Highest position among queued entries, 0 when none are queued."""
        ...

    async def claim_next(self, worker_id: str, started_at: datetime) -> QueueEntry | None:
        """Atomically move the queued entry with the smallest position to processing."""
        ...

    async def update_entry(self, queue_id: str, **fields: Any) -> QueueEntry: ...

    async def delete_entry(self, queue_id: str) -> None: ...

    async def get_queue_counts(self, organization_id: str) -> QueueCounts: ...


def _apply(model: ModelT, fields: dict[str, Any]) -> ModelT:
    """Return a validated copy of ``model`` with ``fields`` replaced."""
    return type(model).model_validate({**dict(model), **fields})


class InMemoryStore:
    """Dict-backed ArticleRepository and QueueRepository.

    Returned models are copies, so callers cannot mutate stored state
    without going through an update method.
    """

    def __init__(self) -> None:
        self._articles: dict[str, Article] = {}
        self._sections: dict[str, ArticleSection] = {}
        self._queue: dict[str, QueueEntry] = {}
        self._claim_lock = asyncio.Lock()

    # --- Articles ---

    async def create_article(self, article: Article) -> Article:
        self._articles[article.id] = article.model_copy(deep=True)
        return article.model_copy(deep=True)

    async def get_article(self, article_id: str) -> Article:
        article = self._articles.get(article_id)
        if article is None:
            raise NotFoundError(f"Article {article_id} not found")
        return article.model_copy(deep=True)

    async def update_article(self, article_id: str, **fields: Any) -> Article:
        current = await self.get_article(article_id)
        updated = _apply(current, {**fields, "updated_at": utc_now()})
        self._articles[article_id] = updated
        return updated.model_copy(deep=True)

    async def list_articles(self, organization_id: str) -> list[Article]:
        return [
            a.model_copy(deep=True)
            for a in self._articles.values()
            if a.organization_id == organization_id
        ]

    async def create_sections(self, sections: list[ArticleSection]) -> list[ArticleSection]:
        for section in sections:
            self._sections[section.id] = section.model_copy(deep=True)
        return [s.model_copy(deep=True) for s in sections]

    async def get_sections(self, article_id: str) -> list[ArticleSection]:
        sections = [s for s in self._sections.values() if s.article_id == article_id]
        return [s.model_copy(deep=True) for s in sorted(sections, key=lambda s: s.section_order)]

    async def get_section(self, section_id: str) -> ArticleSection:
        section = self._sections.get(section_id)
        if section is None:
            raise NotFoundError(f"Section {section_id} not found")
        return section.model_copy(deep=True)

    async def update_section(self, section_id: str, **fields: Any) -> ArticleSection:
        current = await self.get_section(section_id)
        updated = _apply(current, {**fields, "updated_at": utc_now()})
        self._sections[section_id] = updated
        return updated.model_copy(deep=True)

    async def delete_sections(self, article_id: str) -> int:
        doomed = [sid for sid, s in self._sections.items() if s.article_id == article_id]
        for section_id in doomed:
            del self._sections[section_id]
        return len(doomed)

    # --- Queue ---

    async def insert_entry(self, entry: QueueEntry) -> QueueEntry:
        self._queue[entry.id] = entry.model_copy()
        return entry.model_copy()

    async def get_entry(self, queue_id: str) -> QueueEntry:
        entry = self._queue.get(queue_id)
        if entry is None:
            raise NotFoundError(f"Queue entry {queue_id} not found")
        return entry.model_copy()

    async def find_entry(
        self, article_id: str, status: QueueEntryStatus | None = None
    ) -> QueueEntry | None:
        matches = [
            e
            for e in self._queue.values()
            if e.article_id == article_id and (status is None or e.status == status)
        ]
        if not matches:
            return None
        return max(matches, key=lambda e: e.created_at).model_copy()

    async def list_entries(
        self,
        status: QueueEntryStatus | None = None,
        organization_id: str | None = None,
        since: datetime | None = None,
    ) -> list[QueueEntry]:
        entries = [
            e
            for e in self._queue.values()
            if (status is None or e.status == status)
            and (organization_id is None or e.organization_id == organization_id)
            and (since is None or e.created_at >= since)
        ]
        entries.sort(key=lambda e: (e.queue_position or 0, e.created_at))
        return [e.model_copy() for e in entries]

    async def count_by_status(self, status: QueueEntryStatus) -> int:
        return sum(1 for e in self._queue.values() if e.status == status)

    async def max_queue_position(self) -> int:
        positions = [
            e.queue_position
            for e in self._queue.values()
            if e.status == "queued" and e.queue_position is not None
        ]
        return max(positions, default=0)

    async def claim_next(self, worker_id: str, started_at: datetime) -> QueueEntry | None:
        async with self._claim_lock:
            queued = [e for e in self._queue.values() if e.status == "queued"]
            if not queued:
                return None
            head = min(queued, key=lambda e: (e.queue_position or 0, e.created_at))
            claimed = _apply(
                head,
                {
                    "status": "processing",
                    "worker_id": worker_id,
                    "started_at": started_at,
                },
            )
            self._queue[head.id] = claimed
            return claimed.model_copy()

    async def update_entry(self, queue_id: str, **fields: Any) -> QueueEntry:
        current = await self.get_entry(queue_id)
        updated = _apply(current, fields)
        self._queue[queue_id] = updated
        return updated.model_copy()

    async def delete_entry(self, queue_id: str) -> None:
        if self._queue.pop(queue_id, None) is None:
            raise NotFoundError(f"Queue entry {queue_id} not found")

    async def get_queue_counts(self, organization_id: str) -> QueueCounts:
        entries = [e for e in self._queue.values() if e.organization_id == organization_id]
        waits = [
            (e.started_at - e.created_at).total_seconds()
            for e in entries
            if e.started_at is not None
        ]
        return QueueCounts(
            queued=sum(1 for e in entries if e.status == "queued"),
            processing=sum(1 for e in entries if e.status == "processing"),
            completed=sum(1 for e in entries if e.status == "completed"),
            failed=sum(1 for e in entries if e.status == "failed"),
            average_wait_seconds=max(sum(waits) / len(waits), 0.0) if waits else 0.0,
        )
