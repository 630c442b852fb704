"""Supabase-backed ArticleRepository and QueueRepository.

The supabase client is synchronous; every query is executed in a worker
thread so the event loop never blocks on the network.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog
from supabase import Client, create_client

from src.utils.config import settings
from src.utils.exceptions import ConfigurationError, NotFoundError, StoreError
from src.utils.models import (
    Article,
    ArticleSection,
    QueueCounts,
    QueueEntry,
    QueueEntryStatus,
    utc_now,
)

logger = structlog.get_logger()

ARTICLES_TABLE = "articles"
SECTIONS_TABLE = "article_sections"
QUEUE_TABLE = "article_generation_queue"
QUEUE_STATS_RPC = "get_queue_statistics"

# PostgREST code for "no rows returned" on single-row queries
NOT_FOUND_CODE = "PGRST116"

# Attempts at the optimistic queued -> processing update before giving up
CLAIM_ATTEMPTS = 5


def _to_row(values: dict[str, Any]) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
        elif hasattr(value, "model_dump"):
            row[key] = value.model_dump(mode="json")
        elif isinstance(value, list):
            row[key] = [v.model_dump(mode="json") if hasattr(v, "model_dump") else v for v in value]
        else:
            row[key] = value
    return row


class SupabaseStore:
    """Repository implementation over Supabase tables."""

    def __init__(self, client: Client) -> None:
        self._client = client

    async def _execute(self, query: Any) -> list[dict[str, Any]]:
        """Run a blocking query in a worker thread and return its rows."""
        try:
            result = await asyncio.to_thread(query.execute)
        except Exception as e:
            if getattr(e, "code", None) == NOT_FOUND_CODE:
                raise NotFoundError(str(e)) from e
            raise StoreError(f"Supabase query failed: {e}") from e
        data = result.data
        if data is None:
            return []
        return data if isinstance(data, list) else [data]

    def _table(self, name: str) -> Any:
        return self._client.table(name)

    # --- Articles ---

    async def create_article(self, article: Article) -> Article:
        rows = await self._execute(
            self._table(ARTICLES_TABLE).insert(article.model_dump(mode="json"))
        )
        return Article.model_validate(rows[0]) if rows else article

    async def get_article(self, article_id: str) -> Article:
        rows = await self._execute(
            self._table(ARTICLES_TABLE).select("*").eq("id", article_id).limit(1)
        )
        if not rows:
            raise NotFoundError(f"Article {article_id} not found")
        return Article.model_validate(rows[0])

    async def update_article(self, article_id: str, **fields: Any) -> Article:
        values = _to_row({**fields, "updated_at": utc_now()})
        rows = await self._execute(self._table(ARTICLES_TABLE).update(values).eq("id", article_id))
        if not rows:
            raise NotFoundError(f"Article {article_id} not found")
        return Article.model_validate(rows[0])

    async def list_articles(self, organization_id: str) -> list[Article]:
        rows = await self._execute(
            self._table(ARTICLES_TABLE)
            .select("*")
            .eq("organization_id", organization_id)
            .order("created_at", desc=True)
        )
        return [Article.model_validate(row) for row in rows]

    async def create_sections(self, sections: list[ArticleSection]) -> list[ArticleSection]:
        if not sections:
            return []
        rows = await self._execute(
            self._table(SECTIONS_TABLE).insert([s.model_dump(mode="json") for s in sections])
        )
        return [ArticleSection.model_validate(row) for row in rows]

    async def get_sections(self, article_id: str) -> list[ArticleSection]:
        rows = await self._execute(
            self._table(SECTIONS_TABLE)
            .select("*")
            .eq("article_id", article_id)
            .order("section_order")
        )
        return [ArticleSection.model_validate(row) for row in rows]

    async def get_section(self, section_id: str) -> ArticleSection:
        rows = await self._execute(
            self._table(SECTIONS_TABLE).select("*").eq("id", section_id).limit(1)
        )
        if not rows:
            raise NotFoundError(f"Section {section_id} not found")
        return ArticleSection.model_validate(rows[0])

    async def update_section(self, section_id: str, **fields: Any) -> ArticleSection:
        values = _to_row({**fields, "updated_at": utc_now()})
        rows = await self._execute(self._table(SECTIONS_TABLE).update(values).eq("id", section_id))
        if not rows:
            raise NotFoundError(f"Section {section_id} not found")
        return ArticleSection.model_validate(rows[0])

    async def delete_sections(self, article_id: str) -> int:
        rows = await self._execute(
            self._table(SECTIONS_TABLE).delete().eq("article_id", article_id)
        )
        return len(rows)

    # --- Queue ---

    async def insert_entry(self, entry: QueueEntry) -> QueueEntry:
        rows = await self._execute(self._table(QUEUE_TABLE).insert(entry.model_dump(mode="json")))
        return QueueEntry.model_validate(rows[0]) if rows else entry

    async def get_entry(self, queue_id: str) -> QueueEntry:
        rows = await self._execute(self._table(QUEUE_TABLE).select("*").eq("id", queue_id).limit(1))
        if not rows:
            raise NotFoundError(f"Queue entry {queue_id} not found")
        return QueueEntry.model_validate(rows[0])

    async def find_entry(
        self, article_id: str, status: QueueEntryStatus | None = None
    ) -> QueueEntry | None:
        query = self._table(QUEUE_TABLE).select("*").eq("article_id", article_id)
        if status is not None:
            query = query.eq("status", status)
        rows = await self._execute(query.order("created_at", desc=True).limit(1))
        return QueueEntry.model_validate(rows[0]) if rows else None

    async def list_entries(
        self,
        status: QueueEntryStatus | None = None,
        organization_id: str | None = None,
        since: datetime | None = None,
    ) -> list[QueueEntry]:
        query = self._table(QUEUE_TABLE).select("*")
        if status is not None:
            query = query.eq("status", status)
        if organization_id is not None:
            query = query.eq("organization_id", organization_id)
        if since is not None:
            query = query.gte("created_at", since.isoformat())
        rows = await self._execute(query.order("queue_position").order("created_at"))
        return [QueueEntry.model_validate(row) for row in rows]

    async def count_by_status(self, status: QueueEntryStatus) -> int:
        rows = await self._execute(self._table(QUEUE_TABLE).select("id").eq("status", status))
        return len(rows)

    async def max_queue_position(self) -> int:
        rows = await self._execute(
            self._table(QUEUE_TABLE)
            .select("queue_position")
            .eq("status", "queued")
            .order("queue_position", desc=True)
            .limit(1)
        )
        if not rows or rows[0].get("queue_position") is None:
            return 0
        return int(rows[0]["queue_position"])

    async def claim_next(self, worker_id: str, started_at: datetime) -> QueueEntry | None:
        """Flip the queue head to processing with a conditional update.

        The update only guards against two workers taking the same row. The
        processing ceiling is checked by the caller before this runs, so it
        is not enforced across processes.
        """
        for _ in range(CLAIM_ATTEMPTS):
            rows = await self._execute(
                self._table(QUEUE_TABLE)
                .select("*")
                .eq("status", "queued")
                .order("queue_position")
                .limit(1)
            )
            if not rows:
                return None

            head = rows[0]
            # Only succeeds if no other worker flipped the row first
            claimed = await self._execute(
                self._table(QUEUE_TABLE)
                .update(
                    {
                        "status": "processing",
                        "worker_id": worker_id,
                        "started_at": started_at.isoformat(),
                    }
                )
                .eq("id", head["id"])
                .eq("status", "queued")
            )
            if claimed:
                return QueueEntry.model_validate(claimed[0])
            logger.debug("Queue claim lost race, retrying", queue_id=head["id"])

        logger.warning("Queue claim abandoned after contention", worker_id=worker_id)
        return None

    async def update_entry(self, queue_id: str, **fields: Any) -> QueueEntry:
        rows = await self._execute(
            self._table(QUEUE_TABLE).update(_to_row(fields)).eq("id", queue_id)
        )
        if not rows:
            raise NotFoundError(f"Queue entry {queue_id} not found")
        return QueueEntry.model_validate(rows[0])

    async def delete_entry(self, queue_id: str) -> None:
        rows = await self._execute(self._table(QUEUE_TABLE).delete().eq("id", queue_id))
        if not rows:
            raise NotFoundError(f"Queue entry {queue_id} not found")

    async def get_queue_counts(self, organization_id: str) -> QueueCounts:
        rows = await self._execute(
            self._client.rpc(QUEUE_STATS_RPC, {"org_uuid": organization_id})
        )
        if not rows:
            return QueueCounts()
        stats = rows[0]
        return QueueCounts(
            queued=int(stats.get("queued_count") or 0),
            processing=int(stats.get("processing_count") or 0),
            completed=int(stats.get("completed_count") or 0),
            failed=int(stats.get("failed_count") or 0),
            average_wait_seconds=float(stats.get("average_wait_time") or 0.0),
        )


def create_supabase_store() -> SupabaseStore:
    """Create a SupabaseStore from settings.

    Raises:
        ConfigurationError: If SUPABASE_URL or SUPABASE_KEY is not set.
    """
    if not settings.has_supabase:
        raise ConfigurationError("SUPABASE_URL and SUPABASE_KEY must be set")
    return SupabaseStore(create_client(settings.supabase_url, settings.supabase_key))
