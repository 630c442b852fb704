"""Bounded TTL cache with LRU eviction and an optional shared backing layer.

The in-process layer is authoritative for this instance. When a backend is
configured it is consulted on local misses and written through on every set,
so several orchestration processes can share research results while each
keeps the same TTL and eviction contract locally.
"""

import asyncio
import re
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import structlog
from pydantic import BaseModel, Field

logger = structlog.get_logger()


class CacheEntry(BaseModel):
    """A memoized value with its lifetime and access bookkeeping."""

    key: str
    data: Any
    created_at: float
    expires_at: float
    access_count: int = Field(default=0, ge=0)
    last_accessed: float

    model_config = {"frozen": False, "arbitrary_types_allowed": True}

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    size: int = 0
    max_size: int = 0
    evictions: int = 0
    expired_removed: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class CacheBackend(Protocol):
    """Shared cache layer behind the in-process cache."""

    async def get(self, key: str) -> tuple[Any, float] | None:
        """Return (data, expires_at) or None when absent."""
        ...

    async def set(self, key: str, data: Any, expires_at: float) -> None: ...

    async def delete(self, key: str) -> None: ...


class CacheManager:
    """Generic bounded cache keyed by strings."""

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 1800.0,
        cleanup_interval: float = 300.0,
        backend: CacheBackend | None = None,
        clock: Callable[[], float] = time.time,
        name: str = "cache",
    ) -> None:
        """Initialize the cache.

        Args:
            max_size: Maximum number of entries held locally.
            default_ttl: TTL in seconds used when ``set`` gets none.
            cleanup_interval: Seconds between periodic expiry sweeps.
            backend: Optional shared layer consulted on local misses.
            clock: Returns the current time in seconds.
            name: Label used in log events.
        """
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        if default_ttl <= 0:
            raise ValueError("default_ttl must be positive")

        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self.name = name
        self._backend = backend
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._stats = CacheStats(max_size=max_size)
        self._cleanup_task: asyncio.Task[None] | None = None

    async def get(self, key: str) -> Any | None:
        """Return the cached value, or None on a miss or after expiry."""
        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and entry.is_expired(now):
            del self._entries[key]
            entry = None

        if entry is None and self._backend is not None:
            entry = await self._load_from_backend(key, now)

        if entry is None:
            self._stats.misses += 1
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._stats.hits += 1
        return entry.data

    async def _load_from_backend(self, key: str, now: float) -> CacheEntry | None:
        try:
            stored = await self._backend.get(key)  # type: ignore[union-attr]
        except Exception as e:
            logger.warning("Cache backend read failed", cache=self.name, key=key, error=str(e))
            return None
        if stored is None:
            return None

        data, expires_at = stored
        if now > expires_at:
            return None
        entry = CacheEntry(
            key=key, data=data, created_at=now, expires_at=expires_at, last_accessed=now
        )
        self._store_local(entry)
        return entry

    async def set(self, key: str, data: Any, ttl: float | None = None) -> None:
        """Store a value.

        Args:
            key: Cache key.
            data: Value to store.
            ttl: Lifetime in seconds; defaults to the cache's default TTL.

        Raises:
            ValueError: If ttl is not positive.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        now = self._clock()
        entry = CacheEntry(
            key=key, data=data, created_at=now, expires_at=now + ttl, last_accessed=now
        )
        self._store_local(entry)

        if self._backend is not None:
            try:
                await self._backend.set(key, data, entry.expires_at)
            except Exception as e:
                logger.warning("Cache backend write failed", cache=self.name, key=key, error=str(e))

    def _store_local(self, entry: CacheEntry) -> None:
        if entry.key in self._entries:
            del self._entries[entry.key]
        elif len(self._entries) >= self.max_size:
            self._evict_lru()
        self._entries[entry.key] = entry

    def _evict_lru(self) -> None:
        oldest = min(self._entries.values(), key=lambda e: e.last_accessed)
        del self._entries[oldest.key]
        self._stats.evictions += 1
        logger.debug("Cache entry evicted", cache=self.name, key=oldest.key)

    async def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    async def delete(self, key: str) -> bool:
        removed = self._entries.pop(key, None) is not None
        if self._backend is not None:
            try:
                await self._backend.delete(key)
            except Exception as e:
                logger.warning(
                    "Cache backend delete failed", cache=self.name, key=key, error=str(e)
                )
        return removed

    async def clear(self) -> None:
        self._entries.clear()
        self._stats = CacheStats(max_size=self.max_size)
        logger.info("Cache cleared", cache=self.name)

    def cleanup_expired(self) -> int:
        """Remove expired entries.

        Returns:
            Number of entries removed.
        """
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        self._stats.expired_removed += len(expired)
        if expired:
            logger.debug("Expired cache entries removed", cache=self.name, count=len(expired))
        return len(expired)

    def get_stats(self) -> CacheStats:
        return self._stats.model_copy(update={"size": len(self._entries)})

    def get_entry(self, key: str) -> CacheEntry | None:
        """Return the raw entry without touching hit statistics."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry

    def get_all_entries(self) -> list[CacheEntry]:
        now = self._clock()
        return [entry for entry in self._entries.values() if not entry.is_expired(now)]

    async def warmup(self, items: dict[str, Any], ttl: float | None = None) -> None:
        """Preload several values."""
        await self.set_multiple(items, ttl)
        logger.info("Cache warmed up", cache=self.name, count=len(items))

    async def get_multiple(self, keys: list[str]) -> dict[str, Any]:
        """Return the hits among ``keys``; misses are omitted."""
        found: dict[str, Any] = {}
        for key in keys:
            value = await self.get(key)
            if value is not None:
                found[key] = value
        return found

    async def set_multiple(self, items: dict[str, Any], ttl: float | None = None) -> None:
        for key, value in items.items():
            await self.set(key, value, ttl)

    async def invalidate_pattern(self, pattern: str) -> int:
        """Delete every local entry whose key matches a regular expression.

        Returns:
            Number of entries removed.
        """
        regex = re.compile(pattern)
        matching = [key for key in self._entries if regex.search(key)]
        for key in matching:
            await self.delete(key)
        return len(matching)

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl: float | None = None,
    ) -> Any:
        """Return the cached value, computing and storing it on a miss."""
        value = await self.get(key)
        if value is not None:
            return value
        value = await factory()
        await self.set(key, value, ttl)
        return value

    def start_cleanup(self) -> None:
        """Start the periodic expiry sweep on the running event loop."""
        if self._cleanup_task is None or self._cleanup_task.done():
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.cleanup_expired()

    async def close(self) -> None:
        """Stop the periodic sweep and drop all entries."""
        if self._cleanup_task is not None:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        self._entries.clear()
