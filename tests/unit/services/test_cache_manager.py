"""Unit tests for CacheManager."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.services.cache_manager import CacheManager


class TickingClock:
    """Clock that returns a settable time in seconds."""

    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.unit
class TestCacheManager:
    """Tests for TTL, eviction and bulk helpers."""

    @pytest.mark.asyncio
    async def test_get_before_expiry_returns_stored_value(self) -> None:
        """A value read before its expiry should be the exact stored object."""
        clock = TickingClock()
        cache = CacheManager(clock=clock)
        value = {"sources": [1, 2, 3]}

        await cache.set("k", value, ttl=60)
        clock.now += 59

        assert await cache.get("k") is value

    @pytest.mark.asyncio
    async def test_get_after_expiry_is_a_miss(self) -> None:
        """A value read after its expiry should be a miss."""
        clock = TickingClock()
        cache = CacheManager(clock=clock)

        await cache.set("k", "v", ttl=60)
        clock.now += 61

        assert await cache.get("k") is None
        stats = cache.get_stats()
        assert stats.misses == 1
        assert stats.size == 0

    @pytest.mark.asyncio
    async def test_non_positive_ttl_rejected(self) -> None:
        """set should reject a ttl of zero."""
        cache = CacheManager()
        with pytest.raises(ValueError):
            await cache.set("k", "v", ttl=0)

    @pytest.mark.asyncio
    async def test_full_cache_evicts_least_recently_used(self) -> None:
        """Inserting into a full cache should evict the least recently used entry."""
        clock = TickingClock()
        cache = CacheManager(max_size=2, clock=clock)

        await cache.set("a", 1)
        clock.now += 1
        await cache.set("b", 2)
        clock.now += 1
        assert await cache.get("a") == 1
        clock.now += 1
        await cache.set("c", 3)

        assert await cache.has("a")
        assert not await cache.has("b")
        assert await cache.has("c")
        assert cache.get_stats().evictions == 1

    @pytest.mark.asyncio
    async def test_cleanup_expired_removes_only_expired(self) -> None:
        """cleanup_expired should drop expired entries and keep live ones."""
        clock = TickingClock()
        cache = CacheManager(clock=clock)
        await cache.set("short", 1, ttl=10)
        await cache.set("long", 2, ttl=100)
        clock.now += 50

        assert cache.cleanup_expired() == 1
        assert [entry.key for entry in cache.get_all_entries()] == ["long"]

    @pytest.mark.asyncio
    async def test_hit_rate(self) -> None:
        """Hit rate should be hits over lookups."""
        cache = CacheManager()
        await cache.set("k", "v")
        await cache.get("k")
        await cache.get("missing")

        assert cache.get_stats().hit_rate == 0.5

    @pytest.mark.asyncio
    async def test_invalidate_pattern(self) -> None:
        """invalidate_pattern should delete keys matching the regex."""
        cache = CacheManager()
        await cache.set_multiple({"section_research:a": 1, "section_research:b": 2, "batch:c": 3})

        removed = await cache.invalidate_pattern(r"^section_research:")

        assert removed == 2
        assert await cache.get_multiple(["section_research:a", "batch:c"]) == {"batch:c": 3}

    @pytest.mark.asyncio
    async def test_get_or_set_calls_factory_once(self) -> None:
        """get_or_set should only compute on a miss."""
        cache = CacheManager()
        factory = AsyncMock(return_value="computed")

        first = await cache.get_or_set("k", factory)
        second = await cache.get_or_set("k", factory)

        assert first == second == "computed"
        factory.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_backend_consulted_on_local_miss(self) -> None:
        """A local miss should fall through to the backing layer."""
        clock = TickingClock()
        backend = AsyncMock()
        backend.get = AsyncMock(return_value=("shared", clock.now + 30))
        cache = CacheManager(backend=backend, clock=clock)

        assert await cache.get("k") == "shared"
        assert cache.get_entry("k") is not None
        backend.get.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_backend_write_failure_is_swallowed(self) -> None:
        """A failing backend write should not fail set."""
        backend = AsyncMock()
        backend.set = AsyncMock(side_effect=ConnectionError("down"))
        cache = CacheManager(backend=backend)

        await cache.set("k", "v")

        assert await cache.get("k") == "v"

    @pytest.mark.asyncio
    async def test_periodic_sweep_removes_expired_entries(self) -> None:
        """The background sweep should remove expired entries without any reads."""
        clock = TickingClock()
        cache = CacheManager(clock=clock, cleanup_interval=0.01)
        await cache.set("short", 1, ttl=10)
        await cache.set("long", 2, ttl=100)
        clock.now += 50

        cache.start_cleanup()
        for _ in range(100):
            if cache.get_stats().expired_removed:
                break
            await asyncio.sleep(0.01)

        assert cache.get_stats().expired_removed == 1
        assert cache.get_stats().size == 1
        await cache.close()
        assert cache.get_stats().size == 0
