"""Tests for the TTL/LRU cache."""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest

from src.client.cache import CacheEntry, TTLCache
from src.models.events import EventSeverity
from src.models.queries import EventFilters, Pagination


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class TestTTLCache:
    """Tests for TTLCache expiry and eviction."""

    def setup_method(self):
        self.clock = FakeClock()
        self.cache = TTLCache(max_entries=3, default_ttl=10.0, clock=self.clock)

    def test_get_and_set(self):
        self.cache.set("a", 1)

        assert self.cache.get("a") == 1
        assert self.cache.get("missing", "default") == "default"
        assert self.cache.hits == 1
        assert self.cache.misses == 1

    def test_entry_expires_after_ttl(self):
        self.cache.set("a", 1)
        self.cache.set("b", 2, ttl=30)

        self.clock.now = 10.0
        assert self.cache.get("a") == 1

        self.clock.now = 10.5
        assert self.cache.get("a") is None
        assert "a" not in self.cache
        assert self.cache.get("b") == 2

    def test_least_recently_used_is_evicted(self):
        for key in ("a", "b", "c"):
            self.cache.set(key, key)
        self.cache.get("a")

        self.cache.set("d", "d")

        assert len(self.cache) == 3
        assert "b" not in self.cache
        assert "a" in self.cache
        assert "d" in self.cache

    def test_overwrite_does_not_evict(self):
        for key in ("a", "b", "c"):
            self.cache.set(key, key)

        self.cache.set("a", "updated")

        assert len(self.cache) == 3
        assert self.cache.get("a") == "updated"

    def test_invalidate_clear_and_purge(self):
        self.cache.set("a", 1, ttl=1)
        self.cache.set("b", 2)
        self.cache.set("c", 3)

        self.cache.invalidate("c")
        self.clock.now = 5
        assert self.cache.purge_expired() == 1
        assert len(self.cache) == 1

        self.cache.clear()
        assert len(self.cache) == 0

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            TTLCache(max_entries=0)

    def test_cache_entry_expiry(self):
        entry = CacheEntry(key="k", value=1, written_at=100.0, ttl=5.0)

        assert not entry.is_expired(105.0)
        assert entry.is_expired(105.1)


class TestMakeKey:
    """Tests for deterministic cache keys."""

    def test_same_arguments_same_key(self):
        first = TTLCache.make_key(
            "monitoring_events",
            EventFilters(severity=[EventSeverity.HIGH], card_id="CARD0001"),
            Pagination(page=2),
        )
        second = TTLCache.make_key(
            "monitoring_events",
            EventFilters(card_id="CARD0001", severity=EventSeverity.HIGH),
            Pagination(page=2),
        )

        assert first == second

    def test_different_arguments_different_key(self):
        assert TTLCache.make_key("metrics", Pagination(page=1)) != TTLCache.make_key(
            "metrics", Pagination(page=2)
        )
        assert TTLCache.make_key("health") != TTLCache.make_key("dashboard")

    def test_supports_scalar_types(self):
        key = TTLCache.make_key(
            "metrics",
            datetime(2025, 6, 14, tzinfo=timezone.utc),
            Decimal("1.5"),
            tags={"b", "a"},
        )

        assert "2025-06-14T00:00:00+00:00" in key
        assert '"1.5"' in key

    def test_rejects_unknown_types(self):
        with pytest.raises(TypeError):
            TTLCache.make_key("metrics", object())


class TestGetOrLoad:
    """Tests for single-flight loading."""

    def setup_method(self):
        self.cache = TTLCache(max_entries=10, default_ttl=60)
        self.calls = 0

    async def _load(self):
        self.calls += 1
        await asyncio.sleep(0.01)
        return {"value": self.calls}

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_load(self):
        results = await asyncio.gather(*(self.cache.get_or_load("k", self._load) for _ in range(5)))

        assert self.calls == 1
        assert all(result == {"value": 1} for result in results)

    @pytest.mark.asyncio
    async def test_hit_skips_loader(self):
        await self.cache.get_or_load("k", self._load)
        await self.cache.get_or_load("k", self._load)

        assert self.calls == 1
        assert self.cache.hits == 1

    @pytest.mark.asyncio
    async def test_failed_load_is_not_cached(self):
        async def _fail():
            raise ConnectionError("datastore down")

        with pytest.raises(ConnectionError):
            await self.cache.get_or_load("k", _fail)

        assert "k" not in self.cache
        assert await self.cache.get_or_load("k", self._load) == {"value": 1}

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_load(self):
        first = asyncio.create_task(self.cache.get_or_load("k", self._load))
        await asyncio.sleep(0)
        first.cancel()

        assert await self.cache.get_or_load("k", self._load) == {"value": 1}
        assert self.calls == 1

    @pytest.mark.asyncio
    async def test_clear_discards_load_in_flight(self):
        release = asyncio.Event()

        async def _stale():
            await release.wait()
            return "before clear"

        stale = asyncio.create_task(self.cache.get_or_load("k", _stale))
        await asyncio.sleep(0)
        self.cache.clear()
        release.set()

        assert await stale == "before clear"
        assert "k" not in self.cache
        assert await self.cache.get_or_load("k", self._load) == {"value": 1}
        assert "k" in self.cache
