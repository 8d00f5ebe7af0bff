"""Tests for the freshness cache."""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from src.db.listing_store import InMemoryListingStore
from src.ingest.freshness_cache import FreshnessCache

T0 = datetime(2024, 5, 1, 12, 0, 0)
URL = "https://www.facebook.com/marketplace/item/1/"


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestShouldProcess:
    """Test the TTL gate."""

    def setup_method(self):
        self.clock = Clock(T0)
        self.cache = FreshnessCache(
            InMemoryListingStore(),
            ttl=timedelta(days=7),
            clock=self.clock,
        )

    def test_unknown_url_is_processed(self):
        assert self.cache.should_process(URL) is True

    def test_six_days_is_fresh(self):
        self.cache.mark_processed(URL, T0)
        self.clock.now = T0 + timedelta(days=6)
        assert self.cache.should_process(URL) is False

    def test_seven_days_is_stale(self):
        self.cache.mark_processed(URL, T0)
        self.clock.now = T0 + timedelta(days=7)
        assert self.cache.should_process(URL) is True

    def test_lookup_uses_canonical_url(self):
        self.cache.mark_processed(URL + "?ref=search", T0)
        self.clock.now = T0 + timedelta(days=1)
        assert self.cache.should_process(URL + "#photos") is False
        assert self.cache.last_processed(URL) == T0

    def test_mark_processed_defaults_to_now(self):
        self.cache.mark_processed(URL)
        assert self.cache.last_processed(URL) == T0


class TestRefresh:
    """Test loading from the store."""

    async def test_refresh_loads_latest_timestamp_per_url(self):
        store = InMemoryListingStore(
            [
                {"url": URL, "date_found": T0 - timedelta(days=9)},
                {"url": URL, "date_found": T0 - timedelta(days=2)},
            ]
        )
        cache = FreshnessCache(store, clock=Clock(T0))

        assert await cache.refresh() is True
        assert cache.last_processed(URL) == T0 - timedelta(days=2)
        assert cache.should_process(URL) is False

    async def test_refresh_is_rate_limited(self):
        store = InMemoryListingStore()
        store.bulk_read = AsyncMock(return_value=[])
        clock = Clock(T0)
        cache = FreshnessCache(store, refresh_interval=timedelta(hours=1), clock=clock)

        await cache.refresh()
        clock.now = T0 + timedelta(minutes=30)
        assert await cache.refresh() is False
        clock.now = T0 + timedelta(minutes=61)
        assert await cache.refresh() is True
        assert store.bulk_read.await_count == 2

    async def test_force_ignores_interval(self):
        store = InMemoryListingStore()
        store.bulk_read = AsyncMock(return_value=[])
        cache = FreshnessCache(store, clock=Clock(T0))

        await cache.refresh()
        assert await cache.refresh(force=True) is True
        assert store.bulk_read.await_count == 2

    async def test_failed_refresh_keeps_entries_and_advances_timer(self):
        store = InMemoryListingStore()
        store.bulk_read = AsyncMock(side_effect=RuntimeError("store offline"))
        clock = Clock(T0)
        cache = FreshnessCache(store, clock=clock)
        cache.mark_processed(URL, T0 - timedelta(days=1))

        assert await cache.refresh() is False
        assert cache.last_processed(URL) == T0 - timedelta(days=1)
        assert cache.last_refresh == T0
        assert cache.needs_refresh() is False

    async def test_local_marks_survive_refresh(self):
        store = InMemoryListingStore([{"url": URL, "date_found": T0 - timedelta(days=8)}])
        cache = FreshnessCache(store, clock=Clock(T0))
        cache.mark_processed(URL, T0)

        await cache.refresh(force=True)
        assert cache.last_processed(URL) == T0

    async def test_miss_on_unloaded_cache_schedules_background_refresh(self):
        store = InMemoryListingStore([{"url": URL, "date_found": T0}])
        cache = FreshnessCache(store, clock=Clock(T0))
        other = "https://www.facebook.com/marketplace/item/2/"

        assert cache.should_process(other) is True
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert cache.last_refresh == T0
        assert cache.should_process(URL) is False

    async def test_miss_on_stale_cache_schedules_background_refresh(self):
        store = InMemoryListingStore()
        clock = Clock(T0)
        cache = FreshnessCache(store, refresh_interval=timedelta(hours=1), clock=clock)
        await cache.refresh()
        await store.append_rows([{"url": URL, "date_found": T0 + timedelta(hours=2)}])
        clock.now = T0 + timedelta(hours=3)

        assert cache.should_process("https://www.facebook.com/marketplace/item/2/") is True
        await cache._background

        assert cache.last_refresh == T0 + timedelta(hours=3)
        assert len(cache) == 1
        assert cache.should_process(URL) is False

    async def test_miss_within_interval_does_not_refresh(self):
        store = InMemoryListingStore()
        store.bulk_read = AsyncMock(return_value=[])
        clock = Clock(T0)
        cache = FreshnessCache(store, refresh_interval=timedelta(hours=1), clock=clock)
        await cache.refresh()
        clock.now = T0 + timedelta(minutes=30)

        assert cache.should_process(URL) is True
        await asyncio.sleep(0)

        assert store.bulk_read.await_count == 1
