"""Freshness cache deciding whether a listing is due for reprocessing."""

import asyncio
import logging
from datetime import datetime, timedelta
from types import MappingProxyType
from typing import Callable, Dict, Mapping, Optional

from src.config import settings
from src.ingest.base import utcnow
from src.ingest.url_normalizer import canonicalize
from src import metrics

logger = logging.getLogger(__name__)


class FreshnessCache:
    """
    In-memory map of canonical URL to last successful processing time.

    The map is rebuilt from the listing store at most once per refresh
    interval. Readers always see a complete mapping: a refresh builds a new
    dict and swaps it in, and local marks are written the same way.
    """

    def __init__(
        self,
        store,
        ttl: Optional[timedelta] = None,
        refresh_interval: Optional[timedelta] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.ttl = ttl or timedelta(days=settings.freshness_ttl_days)
        self.refresh_interval = refresh_interval or timedelta(
            minutes=settings.cache_refresh_interval_minutes
        )
        self._clock = clock or utcnow
        self._entries: Mapping[str, datetime] = MappingProxyType({})
        self._last_refresh: Optional[datetime] = None
        self._refresh_lock = asyncio.Lock()
        self._background: Optional[asyncio.Task] = None

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def last_refresh(self) -> Optional[datetime]:
        return self._last_refresh

    def needs_refresh(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh >= self.refresh_interval

    async def refresh(self, force: bool = False) -> bool:
        """
        Reload entries from the store.

        A failed load keeps the previous entries and still counts as a
        refresh, so a broken store is retried only after the interval.

        Args:
            force: Ignore the refresh interval

        Returns:
            True if new entries were loaded
        """
        async with self._refresh_lock:
            if not force and not self.needs_refresh():
                return False

            started = self._clock()
            try:
                rows = await self.store.bulk_read()
            except Exception as e:
                self._last_refresh = started
                logger.warning(f"Freshness cache refresh failed, keeping {len(self)} entries: {e}")
                metrics.record_cache_refresh(len(self), success=False)
                return False

            loaded: Dict[str, datetime] = {}
            for row in rows:
                url = canonicalize(row.get("url"))
                found_at = row.get("date_found")
                if not url or found_at is None:
                    continue
                if url not in loaded or found_at > loaded[url]:
                    loaded[url] = found_at

            # Marks recorded locally may be newer than what the store returned
            for url, processed_at in self._entries.items():
                if url not in loaded or processed_at > loaded[url]:
                    loaded[url] = processed_at

            self._entries = MappingProxyType(loaded)
            self._last_refresh = started
            logger.info(f"Freshness cache refreshed with {len(loaded)} URLs")
            metrics.record_cache_refresh(len(loaded), success=True)
            return True

    def _schedule_background_refresh(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._background is not None and not self._background.done():
            return
        self._background = loop.create_task(self.refresh())

    def last_processed(self, url: str) -> Optional[datetime]:
        return self._entries.get(canonicalize(url))

    def should_process(self, url: str) -> bool:
        """
        Check whether a listing should be (re)processed now.

        True when the URL was never processed or its last processing is at
        least one TTL old. A miss while the cache is due for a refresh (never
        loaded, or older than the refresh interval) kicks off a background
        refresh but does not wait for it.
        """
        last = self._entries.get(canonicalize(url))
        if last is None:
            if self.needs_refresh():
                self._schedule_background_refresh()
            return True
        return self._clock() - last >= self.ttl

    def mark_processed(self, url: str, when: Optional[datetime] = None) -> None:
        """Record a successful persist for ``url``."""
        entries = dict(self._entries)
        entries[canonicalize(url)] = when or self._clock()
        self._entries = MappingProxyType(entries)
