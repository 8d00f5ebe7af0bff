"""Background tasks for scheduled marketplace monitoring."""

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from src.ai.llm_service import llm_service
from src.config import settings
from src.db.listing_store import ListingStore, SqlListingStore
from src.ingest.base import utcnow
from src.ingest.browser_session import BrowserSession
from src.ingest.freshness_cache import FreshnessCache
from src.ingest.orchestrator import BatchReport, CrawlOrchestrator
from src import metrics

logger = logging.getLogger(__name__)


class TaskRunner:
    """
    Runner for crawl batches.

    Only one batch runs at a time; overlapping triggers are skipped. The
    freshness cache lives across batches so its refresh interval holds
    between scheduled runs.
    """

    def __init__(
        self,
        store: Optional[ListingStore] = None,
        session_factory: Optional[Callable[[], Any]] = None,
    ):
        self.store = store
        self._session_factory = session_factory or BrowserSession
        self._cache: Optional[FreshnessCache] = None
        self._running = False
        self._cancel_event: Optional[asyncio.Event] = None
        self.last_run: Optional[datetime] = None
        self.last_status: str = "Never run"
        self.last_report: Optional[BatchReport] = None

    async def initialize(self):
        """Create tables and check the classifier endpoint."""
        from src.db.session import init_db

        await init_db()
        if self.store is None:
            self.store = SqlListingStore()
        await llm_service.test_connection()
        logger.info("Task runner initialized")

    async def close(self):
        """Clean up resources."""
        await llm_service.close()

    @property
    def is_running(self) -> bool:
        return self._running

    def _get_cache(self) -> FreshnessCache:
        if self._cache is None:
            self._cache = FreshnessCache(self.store)
        return self._cache

    async def scheduled_run(self, search_terms: Optional[List[str]] = None):
        """Run a batch (scheduled trigger, called by APScheduler)."""
        await self.run_monitoring(trigger="scheduled", search_terms=search_terms)

    async def run_monitoring(
        self,
        trigger: str = "manual",
        search_terms: Optional[List[str]] = None,
    ) -> Optional[BatchReport]:
        """
        Open a browser session and crawl every search term once.

        Args:
            trigger: Trigger type ("scheduled" | "manual")
            search_terms: Terms to crawl (defaults to settings.search_terms)

        Returns:
            BatchReport, or None if another batch was already running
        """
        if self._running:
            logger.info(f"Monitoring already running; skipping {trigger} run")
            return None
        if self.store is None:
            self.store = SqlListingStore()

        self._running = True
        self._cancel_event = asyncio.Event()
        self.last_run = utcnow()
        self.last_status = "Running"
        logger.info(f"Starting marketplace monitoring ({trigger})")

        session = self._session_factory()
        try:
            await session.start()
            orchestrator = CrawlOrchestrator(self.store, freshness_cache=self._get_cache())
            report = await orchestrator.run(session, search_terms, self._cancel_event)
            self.last_report = report
            if report.cancelled:
                self.last_status = f"Stopped: {report.summary()}"
            else:
                self.last_status = f"Completed: {report.summary()}"
            metrics.record_scheduler_run("marketplace_monitoring", success=True)
            return report
        except Exception as e:
            self.last_status = f"Failed: {e}"
            metrics.record_scheduler_run("marketplace_monitoring", success=False)
            logger.error(f"Marketplace monitoring failed: {e}", exc_info=True)
            return None
        finally:
            try:
                await session.close()
            except Exception as e:
                logger.warning(f"Error closing browser session: {e}")
            self._running = False
            self._cancel_event = None

    def force_stop(self) -> bool:
        """
        Ask the running batch to stop after its current step.

        Returns:
            True if a batch was running
        """
        if not self._running or self._cancel_event is None:
            return False
        self._cancel_event.set()
        self.last_status = "Stopping"
        logger.info("Stop requested for marketplace monitoring")
        return True

    def get_status(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "last_status": self.last_status,
            "search_terms": list(settings.search_terms),
            "interval_minutes": settings.monitoring_interval_minutes,
        }


task_runner = TaskRunner()
