"""Tests for run control and scheduling."""

from unittest.mock import AsyncMock, patch

import pytest

from src.config import settings
from src.db.listing_store import InMemoryListingStore
from src.ingest.base import utcnow
from src.ingest.orchestrator import BatchReport
from src.ingest.session_mode import ProcessingMode
from src.worker.scheduler import setup_scheduler
from src.worker.tasks import TaskRunner
from tests.fakes import FakeBrowserSession


def make_report(cancelled=False):
    return BatchReport(mode=ProcessingMode.SEQUENTIAL, started_at=utcnow(), cancelled=cancelled)


class TestTaskRunner:
    """Test TaskRunner.run_monitoring() and status."""

    def setup_method(self):
        self.session = FakeBrowserSession()
        self.runner = TaskRunner(store=InMemoryListingStore(), session_factory=lambda: self.session)

    async def test_run_records_status_and_closes_session(self):
        with patch("src.worker.tasks.CrawlOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run = AsyncMock(return_value=make_report())

            report = await self.runner.run_monitoring(trigger="manual", search_terms=["Pokemon ETB"])

        assert report is not None
        assert self.session.started and self.session.closed
        status = self.runner.get_status()
        assert status["running"] is False
        assert status["last_status"].startswith("Completed")
        assert status["last_run"] is not None

    async def test_freshness_cache_is_shared_between_runs(self):
        with patch("src.worker.tasks.CrawlOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run = AsyncMock(return_value=make_report())

            await self.runner.run_monitoring()
            await self.runner.run_monitoring()

        first, second = orchestrator_cls.call_args_list
        assert first.kwargs["freshness_cache"] is second.kwargs["freshness_cache"]

    async def test_overlapping_run_is_skipped(self):
        self.runner._running = True

        assert await self.runner.run_monitoring() is None
        assert self.session.started is False

    async def test_failure_is_recorded(self):
        with patch("src.worker.tasks.CrawlOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run = AsyncMock(side_effect=RuntimeError("chrome gone"))

            assert await self.runner.run_monitoring() is None

        assert self.runner.get_status()["last_status"] == "Failed: chrome gone"
        assert self.session.closed

    async def test_force_stop_sets_cancel_event(self):
        seen = {}

        async def run(session, search_terms, cancel_event):
            assert self.runner.force_stop() is True
            seen["cancelled"] = cancel_event.is_set()
            return make_report(cancelled=True)

        with patch("src.worker.tasks.CrawlOrchestrator") as orchestrator_cls:
            orchestrator_cls.return_value.run = run
            await self.runner.run_monitoring()

        assert seen["cancelled"] is True
        assert self.runner.get_status()["last_status"].startswith("Stopped")

    def test_force_stop_when_idle(self):
        assert self.runner.force_stop() is False


class TestScheduler:
    """Test setup_scheduler()."""

    def test_adds_monitoring_job(self, monkeypatch):
        monkeypatch.setattr(settings, "monitoring_enabled", True)
        monkeypatch.setattr(settings, "monitoring_interval_minutes", 30)

        scheduler = setup_scheduler(TaskRunner(store=InMemoryListingStore()))

        job = scheduler.get_job("marketplace_monitoring")
        assert job is not None
        assert job.max_instances == 1

    def test_disabled(self, monkeypatch):
        monkeypatch.setattr(settings, "monitoring_enabled", False)

        scheduler = setup_scheduler(TaskRunner(store=InMemoryListingStore()))

        assert scheduler.get_jobs() == []

    def test_search_terms_reach_scheduled_runs(self, monkeypatch):
        monkeypatch.setattr(settings, "monitoring_enabled", True)

        scheduler = setup_scheduler(
            TaskRunner(store=InMemoryListingStore()), search_terms=["Pokemon Tin"]
        )

        job = scheduler.get_job("marketplace_monitoring")
        assert job.kwargs == {"search_terms": ["Pokemon Tin"]}

    async def test_scheduled_run_forwards_search_terms(self):
        runner = TaskRunner(store=InMemoryListingStore())
        runner.run_monitoring = AsyncMock(return_value=None)

        await runner.scheduled_run(search_terms=["Pokemon Tin"])

        runner.run_monitoring.assert_awaited_once_with(
            trigger="scheduled", search_terms=["Pokemon Tin"]
        )
