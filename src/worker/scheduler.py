"""APScheduler job definitions."""

import logging
from typing import List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.config import settings
from src.worker.tasks import TaskRunner, task_runner

logger = logging.getLogger(__name__)


def setup_scheduler(
    runner: TaskRunner = None,
    search_terms: Optional[List[str]] = None,
) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    The monitoring job runs every settings.monitoring_interval_minutes
    when monitoring is enabled.

    Args:
        runner: Task runner to schedule (defaults to the module runner)
        search_terms: Terms for every scheduled run (defaults to settings.search_terms)

    Returns:
        Configured scheduler instance
    """
    runner = runner or task_runner
    scheduler = AsyncIOScheduler()
    interval = max(1, int(settings.monitoring_interval_minutes))

    if settings.monitoring_enabled:
        scheduler.add_job(
            runner.scheduled_run,
            IntervalTrigger(minutes=interval),
            kwargs={"search_terms": search_terms},
            id="marketplace_monitoring",
            name="Crawl marketplace search terms",
            max_instances=1,  # Prevent overlapping runs
            coalesce=True,
            misfire_grace_time=600,
            replace_existing=True,
        )
        logger.info(f"Scheduler configured: marketplace monitoring every {interval} minutes")
    else:
        logger.info("Scheduler configured: marketplace monitoring disabled")

    return scheduler
