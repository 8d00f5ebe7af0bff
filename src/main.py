"""Main application entry point."""

import argparse
import asyncio
import logging
import signal
from typing import List, Optional

from prometheus_client import start_http_server

from src.config import settings
from src.logging_config import setup_logging
from src.worker.scheduler import setup_scheduler
from src.worker.tasks import task_runner

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Marketplace listing crawler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single crawl batch and exit instead of starting the scheduler",
    )
    parser.add_argument(
        "--term",
        action="append",
        dest="terms",
        help="Search term to crawl (repeatable; defaults to the configured terms)",
    )
    parser.add_argument(
        "--list-models",
        action="store_true",
        help="List the models offered by the classifier endpoint and exit",
    )
    return parser.parse_args(argv)


async def _list_models() -> int:
    from src.ai.llm_service import llm_service

    try:
        models = await llm_service.list_models()
    except Exception as e:
        logger.error(f"Could not list models at {settings.llm_base_url}: {e}")
        return 1
    for model in models:
        print(model)
    return 0


async def run(args: argparse.Namespace) -> int:
    """Run once or keep the scheduler alive until interrupted."""
    if args.list_models:
        return await _list_models()

    await task_runner.initialize()
    try:
        if args.once:
            report = await task_runner.run_monitoring(trigger="manual", search_terms=args.terms)
            return 0 if report is not None else 1

        scheduler = setup_scheduler(search_terms=args.terms)
        scheduler.start()
        logger.info("Scheduler started")

        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except NotImplementedError:
                # Windows event loops have no signal handlers
                pass

        # First batch right away, then on the interval
        first_run = None
        if settings.monitoring_enabled:
            first_run = asyncio.create_task(
                task_runner.run_monitoring(trigger="startup", search_terms=args.terms)
            )

        await stop.wait()
        logger.info("Shutting down...")
        task_runner.force_stop()
        scheduler.shutdown(wait=False)
        if first_run is not None:
            await first_run
        return 0
    finally:
        await task_runner.close()
        logger.info("Shutdown complete")


def cli(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()
    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Prometheus metrics on port {settings.metrics_port}")
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(cli())
