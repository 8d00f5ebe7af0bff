"""Prometheus metrics for the marketplace crawler."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("marketplace_crawler", "Marketplace crawler application info")
app_info.info({"version": "0.1.0", "name": "marketplace-listing-crawler"})

# Discovery metrics
candidates_discovered_total = Counter(
    "candidates_discovered_total",
    "Total number of unique listing URLs discovered on results views",
    ["search_term"],
)

candidates_skipped_fresh_total = Counter(
    "candidates_skipped_fresh_total",
    "Total number of candidates skipped because they were processed recently",
    ["search_term"],
)

# Navigation metrics
navigation_attempts_total = Counter(
    "navigation_attempts_total",
    "Total number of listing navigation outcomes",
    ["strategy", "outcome"],
)

# Extraction metrics
extractions_total = Counter(
    "extractions_total",
    "Total number of listing extractions by status",
    ["status"],
)

classifier_duration_seconds = Histogram(
    "classifier_duration_seconds",
    "Time spent waiting on the vision classifier",
    buckets=[1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0],
)

# Persistence metrics
rows_persisted_total = Counter(
    "rows_persisted_total",
    "Total number of listing rows written to the store",
)

persistence_errors_total = Counter(
    "persistence_errors_total",
    "Total number of failed listing upserts",
)

# Search term metrics
search_terms_total = Counter(
    "search_terms_total",
    "Total number of processed search terms by final status",
    ["status"],
)

# Freshness cache metrics
freshness_cache_size = Gauge(
    "freshness_cache_size",
    "Number of URLs currently tracked by the freshness cache",
)

freshness_cache_refreshes_total = Counter(
    "freshness_cache_refreshes_total",
    "Total number of freshness cache refreshes",
    ["status"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_candidates(search_term: str, discovered: int, skipped_fresh: int):
    """Record discovery counts for a search term."""
    candidates_discovered_total.labels(search_term=search_term).inc(discovered)
    candidates_skipped_fresh_total.labels(search_term=search_term).inc(skipped_fresh)


def record_navigation(strategy: str, outcome: str):
    """Record a navigation outcome."""
    navigation_attempts_total.labels(strategy=strategy, outcome=outcome).inc()


def record_extraction(status: str, duration: float | None = None):
    """Record an extraction and optionally the classifier latency."""
    extractions_total.labels(status=status).inc()
    if duration is not None:
        classifier_duration_seconds.observe(duration)


def record_persist(row_count: int, success: bool):
    """Record an upsert attempt."""
    if success:
        rows_persisted_total.inc(row_count)
    else:
        persistence_errors_total.inc()


def record_search_term(status: str):
    """Record the final status of a search term."""
    search_terms_total.labels(status=status).inc()


def record_cache_refresh(size: int, success: bool):
    """Record a freshness cache refresh."""
    status = "success" if success else "error"
    freshness_cache_refreshes_total.labels(status=status).inc()
    freshness_cache_size.set(size)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
