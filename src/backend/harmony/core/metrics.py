"""Prometheus metrics instrumentation for Harmony."""

from prometheus_client import Counter, Histogram
from prometheus_fastapi_instrumentator import Instrumentator, metrics

# Custom metrics for Harmony

# Scan outcomes (success or the failure code)
scans_total = Counter(
    "harmony_scans_total",
    "Total number of device scans processed",
    ["outcome"],
)

# Archive compaction duration
archive_compaction_seconds = Histogram(
    "harmony_archive_compaction_seconds",
    "Time spent compacting raw activities into daily archives",
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

# Archive day documents written
archive_days_written_total = Counter(
    "harmony_archive_days_written_total",
    "Total number of archive day documents upserted",
)

# Raw activities removed by the retention sweep
activities_purged_total = Counter(
    "harmony_activities_purged_total",
    "Total number of expired raw activities purged",
)


def setup_metrics(app) -> Instrumentator:
    """Set up Prometheus metrics instrumentation for FastAPI app."""
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=True,
        should_instrument_requests_inprogress=True,
        excluded_handlers=["/health", "/metrics"],
        env_var_name="METRICS_ENABLED",
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )

    # Add default metrics
    instrumentator.add(
        metrics.default(
            metric_namespace="",
            metric_subsystem="",
            should_include_handler=True,
            should_include_method=True,
            should_include_status=True,
            latency_highr_buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )
    )

    instrumentator.instrument(app)

    return instrumentator


def expose_metrics(app, instrumentator: Instrumentator) -> None:
    """Expose the /metrics endpoint."""
    instrumentator.expose(app, include_in_schema=False, should_gzip=True)


# Helper functions for updating custom metrics


def record_scan(outcome: str) -> None:
    """Increment the scan counter for an outcome."""
    scans_total.labels(outcome=outcome).inc()


def observe_compaction(duration_seconds: float, days_written: int) -> None:
    """Record a finished compaction run."""
    archive_compaction_seconds.observe(duration_seconds)
    archive_days_written_total.inc(days_written)


def record_purged(count: int) -> None:
    """Increment purged activities count."""
    if count:
        activities_purged_total.inc(count)
