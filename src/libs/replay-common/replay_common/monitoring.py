# src/libs/replay-common/replay_common/monitoring.py
import logging
from prometheus_client import Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

# --------------------------------------------------------------------------------------
# DB metrics (used by replay_common.utils.async_timed)
# --------------------------------------------------------------------------------------
DB_OPERATION_LATENCY_SECONDS = Histogram(
    "db_operation_latency_seconds",
    "Latency of database operations in seconds",
    labelnames=("repository", "method"),
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

# --------------------------------------------------------------------------------------
# Replay coordinator metrics
# --------------------------------------------------------------------------------------
REPLAY_JOBS_TOTAL = Counter(
    "replay_jobs_total",
    "Number of replay jobs reconciled, by event key and final status.",
    labelnames=("event_key", "status"),
)

REPLAY_ITEMS_TOTAL = Counter(
    "replay_items_total",
    "Number of replay item attempts, by event key and resulting status.",
    labelnames=("event_key", "status"),
)

REPLAY_ENDPOINT_LATENCY_SECONDS = Histogram(
    "replay_endpoint_latency_seconds",
    "Latency of calls to the downstream replay endpoint.",
    labelnames=("event_key",),
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30),
)

def observe_replay_items(event_key: str, status: str, count: int = 1) -> None:
    if count:
        REPLAY_ITEMS_TOTAL.labels(event_key, status).inc(count)

def replay_endpoint_timer(event_key: str):
    """Context manager that observes downstream replay call latency."""
    return REPLAY_ENDPOINT_LATENCY_SECONDS.labels(event_key).time()

# --------------------------------------------------------------------------------------
# Housekeeping metrics
# --------------------------------------------------------------------------------------
HOUSEKEEPING_RUNS_TOTAL = Counter(
    "housekeeping_runs_total",
    "Number of housekeeping attempts finished, by job type, trigger and status.",
    labelnames=("job_type", "trigger_type", "status"),
)

HOUSEKEEPING_ROWS_DELETED_TOTAL = Counter(
    "housekeeping_rows_deleted_total",
    "Rows removed by housekeeping, by job type and item key.",
    labelnames=("job_type", "item_key"),
)

HOUSEKEEPING_ELIGIBLE_ROWS = Gauge(
    "housekeeping_eligible_rows",
    "Rows eligible for deletion at the latest snapshot, by job type and scope.",
    labelnames=("job_type", "event_key"),
)

HOUSEKEEPING_RUN_DURATION_SECONDS = Histogram(
    "housekeeping_run_duration_seconds",
    "Wall-clock duration of a housekeeping attempt.",
    labelnames=("job_type",),
    buckets=(0.1, 0.5, 1, 5, 15, 60, 300, 900, 3600),
)

# --------------------------------------------------------------------------------------
# Generic HTTP metrics
# --------------------------------------------------------------------------------------
HTTP_REQUESTS_TOTAL = Counter(
    "http_requests_total",
    "HTTP requests total",
    labelnames=("service", "method", "path", "status"),
)

HTTP_REQUEST_LATENCY_SECONDS = Histogram(
    "http_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("service", "method", "path"),
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)
