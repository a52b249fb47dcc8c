"""
Prometheus metrics for the content cache service.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration of HTTP requests
- Cache Metrics: hits/misses per cache type, write failures, store errors
- Origin Metrics: requests, latency and dropped (invalid) records
- Popularity and Warming Metrics
- Resource Metrics: CPU, memory

Naming follows Prometheus conventions (_total for counters, _seconds for
durations).
"""
import re

import psutil
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from catalog_cache.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],  # "item", "listing", "seo"
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

cache_write_failures_total = Counter(
    "cache_write_failures_total",
    "Total number of best-effort cache writes that failed",
    ["cache_type"],
    registry=registry,
)

cache_store_errors_total = Counter(
    "cache_store_errors_total",
    "Total number of cache store operations that raised CacheUnavailable",
    ["operation"],
    registry=registry,
)

# ============================================================================
# ORIGIN METRICS
# ============================================================================

origin_requests_total = Counter(
    "origin_requests_total",
    "Total number of origin loader calls",
    ["backend", "operation", "outcome"],  # outcome: success, not_found, timeout, error
    registry=registry,
)

origin_request_duration_seconds = Histogram(
    "origin_request_duration_seconds",
    "Origin loader latency in seconds",
    ["backend", "operation"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=registry,
)

origin_records_dropped_total = Counter(
    "origin_records_dropped_total",
    "Total number of origin records dropped by schema validation",
    ["category"],
    registry=registry,
)

# ============================================================================
# POPULARITY AND WARMING METRICS
# ============================================================================

content_views_recorded_total = Counter(
    "content_views_recorded_total",
    "Total number of content views recorded",
    ["category"],
    registry=registry,
)

content_copies_recorded_total = Counter(
    "content_copies_recorded_total",
    "Total number of content copies recorded",
    ["category"],
    registry=registry,
)

warming_runs_total = Counter(
    "warming_runs_total",
    "Total number of cache warming runs",
    ["trigger", "outcome"],  # outcome: completed, partial, failed, cancelled, lock_lost, rejected
    registry=registry,
)

warming_items_warmed_total = Counter(
    "warming_items_warmed_total",
    "Total number of items warmed into the cache",
    ["category"],
    registry=registry,
)

warming_in_progress = Gauge(
    "warming_in_progress",
    "Whether this process is running a warm cycle (1) or not (0)",
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

_CONTENT_ITEM_PATH = re.compile(r"^/(content|views|cache/content)/([^/]+)/[^/]+$")


def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Slugs are replaced with a placeholder to keep label cardinality bounded.

    Examples:
        /content/agents/code-reviewer -> /content/agents/{slug}
        /views/mcp/github?x=1 -> /views/mcp/{slug}
        /health -> /health
    """
    if "?" in path:
        path = path.split("?")[0]

    match = _CONTENT_ITEM_PATH.match(path)
    if match and match.group(2) != "popular":
        return f"/{match.group(1)}/{match.group(2)}/{{slug}}"

    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_cache_write_failure(cache_type: str) -> None:
    cache_write_failures_total.labels(cache_type=cache_type).inc()


def record_cache_store_error(operation: str) -> None:
    cache_store_errors_total.labels(operation=operation).inc()


def record_origin_request(backend: str, operation: str, outcome: str, duration_seconds: float) -> None:
    origin_requests_total.labels(backend=backend, operation=operation, outcome=outcome).inc()
    origin_request_duration_seconds.labels(backend=backend, operation=operation).observe(duration_seconds)


def record_origin_record_dropped(category: str) -> None:
    origin_records_dropped_total.labels(category=category).inc()


def record_content_view(category: str) -> None:
    content_views_recorded_total.labels(category=category).inc()


def record_content_copy(category: str) -> None:
    content_copies_recorded_total.labels(category=category).inc()


def record_warming_run(trigger: str, outcome: str) -> None:
    warming_runs_total.labels(trigger=trigger, outcome=outcome).inc()


def set_warming_in_progress(in_progress: bool) -> None:
    warming_in_progress.set(1 if in_progress else 0)


def record_items_warmed(category: str, count: int) -> None:
    if count > 0:
        warming_items_warmed_total.labels(category=category).inc(count)


def update_resource_metrics() -> None:
    """Update system resource metrics (CPU, memory) on scrape."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
