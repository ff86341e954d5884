"""
Prometheus metrics for the pathways service.

Metric families:
- RED metrics for HTTP endpoints (rate, errors, duration)
- Pipeline metrics: requests per category, attempts used, quality scores,
  verifier score distribution and verifier fallbacks
- Oracle metrics: request latency, errors, tokens and estimated cost
- Cache hits / misses
- Index gauges: rows per JSONL table, 0/1 availability per table
- Resource gauges (CPU, memory) refreshed on scrape

Naming follows Prometheus conventions: counters end in _total, durations in
_seconds.
"""
from typing import Dict, Optional

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from pathways.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# RED METRICS
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
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=registry,
)

# ============================================================================
# PIPELINE METRICS
# ============================================================================

pathway_requests_total = Counter(
    "pathway_requests_total",
    "Total number of pathway requests by classified category",
    ["category"],
    registry=registry,
)

pathway_attempts = Histogram(
    "pathway_attempts",
    "Search attempts used per pathway request",
    buckets=[1, 2, 3, 4, 5],
    registry=registry,
)

pathway_quality_score = Histogram(
    "pathway_quality_score",
    "Heuristic quality score of the accepted attempt",
    buckets=[0, 2, 4, 6, 8, 10],
    registry=registry,
)

pathway_node_errors_total = Counter(
    "pathway_node_errors_total",
    "Errors raised inside orchestrator nodes",
    ["node"],
    registry=registry,
)

verifier_scores = Histogram(
    "verifier_scores",
    "Distribution of relevance scores returned by the verifier",
    ["level"],
    buckets=[0, 1, 2, 3, 4, 5, 6, 7, 8, 9, 10],
    registry=registry,
)

verifier_fallback_total = Counter(
    "verifier_fallback_total",
    "Verifier batches scored with the fallback score",
    ["level", "reason"],
    registry=registry,
)

# ============================================================================
# ORACLE METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "Total number of oracle requests",
    ["agent", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "Oracle request latency in seconds",
    ["agent", "model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "Total number of oracle errors",
    ["agent", "error_type"],
    registry=registry,
)

llm_schema_validation_failures_total = Counter(
    "llm_schema_validation_failures_total",
    "Oracle outputs that failed JSON extraction or schema validation",
    ["agent"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "Tokens consumed by oracle requests",
    ["agent", "model", "direction"],
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated oracle cost in USD",
    ["agent", "model"],
    registry=registry,
)

# ============================================================================
# CACHE METRICS
# ============================================================================

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
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
# INDEX METRICS
# ============================================================================

pathway_index_rows = Gauge(
    "pathway_index_rows",
    "Rows loaded per JSONL index table",
    ["table"],
    registry=registry,
)

pathway_index_available = Gauge(
    "pathway_index_available",
    "Whether an index table file is present (1 = present, 0 = missing)",
    ["table"],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """Strip query strings and trailing slashes so labels stay low-cardinality."""
    if "?" in path:
        path = path.split("?")[0]
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/")
    return path


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP RED metrics for a completed request."""
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


def record_pathway_request(category: str, attempts: int, quality_score: Optional[int]) -> None:
    """Record the outcome of one orchestrator run."""
    pathway_requests_total.labels(category=category).inc()
    pathway_attempts.observe(attempts)
    if quality_score is not None:
        pathway_quality_score.observe(quality_score)


def record_node_error(node: str) -> None:
    pathway_node_errors_total.labels(node=node).inc()


def record_verifier_score(level: str, score: int) -> None:
    verifier_scores.labels(level=level).observe(score)


def record_verifier_fallback(level: str, reason: str) -> None:
    verifier_fallback_total.labels(level=level, reason=reason).inc()


def record_llm_request(agent: str, model: str, duration_ms: float) -> None:
    """Record one oracle request and its latency."""
    llm_requests_total.labels(agent=agent, model=model).inc()
    llm_request_duration_seconds.labels(agent=agent, model=model).observe(duration_ms / 1000.0)


def record_llm_error(agent: str, error_type: str) -> None:
    llm_errors_total.labels(agent=agent, error_type=error_type).inc()


def record_llm_schema_validation_failure(agent: str) -> None:
    llm_schema_validation_failures_total.labels(agent=agent).inc()


def record_llm_tokens_and_cost(
    agent: str,
    model: str,
    input_tokens: int,
    output_tokens: int,
    cost_usd: float = 0.0,
) -> None:
    """Record token usage and estimated cost of an oracle response."""
    if input_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="input").inc(input_tokens)
    if output_tokens:
        llm_tokens_total.labels(agent=agent, model=model, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(agent=agent, model=model).inc(cost_usd)


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def update_resource_metrics() -> None:
    """Refresh CPU and memory gauges."""
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def update_index_metrics(stats: Dict[str, Optional[int]]) -> None:
    """Refresh index gauges from JsonlStore.stats() (None marks a missing file)."""
    for table, rows in stats.items():
        table_label = table.rsplit(".", 1)[0]
        pathway_index_available.labels(table=table_label).set(0 if rows is None else 1)
        pathway_index_rows.labels(table=table_label).set(rows or 0)


def get_metrics() -> bytes:
    """Prometheus text exposition of the registry."""
    update_resource_metrics()
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
