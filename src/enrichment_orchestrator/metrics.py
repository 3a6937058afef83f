from __future__ import annotations

from prometheus_client import Counter, Histogram, start_http_server

provider_attempts_total = Counter(
    "enrichment_provider_attempts_total",
    "Provider attempts made by the dispatcher",
    labelnames=["provider", "outcome"],
)

provider_latency_seconds = Histogram(
    "enrichment_provider_latency_seconds",
    "Provider request latency (seconds)",
    buckets=[0.1, 0.3, 0.5, 1, 2, 5, 10, 15, 30, 60, 120],
    labelnames=["provider"],
)

dispatch_results_total = Counter(
    "enrichment_dispatch_results_total",
    "Dispatch outcomes by result code",
    labelnames=["result"],
)

backoff_retries_total = Counter(
    "enrichment_backoff_retries_total",
    "Retries scheduled by the backoff retrier",
    labelnames=["operation"],
)

cache_lookups_total = Counter(
    "enrichment_cache_lookups_total",
    "Cache gateway lookups",
    labelnames=["result"],
)

validation_completeness = Histogram(
    "enrichment_validation_completeness_score",
    "Completeness score of validated results",
    buckets=[10, 25, 50, 65, 75, 85, 95, 100],
    labelnames=["kind"],
)

repair_fields_total = Counter(
    "enrichment_repair_fields_total",
    "Fields processed by the repair loop",
    labelnames=["outcome"],
)

tool_calls_total = Counter(
    "enrichment_tool_calls_total",
    "Tool proxy calls",
    labelnames=["integration", "status"],
)

rate_limit_rejections_total = Counter(
    "enrichment_rate_limit_rejections_total",
    "Tool proxy calls rejected by the rate limiter",
    labelnames=["integration"],
)

background_task_failures_total = Counter(
    "enrichment_background_task_failures_total",
    "Detached background tasks that raised",
    labelnames=["task"],
)

server_requests_total = Counter(
    "enrichment_server_requests_total",
    "HTTP requests handled by the server",
    labelnames=["path", "status"],
)

server_errors_total = Counter(
    "enrichment_server_errors_total",
    "HTTP requests that ended in a mapped error",
    labelnames=["type"],
)


def maybe_start_metrics(*, enable: bool, bind: str, port: int) -> None:
    if not enable:
        return
    start_http_server(port, addr=bind)
