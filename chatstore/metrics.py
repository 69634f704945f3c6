"""
Prometheus metrics for the message store API.

This module provides:
- HTTP request counter (method, route, status)
- Request latency histogram (method, route)
- Append outcome counter (result)
- Consistency fallback counter (operation)

Metrics are stored in-memory using prometheus-client.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST


# =============================================================================
# Metric Definitions
# =============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    labelnames=["method", "path", "status"]
)

# result: accepted, deduplicated, unavailable
message_appends_total = Counter(
    "message_appends_total",
    "Total message append outcomes",
    labelnames=["result"]
)

# operation: write, read
consistency_fallbacks_total = Counter(
    "consistency_fallbacks_total",
    "Requests whose consistency token was rejected and replaced by the default",
    labelnames=["operation"]
)

request_latency_seconds = Histogram(
    "request_latency_seconds",
    "Request latency in seconds",
    labelnames=["method", "path"]
)


# =============================================================================
# Helper Functions
# =============================================================================

def record_http_request(method: str, path: str, status: int, latency_seconds: float) -> None:
    """
    Record an HTTP request in metrics.

    Args:
        method: HTTP method (GET, POST, etc.)
        path: Route template (e.g. /api/channels/{channel_id}/messages)
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    http_requests_total.labels(
        method=method,
        path=path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=path
    ).observe(latency_seconds)


def record_append_outcome(result: str) -> None:
    """Record an append outcome: accepted, deduplicated or unavailable."""
    message_appends_total.labels(result=result).inc()


def record_consistency_fallback(operation: str) -> None:
    """Record a rejected consistency token for a write or read."""
    consistency_fallbacks_total.labels(operation=operation).inc()


def get_metrics() -> bytes:
    """
    Generate Prometheus exposition format metrics.

    Returns:
        Metrics in Prometheus text format as bytes
    """
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
