"""
Prometheus metrics for the messaging API.

This module provides:
- HTTP request counter (method, path, status)
- Message send outcome counter (result)
- Counter of messages flipped to read
- Request latency histogram (method, path)

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

# result: sent, validation_error, not_found, no_counterpart_yet, storage_error
messages_sent_total = Counter(
    "messages_sent_total",
    "Total message send outcomes",
    labelnames=["result"]
)

messages_marked_read_total = Counter(
    "messages_marked_read_total",
    "Total messages flipped from unread to read"
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
        path: Request path
        status: HTTP status code
        latency_seconds: Request processing time in seconds
    """
    # Normalize path to avoid high-cardinality labels
    normalized_path = path.split("?")[0]

    http_requests_total.labels(
        method=method,
        path=normalized_path,
        status=str(status)
    ).inc()

    request_latency_seconds.labels(
        method=method,
        path=normalized_path
    ).observe(latency_seconds)


def record_send_outcome(result: str) -> None:
    messages_sent_total.labels(result=result).inc()


def record_marked_read(count: int) -> None:
    messages_marked_read_total.inc(count)


def get_metrics() -> bytes:
    """Generate Prometheus exposition format metrics."""
    return generate_latest()


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
