"""
Metrics instrumentation for observability.
Exposes Prometheus-compatible metrics at /metrics endpoint.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

# Booking lifecycle metrics
booking_operations = Counter(
    'booking_operations_total',
    'Booking repository operations',
    ['operation', 'status']  # operation: create/update/cancel/complete, status: success/not_found/error
)

booking_latency = Histogram(
    'booking_operation_latency_seconds',
    'Booking repository operation latency',
    ['operation'],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0]
)

# Identifier issuance
sequence_fallbacks = Counter(
    'sequence_fallback_total',
    'Sequence issuance that left the atomic path',
    ['path']  # cas, unchecked, timestamp
)

# Envelope codec
codec_failures = Counter(
    'codec_decode_failures_total',
    'Compressed payloads that could not be decoded'
)

# Time-windowed counters
counter_mutations = Counter(
    'counter_mutations_total',
    'Counter increments and decrements',
    ['category', 'direction']  # direction: up, down
)

# Optimistic update conflicts
db_retries = Counter(
    'db_retry_attempts_total',
    'Database retry attempts due to version conflicts'
)

# Listing cache
cache_operations = Counter(
    'cache_operations_total',
    'Cache operations',
    ['operation', 'result']  # get/set, hit/miss
)

# HTTP
request_latency = Histogram(
    'http_request_latency_seconds',
    'HTTP request latency',
    ['method', 'status_code'],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5]
)


def metrics_endpoint() -> Response:
    """
    Prometheus metrics endpoint.

    Usage:
        @app.get("/metrics")
        def metrics():
            return metrics_endpoint()
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


def record_booking_operation(operation: str, status: str):
    """Record booking operation outcome. Status: success, not_found, error"""
    booking_operations.labels(operation=operation, status=status).inc()


def record_sequence_fallback(path: str):
    sequence_fallbacks.labels(path=path).inc()


def record_counter_mutation(category: str, direction: str):
    # staff sub-counters share one label to keep cardinality bounded
    label = "staff" if category.startswith("staff:") else category
    counter_mutations.labels(category=label, direction=direction).inc()


def record_cache_operation(operation: str, hit: bool):
    """Record cache operation."""
    result = "hit" if hit else "miss"
    cache_operations.labels(operation=operation, result=result).inc()
