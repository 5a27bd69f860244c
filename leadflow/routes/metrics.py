"""
Prometheus metrics endpoint.

Exposes system metrics for monitoring.
"""
from fastapi import APIRouter, Response
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST

router = APIRouter()

# ============================================
# HTTP Request Metrics
# ============================================

http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Automation Event Metrics
# ============================================

automation_deliveries = Counter(
    'automation_event_deliveries_total',
    'Automation event delivery attempts by outcome',
    ['event_type', 'outcome']
)

automation_conflicts = Counter(
    'automation_event_conflicts_total',
    'Automation event writes rejected by optimistic concurrency'
)

automation_events_enqueued = Counter(
    'automation_events_enqueued_total',
    'Automation events created',
    ['event_type']
)

automation_retries_requested = Counter(
    'automation_event_manual_retries_total',
    'Manual retries requested by operators'
)

# ============================================
# Dispatcher Metrics
# ============================================

dispatch_cycles = Counter(
    'automation_dispatch_cycles_total',
    'Dispatcher poll cycles by result',
    ['result']
)

dispatch_cycle_duration = Histogram(
    'automation_dispatch_cycle_duration_seconds',
    'Dispatcher poll cycle duration in seconds',
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0]
)

dispatch_batch_size = Gauge(
    'automation_dispatch_last_batch_size',
    'Number of events selected in the most recent cycle'
)

# ============================================
# Rate Limiting Metrics
# ============================================

rate_limit_exceeded = Counter(
    'rate_limit_exceeded_total',
    'Total requests blocked by rate limiting',
    ['policy']
)


# ============================================
# Metrics Helper Functions
# ============================================

def track_request(method: str, endpoint: str, status: int, duration_seconds: float):
    """
    Record HTTP request metrics.

    Call this after each request.
    """
    http_requests_total.labels(
        method=method,
        endpoint=endpoint,
        status=status
    ).inc()

    http_request_duration.labels(
        method=method,
        endpoint=endpoint
    ).observe(duration_seconds)


def track_delivery(event_type: str, outcome: str):
    """Record a delivery attempt. outcome is one of sent, retry, failed."""
    automation_deliveries.labels(event_type=event_type, outcome=outcome).inc()


def track_conflict():
    """Record a dispatcher write lost to a concurrent writer."""
    automation_conflicts.inc()


def track_event_enqueued(event_type: str):
    """Record a new automation event."""
    automation_events_enqueued.labels(event_type=event_type).inc()


def track_manual_retry():
    """Record an operator retry."""
    automation_retries_requested.inc()


def track_dispatch_cycle(result: str, duration_seconds: float, selected: int = 0):
    """Record one dispatcher cycle. result is one of ok, idle, error."""
    dispatch_cycles.labels(result=result).inc()
    dispatch_cycle_duration.observe(duration_seconds)
    dispatch_batch_size.set(selected)


def track_rate_limit_exceeded(policy: str):
    """Record a rate limit block."""
    rate_limit_exceeded.labels(policy=policy).inc()


# ============================================
# Prometheus Endpoint
# ============================================

@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns all registered metrics in Prometheus format.
    """
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
