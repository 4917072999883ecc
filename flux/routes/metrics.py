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
    'flux_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'status']
)

http_request_duration = Histogram(
    'flux_http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# ============================================
# Task Metrics
# ============================================

tasks_ready = Gauge(
    'flux_tasks_ready',
    'Number of ready tasks at the last readiness query',
    ['project_id']
)

# ============================================
# Webhook Metrics
# ============================================

webhooks_sent = Counter(
    'flux_webhooks_sent_total',
    'Webhook deliveries that reached a terminal status',
    ['status']
)

webhook_retries = Counter(
    'flux_webhook_retries_total',
    'Webhook delivery retries scheduled'
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


def update_ready_tasks(project_id: str | None, count: int):
    """Update ready task gauge; `all` when not scoped to a project."""
    tasks_ready.labels(project_id=project_id or "all").set(count)


def track_webhook_sent(status: str):
    """Record a delivery reaching success or failed."""
    webhooks_sent.labels(status=status).inc()


def track_webhook_retry():
    """Record a retry being scheduled."""
    webhook_retries.inc()


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
