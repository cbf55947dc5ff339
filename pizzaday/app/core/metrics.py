"""
Prometheus metrics for application monitoring.
"""
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
from prometheus_client.openmetrics.exposition import generate_latest as generate_latest_openmetrics
from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
import time


# Request metrics
http_requests_total = Counter(
    'http_requests_total',
    'Total number of HTTP requests',
    ['method', 'endpoint', 'status_code']
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request duration in seconds',
    ['method', 'endpoint'],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0]
)

# Reservation engine
reservations_total = Counter(
    'reservations_total',
    'Reserve attempts by outcome (reserved or a reject reason)',
    ['outcome']
)

releases_total = Counter(
    'releases_total',
    'Release attempts by outcome (released or a release error)',
    ['outcome']
)

slot_freezes_total = Counter(
    'slot_freezes_total',
    'Slots quarantined after a consistency violation'
)

stale_holds_released_total = Counter(
    'stale_holds_released_total',
    'Held reservations released by the sweep because no order was written'
)

# Orders
orders_placed_total = Counter(
    'orders_placed_total',
    'Orders written to the ledger'
)

orders_cancelled_total = Counter(
    'orders_cancelled_total',
    'Orders moved to the cancelled status'
)

order_placement_failures_total = Counter(
    'order_placement_failures_total',
    'Checkouts whose ledger write failed after a successful reservation'
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        endpoint = request.url.path
        if endpoint == "/metrics":
            return await call_next(request)

        # Label by route template, not raw path, to keep cardinality bounded
        route = request.scope.get("route")
        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            route = request.scope.get("route") or route
            label = getattr(route, "path", endpoint)
            http_requests_total.labels(
                method=request.method,
                endpoint=label,
                status_code=status_code
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=label
            ).observe(time.time() - start_time)

        return response


def get_metrics_response(openmetrics: bool = False) -> Response:
    """
    Get Prometheus metrics response.

    Args:
        openmetrics: If True, return OpenMetrics format, else Prometheus format
    """
    if openmetrics:
        content = generate_latest_openmetrics()
        content_type = "application/openmetrics-text; version=1.0.0; charset=utf-8"
    else:
        content = generate_latest()
        content_type = CONTENT_TYPE_LATEST

    return Response(content=content, media_type=content_type)
