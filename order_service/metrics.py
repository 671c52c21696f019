import time

from fastapi import Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Histogram, generate_latest

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "Duration of HTTP requests in seconds",
    ["method", "route", "code"],
    buckets=[0.1, 0.5, 1, 1.5, 2, 5],
)


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def _route_label(request: Request) -> str:
    # Templated path keeps one series per route rather than per order id.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def record_request_duration(request: Request, call_next):
    """Time every request once and feed the histogram and the latency window."""
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        return response
    finally:
        duration = time.perf_counter() - started
        REQUEST_DURATION.labels(
            method=request.method, route=_route_label(request), code=str(status_code)
        ).observe(duration)
        request.app.state.latency.record(duration)
