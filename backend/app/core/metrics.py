# Centralized Prometheus metrics. The middleware below records timing
# and counts for every request; the helpers record tracking throughput
# and funnel cache refreshes so dashboards can track pipeline health.

from time import monotonic

from fastapi import Request
from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware


REQUEST_DURATION_MS = Histogram(
    "request_duration_ms",
    "API request duration in milliseconds",
    ["method", "route"],
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
REQUESTS_TOTAL = Counter(
    "requests_total",
    "Total API requests",
    ["method", "route", "status_code"],
)

# One increment per event record in a /track batch, split by outcome:
# accepted (stored), rejected (failed validation), failed (store error).
TRACK_EVENTS_TOTAL = Counter(
    "track_events_total",
    "Tracked events by type and outcome",
    ["event_type", "outcome"],
)
TRACK_BATCH_LATENCY_MS = Histogram(
    "track_batch_latency_ms",
    "Tracking batch ingest latency in milliseconds",
    buckets=[5, 10, 25, 50, 100, 250, 500, 1000, 2000, 5000, 10000],
)
TRACK_BATCH_SIZE = Histogram(
    "track_batch_size",
    "Number of event records per tracking batch",
    buckets=[1, 2, 5, 10, 20, 50, 100, 250, 500],
)

FUNNEL_STATS_COMPUTE_TOTAL = Counter(
    "funnel_stats_compute_total",
    "Funnel metric computations by mode",
    ["mode"],  # live|persisted|paths
)


class MetricsMiddleware(BaseHTTPMiddleware):
    # Wraps every request to capture latency and a labeled request count.
    async def dispatch(self, request: Request, call_next):
        start = monotonic()
        response = await call_next(request)
        duration_ms = (monotonic() - start) * 1000.0

        route = request.scope.get("route")
        route_path = getattr(route, "path", None) or request.url.path
        REQUEST_DURATION_MS.labels(request.method, route_path).observe(duration_ms)
        REQUESTS_TOTAL.labels(request.method, route_path, str(response.status_code)).inc()
        return response


def _label(value: object | None, default: str = "unknown") -> str:
    if value is None:
        return default
    if isinstance(value, str) and not value.strip():
        return default
    return str(value)


def record_track_event(*, event_type: str | None, outcome: str) -> None:
    TRACK_EVENTS_TOTAL.labels(
        event_type=_label(event_type),
        outcome=_label(outcome),
    ).inc()


def record_track_batch(*, size: int, duration_ms: float) -> None:
    TRACK_BATCH_SIZE.observe(size)
    TRACK_BATCH_LATENCY_MS.observe(duration_ms)


def record_funnel_stats(*, mode: str) -> None:
    FUNNEL_STATS_COMPUTE_TOTAL.labels(mode=_label(mode)).inc()
