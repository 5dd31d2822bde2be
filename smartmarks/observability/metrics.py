import time
from typing import Callable

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.requests import Request
from starlette.responses import Response


REQUEST_COUNTER = Counter(
    "api_requests_total",
    "HTTP requests total",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "api_request_duration_seconds",
    "HTTP request latency",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10),
)

BOOKMARK_READS = Counter(
    "bookmark_reads_total",
    "Full bookmark reads by outcome",
    ["status"],
)

BOOKMARK_MUTATIONS = Counter(
    "bookmark_mutations_total",
    "Bookmark inserts and deletes by outcome",
    ["operation", "status"],
)

SESSION_EVENTS = Counter(
    "session_events_total",
    "Session-change notifications received",
    ["event"],
)

ACTIVE_SUBSCRIPTIONS = Gauge(
    "bookmark_subscriptions_active",
    "Open bookmark change subscriptions",
)


async def metrics_endpoint(_: Request) -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


async def request_metrics_middleware(request: Request, call_next: Callable):
    start = time.time()
    response = await call_next(request)
    elapsed = time.time() - start
    path = request.url.path
    # bookmark ids are opaque; collapse them to keep label cardinality bounded
    if path.startswith("/bookmarks/"):
        path = "/bookmarks/:id"
    REQUEST_COUNTER.labels(request.method, path, str(response.status_code)).inc()
    REQUEST_LATENCY.observe(elapsed)
    return response
