"""Prometheus metrics definitions and FastAPI middleware for the identity service.

Exposes counters and histograms for each stage of an identify call, from
fingerprint resolution through the contact store round-trips and the
primary-creation race.  A lightweight FastAPI middleware instruments HTTP
request duration and status codes.
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Request, Response
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response as StarletteResponse
from starlette.staticfiles import StaticFiles

# --------------------------------------------------------------------------- #
# Counters                                                                     #
# --------------------------------------------------------------------------- #
identify_requests_total = Counter(
    "identify_requests_total",
    "Identify calls by outcome.",
    labelnames=["outcome"],
)

primary_race_recoveries_total = Counter(
    "primary_race_recoveries_total",
    "Primary inserts that lost the uniqueness race and were retried as secondaries.",
)

# --------------------------------------------------------------------------- #
# Histograms                                                                   #
# --------------------------------------------------------------------------- #
store_operation_seconds = Histogram(
    "store_operation_seconds",
    "Latency of contact store operations.",
    labelnames=["operation"],
    buckets=(0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

fingerprint_resolution_seconds = Histogram(
    "fingerprint_resolution_seconds",
    "Latency of fingerprint provider lookups.",
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

# --------------------------------------------------------------------------- #
# FastAPI Prometheus middleware                                                 #
# --------------------------------------------------------------------------- #
_http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests handled.",
    labelnames=["method", "endpoint", "status_code"],
)

_http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds.",
    labelnames=["method", "endpoint"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

UNMATCHED_ENDPOINT = "unmatched"
STATIC_ENDPOINT = "static"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that records request count and latency."""

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        method = request.method
        start = time.perf_counter()
        response: Response = await call_next(request)
        elapsed = time.perf_counter() - start

        endpoint = _endpoint_label(request)
        _http_requests_total.labels(
            method=method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        _http_request_duration_seconds.labels(
            method=method,
            endpoint=endpoint,
        ).observe(elapsed)
        return response


def _endpoint_label(request: Request) -> str:
    """Route template for matched requests, a fixed bucket otherwise."""
    route = request.scope.get("route")
    if route is not None and hasattr(route, "path"):
        return route.path
    if isinstance(request.scope.get("endpoint"), StaticFiles):
        return STATIC_ENDPOINT
    return UNMATCHED_ENDPOINT


# --------------------------------------------------------------------------- #
# Metrics endpoint                                                             #
# --------------------------------------------------------------------------- #
metrics_router = APIRouter()


@metrics_router.get("/metrics", include_in_schema=False)
async def metrics_endpoint() -> StarletteResponse:
    body = generate_latest(REGISTRY)
    return StarletteResponse(
        content=body,
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )

