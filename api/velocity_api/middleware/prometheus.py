"""Prometheus metrics middleware and domain counters.

Exposes RED metrics (rate, errors, duration) per normalised path, plus
counters for entitlement denials, usage rows appended and payment
webhooks received.

Path normalisation collapses identifiers (``/files/3f2a...`` ->
``/files/{id}``) to keep label cardinality bounded.
"""

from __future__ import annotations

import re
import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

HTTP_REQUESTS_TOTAL = Counter(
    "devvelocity_http_requests_total",
    "Total HTTP requests by method, path, and status code",
    ["method", "path", "status_code"],
)

HTTP_REQUEST_DURATION = Histogram(
    "devvelocity_http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

ENTITLEMENT_DENIALS_TOTAL = Counter(
    "devvelocity_entitlement_denials_total",
    "Requests denied by the plan entitlement check",
    ["plan", "capability"],
)

USAGE_ROWS_TOTAL = Counter(
    "devvelocity_usage_rows_total",
    "Usage log rows appended, by source",
    ["source"],
)

WEBHOOKS_TOTAL = Counter(
    "devvelocity_webhooks_total",
    "Payment provider webhooks received",
    ["provider", "event_type", "outcome"],
)

AI_BUILDS_TOTAL = Counter(
    "devvelocity_ai_builds_total",
    "AI builder generations by outcome",
    ["outcome"],
)

_PATH_PARAM_PATTERNS = [
    # UUIDs (8-4-4-4-12 hex format)
    (re.compile(r"/[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}"), "/{id}"),
    # Row ids (uuid4 hex) and provider ids such as in_1Nx...
    (re.compile(r"/[0-9a-f]{12,64}"), "/{id}"),
    (re.compile(r"/(in|sub|cus|cs)_[A-Za-z0-9]+"), "/{id}"),
    # Pure numeric segments (file versions, Lemon ids)
    (re.compile(r"/\d+"), "/{id}"),
]


def _normalise_path(path: str) -> str:
    for pattern, replacement in _PATH_PARAM_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


_SKIP_PATHS: frozenset[str] = frozenset({"/metrics", "/docs", "/redoc", "/openapi.json", "/favicon.ico"})


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Record HTTP request rate, error rate, and latency."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if path in _SKIP_PATHS:
            return await call_next(request)

        method = request.method
        normalised = _normalise_path(path)

        start = time.monotonic()
        response = await call_next(request)
        duration = time.monotonic() - start

        HTTP_REQUESTS_TOTAL.labels(method=method, path=normalised, status_code=str(response.status_code)).inc()
        HTTP_REQUEST_DURATION.labels(method=method, path=normalised).observe(duration)

        return response
