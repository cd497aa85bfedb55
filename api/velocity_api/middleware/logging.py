"""Access logging for the DevVelocity API."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("velocity_api.access")

CORRELATION_HEADER = "X-Correlation-ID"

# Secrets and webhook signatures are never logged.
_REDACTED_HEADERS = frozenset({"authorization", "cookie", "x-admin-secret", "stripe-signature", "x-signature"})


def _log_level(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Emit one ``request completed`` record per request.

    The record carries a ``request`` dict for the JSON formatter.  The
    correlation id comes from the incoming header or a fresh uuid4 and is
    echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        started = time.monotonic()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            record: dict[str, Any] = {
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query or None,
                "status_code": status_code,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
                "client": request.client.host if request.client else None,
                "correlation_id": correlation_id,
                "org_id": getattr(request.state, "org_id", None) or "anonymous",
                "user_id": getattr(request.state, "user_id", None),
                "headers": {
                    k: "***" if k.lower() in _REDACTED_HEADERS else v for k, v in request.headers.items()
                },
            }
            logger.log(_log_level(status_code), "request completed", extra={"request": record})
