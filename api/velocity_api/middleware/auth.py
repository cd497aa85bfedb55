"""Authentication middleware that validates Supabase access tokens.

Extracts ``Authorization: Bearer <token>`` from every request, verifies the
HS256 signature and ``aud`` claim with PyJWT, and populates
``request.state`` with ``user_id``, ``org_id``, ``role`` and ``email``.

Supabase keeps custom claims under ``app_metadata`` (set server-side) and
``user_metadata`` (set by the user).  The organization id is read from
``app_metadata.org_id`` first and ``user_metadata.org_id`` second; the
organization role only ever comes from ``app_metadata.org_role`` and
defaults to ``"member"``.

Endpoints matched by :func:`_is_public_path` bypass authentication.
Admin batch routes also bypass it here and authenticate with the
``x-admin-secret`` header in their own dependency.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

logger = logging.getLogger(__name__)

# Paths that do not require authentication.
_PUBLIC_PATHS: frozenset[str] = frozenset(
    {
        "/api/v1/health",
        "/ready",
        "/metrics",
        "/docs",
        "/openapi.json",
        "/redoc",
        "/favicon.ico",
        "/api/v1/plans",
        "/api/v1/sso/login",
        "/api/v1/sso/logout",
        # Admin routes authenticated by x-admin-secret.
        "/api/v1/usage/reset",
        "/api/v1/billing/cycle/reset",
    }
)

_PUBLIC_PREFIXES: tuple[str, ...] = (
    "/docs",
    "/redoc",
    "/api/v1/webhooks/",
    "/api/v1/billing/jobs/",
)


def _is_public_path(path: str) -> bool:
    """Return ``True`` if the path should bypass authentication."""
    if path in _PUBLIC_PATHS:
        return True
    if any(path.startswith(prefix) for prefix in _PUBLIC_PREFIXES):
        return True
    # Individual plan definitions are public; the caller's own
    # entitlements are not.
    return path.startswith("/api/v1/plans/") and not path.startswith("/api/v1/plans/entitlements")


def decode_supabase_token(token: str, secret: str, audience: str) -> dict[str, Any]:
    """Verify and decode a Supabase access token.

    Raises
    ------
    jwt.InvalidTokenError
        If the signature, expiry or audience is invalid.
    """
    return jwt.decode(token, secret, algorithms=["HS256"], audience=audience)


def _claim(claims: dict[str, Any], key: str) -> Any:
    for section in ("app_metadata", "user_metadata"):
        meta = claims.get(section) or {}
        if isinstance(meta, dict) and meta.get(key):
            return meta[key]
    return None


class AuthenticationMiddleware(BaseHTTPMiddleware):
    """Starlette middleware that enforces Bearer token authentication.

    Parameters
    ----------
    jwt_secret:
        The Supabase project's JWT secret.
    audience:
        Expected ``aud`` claim (``"authenticated"`` for signed-in users).
    """

    def __init__(self, app: Any, *, jwt_secret: str, audience: str = "authenticated") -> None:
        super().__init__(app)
        self._secret = jwt_secret
        self._audience = audience
        logger.info("AuthenticationMiddleware initialised (audience=%s)", audience)

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path

        if request.method == "OPTIONS" or _is_public_path(path):
            return await call_next(request)

        auth_header = request.headers.get("authorization")
        if not auth_header:
            return JSONResponse(status_code=401, content={"detail": "Missing Authorization header"})

        parts = auth_header.split(None, 1)
        if len(parts) != 2 or parts[0].lower() != "bearer":
            return JSONResponse(
                status_code=401,
                content={"detail": "Authorization header must use Bearer scheme"},
            )

        try:
            claims = decode_supabase_token(parts[1], self._secret, self._audience)
        except jwt.ExpiredSignatureError:
            return JSONResponse(status_code=401, content={"detail": "Token has expired"})
        except jwt.InvalidTokenError as exc:
            logger.info("Rejected access token: %s", exc)
            return JSONResponse(status_code=401, content={"detail": "Invalid token"})

        user_id = claims.get("sub")
        if not user_id:
            return JSONResponse(status_code=401, content={"detail": "Token has no subject"})

        app_meta = claims.get("app_metadata") or {}
        request.state.user_id = str(user_id)
        request.state.email = claims.get("email")
        request.state.org_id = _claim(claims, "org_id")
        request.state.role = (app_meta.get("org_role") if isinstance(app_meta, dict) else None) or "member"

        return await call_next(request)
