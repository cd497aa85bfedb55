"""Health-check and readiness endpoints.

The ``/health`` endpoint (liveness) is registered under the versioned API
prefix (``/api/v1/health``).  The ``/ready`` endpoint is a readiness check
registered at the application root (no version prefix) so that
orchestrators and load-balancers can gate traffic independently of the
API version.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from sqlalchemy import text

from velocity_api import __version__
from velocity_api.dependencies import PublicSessionDep, SettingsDep

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


def _integrations(settings: SettingsDep) -> dict[str, str]:
    """Report which outbound integrations have credentials configured."""

    def state(secret: Any) -> str:
        return "configured" if secret.get_secret_value() else "disabled"

    return {
        "stripe": state(settings.stripe_secret_key),
        "lemon": state(settings.lemon_api_key),
        "openai": state(settings.openai_api_key),
        "email": state(settings.resend_api_key),
    }


@router.get("/health")
async def health(session: PublicSessionDep, settings: SettingsDep) -> dict[str, Any]:
    """Return service health.

    Always returns HTTP 200 so that load-balancers see the service as
    alive.  The ``db`` field indicates whether the database is reachable.
    """
    result: dict[str, Any] = {
        "status": "healthy",
        "version": __version__,
        "db": "ok",
        "integrations": _integrations(settings),
    }
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.warning("DB health check failed: %s", exc)
        result["db"] = "degraded"
    return result


# ---------------------------------------------------------------------------
# Readiness check (outside API versioning)
# ---------------------------------------------------------------------------

readiness_router = APIRouter(tags=["infrastructure"])


@readiness_router.get("/ready")
async def readiness_check(session: PublicSessionDep) -> JSONResponse:
    """Readiness check.

    Returns HTTP 200 with ``"ready"`` when the database answers
    ``SELECT 1``, otherwise HTTP 503 with ``"not_ready"``.
    """
    overall = "ready"
    checks = {"db": "ok"}
    try:
        await session.execute(text("SELECT 1"))
    except Exception as exc:
        logger.error("Readiness: DB check failed: %s", exc)
        checks["db"] = "unavailable"
        overall = "not_ready"

    return JSONResponse(
        status_code=200 if overall == "ready" else 503,
        content={"status": overall, "version": __version__, "checks": checks},
    )
