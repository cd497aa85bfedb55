"""Usage metering endpoints.

Logging is open to every plan; the aggregated summary, daily breakdown
and raw event listing need the ``usage_analytics`` capability.  The
cycle reset is an admin operation authenticated by ``x-admin-secret``.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementDecision
from velocity_core.state.database import set_org_context

from velocity_api.dependencies import AdminDep, AdminSessionDep, OrgDep, SessionDep, require_capability
from velocity_api.schemas import UsageLogRequest, UsageLogResponse, UsageResetRequest
from velocity_api.services.usage_service import UsageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/usage", tags=["usage"])


@router.post("/log", response_model=UsageLogResponse, status_code=201)
async def log_usage(body: UsageLogRequest, session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    """Append one usage row for the caller's organization."""
    row = await UsageService(session, org_id).log(body.counters, metadata=body.metadata)
    return {"id": row.id, "org_id": row.org_id, "created_at": row.created_at.isoformat() if row.created_at else None}


@router.get("/summary")
async def usage_summary(
    session: SessionDep,
    org_id: OrgDep,
    _gate: EntitlementDecision = Depends(require_capability(Capability.USAGE_ANALYTICS)),
) -> dict[str, Any]:
    """Return totals, cap comparison, recommendations and projected overage."""
    return await UsageService(session, org_id).report()


@router.get("/daily")
async def usage_daily(
    session: SessionDep,
    org_id: OrgDep,
    days: int = Query(default=30, ge=1, le=365),
    _gate: EntitlementDecision = Depends(require_capability(Capability.USAGE_ANALYTICS)),
) -> dict[str, Any]:
    """Return per-day counter totals for the last *days* days."""
    return {"org_id": org_id, "days": await UsageService(session, org_id).daily(days)}


@router.get("/events")
async def usage_events(
    session: SessionDep,
    org_id: OrgDep,
    limit: int = Query(default=100, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
    _gate: EntitlementDecision = Depends(require_capability(Capability.USAGE_ANALYTICS)),
) -> dict[str, Any]:
    """List usage rows in the current window, newest first."""
    return await UsageService(session, org_id).events(limit=limit, offset=offset)


@router.post("/reset")
async def reset_usage(body: UsageResetRequest, session: AdminSessionDep, _admin: AdminDep) -> dict[str, Any]:
    """Delete the organization's usage rows for the current window."""
    await set_org_context(session, body.org_id)
    deleted = await UsageService(session, body.org_id).reset_current_cycle()
    return {"org_id": body.org_id, "deleted": deleted}
