"""Plan catalog and entitlement endpoints.

The catalog is public.  ``/plans/entitlements/me`` reports the caller's
organization plan, cap usage and seats, and ``/plans/entitlements/check``
evaluates a single capability, limit or template category without
raising.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query
from velocity_core.errors import NotFoundError
from velocity_core.plans.catalog import Capability, LimitName, PlanTier, TemplateCategory, get_plan, list_plans
from velocity_core.plans.entitlements import EntitlementRequest

from velocity_api.dependencies import OrgDep, SessionDep
from velocity_api.schemas import PlanListResponse, PlanResponse
from velocity_api.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/plans", tags=["plans"])


@router.get("", response_model=PlanListResponse)
async def get_plans() -> dict[str, Any]:
    """List every plan tier in ascending order."""
    return {"plans": [plan.to_dict() for plan in list_plans()]}


@router.get("/entitlements/me")
async def my_entitlements(session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    """Return the caller's plan, cap usage for the current window, and seats."""
    return await EntitlementService(session, org_id).summary()


@router.get("/entitlements/check")
async def check_entitlement(
    session: SessionDep,
    org_id: OrgDep,
    capability: Capability | None = Query(default=None),
    limit: LimitName | None = Query(default=None),
    quantity: int = Query(default=0, ge=0),
    template_category: TemplateCategory | None = Query(default=None),
) -> dict[str, Any]:
    """Evaluate one entitlement request for the caller's plan.

    Exactly one of ``capability``, ``limit`` or ``template_category``
    must be given.  Always returns 200; ``allowed`` carries the result.
    """
    named = [v for v in (capability, limit, template_category) if v is not None]
    if len(named) != 1:
        raise ValueError("Provide exactly one of capability, limit, or template_category")
    request = EntitlementRequest(
        capability=capability,
        limit=limit,
        quantity=quantity,
        template_category=template_category,
    )
    decision = await EntitlementService(session, org_id).evaluate(request)
    return decision.to_dict()


@router.get("/{plan_id}", response_model=PlanResponse)
async def get_plan_definition(plan_id: str) -> dict[str, Any]:
    """Return one plan definition.  Unknown plan ids are a 404."""
    if plan_id not in {tier.value for tier in PlanTier}:
        raise NotFoundError("Plan", plan_id)
    return get_plan(plan_id).to_dict()
