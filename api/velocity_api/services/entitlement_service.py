"""Entitlement enforcement for organization-scoped operations.

Every gate in the API goes through :func:`velocity_core.plans.entitlements`
with the organization's stored ``plan_id``.  This service adds the I/O
around those pure checks: loading the organization, counting active
seats, and turning a denial into a :class:`PlanEntitlementError` that the
HTTP layer renders as a 403 with ``upgrade_required``.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.billing.cycle import default_usage_window
from velocity_core.billing.seats import compute_seat_overage, seat_terms
from velocity_core.errors import PlanEntitlementError
from velocity_core.metering.aggregator import compare_to_caps
from velocity_core.plans.catalog import get_plan
from velocity_core.plans.entitlements import EntitlementDecision, EntitlementRequest, check_entitlements
from velocity_core.state.repository import OrganizationRepository, UsageLogRepository
from velocity_core.state.tables import OrganizationTable

from velocity_api.middleware.prometheus import ENTITLEMENT_DENIALS_TOTAL

logger = logging.getLogger(__name__)


def record_denial(decision: EntitlementDecision, org_id: str) -> None:
    """Log and count an entitlement denial."""
    logger.info(
        "Entitlement denied: org=%s plan=%s capability=%s required=%s",
        org_id,
        decision.plan.value,
        decision.capability,
        decision.required_tier.value if decision.required_tier else None,
    )
    ENTITLEMENT_DENIALS_TOTAL.labels(plan=decision.plan.value, capability=decision.capability).inc()


class EntitlementService:
    """Plan checks with organization lookup for a single organization.

    Parameters
    ----------
    session:
        Active database session bound to the organization.
    org_id:
        The organization whose plan is evaluated.
    """

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._session = session
        self._org_id = org_id
        self._org_repo = OrganizationRepository(session)

    async def organization(self) -> OrganizationTable:
        return await self._org_repo.require(self._org_id)

    async def evaluate(self, *requests: EntitlementRequest) -> EntitlementDecision:
        """Return the combined decision for *requests* without raising."""
        org = await self.organization()
        return check_entitlements(org.plan_id, list(requests))

    async def enforce(self, *requests: EntitlementRequest) -> EntitlementDecision:
        """Check *requests* and raise on the first denial.

        Raises
        ------
        PlanEntitlementError
            If any request is not permitted by the organization's plan.
        """
        decision = await self.evaluate(*requests)
        if not decision.allowed:
            record_denial(decision, self._org_id)
            raise PlanEntitlementError(decision)
        return decision

    async def summary(self) -> dict[str, Any]:
        """Return the organization's plan, cap usage and seat position.

        Backs ``GET /plans/entitlements/me``.
        """
        org = await self.organization()
        plan = get_plan(org.plan_id)
        since = default_usage_window(org.cycle_start)
        totals = await UsageLogRepository(self._session, self._org_id).sum_window(since=since)
        included, price = seat_terms(
            org.plan_id,
            custom_seats=org.custom_seats,
            custom_seat_price=org.custom_seat_price,
        )
        seats = compute_seat_overage(org.seat_count, included, price)
        return {
            "org_id": org.id,
            "plan": plan.to_dict(),
            "stored_plan_id": org.plan_id,
            "usage_window_start": since.isoformat(),
            "caps": [status.to_dict() for status in compare_to_caps(totals, org.plan_id)],
            "seats": seats.to_dict(),
            "checked_at": datetime.now(UTC).isoformat(),
        }
