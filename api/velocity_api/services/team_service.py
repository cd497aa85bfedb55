"""Team management with seat accounting.

Inviting a member adds a seat.  Seats above the plan's included seats
are allowed and billed: each one appends an ``extra_seat`` billing event
and the inviting admin receives a seat-limit email.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.billing.seats import compute_seat_overage, seat_terms
from velocity_core.errors import NotFoundError
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementRequest
from velocity_core.state.repository import BillingEventRepository, MemberRepository, OrganizationRepository
from velocity_core.state.tables import OrganizationMemberTable

from velocity_api.config import APISettings
from velocity_api.services.email_service import EmailService
from velocity_api.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

_VALID_ROLES = ("member", "admin")


def member_to_dict(row: OrganizationMemberTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "email": row.email,
        "role": row.role,
        "user_id": row.user_id,
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


class TeamService:
    """Member CRUD and seat tracking for one organization.

    Parameters
    ----------
    session:
        Active database session bound to the organization.
    settings:
        API settings (email configuration).
    org_id:
        The organization whose team is managed.
    """

    def __init__(self, session: AsyncSession, settings: APISettings, *, org_id: str) -> None:
        self._session = session
        self._settings = settings
        self._org_id = org_id
        self._orgs = OrganizationRepository(session)
        self._members = MemberRepository(session, org_id)
        self._entitlements = EntitlementService(session, org_id)

    async def list_members(self) -> dict[str, Any]:
        """Return members with the organization's seat position."""
        org = await self._orgs.require(self._org_id)
        members = await self._members.list_all()
        included, price = seat_terms(org.plan_id, custom_seats=org.custom_seats, custom_seat_price=org.custom_seat_price)
        return {
            "members": [member_to_dict(m) for m in members],
            "total": len(members),
            "seats": compute_seat_overage(org.seat_count, included, price).to_dict(),
        }

    async def invite_member(self, email: str, *, role: str = "member", invited_by_email: str | None = None) -> dict[str, Any]:
        """Add a seat holder and bill the seat if it exceeds the plan.

        Raises
        ------
        PlanEntitlementError
            If the plan has no team workspace.
        ValueError
            If the role is invalid or the email is already a member.
        """
        if role not in _VALID_ROLES:
            raise ValueError(f"Invalid role '{role}'. Must be one of: {', '.join(_VALID_ROLES)}")
        if "@" not in email:
            raise ValueError("A valid email address is required")
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.TEAM_WORKSPACE))

        org = await self._orgs.require(self._org_id)
        member = await self._members.add(email, role=role)
        active = org.seat_count + 1
        await self._orgs.set_seat_count(self._org_id, active)

        included, price = seat_terms(org.plan_id, custom_seats=org.custom_seats, custom_seat_price=org.custom_seat_price)
        seats = compute_seat_overage(active, included, price)
        email_service = EmailService(self._settings)
        if seats.extra_seats > 0:
            await BillingEventRepository(self._session, self._org_id).append(
                "extra_seat",
                price,
                details={"member_id": member.id, "email": member.email, **seats.to_dict()},
            )
            logger.info(
                "Org %s exceeded included seats (%d/%d); extra seat billed at %s",
                self._org_id,
                active,
                included,
                price,
            )
            if invited_by_email:
                await email_service.send_seat_limit_warning(
                    invited_by_email, org.name, active=active, included=included, seat_price=price
                )
        await email_service.send_seat_invite(member.email, org.name)
        return {"member": member_to_dict(member), "seats": seats.to_dict()}

    async def remove_member(self, member_id: str) -> dict[str, Any]:
        """Remove a member and release the seat.

        Raises
        ------
        NotFoundError
            If the member does not exist.
        PermissionError
            If the member is the organization owner.
        """
        member = await self._members.get(member_id)
        if member is None:
            raise NotFoundError("Member", member_id)
        if member.role == "owner":
            raise PermissionError("The organization owner cannot be removed")
        await self._members.remove(member_id)
        org = await self._orgs.require(self._org_id)
        await self._orgs.set_seat_count(self._org_id, max(0, org.seat_count - 1))
        logger.info("Removed member %s from org %s", member.email, self._org_id)
        return {"removed": True, "member_id": member_id}
