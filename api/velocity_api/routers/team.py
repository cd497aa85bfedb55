"""Team management endpoints: list, invite and remove members.

Listing is open to every member.  Inviting and removing require the
ADMIN role; inviting also needs the ``team_workspace`` capability, which
the service checks so the denial carries the upgrade payload.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from velocity_api.dependencies import OrgDep, SessionDep, SettingsDep
from velocity_api.middleware.rbac import Role, require_role
from velocity_api.schemas import InviteMemberRequest, TeamMembersResponse
from velocity_api.services.team_service import TeamService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team", tags=["team"])


@router.get("/members", response_model=TeamMembersResponse)
async def list_members(session: SessionDep, settings: SettingsDep, org_id: OrgDep) -> dict[str, Any]:
    """List members with the organization's seat position."""
    return await TeamService(session, settings, org_id=org_id).list_members()


@router.post("/members", status_code=201)
async def invite_member(
    body: InviteMemberRequest,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Invite a member.

    Seats beyond the plan's included seats are accepted and billed; the
    response carries the updated seat position.  A duplicate email is a
    409.
    """
    service = TeamService(session, settings, org_id=org_id)
    return await service.invite_member(
        body.email,
        role=body.role,
        invited_by_email=getattr(request.state, "email", None),
    )


@router.delete("/members/{member_id}")
async def remove_member(
    member_id: str,
    session: SessionDep,
    settings: SettingsDep,
    org_id: OrgDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Remove a member and release the seat.  The owner cannot be removed."""
    return await TeamService(session, settings, org_id=org_id).remove_member(member_id)
