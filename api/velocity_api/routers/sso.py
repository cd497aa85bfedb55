"""SSO endpoints: organization SSO settings and Supabase sign-in redirects.

``/sso/login`` and ``/sso/logout`` are public; the config routes need the
``sso`` capability, and writing the config needs the ADMIN role.
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from fastapi.responses import RedirectResponse

from velocity_api.dependencies import OrgDep, SessionDep, SettingsDep
from velocity_api.middleware.rbac import Role, require_role
from velocity_api.schemas import SSOConfigRequest, SSOConfigResponse
from velocity_api.services.sso_service import SSOService, authorize_url

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sso", tags=["sso"])


@router.get("/login")
async def sso_login(
    settings: SettingsDep,
    provider: str = Query(..., min_length=1),
    redirect_to: str | None = Query(default=None),
) -> RedirectResponse:
    """Redirect the browser to the Supabase authorize URL for *provider*."""
    return RedirectResponse(authorize_url(settings, provider, redirect_to), status_code=302)


@router.get("/logout")
async def sso_logout(settings: SettingsDep) -> RedirectResponse:
    """Redirect to the application home.  The client drops its token."""
    return RedirectResponse(settings.app_base_url, status_code=302)


@router.get("/config", response_model=SSOConfigResponse)
async def get_sso_config(session: SessionDep, org_id: OrgDep) -> dict[str, Any]:
    return await SSOService(session, org_id).get_config()


@router.put("/config", response_model=SSOConfigResponse)
async def save_sso_config(
    body: SSOConfigRequest,
    session: SessionDep,
    org_id: OrgDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Store the SSO provider and its settings."""
    return await SSOService(session, org_id).save_config(body.sso_provider, body.sso_config)
