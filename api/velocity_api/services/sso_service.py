"""Organization SSO settings and Supabase sign-in redirects."""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementRequest
from velocity_core.state.repository import OrganizationRepository

from velocity_api.config import APISettings
from velocity_api.services.entitlement_service import EntitlementService

logger = logging.getLogger(__name__)

SSO_PROVIDERS: tuple[str, ...] = ("google", "microsoft", "okta", "auth0")

# Supabase names the Microsoft provider "azure".
_SUPABASE_PROVIDER_NAMES = {"microsoft": "azure"}


def validate_sso_settings(provider: str | None, config: Any) -> None:
    """Reject unknown providers and non-object configs with ``ValueError``."""
    if provider is not None and provider not in SSO_PROVIDERS:
        raise ValueError("Invalid SSO provider")
    if config is not None and not isinstance(config, dict):
        raise ValueError("sso_config must be an object")


def authorize_url(settings: APISettings, provider: str, redirect_to: str | None = None) -> str:
    """Build the Supabase OAuth authorize URL for *provider*."""
    if provider not in SSO_PROVIDERS:
        raise ValueError("Invalid SSO provider")
    params = {
        "provider": _SUPABASE_PROVIDER_NAMES.get(provider, provider),
        "redirect_to": redirect_to or f"{settings.app_base_url.rstrip('/')}/auth/callback",
    }
    return f"{settings.supabase_url.rstrip('/')}/auth/v1/authorize?{urlencode(params)}"


class SSOService:
    """Read and write the organization's SSO provider configuration."""

    def __init__(self, session: AsyncSession, org_id: str) -> None:
        self._org_id = org_id
        self._orgs = OrganizationRepository(session)
        self._entitlements = EntitlementService(session, org_id)

    async def get_config(self) -> dict[str, Any]:
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.SSO))
        org = await self._orgs.require(self._org_id)
        return {"org_id": org.id, "sso_provider": org.sso_provider, "sso_config": org.sso_config or {}}

    async def save_config(self, provider: str | None, config: dict[str, Any] | None) -> dict[str, Any]:
        """Store the SSO provider and its configuration.

        Raises
        ------
        ValueError
            If the provider is unknown or the config is not an object.
        PlanEntitlementError
            If the plan does not include SSO.
        """
        validate_sso_settings(provider, config)
        await self._entitlements.enforce(EntitlementRequest(capability=Capability.SSO))
        await self._orgs.set_sso(self._org_id, provider, config)
        logger.info("SSO settings updated for org %s: provider=%s", self._org_id, provider)
        return {"org_id": self._org_id, "sso_provider": provider, "sso_config": config or {}}
