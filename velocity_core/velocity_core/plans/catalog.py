"""Authoritative plan table and tier-based capability gating.

Four subscription tiers control access to platform capabilities and
numeric usage caps:

* **Developer** -- Solo builders.  AI builder with one cloud provider.
* **Startup** -- Adds the file portal, basic SSO, usage analytics and a
  shared team workspace.
* **Team** -- Multi-cloud failover, compliance mode and webhooks.
* **Enterprise** -- Unlimited caps, private templates and contract
  seat pricing.

This module is the only place plan limits are declared.  Everything
else reads them through :func:`get_plan` or the entitlement checks in
:mod:`velocity_core.plans.entitlements`.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class PlanTier(str, Enum):
    """Subscription tier determining capability access."""

    DEVELOPER = "developer"
    STARTUP = "startup"
    TEAM = "team"
    ENTERPRISE = "enterprise"


TIER_ORDER: tuple[PlanTier, ...] = (
    PlanTier.DEVELOPER,
    PlanTier.STARTUP,
    PlanTier.TEAM,
    PlanTier.ENTERPRISE,
)


class Capability(str, Enum):
    """Boolean capabilities that can be gated by plan tier."""

    # Developer
    AI_BUILDER = "ai_builder"

    # Startup
    FILE_PORTAL = "file_portal"
    SSO = "sso"
    ADVANCED_AUTOMATION = "advanced_automation"
    USAGE_ANALYTICS = "usage_analytics"
    TEAM_WORKSPACE = "team_workspace"
    BILLING_HISTORY = "billing_history"

    # Team
    MULTI_CLOUD_FAILOVER = "multi_cloud_failover"
    COMPLIANCE_MODE = "compliance_mode"
    WEBHOOKS = "webhooks"

    # Enterprise
    PRIVATE_TEMPLATES = "private_templates"


class LimitName(str, Enum):
    """Numeric caps carried by every plan definition."""

    SEATS = "seats_included"
    PROVIDERS = "max_providers"
    BUILD_MINUTES = "build_minutes"
    PIPELINES_RUN = "pipelines_run"
    PROVIDER_API_CALLS = "provider_api_calls"
    AI_REQUESTS_PER_MINUTE = "ai_requests_per_minute"
    AI_REQUESTS_PER_DAY = "ai_requests_per_day"


class TemplateCategory(str, Enum):
    """Template library sections unlocked progressively by tier."""

    BASE = "base"
    PROVIDER = "provider"
    ADVANCED = "advanced"
    ENTERPRISE = "enterprise"


# Capabilities available at each tier.  Higher tiers include all
# lower-tier capabilities automatically.

_DEVELOPER_CAPABILITIES: frozenset[Capability] = frozenset({Capability.AI_BUILDER})

_STARTUP_CAPABILITIES: frozenset[Capability] = _DEVELOPER_CAPABILITIES | frozenset(
    {
        Capability.FILE_PORTAL,
        Capability.SSO,
        Capability.ADVANCED_AUTOMATION,
        Capability.USAGE_ANALYTICS,
        Capability.TEAM_WORKSPACE,
        Capability.BILLING_HISTORY,
    }
)

_TEAM_CAPABILITIES: frozenset[Capability] = _STARTUP_CAPABILITIES | frozenset(
    {
        Capability.MULTI_CLOUD_FAILOVER,
        Capability.COMPLIANCE_MODE,
        Capability.WEBHOOKS,
    }
)

_ENTERPRISE_CAPABILITIES: frozenset[Capability] = _TEAM_CAPABILITIES | frozenset(
    {Capability.PRIVATE_TEMPLATES}
)

_DEVELOPER_TEMPLATES: frozenset[TemplateCategory] = frozenset({TemplateCategory.BASE})
_STARTUP_TEMPLATES = _DEVELOPER_TEMPLATES | {TemplateCategory.PROVIDER}
_TEAM_TEMPLATES = _STARTUP_TEMPLATES | {TemplateCategory.ADVANCED}
_ENTERPRISE_TEMPLATES = _TEAM_TEMPLATES | {TemplateCategory.ENTERPRISE}


@dataclass(frozen=True)
class PlanDefinition:
    """Static definition of a single plan tier.

    Numeric caps set to ``None`` are unlimited.  For enterprise, seat
    terms are negotiated per contract and read from the organization.
    """

    tier: PlanTier
    name: str
    monthly_price_usd: Decimal
    seats_included: int | None
    seat_price_usd: Decimal | None
    max_providers: int | None
    build_minutes: int | None
    pipelines_run: int | None
    provider_api_calls: int | None
    ai_requests_per_minute: int | None
    ai_requests_per_day: int | None
    automation_tier: str
    sso_tier: str | None
    update_frequency: str
    capabilities: frozenset[Capability]
    template_categories: frozenset[TemplateCategory]

    def limit(self, name: LimitName) -> int | None:
        """Return the numeric cap for *name* (``None`` means unlimited)."""
        return getattr(self, name.value)

    def has(self, capability: Capability) -> bool:
        return capability in self.capabilities

    def to_dict(self) -> dict:
        return {
            "id": self.tier.value,
            "name": self.name,
            "monthly_price_usd": float(self.monthly_price_usd),
            "seats_included": self.seats_included,
            "seat_price_usd": float(self.seat_price_usd) if self.seat_price_usd is not None else None,
            "limits": {name.value: self.limit(name) for name in LimitName},
            "automation_tier": self.automation_tier,
            "sso_tier": self.sso_tier,
            "update_frequency": self.update_frequency,
            "capabilities": sorted(c.value for c in self.capabilities),
            "template_categories": [c.value for c in TemplateCategory if c in self.template_categories],
        }


PLAN_TABLE: dict[PlanTier, PlanDefinition] = {
    PlanTier.DEVELOPER: PlanDefinition(
        tier=PlanTier.DEVELOPER,
        name="Developer",
        monthly_price_usd=Decimal("39"),
        seats_included=1,
        seat_price_usd=Decimal("10"),
        max_providers=1,
        build_minutes=50,
        pipelines_run=5,
        provider_api_calls=50,
        ai_requests_per_minute=2,
        ai_requests_per_day=25,
        automation_tier="basic",
        sso_tier=None,
        update_frequency="monthly",
        capabilities=_DEVELOPER_CAPABILITIES,
        template_categories=_DEVELOPER_TEMPLATES,
    ),
    PlanTier.STARTUP: PlanDefinition(
        tier=PlanTier.STARTUP,
        name="Startup",
        monthly_price_usd=Decimal("99"),
        seats_included=3,
        seat_price_usd=Decimal("10"),
        max_providers=3,
        build_minutes=200,
        pipelines_run=200,
        provider_api_calls=2000,
        ai_requests_per_minute=5,
        ai_requests_per_day=120,
        automation_tier="advanced",
        sso_tier="basic",
        update_frequency="weekly",
        capabilities=_STARTUP_CAPABILITIES,
        template_categories=_STARTUP_TEMPLATES,
    ),
    PlanTier.TEAM: PlanDefinition(
        tier=PlanTier.TEAM,
        name="Team",
        monthly_price_usd=Decimal("299"),
        seats_included=10,
        seat_price_usd=Decimal("10"),
        max_providers=7,
        build_minutes=2500,
        pipelines_run=1000,
        provider_api_calls=8000,
        ai_requests_per_minute=12,
        ai_requests_per_day=400,
        automation_tier="enterprise",
        sso_tier="advanced",
        update_frequency="daily",
        capabilities=_TEAM_CAPABILITIES,
        template_categories=_TEAM_TEMPLATES,
    ),
    PlanTier.ENTERPRISE: PlanDefinition(
        tier=PlanTier.ENTERPRISE,
        name="Enterprise",
        monthly_price_usd=Decimal("1250"),
        seats_included=None,
        seat_price_usd=None,
        max_providers=None,
        build_minutes=None,
        pipelines_run=None,
        provider_api_calls=None,
        ai_requests_per_minute=None,
        ai_requests_per_day=None,
        automation_tier="private",
        sso_tier="enterprise",
        update_frequency="continuous",
        capabilities=_ENTERPRISE_CAPABILITIES,
        template_categories=_ENTERPRISE_TEMPLATES,
    ),
}


def resolve_tier(plan_id: str | PlanTier | None) -> PlanTier:
    """Map a stored plan identifier onto a known tier.

    Unknown, empty or malformed identifiers resolve to the lowest tier
    so that entitlement checks fail closed.

    Parameters
    ----------
    plan_id:
        The plan identifier as stored on the organization.

    Returns
    -------
    PlanTier
        The matching tier, or ``PlanTier.DEVELOPER``.
    """
    if isinstance(plan_id, PlanTier):
        return plan_id
    if not plan_id or not isinstance(plan_id, str):
        return PlanTier.DEVELOPER
    try:
        return PlanTier(plan_id.strip().lower())
    except ValueError:
        return PlanTier.DEVELOPER


def get_plan(plan_id: str | PlanTier | None) -> PlanDefinition:
    """Return the plan definition for *plan_id* (developer when unknown)."""
    return PLAN_TABLE[resolve_tier(plan_id)]


def list_plans() -> list[PlanDefinition]:
    """Return every plan definition in ascending tier order."""
    return [PLAN_TABLE[tier] for tier in TIER_ORDER]


def next_tier(tier: PlanTier) -> PlanTier | None:
    """Return the tier directly above *tier*, or ``None`` at the top."""
    index = TIER_ORDER.index(tier)
    if index + 1 < len(TIER_ORDER):
        return TIER_ORDER[index + 1]
    return None


def get_required_tier(capability: Capability) -> PlanTier:
    """Return the minimum tier required for a capability.

    Parameters
    ----------
    capability:
        The capability to look up.

    Returns
    -------
    PlanTier
        The lowest tier that includes the capability.
    """
    for tier in TIER_ORDER:
        if capability in PLAN_TABLE[tier].capabilities:
            return tier
    return PlanTier.ENTERPRISE


def get_required_tier_for_template(category: TemplateCategory) -> PlanTier:
    """Return the minimum tier whose template library includes *category*."""
    for tier in TIER_ORDER:
        if category in PLAN_TABLE[tier].template_categories:
            return tier
    return PlanTier.ENTERPRISE
