"""Tests for the static plan table and tier helpers."""

from __future__ import annotations

from decimal import Decimal

import pytest
from velocity_core.plans.catalog import (
    PLAN_TABLE,
    TIER_ORDER,
    Capability,
    LimitName,
    PlanTier,
    TemplateCategory,
    get_plan,
    get_required_tier,
    get_required_tier_for_template,
    list_plans,
    next_tier,
    resolve_tier,
)

# ---------------------------------------------------------------------------
# Tier resolution
# ---------------------------------------------------------------------------


class TestResolveTier:
    @pytest.mark.parametrize("raw", [None, "", "platinum", "free", 42])
    def test_unknown_ids_resolve_to_developer(self, raw) -> None:
        assert resolve_tier(raw) == PlanTier.DEVELOPER

    def test_case_and_whitespace_insensitive(self) -> None:
        assert resolve_tier("  Team ") == PlanTier.TEAM

    def test_tier_passthrough(self) -> None:
        assert resolve_tier(PlanTier.ENTERPRISE) == PlanTier.ENTERPRISE

    def test_get_plan_unknown_is_developer(self) -> None:
        assert get_plan("does-not-exist") is PLAN_TABLE[PlanTier.DEVELOPER]


# ---------------------------------------------------------------------------
# Plan table shape
# ---------------------------------------------------------------------------


class TestPlanTable:
    def test_every_tier_defined(self) -> None:
        assert set(PLAN_TABLE) == set(PlanTier)

    def test_list_plans_ascending(self) -> None:
        assert [p.tier for p in list_plans()] == list(TIER_ORDER)

    def test_capabilities_are_cumulative(self) -> None:
        for lower, higher in zip(TIER_ORDER, TIER_ORDER[1:]):
            assert PLAN_TABLE[lower].capabilities <= PLAN_TABLE[higher].capabilities
            assert PLAN_TABLE[lower].template_categories <= PLAN_TABLE[higher].template_categories

    def test_numeric_caps_never_decrease(self) -> None:
        for name in LimitName:
            previous = -1
            for tier in TIER_ORDER:
                cap = PLAN_TABLE[tier].limit(name)
                if cap is None:
                    previous = None
                    continue
                assert previous is not None, f"{name.value} capped after an unlimited tier"
                assert cap >= previous
                previous = cap

    def test_enterprise_is_unlimited(self) -> None:
        plan = get_plan("enterprise")
        for name in LimitName:
            assert plan.limit(name) is None
        assert plan.seat_price_usd is None

    def test_developer_values(self) -> None:
        plan = get_plan("developer")
        assert plan.monthly_price_usd == Decimal("39")
        assert plan.limit(LimitName.PROVIDERS) == 1
        assert plan.sso_tier is None
        assert not plan.has(Capability.FILE_PORTAL)

    def test_startup_unlocks_portal_sso_and_analytics(self) -> None:
        plan = get_plan("startup")
        assert plan.has(Capability.FILE_PORTAL)
        assert plan.has(Capability.SSO)
        assert plan.has(Capability.USAGE_ANALYTICS)
        assert plan.limit(LimitName.BUILD_MINUTES) == 200

    def test_to_dict(self) -> None:
        data = get_plan("team").to_dict()
        assert data["id"] == "team"
        assert data["monthly_price_usd"] == 299.0
        assert data["limits"]["max_providers"] == 7
        assert data["template_categories"] == ["base", "provider", "advanced"]
        assert "webhooks" in data["capabilities"]


# ---------------------------------------------------------------------------
# Required tiers
# ---------------------------------------------------------------------------


class TestRequiredTier:
    @pytest.mark.parametrize(
        ("capability", "tier"),
        [
            (Capability.AI_BUILDER, PlanTier.DEVELOPER),
            (Capability.FILE_PORTAL, PlanTier.STARTUP),
            (Capability.MULTI_CLOUD_FAILOVER, PlanTier.TEAM),
            (Capability.PRIVATE_TEMPLATES, PlanTier.ENTERPRISE),
        ],
    )
    def test_capability(self, capability: Capability, tier: PlanTier) -> None:
        assert get_required_tier(capability) == tier

    def test_template_category(self) -> None:
        assert get_required_tier_for_template(TemplateCategory.BASE) == PlanTier.DEVELOPER
        assert get_required_tier_for_template(TemplateCategory.ADVANCED) == PlanTier.TEAM

    def test_next_tier(self) -> None:
        assert next_tier(PlanTier.DEVELOPER) == PlanTier.STARTUP
        assert next_tier(PlanTier.ENTERPRISE) is None
