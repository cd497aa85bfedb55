"""Tests for plan entitlement decisions."""

from __future__ import annotations

import pytest
from velocity_core.plans.catalog import Capability, LimitName, PlanTier, TemplateCategory
from velocity_core.plans.entitlements import (
    EntitlementRequest,
    check,
    check_capability,
    check_entitlements,
    check_limit,
    check_template_category,
    required_tier_for_limit,
)


class TestCapabilityChecks:
    def test_allowed(self) -> None:
        decision = check_capability("startup", Capability.FILE_PORTAL)
        assert decision.allowed
        assert not decision.upgrade_required
        assert decision.next_tier is None

    def test_denied_names_required_and_next_tier(self) -> None:
        decision = check_capability("developer", Capability.FILE_PORTAL)
        assert not decision.allowed
        assert decision.upgrade_required
        assert decision.required_tier == PlanTier.STARTUP
        assert decision.next_tier == PlanTier.STARTUP
        assert "Upgrade to startup" in decision.reason

    def test_suggests_required_tier_when_it_skips_a_level(self) -> None:
        decision = check_capability("startup", Capability.PRIVATE_TEMPLATES)
        assert decision.required_tier == PlanTier.ENTERPRISE
        assert decision.next_tier == PlanTier.ENTERPRISE

    @pytest.mark.parametrize("plan_id", [None, "", "gold", "DEVELOPERS"])
    def test_unknown_plan_behaves_like_developer(self, plan_id) -> None:
        for capability in Capability:
            assert check_capability(plan_id, capability) == check_capability("developer", capability)
        for limit in LimitName:
            assert check_limit(plan_id, limit, 3) == check_limit("developer", limit, 3)

    def test_to_dict(self) -> None:
        data = check_capability("developer", Capability.SSO).to_dict()
        assert data["allowed"] is False
        assert data["upgrade_required"] is True
        assert data["plan"] == "developer"
        assert data["required_plan"] == "startup"
        assert data["next_plan"] == "startup"


class TestLimitChecks:
    def test_at_cap_is_allowed(self) -> None:
        decision = check_limit("developer", LimitName.PROVIDERS, 1)
        assert decision.allowed
        assert decision.limit == 1

    def test_over_cap_denied(self) -> None:
        decision = check_limit("developer", LimitName.PROVIDERS, 2)
        assert not decision.allowed
        assert decision.limit == 1
        assert decision.required_tier == PlanTier.STARTUP

    def test_required_tier_tracks_quantity(self) -> None:
        decision = check_limit("developer", LimitName.PROVIDERS, 5)
        assert decision.required_tier == PlanTier.TEAM
        assert decision.next_tier == PlanTier.TEAM
        assert required_tier_for_limit(LimitName.PROVIDERS, 8) == PlanTier.ENTERPRISE

    def test_unlimited(self) -> None:
        decision = check_limit("enterprise", LimitName.BUILD_MINUTES, 10**9)
        assert decision.allowed
        assert decision.limit is None

    def test_negative_quantity_rejected(self) -> None:
        with pytest.raises(ValueError):
            check_limit("team", LimitName.SEATS, -1)


class TestTemplateChecks:
    def test_allowed_category(self) -> None:
        assert check_template_category("startup", TemplateCategory.PROVIDER).allowed

    def test_locked_category(self) -> None:
        decision = check_template_category("startup", TemplateCategory.ADVANCED)
        assert not decision.allowed
        assert decision.capability == "templates:advanced"
        assert decision.required_tier == PlanTier.TEAM


class TestCombinedChecks:
    def test_dispatch(self) -> None:
        assert check("team", EntitlementRequest(capability=Capability.WEBHOOKS)).allowed
        assert not check("team", EntitlementRequest(limit=LimitName.PROVIDERS, quantity=8)).allowed
        assert check("team", EntitlementRequest(template_category=TemplateCategory.ADVANCED)).allowed

    def test_empty_request_rejected(self) -> None:
        with pytest.raises(ValueError):
            check("team", EntitlementRequest())

    def test_first_denial_wins(self) -> None:
        decision = check_entitlements(
            "startup",
            [
                EntitlementRequest(capability=Capability.AI_BUILDER),
                EntitlementRequest(capability=Capability.WEBHOOKS),
                EntitlementRequest(limit=LimitName.PROVIDERS, quantity=10),
            ],
        )
        assert not decision.allowed
        assert decision.capability == "webhooks"

    def test_all_pass(self) -> None:
        decision = check_entitlements(
            "startup",
            [
                EntitlementRequest(capability=Capability.AI_BUILDER),
                EntitlementRequest(capability=Capability.FILE_PORTAL),
            ],
        )
        assert decision.allowed
        assert decision.capability == "ai_builder,file_portal"
