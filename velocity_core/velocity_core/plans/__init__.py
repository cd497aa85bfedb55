"""DevVelocity plan table and entitlement checks.

Provides the single authoritative plan definition table and the pure
entitlement functions every request handler gates through.
"""

from velocity_core.plans.catalog import (
    Capability,
    LimitName,
    PlanDefinition,
    PlanTier,
    TemplateCategory,
    get_plan,
    list_plans,
    resolve_tier,
)
from velocity_core.plans.entitlements import (
    EntitlementDecision,
    EntitlementRequest,
    check_capability,
    check_entitlements,
    check_limit,
    check_template_category,
)

__all__ = [
    "Capability",
    "EntitlementDecision",
    "EntitlementRequest",
    "LimitName",
    "PlanDefinition",
    "PlanTier",
    "TemplateCategory",
    "check_capability",
    "check_entitlements",
    "check_limit",
    "check_template_category",
    "get_plan",
    "list_plans",
    "resolve_tier",
]
