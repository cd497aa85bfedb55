"""Entitlement checks over the static plan table.

Every function here is pure: it takes a plan identifier as stored on an
organization and returns an :class:`EntitlementDecision`.  Unknown plan
identifiers are evaluated as ``developer`` (see
:func:`~velocity_core.plans.catalog.resolve_tier`), so a corrupt or
missing plan never unlocks anything.

A request that touches several capabilities must pass every one of
them; :func:`check_entitlements` evaluates each independently and
reports the first denial.
"""

from __future__ import annotations

from dataclasses import dataclass

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
    next_tier,
)


@dataclass(frozen=True)
class EntitlementRequest:
    """A single capability, numeric limit, or template category to check.

    Exactly one of ``capability``, ``limit`` or ``template_category`` is
    set.  ``quantity`` accompanies ``limit``.
    """

    capability: Capability | None = None
    limit: LimitName | None = None
    quantity: int = 0
    template_category: TemplateCategory | None = None

    @property
    def name(self) -> str:
        if self.capability is not None:
            return self.capability.value
        if self.limit is not None:
            return self.limit.value
        if self.template_category is not None:
            return f"templates:{self.template_category.value}"
        return "unknown"


@dataclass(frozen=True)
class EntitlementDecision:
    """Outcome of an entitlement check.

    Attributes
    ----------
    allowed:
        Whether the plan permits the request.
    plan:
        The tier the check was evaluated against.
    capability:
        Name of the capability, limit, or template category checked.
    required_tier:
        Lowest tier that would permit the request (``None`` when even
        enterprise would not, which cannot happen for the static table).
    next_tier:
        The tier to suggest on denial.  ``None`` when allowed or when the
        plan is already the top tier.
    limit:
        The numeric cap consulted, for limit checks.
    reason:
        Human-readable explanation suitable for API responses.
    """

    allowed: bool
    plan: PlanTier
    capability: str
    required_tier: PlanTier | None = None
    next_tier: PlanTier | None = None
    limit: int | None = None
    reason: str = ""

    @property
    def upgrade_required(self) -> bool:
        return not self.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "plan": self.plan.value,
            "capability": self.capability,
            "required_plan": self.required_tier.value if self.required_tier else None,
            "next_plan": self.next_tier.value if self.next_tier else None,
            "limit": self.limit,
            "upgrade_required": self.upgrade_required,
            "reason": self.reason,
        }


def _allow(tier: PlanTier, name: str, *, limit: int | None = None) -> EntitlementDecision:
    return EntitlementDecision(allowed=True, plan=tier, capability=name, required_tier=tier, limit=limit)


def _suggest(current: PlanTier, required: PlanTier | None) -> PlanTier | None:
    """Suggest the required tier when known, else the next one up."""
    if required is not None and TIER_ORDER.index(required) > TIER_ORDER.index(current):
        return required
    return next_tier(current)


def check_capability(plan_id: str | PlanTier | None, capability: Capability) -> EntitlementDecision:
    """Check whether *plan_id* unlocks a boolean capability.

    Parameters
    ----------
    plan_id:
        The organization's stored plan identifier.
    capability:
        The capability being exercised.

    Returns
    -------
    EntitlementDecision
        Allow, or deny with the tier that unlocks the capability.
    """
    plan = get_plan(plan_id)
    if plan.has(capability):
        return _allow(plan.tier, capability.value)
    required = get_required_tier(capability)
    return EntitlementDecision(
        allowed=False,
        plan=plan.tier,
        capability=capability.value,
        required_tier=required,
        next_tier=_suggest(plan.tier, required),
        reason=(
            f"The {plan.name} plan does not include {capability.value.replace('_', ' ')}. "
            f"Upgrade to {required.value} to unlock it."
        ),
    )


def required_tier_for_limit(limit: LimitName, quantity: int) -> PlanTier | None:
    """Return the lowest tier whose cap for *limit* admits *quantity*."""
    for tier in TIER_ORDER:
        cap = PLAN_TABLE[tier].limit(limit)
        if cap is None or quantity <= cap:
            return tier
    return None


def check_limit(plan_id: str | PlanTier | None, limit: LimitName, quantity: int) -> EntitlementDecision:
    """Check a numeric quantity against the plan's cap.

    The request is allowed when the cap is unlimited (``None``) or when
    ``quantity <= cap``.

    Parameters
    ----------
    plan_id:
        The organization's stored plan identifier.
    limit:
        Which cap to consult.
    quantity:
        The requested or observed amount (providers selected, seats in
        use, build minutes consumed).
    """
    if quantity < 0:
        raise ValueError(f"quantity for {limit.value} must be non-negative, got {quantity}")
    plan = get_plan(plan_id)
    cap = plan.limit(limit)
    if cap is None or quantity <= cap:
        return _allow(plan.tier, limit.value, limit=cap)
    required = required_tier_for_limit(limit, quantity)
    return EntitlementDecision(
        allowed=False,
        plan=plan.tier,
        capability=limit.value,
        required_tier=required,
        next_tier=_suggest(plan.tier, required),
        limit=cap,
        reason=(
            f"The {plan.name} plan allows {cap} {limit.value.replace('_', ' ')} "
            f"({quantity} requested). Upgrade your plan for a higher limit."
        ),
    )


def check_template_category(
    plan_id: str | PlanTier | None, category: TemplateCategory
) -> EntitlementDecision:
    """Check whether the plan's template library includes *category*."""
    plan = get_plan(plan_id)
    name = f"templates:{category.value}"
    if category in plan.template_categories:
        return _allow(plan.tier, name)
    required = get_required_tier_for_template(category)
    return EntitlementDecision(
        allowed=False,
        plan=plan.tier,
        capability=name,
        required_tier=required,
        next_tier=_suggest(plan.tier, required),
        reason=f"{category.value.title()} templates require the {required.value} plan.",
    )


def check(plan_id: str | PlanTier | None, request: EntitlementRequest) -> EntitlementDecision:
    """Dispatch a single :class:`EntitlementRequest` to the matching check."""
    if request.capability is not None:
        return check_capability(plan_id, request.capability)
    if request.limit is not None:
        return check_limit(plan_id, request.limit, request.quantity)
    if request.template_category is not None:
        return check_template_category(plan_id, request.template_category)
    raise ValueError("EntitlementRequest must name a capability, limit, or template category")


def check_entitlements(
    plan_id: str | PlanTier | None, requests: list[EntitlementRequest]
) -> EntitlementDecision:
    """Check several requests; all of them must pass.

    Returns
    -------
    EntitlementDecision
        The first denial in request order, or an allow decision naming
        every request checked.
    """
    tier = get_plan(plan_id).tier
    for request in requests:
        decision = check(plan_id, request)
        if not decision.allowed:
            return decision
    return _allow(tier, ",".join(r.name for r in requests))
