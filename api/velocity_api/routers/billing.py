"""Billing endpoints: checkout, summary, events, invoices, seats and batch jobs.

Checkout, tier changes and cancellation require the ADMIN role.  Billing
history and invoices need the ``billing_history`` capability.  Cycle
resets and overage jobs are triggered by the external scheduler and
authenticate with ``x-admin-secret`` instead of a user token.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.plans.catalog import Capability
from velocity_core.plans.entitlements import EntitlementDecision
from velocity_core.state.tables import OrganizationTable

from velocity_api.config import APISettings
from velocity_api.dependencies import (
    AdminDep,
    CurrentOrgDep,
    LemonDep,
    SessionDep,
    SettingsDep,
    get_session_factory,
    require_capability,
)
from velocity_api.middleware.rbac import Role, require_role
from velocity_api.schemas import (
    BatchSummaryResponse,
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    CheckoutRequest,
    CheckoutResponse,
    CycleResetRequest,
    InvoiceListResponse,
    InvoiceResponse,
    TierChangeRequest,
    TierChangeResponse,
)
from velocity_api.services.billing_jobs import BillingJobsService
from velocity_api.services.billing_service import BillingService, active_subscription_provider
from velocity_api.services.email_service import EmailService
from velocity_api.services.lemon_service import LemonBillingService, LemonSqueezyClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


def _subscription_service(
    provider: str | None,
    session: AsyncSession,
    settings: APISettings,
    lemon: LemonSqueezyClient,
) -> BillingService | LemonBillingService:
    if provider == "stripe":
        return BillingService(session, settings)
    if provider == "lemon":
        return LemonBillingService(session, settings, lemon)
    raise ValueError("Organization has no paid subscription")


async def _checkout_existing(
    org: OrganizationTable,
    body: CheckoutRequest,
    session: AsyncSession,
    settings: APISettings,
    lemon: LemonSqueezyClient,
) -> dict[str, Any] | None:
    """Change the live subscription in place instead of opening a second one."""
    provider = active_subscription_provider(org)
    if provider is None:
        return None
    result = await _subscription_service(provider, session, settings, lemon).change_tier(org, body.plan_id)
    if result["contact_sales"]:
        return {"url": result["url"], "provider": provider, "plan": result["plan"], "contact_sales": True}
    base = settings.app_base_url.rstrip("/")
    return {
        "url": body.success_url or f"{base}/dashboard/billing?plan=updated",
        "provider": provider,
        "plan": result["plan"],
        "contact_sales": False,
        "updated_in_place": True,
    }


@router.post("/checkout/stripe", response_model=CheckoutResponse)
async def checkout_stripe(
    body: CheckoutRequest,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Create a Stripe Checkout session for a plan subscription.

    Enterprise returns the sales contact URL instead.  An organization
    with a live subscription has it changed in place.
    """
    existing = await _checkout_existing(org, body, session, settings, lemon)
    if existing is not None:
        return existing
    service = BillingService(session, settings)
    return await service.create_checkout_session(
        org,
        body.plan_id,
        customer_email=getattr(request.state, "email", None),
        success_url=body.success_url,
        cancel_url=body.cancel_url,
    )


@router.post("/checkout/lemon", response_model=CheckoutResponse)
async def checkout_lemon(
    body: CheckoutRequest,
    request: Request,
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Create a Lemon Squeezy checkout for a plan subscription."""
    existing = await _checkout_existing(org, body, session, settings, lemon)
    if existing is not None:
        return existing
    service = LemonBillingService(session, settings, lemon)
    return await service.create_checkout(
        org,
        body.plan_id,
        customer_email=getattr(request.state, "email", None),
        redirect_url=body.success_url,
    )


# ---------------------------------------------------------------------------
# Subscription changes
# ---------------------------------------------------------------------------


@router.post("/subscription/tier", response_model=TierChangeResponse)
async def change_tier(
    body: TierChangeRequest,
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Upgrade or downgrade the live subscription with proration."""
    service = _subscription_service(active_subscription_provider(org), session, settings, lemon)
    return await service.change_tier(org, body.plan_id)


@router.post("/cancel", response_model=CancelSubscriptionResponse)
async def cancel_subscription(
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    body: CancelSubscriptionRequest | None = None,
    _role: Role = Depends(require_role(Role.ADMIN)),
) -> dict[str, Any]:
    """Cancel at the end of the billing period.  The plan stays until then."""
    service = _subscription_service(active_subscription_provider(org), session, settings, lemon)
    return await service.cancel_subscription(org, body.reason if body is not None else None)


# ---------------------------------------------------------------------------
# Views
# ---------------------------------------------------------------------------


@router.get("/summary")
async def billing_summary(session: SessionDep, settings: SettingsDep, org: CurrentOrgDep) -> dict[str, Any]:
    """Return the plan price, seat and usage overage projection for the cycle."""
    return await BillingService(session, settings).summary(org)


@router.get("/seats")
async def billing_seats(session: SessionDep, settings: SettingsDep, org: CurrentOrgDep) -> dict[str, Any]:
    """Return included seats, active seats and the projected seat charge."""
    return await BillingService(session, settings).seats(org)


@router.get("/events")
async def billing_events(
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    event_type: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    _gate: EntitlementDecision = Depends(require_capability(Capability.BILLING_HISTORY)),
) -> dict[str, Any]:
    """List recorded billing events, newest first."""
    return await BillingService(session, settings).list_events(
        org, event_type=event_type, limit=limit, offset=offset
    )


@router.get("/invoices", response_model=InvoiceListResponse)
async def list_invoices(
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    _gate: EntitlementDecision = Depends(require_capability(Capability.BILLING_HISTORY)),
) -> dict[str, Any]:
    """List invoices from the organization's payment provider."""
    if org.billing_provider == "lemon":
        invoices = await LemonBillingService(session, settings, lemon).list_invoices(org)
    elif org.billing_provider == "stripe":
        invoices = await BillingService(session, settings).list_invoices(org)
    else:
        invoices = []
    return {"invoices": invoices, "provider": org.billing_provider}


@router.get("/invoices/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    session: SessionDep,
    settings: SettingsDep,
    org: CurrentOrgDep,
    lemon: LemonDep,
    provider: Literal["stripe", "lemon", "internal"] = Query(default="stripe"),
    _gate: EntitlementDecision = Depends(require_capability(Capability.BILLING_HISTORY)),
) -> dict[str, Any]:
    """Return one invoice.  Invoices of other organizations are a 404."""
    if provider == "lemon":
        return await LemonBillingService(session, settings, lemon).get_invoice(org, invoice_id)
    if provider == "internal":
        return await BillingService(session, settings).get_internal_invoice(org, invoice_id)
    return await BillingService(session, settings).get_invoice(org, invoice_id)


# ---------------------------------------------------------------------------
# Scheduled jobs (x-admin-secret)
# ---------------------------------------------------------------------------


@router.post("/cycle/reset")
async def reset_cycle(body: CycleResetRequest, _admin: AdminDep) -> dict[str, Any]:
    """Start a new billing cycle for one organization, or for all that are due."""
    jobs = BillingJobsService(get_session_factory())
    if body.org_id:
        window = await jobs.reset_cycle(body.org_id)
        return {"org_id": body.org_id, "cycle_start": window.start.isoformat(), "cycle_end": window.end.isoformat()}
    return (await jobs.reset_due_cycles()).to_dict()


@router.post("/jobs/seat-overage", response_model=BatchSummaryResponse)
async def run_seat_overage(_admin: AdminDep) -> dict[str, Any]:
    """Bill seats above each organization's included seats."""
    summary = await BillingJobsService(get_session_factory()).bill_seat_overages()
    return summary.to_dict()


@router.post("/jobs/usage-overage", response_model=BatchSummaryResponse)
async def run_usage_overage(_admin: AdminDep, settings: SettingsDep) -> dict[str, Any]:
    """Bill capped usage above each organization's plan limits and notify admins."""
    jobs = BillingJobsService(get_session_factory(), EmailService(settings))
    summary = await jobs.sync_usage_overages()
    return summary.to_dict()
