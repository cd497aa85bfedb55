"""Stripe billing integration and provider-neutral billing views.

Provides Stripe checkout creation, in-place tier changes and
cancellation, webhook event processing, invoice retrieval, and the
billing summary shown on the dashboard.  Plan changes from either
payment provider are written through :func:`apply_subscription_change`
so both providers record them the same way.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.billing.cycle import default_usage_window
from velocity_core.billing.seats import compute_seat_overage, seat_terms
from velocity_core.errors import NotFoundError, PaymentProviderError
from velocity_core.metering.aggregator import compute_usage_overage
from velocity_core.plans.catalog import PlanTier, get_plan, resolve_tier
from velocity_core.state.database import set_org_context
from velocity_core.state.repository import BillingEventRepository, OrganizationRepository, UsageLogRepository
from velocity_core.state.tables import BillingEventTable, OrganizationTable

from velocity_api.config import APISettings
from velocity_api.services.email_service import EmailService

logger = logging.getLogger(__name__)

# Stripe subscription statuses that no longer grant a paid plan.
_INACTIVE_STRIPE_STATUSES: frozenset[str] = frozenset({"canceled", "unpaid", "incomplete_expired"})
# Adds the Lemon Squeezy terminal status.
_ENDED_STATUSES: frozenset[str] = _INACTIVE_STRIPE_STATUSES | {"expired"}


def _cents_to_decimal(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / Decimal(100)).quantize(Decimal("0.01"))


def _iso_from_epoch(epoch: int | None) -> str | None:
    return datetime.fromtimestamp(epoch, tz=UTC).isoformat() if epoch else None


def billing_event_to_dict(row: BillingEventTable) -> dict[str, Any]:
    return {
        "id": row.id,
        "event_type": row.event_type,
        "amount": str(row.amount),
        "currency": row.currency,
        "provider": row.provider,
        "details": row.details or {},
        "created_at": row.created_at.isoformat() if row.created_at else None,
    }


async def apply_subscription_change(
    session: AsyncSession,
    org: OrganizationTable,
    tier: PlanTier,
    *,
    provider: str,
    status: str | None,
    customer_id: str | None = None,
    subscription_id: str | None = None,
    source_event: str,
) -> None:
    """Persist a plan change and append a ``subscription_change`` event.

    The session must not carry another organization's RLS context; the
    organization context is bound here before the org-scoped insert.
    """
    previous = org.plan_id
    await set_org_context(session, org.id)
    await OrganizationRepository(session).set_plan(
        org.id,
        tier.value,
        provider=provider,
        subscription_status=status,
        customer_id=customer_id,
        subscription_id=subscription_id,
    )
    await BillingEventRepository(session, org.id).append(
        "subscription_change",
        Decimal("0"),
        provider=provider,
        details={
            "from_plan": previous,
            "to_plan": tier.value,
            "status": status,
            "event": source_event,
            "subscription_id": subscription_id,
        },
    )
    logger.info(
        "Plan change for org %s: %s -> %s via %s (%s)",
        org.id,
        previous,
        tier.value,
        provider,
        source_event,
    )


def active_subscription_provider(org: OrganizationTable) -> str | None:
    """Return the provider holding the organization's live subscription.

    A subscription scheduled to cancel at period end is still live.
    """
    if org.subscription_status in _ENDED_STATUSES:
        return None
    if org.billing_provider == "stripe" and org.stripe_subscription_id:
        return "stripe"
    if org.billing_provider == "lemon" and org.lemon_subscription_id:
        return "lemon"
    return None


def check_tier_change(org: OrganizationTable, plan_id: str) -> PlanTier:
    """Validate a requested tier change for an existing subscription.

    Raises
    ------
    ValueError
        If the plan is unknown or the organization is already on it.
    """
    tier = PlanTier(plan_id)
    if tier is resolve_tier(org.plan_id):
        raise ValueError(f"Organization is already on the {tier.value} plan")
    return tier


async def record_cancellation(
    session: AsyncSession,
    org: OrganizationTable,
    *,
    provider: str,
    subscription_id: str,
    reason: str | None,
) -> dict[str, Any]:
    """Mark the subscription ``cancelling`` and log the request.

    The plan is kept until the provider reports the subscription ended.
    """
    await set_org_context(session, org.id)
    await OrganizationRepository(session).set_subscription_status(org.id, "cancelling")
    await BillingEventRepository(session, org.id).append(
        "subscription_cancel_requested",
        Decimal("0"),
        provider=provider,
        details={"plan": org.plan_id, "subscription_id": subscription_id, "reason": reason or "No reason provided"},
    )
    logger.info("Cancellation requested for org %s (%s subscription %s)", org.id, provider, subscription_id)
    return {
        "org_id": org.id,
        "provider": provider,
        "plan": org.plan_id,
        "status": "cancelling",
        "message": "Subscription will cancel at the end of the billing period.",
    }


class BillingService:
    """Stripe billing operations and billing views.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings containing Stripe configuration.
    """

    def __init__(self, session: AsyncSession, settings: APISettings) -> None:
        self._session = session
        self._settings = settings
        self._org_repo = OrganizationRepository(session)

    def _get_stripe(self) -> Any:
        """Lazily import and configure the Stripe library."""
        import stripe

        stripe.api_key = self._settings.stripe_secret_key.get_secret_value()
        return stripe

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    async def create_checkout_session(
        self,
        org: OrganizationTable,
        plan_id: str,
        *,
        customer_email: str | None = None,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> dict[str, Any]:
        """Create a Stripe Checkout session for a plan subscription.

        Enterprise is sold by contract, so it returns the sales contact
        URL instead of a checkout session.

        Returns
        -------
        dict
            ``url`` to redirect the customer to, plus ``provider`` and
            ``plan``; ``contact_sales`` is ``True`` for enterprise.
        """
        tier = PlanTier(plan_id)
        if tier is PlanTier.ENTERPRISE:
            return {"url": self._settings.sales_contact_url, "provider": "stripe", "plan": tier.value, "contact_sales": True}

        price_id = self._settings.stripe_price_id(tier)
        if not price_id:
            raise ValueError(f"No Stripe price configured for plan '{tier.value}'")

        base = self._settings.app_base_url.rstrip("/")
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": success_url or f"{base}/dashboard/billing?checkout=success",
            "cancel_url": cancel_url or f"{base}/dashboard/billing?checkout=cancelled",
            "client_reference_id": org.id,
            "metadata": {"org_id": org.id, "plan_id": tier.value},
            "subscription_data": {"metadata": {"org_id": org.id, "plan_id": tier.value}},
        }
        if org.stripe_customer_id:
            params["customer"] = org.stripe_customer_id
        elif customer_email:
            params["customer_email"] = customer_email

        stripe = self._get_stripe()
        try:
            checkout = stripe.checkout.Session.create(**params)
        except stripe.StripeError as exc:
            raise PaymentProviderError("stripe", str(exc)) from exc

        logger.info("Created Stripe checkout for org %s plan %s", org.id, tier.value)
        return {"url": checkout["url"], "provider": "stripe", "plan": tier.value, "contact_sales": False}

    # ------------------------------------------------------------------
    # Subscription changes
    # ------------------------------------------------------------------

    def _require_subscription(self, org: OrganizationTable) -> str:
        if not org.stripe_subscription_id:
            raise ValueError("No Stripe subscription found for this organization")
        return org.stripe_subscription_id

    async def change_tier(self, org: OrganizationTable, plan_id: str) -> dict[str, Any]:
        """Swap the price on the live Stripe subscription in place.

        The difference is prorated and invoiced immediately, and a pending
        cancellation is withdrawn.  Enterprise returns the sales contact
        URL without touching the subscription.

        Raises
        ------
        ValueError
            If there is no subscription, no price for the plan, or the
            organization is already on it.
        PaymentProviderError
            If Stripe rejects the update.
        """
        subscription_id = self._require_subscription(org)
        tier = check_tier_change(org, plan_id)
        if tier is PlanTier.ENTERPRISE:
            return {
                "org_id": org.id,
                "provider": "stripe",
                "plan": tier.value,
                "contact_sales": True,
                "url": self._settings.sales_contact_url,
            }
        price_id = self._settings.stripe_price_id(tier)
        if not price_id:
            raise ValueError(f"No Stripe price configured for plan '{tier.value}'")

        stripe = self._get_stripe()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            item_id = subscription["items"]["data"][0]["id"]
            stripe.Subscription.modify(
                subscription_id,
                items=[{"id": item_id, "price": price_id}],
                proration_behavior="always_invoice",
                cancel_at_period_end=False,
                metadata={"org_id": org.id, "plan_id": tier.value},
            )
        except stripe.StripeError as exc:
            raise PaymentProviderError("stripe", str(exc)) from exc

        previous = org.plan_id
        await apply_subscription_change(
            self._session,
            org,
            tier,
            provider="stripe",
            status="active",
            subscription_id=subscription_id,
            source_event="tier_change",
        )
        return {
            "org_id": org.id,
            "provider": "stripe",
            "plan": tier.value,
            "previous_plan": previous,
            "status": "active",
            "contact_sales": False,
        }

    async def cancel_subscription(self, org: OrganizationTable, reason: str | None = None) -> dict[str, Any]:
        """Schedule the Stripe subscription to cancel at period end."""
        subscription_id = self._require_subscription(org)
        stripe = self._get_stripe()
        try:
            stripe.Subscription.modify(subscription_id, cancel_at_period_end=True)
        except stripe.StripeError as exc:
            raise PaymentProviderError("stripe", str(exc)) from exc
        return await record_cancellation(
            self._session, org, provider="stripe", subscription_id=subscription_id, reason=reason
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, sig_header: str) -> None:
        """Verify the ``stripe-signature`` header against the raw body.

        Raises
        ------
        ValueError
            If the payload is not valid JSON.
        stripe.SignatureVerificationError
            If the signature does not match.
        """
        stripe = self._get_stripe()
        stripe.Webhook.construct_event(
            payload=payload,
            sig_header=sig_header,
            secret=self._settings.stripe_webhook_secret.get_secret_value(),
        )

    async def _resolve_org(self, data_object: dict[str, Any]) -> OrganizationTable | None:
        metadata = data_object.get("metadata") or {}
        org_id = metadata.get("org_id") or data_object.get("client_reference_id")
        if org_id:
            org = await self._org_repo.get(org_id)
            if org is not None:
                return org
        customer_id = data_object.get("customer")
        if customer_id:
            return await self._org_repo.get_by_provider_customer("stripe", customer_id)
        return None

    def _tier_from_subscription(self, subscription: dict[str, Any]) -> PlanTier:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            price_id = (items[0].get("price") or {}).get("id", "")
            tier = self._settings.tier_for_stripe_price(price_id)
            if tier is not None:
                return tier
        return resolve_tier((subscription.get("metadata") or {}).get("plan_id"))

    async def handle_webhook_event(self, event: dict[str, Any]) -> dict[str, Any]:
        """Process a verified Stripe webhook event.

        Supported events:

        - ``checkout.session.completed``
        - ``customer.subscription.created`` / ``updated`` / ``deleted``
        - ``invoice.payment_succeeded``

        Returns
        -------
        dict
            ``{"status": "processed" | "ignored", ...}``.
        """
        event_type = event.get("type", "")
        data_object = (event.get("data") or {}).get("object") or {}

        handled = {
            "checkout.session.completed",
            "customer.subscription.created",
            "customer.subscription.updated",
            "customer.subscription.deleted",
            "invoice.payment_succeeded",
        }
        if event_type not in handled:
            logger.debug("Unhandled Stripe event type: %s", event_type)
            return {"status": "ignored", "event_type": event_type}

        org = await self._resolve_org(data_object)
        if org is None:
            logger.warning(
                "Stripe event %s has no resolvable organization (customer=%s); skipping",
                event_type,
                data_object.get("customer"),
            )
            return {"status": "ignored", "event_type": event_type, "reason": "unknown_organization"}

        if event_type == "checkout.session.completed":
            tier = resolve_tier((data_object.get("metadata") or {}).get("plan_id"))
            await apply_subscription_change(
                self._session,
                org,
                tier,
                provider="stripe",
                status="active",
                customer_id=data_object.get("customer"),
                subscription_id=data_object.get("subscription"),
                source_event=event_type,
            )
        elif event_type == "customer.subscription.deleted":
            await apply_subscription_change(
                self._session,
                org,
                PlanTier.DEVELOPER,
                provider="stripe",
                status="canceled",
                customer_id=data_object.get("customer"),
                source_event=event_type,
            )
        elif event_type.startswith("customer.subscription."):
            status = data_object.get("status")
            tier = PlanTier.DEVELOPER if status in _INACTIVE_STRIPE_STATUSES else self._tier_from_subscription(data_object)
            await apply_subscription_change(
                self._session,
                org,
                tier,
                provider="stripe",
                status=status,
                customer_id=data_object.get("customer"),
                subscription_id=data_object.get("id"),
                source_event=event_type,
            )
        else:
            await self._record_invoice_paid(org, data_object)

        return {"status": "processed", "event_type": event_type, "org_id": org.id}

    async def _record_invoice_paid(self, org: OrganizationTable, invoice: dict[str, Any]) -> None:
        amount = _cents_to_decimal(invoice.get("amount_paid"))
        currency = (invoice.get("currency") or "usd").upper()
        await set_org_context(self._session, org.id)
        await BillingEventRepository(self._session, org.id).append(
            "invoice_paid",
            amount,
            provider="stripe",
            currency=currency,
            details={
                "invoice_id": invoice.get("id"),
                "number": invoice.get("number"),
                "hosted_invoice_url": invoice.get("hosted_invoice_url"),
            },
        )
        logger.info("Invoice paid: %s for org %s (%s %s)", invoice.get("id"), org.id, amount, currency)
        email = invoice.get("customer_email")
        if email:
            await EmailService(self._settings).send_receipt(email, plan=org.plan_id, amount=amount, currency=currency)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    @staticmethod
    def _normalise_invoice(invoice: Any) -> dict[str, Any]:
        return {
            "id": invoice["id"],
            "provider": "stripe",
            "number": invoice.get("number"),
            "status": invoice.get("status"),
            "amount_due": str(_cents_to_decimal(invoice.get("amount_due"))),
            "amount_paid": str(_cents_to_decimal(invoice.get("amount_paid"))),
            "currency": (invoice.get("currency") or "usd").upper(),
            "created_at": _iso_from_epoch(invoice.get("created")),
            "url": invoice.get("hosted_invoice_url"),
            "pdf_url": invoice.get("invoice_pdf"),
        }

    async def list_invoices(self, org: OrganizationTable, *, limit: int = 24) -> list[dict[str, Any]]:
        """List the organization's Stripe invoices, newest first."""
        if not org.stripe_customer_id:
            return []
        stripe = self._get_stripe()
        try:
            result = stripe.Invoice.list(customer=org.stripe_customer_id, limit=limit)
        except stripe.StripeError as exc:
            raise PaymentProviderError("stripe", str(exc)) from exc
        return [self._normalise_invoice(inv) for inv in result["data"]]

    async def get_invoice(self, org: OrganizationTable, invoice_id: str) -> dict[str, Any]:
        """Retrieve one Stripe invoice belonging to the organization.

        Raises
        ------
        NotFoundError
            If the invoice does not exist or belongs to another customer.
        """
        stripe = self._get_stripe()
        try:
            invoice = stripe.Invoice.retrieve(invoice_id)
        except stripe.InvalidRequestError as exc:
            raise NotFoundError("Invoice", invoice_id) from exc
        except stripe.StripeError as exc:
            raise PaymentProviderError("stripe", str(exc)) from exc
        if not org.stripe_customer_id or invoice.get("customer") != org.stripe_customer_id:
            raise NotFoundError("Invoice", invoice_id)
        return self._normalise_invoice(invoice)

    # ------------------------------------------------------------------
    # Summary
    # ------------------------------------------------------------------

    async def summary(self, org: OrganizationTable) -> dict[str, Any]:
        """Return the plan, seat and usage-overage position for the cycle.

        Combines the static plan price, projected seat overage, projected
        usage overage and the amount already pending from batch jobs.
        """
        plan = get_plan(org.plan_id)
        since = default_usage_window(org.cycle_start)
        totals = await UsageLogRepository(self._session, org.id).sum_window(since=since)
        overage_lines = compute_usage_overage(totals, org.plan_id)
        usage_overage = sum((line.amount for line in overage_lines), Decimal("0"))

        included, price = seat_terms(org.plan_id, custom_seats=org.custom_seats, custom_seat_price=org.custom_seat_price)
        seats = compute_seat_overage(org.seat_count, included, price)

        events = BillingEventRepository(self._session, org.id)
        billed_this_cycle = await events.sum_since(since)

        projected = plan.monthly_price_usd + seats.amount + usage_overage
        return {
            "org_id": org.id,
            "plan": plan.tier.value,
            "plan_name": plan.name,
            "billing_provider": org.billing_provider,
            "subscription_status": org.subscription_status,
            "cycle_start": org.cycle_start.isoformat() if org.cycle_start else None,
            "cycle_end": org.cycle_end.isoformat() if org.cycle_end else None,
            "base_price": str(plan.monthly_price_usd),
            "seats": seats.to_dict(),
            "usage_overage": [line.to_dict() for line in overage_lines],
            "usage_overage_amount": str(usage_overage),
            "pending_overage_amount": str(org.pending_overage_amount),
            "billed_this_cycle": str(billed_this_cycle),
            "projected_total": str(projected),
        }

    async def seats(self, org: OrganizationTable) -> dict[str, Any]:
        included, price = seat_terms(org.plan_id, custom_seats=org.custom_seats, custom_seat_price=org.custom_seat_price)
        return {"org_id": org.id, "plan": resolve_tier(org.plan_id).value, **compute_seat_overage(org.seat_count, included, price).to_dict()}

    async def list_events(
        self,
        org: OrganizationTable,
        *,
        event_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows, total = await BillingEventRepository(self._session, org.id).list_events(
            event_type=event_type, limit=limit, offset=offset
        )
        return {"events": [billing_event_to_dict(r) for r in rows], "total": total, "limit": limit, "offset": offset}

    async def get_internal_invoice(self, org: OrganizationTable, event_id: str) -> dict[str, Any]:
        """Render an internally recorded billing event as an invoice line."""
        row = await BillingEventRepository(self._session, org.id).get(event_id)
        if row is None:
            raise NotFoundError("Invoice", event_id)
        data = billing_event_to_dict(row)
        data["provider"] = "internal"
        data["source_provider"] = row.provider
        return data
