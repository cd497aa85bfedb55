"""Lemon Squeezy billing integration.

:class:`LemonSqueezyClient` is a thin async wrapper around the Lemon
Squeezy JSON:API.  :class:`LemonBillingService` creates checkouts,
changes or cancels the live subscription, processes verified webhooks
and reads subscription invoices for one organization.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy.ext.asyncio import AsyncSession
from velocity_core.errors import NotFoundError, PaymentProviderError
from velocity_core.plans.catalog import PlanTier, resolve_tier
from velocity_core.state.database import set_org_context
from velocity_core.state.repository import BillingEventRepository, OrganizationRepository
from velocity_core.state.tables import OrganizationTable

from velocity_api.config import APISettings
from velocity_api.services.billing_service import apply_subscription_change, check_tier_change, record_cancellation
from velocity_api.services.email_service import EmailService

logger = logging.getLogger(__name__)

_JSON_API = "application/vnd.api+json"

# Lemon Squeezy subscription statuses that no longer grant a paid plan.
_INACTIVE_LEMON_STATUSES: frozenset[str] = frozenset({"expired", "unpaid"})


def verify_lemon_signature(body: bytes, signature: str | None, secret: str) -> bool:
    """Check the ``x-signature`` header of a Lemon Squeezy webhook.

    The signature is the hex HMAC-SHA256 of the raw request body keyed
    with the webhook signing secret.  An unset secret rejects every
    delivery.
    """
    if not secret or not signature:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, signature)


class LemonSqueezyClient:
    """Async wrapper around the Lemon Squeezy REST API.

    Errors are raised as :class:`PaymentProviderError`; nothing is retried.

    Parameters
    ----------
    base_url:
        API root, normally ``https://api.lemonsqueezy.com/v1``.
    api_key:
        Lemon Squeezy API key sent as a bearer token.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(self, base_url: str, api_key: str, timeout: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        headers = {"Accept": _JSON_API, "Content-Type": _JSON_API}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(timeout),
            headers=headers,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Lemon Squeezy returned %d for %s %s: %s",
                exc.response.status_code,
                method,
                path,
                exc.response.text[:500],
            )
            if exc.response.status_code == 404:
                raise NotFoundError("Lemon Squeezy resource", path) from exc
            raise PaymentProviderError("lemon", f"HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            logger.warning("Lemon Squeezy request to %s failed: %s", path, str(exc))
            raise PaymentProviderError("lemon", str(exc)) from exc

    async def create_checkout(
        self,
        *,
        store_id: str,
        variant_id: str,
        custom_data: dict[str, Any],
        email: str | None = None,
        redirect_url: str | None = None,
    ) -> str:
        """Create a hosted checkout and return its URL."""
        checkout_data: dict[str, Any] = {"custom": custom_data}
        if email:
            checkout_data["email"] = email
        attributes: dict[str, Any] = {"checkout_data": checkout_data}
        if redirect_url:
            attributes["product_options"] = {"redirect_url": redirect_url}
        payload = {
            "data": {
                "type": "checkouts",
                "attributes": attributes,
                "relationships": {
                    "store": {"data": {"type": "stores", "id": str(store_id)}},
                    "variant": {"data": {"type": "variants", "id": str(variant_id)}},
                },
            }
        }
        body = await self._request("POST", "/checkouts", json=payload)
        return body["data"]["attributes"]["url"]

    async def update_subscription(self, subscription_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """PATCH subscription attributes, e.g. ``variant_id`` for a plan change."""
        payload = {"data": {"type": "subscriptions", "id": str(subscription_id), "attributes": attributes}}
        body = await self._request("PATCH", f"/subscriptions/{subscription_id}", json=payload)
        return body["data"]

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Cancel a subscription.  It stays active until the period ends."""
        body = await self._request("DELETE", f"/subscriptions/{subscription_id}")
        return body["data"]

    async def get_invoice(self, invoice_id: str) -> dict[str, Any]:
        body = await self._request("GET", f"/subscription-invoices/{invoice_id}")
        return body["data"]

    async def list_invoices(self, subscription_id: str) -> list[dict[str, Any]]:
        body = await self._request(
            "GET",
            "/subscription-invoices",
            params={"filter[subscription_id]": subscription_id},
        )
        return list(body.get("data") or [])


class LemonBillingService:
    """Lemon Squeezy checkout, webhook and invoice operations.

    Parameters
    ----------
    session:
        Active database session.
    settings:
        API settings with the Lemon Squeezy store and variant ids.
    client:
        Shared :class:`LemonSqueezyClient`.
    """

    def __init__(self, session: AsyncSession, settings: APISettings, client: LemonSqueezyClient) -> None:
        self._session = session
        self._settings = settings
        self._client = client
        self._org_repo = OrganizationRepository(session)

    async def create_checkout(
        self,
        org: OrganizationTable,
        plan_id: str,
        *,
        customer_email: str | None = None,
        redirect_url: str | None = None,
    ) -> dict[str, Any]:
        """Create a Lemon Squeezy checkout for *plan_id*.

        Enterprise returns the sales contact URL without calling Lemon
        Squeezy.

        Raises
        ------
        ValueError
            If no variant is configured for the plan.
        PaymentProviderError
            If Lemon Squeezy rejects the request.
        """
        tier = PlanTier(plan_id)
        if tier is PlanTier.ENTERPRISE:
            return {"url": self._settings.sales_contact_url, "provider": "lemon", "plan": tier.value, "contact_sales": True}

        variant_id = self._settings.lemon_variant_id(tier)
        if not variant_id or not self._settings.lemon_store_id:
            raise ValueError(f"No Lemon Squeezy variant configured for plan '{tier.value}'")

        base = self._settings.app_base_url.rstrip("/")
        url = await self._client.create_checkout(
            store_id=self._settings.lemon_store_id,
            variant_id=variant_id,
            custom_data={"org_id": org.id, "plan": tier.value},
            email=customer_email,
            redirect_url=redirect_url or f"{base}/dashboard/billing?checkout=success",
        )
        logger.info("Created Lemon Squeezy checkout for org %s plan %s", org.id, tier.value)
        return {"url": url, "provider": "lemon", "plan": tier.value, "contact_sales": False}

    # ------------------------------------------------------------------
    # Subscription changes
    # ------------------------------------------------------------------

    def _require_subscription(self, org: OrganizationTable) -> str:
        if not org.lemon_subscription_id:
            raise ValueError("No Lemon Squeezy subscription found for this organization")
        return org.lemon_subscription_id

    async def change_tier(self, org: OrganizationTable, plan_id: str) -> dict[str, Any]:
        """Move the live subscription to the plan's variant, invoicing now.

        Raises
        ------
        ValueError
            If there is no subscription, no variant for the plan, or the
            organization is already on it.
        """
        subscription_id = self._require_subscription(org)
        tier = check_tier_change(org, plan_id)
        if tier is PlanTier.ENTERPRISE:
            return {
                "org_id": org.id,
                "provider": "lemon",
                "plan": tier.value,
                "contact_sales": True,
                "url": self._settings.sales_contact_url,
            }
        variant_id = self._settings.lemon_variant_id(tier)
        if not variant_id.isdigit():
            raise ValueError(f"No Lemon Squeezy variant configured for plan '{tier.value}'")

        await self._client.update_subscription(
            subscription_id, {"variant_id": int(variant_id), "invoice_immediately": True}
        )
        previous = org.plan_id
        await apply_subscription_change(
            self._session,
            org,
            tier,
            provider="lemon",
            status="active",
            subscription_id=subscription_id,
            source_event="tier_change",
        )
        return {
            "org_id": org.id,
            "provider": "lemon",
            "plan": tier.value,
            "previous_plan": previous,
            "status": "active",
            "contact_sales": False,
        }

    async def cancel_subscription(self, org: OrganizationTable, reason: str | None = None) -> dict[str, Any]:
        """Cancel the Lemon Squeezy subscription at the end of its term."""
        subscription_id = self._require_subscription(org)
        await self._client.cancel_subscription(subscription_id)
        return await record_cancellation(
            self._session, org, provider="lemon", subscription_id=subscription_id, reason=reason
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    async def _resolve_org(self, payload: dict[str, Any]) -> OrganizationTable | None:
        custom = (payload.get("meta") or {}).get("custom_data") or {}
        org_id = custom.get("org_id")
        if org_id:
            org = await self._org_repo.get(str(org_id))
            if org is not None:
                return org
        customer_id = ((payload.get("data") or {}).get("attributes") or {}).get("customer_id")
        if customer_id is not None:
            return await self._org_repo.get_by_provider_customer("lemon", str(customer_id))
        return None

    async def handle_webhook_event(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Process a verified Lemon Squeezy webhook payload.

        Supported events: ``subscription_created``, ``subscription_updated``,
        ``subscription_expired`` and ``order_paid``.
        """
        meta = payload.get("meta") or {}
        event_name = meta.get("event_name", "")
        handled = {"subscription_created", "subscription_updated", "subscription_expired", "order_paid"}
        if event_name not in handled:
            logger.debug("Unhandled Lemon Squeezy event: %s", event_name)
            return {"status": "ignored", "event_type": event_name}

        org = await self._resolve_org(payload)
        if org is None:
            logger.warning("Lemon Squeezy event %s has no resolvable organization; skipping", event_name)
            return {"status": "ignored", "event_type": event_name, "reason": "unknown_organization"}

        data = payload.get("data") or {}
        attributes = data.get("attributes") or {}
        customer_id = attributes.get("customer_id")
        customer_id = str(customer_id) if customer_id is not None else None

        if event_name == "order_paid":
            await self._record_order_paid(org, data)
        elif event_name == "subscription_expired":
            await apply_subscription_change(
                self._session,
                org,
                PlanTier.DEVELOPER,
                provider="lemon",
                status="expired",
                customer_id=customer_id,
                subscription_id=str(data.get("id")) if data.get("id") else None,
                source_event=event_name,
            )
        else:
            status = attributes.get("status")
            if status in _INACTIVE_LEMON_STATUSES:
                tier = PlanTier.DEVELOPER
            else:
                tier = self._settings.tier_for_lemon_variant(str(attributes.get("variant_id") or "")) or resolve_tier(
                    (meta.get("custom_data") or {}).get("plan")
                )
            await apply_subscription_change(
                self._session,
                org,
                tier,
                provider="lemon",
                status=status,
                customer_id=customer_id,
                subscription_id=str(data.get("id")) if data.get("id") else None,
                source_event=event_name,
            )

        return {"status": "processed", "event_type": event_name, "org_id": org.id}

    async def _record_order_paid(self, org: OrganizationTable, data: dict[str, Any]) -> None:
        attributes = data.get("attributes") or {}
        amount = (Decimal(attributes.get("total") or 0) / Decimal(100)).quantize(Decimal("0.01"))
        currency = (attributes.get("currency") or "USD").upper()
        await set_org_context(self._session, org.id)
        await BillingEventRepository(self._session, org.id).append(
            "invoice_paid",
            amount,
            provider="lemon",
            currency=currency,
            details={"order_id": data.get("id"), "order_number": attributes.get("order_number")},
        )
        logger.info("Lemon Squeezy order paid for org %s (%s %s)", org.id, amount, currency)
        email = attributes.get("user_email")
        if email:
            await EmailService(self._settings).send_receipt(email, plan=org.plan_id, amount=amount, currency=currency)

    # ------------------------------------------------------------------
    # Invoices
    # ------------------------------------------------------------------

    @staticmethod
    def _normalise_invoice(invoice: dict[str, Any]) -> dict[str, Any]:
        attributes = invoice.get("attributes") or {}
        urls = attributes.get("urls") or {}
        total = (Decimal(attributes.get("total") or 0) / Decimal(100)).quantize(Decimal("0.01"))
        return {
            "id": str(invoice.get("id")),
            "provider": "lemon",
            "number": attributes.get("invoice_number"),
            "status": attributes.get("status"),
            "amount_due": str(total),
            "amount_paid": str(total) if attributes.get("status") == "paid" else "0.00",
            "currency": (attributes.get("currency") or "USD").upper(),
            "created_at": attributes.get("created_at"),
            "url": urls.get("invoice_url"),
            "pdf_url": urls.get("invoice_url"),
        }

    async def list_invoices(self, org: OrganizationTable) -> list[dict[str, Any]]:
        if not org.lemon_subscription_id:
            return []
        invoices = await self._client.list_invoices(org.lemon_subscription_id)
        return [self._normalise_invoice(inv) for inv in invoices]

    async def get_invoice(self, org: OrganizationTable, invoice_id: str) -> dict[str, Any]:
        """Retrieve one subscription invoice belonging to the organization.

        Raises
        ------
        NotFoundError
            If the invoice does not exist or belongs to another subscription.
        """
        invoice = await self._client.get_invoice(invoice_id)
        owner = str((invoice.get("attributes") or {}).get("subscription_id") or "")
        if not org.lemon_subscription_id or owner != str(org.lemon_subscription_id):
            raise NotFoundError("Invoice", invoice_id)
        return self._normalise_invoice(invoice)
