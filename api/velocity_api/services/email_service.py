"""Transactional email through Resend.

Sends seat invitations, seat-limit warnings, overage notices and payment
receipts.  Delivery failures are logged and never fail the request that
triggered them.
"""

from __future__ import annotations

import asyncio
import html
import logging
from decimal import Decimal

import resend

from velocity_api.config import APISettings

logger = logging.getLogger(__name__)


class EmailService:
    """Thin wrapper over ``resend.Emails.send``.

    When no Resend API key is configured every send is skipped with a
    debug log line, so local runs need no email provider.
    """

    def __init__(self, settings: APISettings) -> None:
        self._api_key = settings.resend_api_key.get_secret_value()
        self._sender = settings.email_from
        self._app_url = settings.app_base_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    async def send(self, to: str, subject: str, body_html: str) -> bool:
        """Send one email.  Returns ``True`` when Resend accepted it."""
        if not self.enabled:
            logger.debug("Resend not configured; skipping email '%s' to %s", subject, to)
            return False
        resend.api_key = self._api_key
        params = {"from": self._sender, "to": [to], "subject": subject, "html": body_html}
        try:
            await asyncio.to_thread(resend.Emails.send, params)
        except Exception:
            logger.warning("Failed to send email '%s' to %s", subject, to, exc_info=True)
            return False
        logger.info("Sent email '%s' to %s", subject, to)
        return True

    async def send_seat_invite(self, to: str, org_name: str) -> bool:
        name = html.escape(org_name)
        return await self.send(
            to,
            f"You've been invited to {org_name} on DevVelocity",
            f"<p>You have been added to <strong>{name}</strong> on DevVelocity.</p>"
            f'<p><a href="{self._app_url}/auth/login">Sign in to get started</a>.</p>',
        )

    async def send_seat_limit_warning(
        self,
        to: str,
        org_name: str,
        *,
        active: int,
        included: int,
        seat_price: Decimal,
    ) -> bool:
        extra = max(0, active - included)
        return await self.send(
            to,
            "DevVelocity seat limit exceeded",
            f"<p>{html.escape(org_name)} now has {active} active seats; your plan includes {included}.</p>"
            f"<p>{extra} additional seat(s) will be billed at ${seat_price} each this cycle.</p>"
            f'<p><a href="{self._app_url}/dashboard/billing/upgrade">Review your plan</a>.</p>',
        )

    async def send_overage_notice(self, to: str, org_name: str, amount: Decimal, lines: list[str]) -> bool:
        items = "".join(f"<li>{html.escape(line)}</li>" for line in lines)
        return await self.send(
            to,
            "DevVelocity usage overage",
            f"<p>{html.escape(org_name)} exceeded its plan limits this cycle.</p><ul>{items}</ul>"
            f"<p>Overage charges of ${amount} have been added to your next invoice.</p>",
        )

    async def send_receipt(self, to: str, *, plan: str, amount: Decimal, currency: str = "USD") -> bool:
        return await self.send(
            to,
            "Your DevVelocity Receipt",
            f"<h1>Your DevVelocity Receipt</h1><p>Plan: {html.escape(plan.title())}</p>"
            f"<p>Amount paid: {amount} {html.escape(currency.upper())}</p>",
        )
