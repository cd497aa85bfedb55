"""Payment provider webhook receivers: Stripe and Lemon Squeezy.

Both endpoints are public (no bearer token) and authenticate the
delivery by signature instead.  A delivery with a missing or invalid
signature is rejected with 401; a body that is not JSON is a 400.
Each verified delivery runs in its own database session, which commits
when the event has been applied.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Request

from velocity_api.dependencies import LemonDep, SettingsDep, get_session_factory
from velocity_api.middleware.prometheus import WEBHOOKS_TOTAL
from velocity_api.services.billing_service import BillingService
from velocity_api.services.lemon_service import LemonBillingService, verify_lemon_signature

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _parse_json(body: bytes, provider: str) -> dict[str, Any]:
    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        WEBHOOKS_TOTAL.labels(provider=provider, event_type="unknown", outcome="invalid_payload").inc()
        raise HTTPException(status_code=400, detail="Invalid payload")
    if not isinstance(payload, dict):
        WEBHOOKS_TOTAL.labels(provider=provider, event_type="unknown", outcome="invalid_payload").inc()
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


@router.post("/stripe")
async def stripe_webhook(request: Request, settings: SettingsDep) -> dict[str, Any]:
    """Receive a Stripe event.

    The ``stripe-signature`` header is verified against the raw body
    before anything is parsed.  Events for organizations that cannot be
    resolved are acknowledged with ``status="ignored"`` so Stripe does
    not retry them.
    """
    body = await request.body()
    sig_header = request.headers.get("stripe-signature")
    if not sig_header:
        WEBHOOKS_TOTAL.labels(provider="stripe", event_type="unknown", outcome="rejected").inc()
        raise HTTPException(status_code=401, detail="Missing stripe-signature header")

    session_factory = get_session_factory()
    async with session_factory() as session:
        service = BillingService(session, settings)
        try:
            service.verify_webhook(body, sig_header)
        except ValueError:
            WEBHOOKS_TOTAL.labels(provider="stripe", event_type="unknown", outcome="invalid_payload").inc()
            raise HTTPException(status_code=400, detail="Invalid payload")
        except Exception:
            logger.warning("Stripe webhook signature verification failed")
            WEBHOOKS_TOTAL.labels(provider="stripe", event_type="unknown", outcome="rejected").inc()
            raise HTTPException(status_code=401, detail="Invalid signature")

        event = _parse_json(body, "stripe")
        result = await service.handle_webhook_event(event)
        await session.commit()

    WEBHOOKS_TOTAL.labels(
        provider="stripe", event_type=result.get("event_type") or "unknown", outcome=result["status"]
    ).inc()
    return result


@router.post("/lemon")
async def lemon_webhook(request: Request, settings: SettingsDep, lemon: LemonDep) -> dict[str, Any]:
    """Receive a Lemon Squeezy event signed with ``x-signature``."""
    body = await request.body()
    signature = request.headers.get("x-signature")
    if not verify_lemon_signature(body, signature, settings.lemon_webhook_secret.get_secret_value()):
        logger.warning("Lemon Squeezy webhook signature verification failed")
        WEBHOOKS_TOTAL.labels(provider="lemon", event_type="unknown", outcome="rejected").inc()
        raise HTTPException(status_code=401, detail="Invalid signature")

    payload = _parse_json(body, "lemon")
    session_factory = get_session_factory()
    async with session_factory() as session:
        result = await LemonBillingService(session, settings, lemon).handle_webhook_event(payload)
        await session.commit()

    WEBHOOKS_TOTAL.labels(
        provider="lemon", event_type=result.get("event_type") or "unknown", outcome=result["status"]
    ).inc()
    return result
