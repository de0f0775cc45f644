from __future__ import annotations

import fnmatch
import json
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse

from billsplit.core.config import get_webhook_secret_list, settings
from billsplit.core import database
from billsplit.core.observability import sentry_breadcrumb, sentry_set_tags
from billsplit.core.tasks import process_stripe_event
from billsplit.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])

try:  # Stripe is optional until webhook is configured
    import stripe  # type: ignore
except Exception as e:  # pragma: no cover
    logger.exception("Failed to import Stripe SDK: %s", e)
    stripe = None  # type: ignore

subscription_service = SubscriptionService()


def _allowed(event_type: str) -> bool:
    allowed = (settings.STRIPE_WEBHOOK_ALLOWED_EVENTS or "").strip()
    patterns = [p.strip() for p in allowed.split(",") if p.strip()]
    if not patterns:
        return True
    return any(fnmatch.fnmatch(event_type, pat) for pat in patterns)


async def _apply_inline(event: Dict[str, Any]) -> bool:
    async with database.AsyncSessionLocal() as session:
        return await session.run_sync(subscription_service.apply_subscription_event, event)


@router.post("/webhooks/stripe")
async def stripe_webhook(request: Request):
    """Handle Stripe webhook events.

    Verifies the Stripe-Signature header against each configured secret,
    then hands the event to the worker.  Processing happens inline only
    when the queue is unreachable.
    """
    if stripe is None:
        logger.error("Stripe SDK not installed; cannot process webhooks")
        raise HTTPException(status_code=500, detail="Stripe SDK not available")

    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    endpoint_secrets = get_webhook_secret_list()
    if not endpoint_secrets:
        logger.error("STRIPE_WEBHOOK_SECRET not configured")
        raise HTTPException(status_code=500, detail="Webhook not configured")

    verified = False
    last_sig_error: Exception | None = None
    for secret in endpoint_secrets:
        try:
            stripe.Webhook.construct_event(payload=payload, sig_header=sig_header, secret=secret)
            verified = True
            break
        except stripe.error.SignatureVerificationError as e:  # type: ignore
            last_sig_error = e
        except ValueError as e:
            last_sig_error = e
    if not verified:
        logger.warning("Invalid Stripe signature after trying %d secrets: %s", len(endpoint_secrets), last_sig_error)
        raise HTTPException(status_code=400, detail="Invalid signature")

    # plain dict so the event can be serialised onto the queue
    event: Dict[str, Any] = json.loads(payload)
    event_type: str = event.get("type", "") or ""
    event_id = event.get("id")
    if not event_id:
        raise HTTPException(status_code=400, detail="Event has no id")

    if not _allowed(event_type):
        logger.debug("[stripe] event filtered by allowlist type=%s", event_type)
        return JSONResponse(status_code=200, content={"received": True, "filtered": True, "type": event_type})

    sentry_set_tags({"stripe.event_type": event_type})
    sentry_breadcrumb(category="stripe", message=f"webhook:{event_type}", data={"id": event_id})

    try:
        process_stripe_event.send(event)
        logger.debug("[stripe] queued event type=%s id=%s", event_type, event_id)
        return JSONResponse(status_code=200, content={"received": True, "queued": True, "type": event_type})
    except Exception as e:
        logger.warning("[stripe] failed to enqueue event, processing inline: %s", e)

    applied = await _apply_inline(event)
    return JSONResponse(
        status_code=200,
        content={"received": True, "queued": False, "duplicate": not applied, "type": event_type},
    )
