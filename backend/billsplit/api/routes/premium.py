from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.api.dependencies import get_billing_service, get_db_session, get_user
from billsplit.core.config import settings
from billsplit.core.observability import sentry_breadcrumb
from billsplit.models.enums import BillingInterval, PlanType
from billsplit.models.schemas import CheckoutRequest, LimitCheckRequest, LimitCheckResponse, PremiumStatus
from billsplit.models.tables import User
from billsplit.services.billing_service import BillingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/premium", tags=["premium"])

try:
    import stripe  # type: ignore
except Exception as e:  # pragma: no cover
    stripe = None  # type: ignore
    logging.getLogger(__name__).exception("Stripe SDK not available: %s", e)


def _price_for(interval: BillingInterval) -> Optional[str]:
    if interval == BillingInterval.YEARLY:
        return settings.STRIPE_PRICE_PREMIUM_YEARLY
    return settings.STRIPE_PRICE_PREMIUM_MONTHLY


def _require_stripe() -> None:
    if stripe is None:
        raise HTTPException(status_code=500, detail="Stripe not configured")
    if not settings.STRIPE_API_KEY:
        raise HTTPException(status_code=500, detail="Missing STRIPE_API_KEY")
    stripe.api_key = settings.STRIPE_API_KEY  # type: ignore


@router.get("/status", response_model=PremiumStatus)
async def premium_status(
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    billing: BillingService = Depends(get_billing_service),
) -> PremiumStatus:
    plan = billing.effective_plan(user)
    return PremiumStatus(
        is_premium=plan == PlanType.PREMIUM,
        plan=plan,
        subscription_status=user.subscription_status,
        subscription_expires_at=user.subscription_expires_at,
        payment_state=user.payment_state,
        limits=await billing.limits_report(db, user),
        features=billing.feature_flags(plan),
    )


@router.post("/check", response_model=LimitCheckResponse)
async def check_limit(
    payload: LimitCheckRequest,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    billing: BillingService = Depends(get_billing_service),
) -> LimitCheckResponse:
    """Ask whether an action would be allowed without performing it."""
    result = await billing.check(db, user, payload.action, bill_id=payload.bill_id, adding=payload.count)
    return LimitCheckResponse(**result.as_dict())


@router.get("/plans")
async def list_plans(billing: BillingService = Depends(get_billing_service)) -> List[Dict[str, Any]]:
    return [
        {
            "id": "free",
            "plan": PlanType.FREE.value,
            "interval": None,
            "price": 0.0,
            "currency": "usd",
            "stripe_price_id": None,
            "features": billing.feature_flags(PlanType.FREE),
        },
        {
            "id": "premium_monthly",
            "plan": PlanType.PREMIUM.value,
            "interval": BillingInterval.MONTHLY.value,
            "price": 4.99,
            "currency": "usd",
            "stripe_price_id": settings.STRIPE_PRICE_PREMIUM_MONTHLY,
            "features": billing.feature_flags(PlanType.PREMIUM),
        },
        {
            "id": "premium_yearly",
            "plan": PlanType.PREMIUM.value,
            "interval": BillingInterval.YEARLY.value,
            "price": 49.99,
            "currency": "usd",
            "stripe_price_id": settings.STRIPE_PRICE_PREMIUM_YEARLY,
            "features": billing.feature_flags(PlanType.PREMIUM),
        },
    ]


@router.post("/checkout-session")
async def create_checkout_session(
    payload: CheckoutRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
):
    """Create a Stripe Checkout Session for the premium plan.

    The user id travels as ``client_reference_id`` so the webhook can
    link the resulting subscription back to this account.
    """
    _require_stripe()
    price_id = _price_for(payload.interval)
    if not price_id:
        raise HTTPException(status_code=500, detail=f"No Stripe price configured for {payload.interval.value}")

    customer_id = user.stripe_customer_id
    if not customer_id:
        try:
            customer = stripe.Customer.create(email=user.email, metadata={"user_id": str(user.id)})  # type: ignore
            customer_id = customer["id"]
            user.stripe_customer_id = customer_id
            await db.commit()
        except Exception as e:
            logger.exception("Failed to create Stripe customer: %s", e)
            raise HTTPException(status_code=500, detail="Unable to create customer")

    request_opts: Dict[str, Any] = {}
    if idempotency_key:
        request_opts["idempotency_key"] = idempotency_key
    try:
        session = stripe.checkout.Session.create(  # type: ignore
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.FRONTEND_BASE_URL}/premium?checkout=success",
            cancel_url=f"{settings.FRONTEND_BASE_URL}/premium?checkout=cancelled",
            client_reference_id=str(user.id),
            allow_promotion_codes=True,
            **request_opts,
        )
    except Exception as e:
        logger.exception("Failed to create checkout session: %s", e)
        raise HTTPException(status_code=500, detail="Unable to create checkout session")

    sentry_breadcrumb(
        category="stripe",
        message="checkout.session.created",
        data={"price_id": price_id, "session_id": session.get("id")},
    )
    return {"url": session["url"], "session_id": session.get("id")}


@router.post("/cancel")
async def cancel_subscription(user: User = Depends(get_user)):
    """Cancel at period end; the downgrade arrives later by webhook."""
    if not user.stripe_subscription_id:
        raise HTTPException(status_code=400, detail="No active subscription")
    _require_stripe()
    try:
        subscription = stripe.Subscription.modify(  # type: ignore
            user.stripe_subscription_id,
            cancel_at_period_end=True,
        )
    except Exception as e:
        logger.exception("Failed to cancel subscription: %s", e)
        raise HTTPException(status_code=500, detail="Unable to cancel subscription")
    logger.info("Scheduled cancellation user=%s subscription=%s", user.id, user.stripe_subscription_id)
    return {
        "subscription_id": user.stripe_subscription_id,
        "cancel_at_period_end": True,
        "status": subscription.get("status"),
    }
