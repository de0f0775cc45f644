"""Subscription state driven by Stripe webhook events.

All plan changes coming from Stripe flow through
``SubscriptionService.apply_subscription_event``.  Each event is keyed by
its Stripe id: the id is written to ``processed_stripe_events`` in the
same transaction as the user update, so a redelivered event (Stripe
retries, or the queue and the inline fallback both running) is a no-op.

The service works on a synchronous ``Session``.  The Dramatiq worker
passes one directly; the API calls it through ``AsyncSession.run_sync``.

Handled events:

* ``checkout.session.completed`` – link the Stripe customer and
  subscription to the user named in ``client_reference_id`` (falling
  back to the customer email) and switch the user to premium.
* ``customer.subscription.created`` / ``.updated`` – active or trialing
  subscriptions keep premium until ``current_period_end``; canceled,
  unpaid and expired ones drop back to free.
* ``customer.subscription.deleted`` – back to free.
* ``invoice.payment_failed`` / ``invoice.paid`` – payment state flag.

Other event types are recorded as processed without side effects.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Dict, Mapping, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billsplit.models.enums import PlanType, SubscriptionStatus
from billsplit.models.tables import ProcessedStripeEvent, User
from billsplit.utils.helpers import from_unix_timestamp

logger = logging.getLogger(__name__)

PREMIUM_STATUSES = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}
ENDED_STATUSES = {
    SubscriptionStatus.CANCELED.value,
    SubscriptionStatus.UNPAID.value,
    SubscriptionStatus.INCOMPLETE_EXPIRED.value,
}


def _period_end(subscription: Mapping[str, Any]) -> Optional[dt.datetime]:
    # Newer API versions moved current_period_end onto subscription items
    ts = subscription.get("current_period_end")
    if ts is None:
        items = (subscription.get("items") or {}).get("data") or []
        if items:
            ts = items[0].get("current_period_end")
    return from_unix_timestamp(ts)


class SubscriptionService:
    """Idempotent application of Stripe events to user subscription state."""

    def __init__(self) -> None:
        self._handlers: Dict[str, Callable[[Session, Mapping[str, Any]], None]] = {
            "checkout.session.completed": self._on_checkout_completed,
            "customer.subscription.created": self._on_subscription_changed,
            "customer.subscription.updated": self._on_subscription_changed,
            "customer.subscription.deleted": self._on_subscription_deleted,
            "invoice.payment_failed": self._on_payment_failed,
            "invoice.paid": self._on_payment_succeeded,
            "invoice.payment_succeeded": self._on_payment_succeeded,
        }

    def handles(self, event_type: str) -> bool:
        return event_type in self._handlers

    def apply_subscription_event(self, session: Session, event: Mapping[str, Any]) -> bool:
        """Apply ``event`` once; returns False when it was already applied."""
        event_id = event.get("id")
        if not event_id:
            raise ValueError("Stripe event has no id")
        if session.get(ProcessedStripeEvent, event_id) is not None:
            logger.info("[stripe] duplicate event ignored id=%s", event_id)
            return False

        event_type = event.get("type", "") or ""
        data_object = (event.get("data") or {}).get("object") or {}
        handler = self._handlers.get(event_type)
        try:
            if handler is not None:
                handler(session, data_object)
            else:
                logger.debug("[stripe] no handler for type=%s id=%s", event_type, event_id)
            session.add(ProcessedStripeEvent(id=event_id, type=event_type))
            session.commit()
        except IntegrityError:
            session.rollback()
            if session.get(ProcessedStripeEvent, event_id) is not None:
                # a concurrent delivery committed first
                logger.info("[stripe] event id=%s applied concurrently", event_id)
                return False
            raise
        except Exception:
            session.rollback()
            raise
        logger.info("[stripe] applied event type=%s id=%s", event_type, event_id)
        return True

    def expire_lapsed_subscriptions(self, session: Session, now: Optional[dt.datetime] = None) -> int:
        """Downgrade premium users whose paid period has ended."""
        now = now or dt.datetime.utcnow()
        users = session.execute(
            select(User).where(
                User.plan == PlanType.PREMIUM,
                User.subscription_expires_at.is_not(None),
                User.subscription_expires_at <= now,
            )
        ).scalars().all()
        for user in users:
            user.plan = PlanType.FREE
            if user.subscription_status in PREMIUM_STATUSES:
                user.subscription_status = SubscriptionStatus.CANCELED.value
        session.commit()
        if users:
            logger.info("Downgraded %d lapsed subscription(s)", len(users))
        return len(users)

    # --- Lookups -------------------------------------------------------
    def _find_user(self, session: Session, obj: Mapping[str, Any]) -> Optional[User]:
        client_ref = obj.get("client_reference_id")
        if client_ref:
            try:
                user = session.get(User, int(client_ref))
            except (TypeError, ValueError):
                user = None
            if user is not None:
                return user
        customer = obj.get("customer")
        if customer:
            user = session.execute(select(User).where(User.stripe_customer_id == customer)).scalar_one_or_none()
            if user is not None:
                return user
        email = obj.get("customer_email") or (obj.get("customer_details") or {}).get("email")
        if email:
            return session.execute(select(User).where(User.email == str(email).lower())).scalar_one_or_none()
        return None

    # --- Handlers ------------------------------------------------------
    def _on_checkout_completed(self, session: Session, obj: Mapping[str, Any]) -> None:
        user = self._find_user(session, obj)
        if user is None:
            logger.warning(
                "[stripe] checkout completed for unknown user client_ref=%s customer=%s",
                obj.get("client_reference_id"),
                obj.get("customer"),
            )
            return
        customer = obj.get("customer")
        if customer and not user.stripe_customer_id:
            user.stripe_customer_id = customer
        if obj.get("subscription"):
            user.stripe_subscription_id = obj.get("subscription")
        if obj.get("mode", "subscription") == "subscription":
            user.plan = PlanType.PREMIUM
            user.subscription_status = SubscriptionStatus.ACTIVE.value
            user.payment_state = "ok"

    def _on_subscription_changed(self, session: Session, obj: Mapping[str, Any]) -> None:
        user = self._find_user(session, obj)
        if user is None:
            logger.warning("[stripe] subscription event for unknown customer=%s", obj.get("customer"))
            return
        status = obj.get("status")
        user.subscription_status = status
        if obj.get("id"):
            user.stripe_subscription_id = obj.get("id")
        if status in PREMIUM_STATUSES:
            user.plan = PlanType.PREMIUM
            user.subscription_expires_at = _period_end(obj)
            user.payment_state = "ok"
        elif status in ENDED_STATUSES:
            user.plan = PlanType.FREE
            user.payment_state = "past_due" if status == SubscriptionStatus.UNPAID.value else None
        elif status == SubscriptionStatus.PAST_DUE.value:
            user.payment_state = "past_due"

    def _on_subscription_deleted(self, session: Session, obj: Mapping[str, Any]) -> None:
        user = self._find_user(session, obj)
        if user is None:
            return
        user.plan = PlanType.FREE
        user.subscription_status = SubscriptionStatus.CANCELED.value
        user.subscription_expires_at = None
        user.stripe_subscription_id = None

    def _on_payment_failed(self, session: Session, obj: Mapping[str, Any]) -> None:
        user = self._find_user(session, obj)
        if user is not None:
            user.payment_state = "past_due"

    def _on_payment_succeeded(self, session: Session, obj: Mapping[str, Any]) -> None:
        user = self._find_user(session, obj)
        if user is not None:
            user.payment_state = "ok"


__all__ = ["SubscriptionService"]
