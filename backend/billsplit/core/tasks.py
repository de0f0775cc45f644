"""Dramatiq task definitions for background processing.

Stripe webhook events are acknowledged by the API and applied here,
off the request path.  Start a worker with::

    dramatiq billsplit.core.tasks --processes 1 --threads 4

The broker is Redis at ``DRAMATIQ_BROKER_URL`` (falling back to
``REDIS_URL``).  With ``ENVIRONMENT=test`` an in-memory ``StubBroker``
is installed instead so importing this module never needs Redis.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import dramatiq
from dramatiq.brokers.redis import RedisBroker
from dramatiq.brokers.stub import StubBroker
from dramatiq.middleware import AgeLimit, TimeLimit, ShutdownNotifications, Retries
from sqlalchemy import create_engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker

from billsplit.core.config import settings
from billsplit.core.database import sync_database_url
from billsplit.core.observability import init_sentry, sentry_breadcrumb
from billsplit.services.subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


def _has_mw(broker, mw_cls) -> bool:
    return any(isinstance(m, mw_cls) for m in broker.middleware)


def _build_broker():
    if (settings.ENVIRONMENT or "").lower() == "test":
        return StubBroker()
    url = settings.DRAMATIQ_BROKER_URL or settings.REDIS_URL
    redis_broker = RedisBroker(url=url)
    if not _has_mw(redis_broker, AgeLimit):
        redis_broker.add_middleware(AgeLimit())
    if not _has_mw(redis_broker, TimeLimit):
        redis_broker.add_middleware(TimeLimit())
    if not _has_mw(redis_broker, ShutdownNotifications):
        redis_broker.add_middleware(ShutdownNotifications())
    if not _has_mw(redis_broker, Retries):
        # Exponential backoff up to ~1m
        redis_broker.add_middleware(Retries(max_retries=3, min_backoff=5000, max_backoff=60000, backoff=2.0))
    logger.info("Dramatiq broker configured for %s", make_url(url).render_as_string(hide_password=True))
    return redis_broker


broker = _build_broker()
dramatiq.set_broker(broker)

# Workers use a synchronous engine against the same database as the API
sync_db_url = sync_database_url()
_engine_kwargs: Dict[str, Any] = dict(pool_pre_ping=True)
if not sync_db_url.startswith("sqlite"):
    _engine_kwargs.update(pool_size=5, max_overflow=10, pool_recycle=3600)
engine = create_engine(sync_db_url, **_engine_kwargs)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

if init_sentry("worker"):
    logger.info("Sentry SDK initialized (worker)")

subscription_service = SubscriptionService()


@dramatiq.actor(max_retries=5)
def process_stripe_event(event: dict):
    """Apply a verified Stripe event; replays are ignored by event id."""
    session = SessionLocal()
    try:
        applied = subscription_service.apply_subscription_event(session, event)
        sentry_breadcrumb(
            category="stripe",
            message=f"worker:{event.get('type', '')}",
            data={"id": event.get("id"), "applied": applied},
        )
        return applied
    finally:
        session.close()


@dramatiq.actor(max_retries=0)
def expire_lapsed_subscriptions():
    """Downgrade premium users whose paid period ended without renewal.

    Schedule periodically (e.g. hourly via cron or a periodiq job).
    """
    session = SessionLocal()
    try:
        return subscription_service.expire_lapsed_subscriptions(session)
    finally:
        session.close()
