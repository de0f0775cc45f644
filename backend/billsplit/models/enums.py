"""Enumeration types used throughout the bill splitting API.

Enumerations constrain the values that can be stored in the database or
passed through the API.  When adding members remember to update any
Pydantic validators and database columns that rely on them.
"""

from enum import Enum


class PlanType(str, Enum):
    """Subscription tier for a user."""

    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Subset of Stripe subscription states the backend tracks."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE_EXPIRED = "incomplete_expired"


class LimitAction(str, Enum):
    """Actions gated by plan quotas."""

    CREATE_BILL = "create_bill"
    ADD_PARTICIPANT = "add_participant"
    CREATE_TEMPLATE = "create_template"


class BillingInterval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class ExportFormat(str, Enum):
    JSON = "json"
    CSV = "csv"
