"""Billing service providing plan limits & usage enforcement.

This module centralises plan enforcement so API route handlers remain
thin.  The quota decision itself is the pure ``may_perform`` predicate
over a ``UsageCounts`` snapshot; ``BillingService`` gathers the counts
from the database and raises ``LimitExceeded`` when an action is
denied.  It does not talk to Stripe; subscription state arrives through
``SubscriptionService``.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from typing import Optional, Dict, Any

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.core.errors import LimitExceeded
from billsplit.models.enums import ExportFormat, LimitAction, PlanType
from billsplit.models.tables import Bill, BillTemplate, Participant, User

UNLIMITED = float("inf")


@dataclass(frozen=True)
class PlanLimits:
    plan: PlanType
    bills_per_month: float  # calendar month, UTC (inf => unlimited)
    participants_per_bill: float
    templates: float
    advanced_analytics: bool
    priority_support: bool
    export_formats: tuple


PLAN_LIMIT_MATRIX: Dict[PlanType, PlanLimits] = {
    PlanType.FREE: PlanLimits(
        plan=PlanType.FREE,
        bills_per_month=3,
        participants_per_bill=5,
        templates=2,
        advanced_analytics=False,
        priority_support=False,
        export_formats=(ExportFormat.JSON.value,),
    ),
    PlanType.PREMIUM: PlanLimits(
        plan=PlanType.PREMIUM,
        bills_per_month=UNLIMITED,
        participants_per_bill=UNLIMITED,
        templates=UNLIMITED,
        advanced_analytics=True,
        priority_support=True,
        export_formats=(ExportFormat.JSON.value, ExportFormat.CSV.value),
    ),
}

# quota name and PlanLimits attribute checked for each action
_ACTION_QUOTAS: Dict[LimitAction, str] = {
    LimitAction.CREATE_BILL: "bills_per_month",
    LimitAction.ADD_PARTICIPANT: "participants_per_bill",
    LimitAction.CREATE_TEMPLATE: "templates",
}


@dataclass(frozen=True)
class UsageCounts:
    bills_this_month: int = 0
    participants_on_bill: int = 0
    templates: int = 0

    def for_quota(self, quota: str) -> int:
        if quota == "bills_per_month":
            return self.bills_this_month
        if quota == "participants_per_bill":
            return self.participants_on_bill
        return self.templates


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    action: LimitAction
    quota: str
    limit: float
    usage: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "action": self.action.value,
            "quota": self.quota,
            "limit": None if self.limit == UNLIMITED else int(self.limit),
            "usage": self.usage,
        }


def get_limits(plan: PlanType | None) -> PlanLimits:
    return PLAN_LIMIT_MATRIX.get(plan or PlanType.FREE, PLAN_LIMIT_MATRIX[PlanType.FREE])


def quota_for(action: LimitAction) -> str:
    return _ACTION_QUOTAS[LimitAction(action)]


def may_perform(plan: PlanType | None, action: LimitAction, usage: UsageCounts, adding: int = 1) -> bool:
    """Return whether ``usage`` plus ``adding`` stays within the plan ceiling."""
    quota = quota_for(action)
    limit = getattr(get_limits(plan), quota)
    if limit == UNLIMITED:
        return True
    return usage.for_quota(quota) + adding <= limit


def _month_bounds(when: dt.datetime) -> tuple[dt.datetime, dt.datetime]:
    # Timestamps are stored as naive UTC
    start = dt.datetime(when.year, when.month, 1)
    if when.month == 12:
        end = dt.datetime(when.year + 1, 1, 1)
    else:
        end = dt.datetime(when.year, when.month + 1, 1)
    return start, end


class BillingService:
    """Encapsulates plan limit queries & quota enforcement."""

    def effective_plan(self, user: User, now: Optional[dt.datetime] = None) -> PlanType:
        """Premium only counts while the paid period has not lapsed."""
        plan = user.plan or PlanType.FREE
        if plan != PlanType.PREMIUM:
            return PlanType.FREE
        expires = user.subscription_expires_at
        if expires is not None:
            now = now or dt.datetime.utcnow()
            if expires.tzinfo is not None:
                expires = expires.astimezone(dt.timezone.utc).replace(tzinfo=None)
            if expires <= now:
                return PlanType.FREE
        return PlanType.PREMIUM

    def is_premium(self, user: User) -> bool:
        return self.effective_plan(user) == PlanType.PREMIUM

    def get_limits(self, plan: PlanType | None) -> PlanLimits:
        return get_limits(plan)

    # --- Usage counters ------------------------------------------------
    async def get_monthly_bill_count(self, db: AsyncSession, user_id: int, when: Optional[dt.datetime] = None) -> int:
        start, end = _month_bounds(when or dt.datetime.utcnow())
        q = select(func.count(Bill.id)).where(
            Bill.owner_id == user_id,
            Bill.created_at >= start,
            Bill.created_at < end,
        )
        result = await db.execute(q)
        return int(result.scalar() or 0)

    async def get_template_count(self, db: AsyncSession, user_id: int) -> int:
        result = await db.execute(select(func.count(BillTemplate.id)).where(BillTemplate.owner_id == user_id))
        return int(result.scalar() or 0)

    async def get_participant_count(self, db: AsyncSession, bill_id: Optional[int]) -> int:
        if bill_id is None:
            return 0
        result = await db.execute(select(func.count(Participant.id)).where(Participant.bill_id == bill_id))
        return int(result.scalar() or 0)

    async def usage_for(self, db: AsyncSession, user: User, bill_id: Optional[int] = None) -> UsageCounts:
        return UsageCounts(
            bills_this_month=await self.get_monthly_bill_count(db, user.id),
            participants_on_bill=await self.get_participant_count(db, bill_id),
            templates=await self.get_template_count(db, user.id),
        )

    # --- Gate ----------------------------------------------------------
    async def check(
        self,
        db: AsyncSession,
        user: User,
        action: LimitAction,
        bill_id: Optional[int] = None,
        adding: int = 1,
    ) -> LimitCheck:
        action = LimitAction(action)
        plan = self.effective_plan(user)
        quota = quota_for(action)
        usage = await self.usage_for(db, user, bill_id=bill_id)
        return LimitCheck(
            allowed=may_perform(plan, action, usage, adding=adding),
            action=action,
            quota=quota,
            limit=getattr(self.get_limits(plan), quota),
            usage=usage.for_quota(quota),
        )

    async def enforce(
        self,
        db: AsyncSession,
        user: User,
        action: LimitAction,
        bill_id: Optional[int] = None,
        adding: int = 1,
    ) -> LimitCheck:
        result = await self.check(db, user, action, bill_id=bill_id, adding=adding)
        if not result.allowed:
            raise LimitExceeded(
                action=result.action.value,
                quota=result.quota,
                limit=result.limit,
                usage=result.usage,
                message=f"Free plan allows {int(result.limit)} {result.quota.replace('_', ' ')}; upgrade to premium for more",
            )
        return result

    def enforce_export_format(self, user: User, fmt: str) -> None:
        allowed = self.get_limits(self.effective_plan(user)).export_formats
        if fmt not in allowed:
            raise LimitExceeded(
                action="export",
                quota="export_formats",
                limit=len(allowed),
                usage=0,
                message=f"Export format '{fmt}' requires premium",
            )

    # --- Reporting -----------------------------------------------------
    async def limits_report(self, db: AsyncSession, user: User) -> Dict[str, Any]:
        plan = self.effective_plan(user)
        limits = self.get_limits(plan)
        usage = await self.usage_for(db, user)

        def _entry(quota: str, used: Optional[int]) -> Dict[str, Any]:
            limit = getattr(limits, quota)
            unlimited = limit == UNLIMITED
            entry: Dict[str, Any] = {"limit": None if unlimited else int(limit), "unlimited": unlimited}
            if used is not None:
                entry["used"] = used
                entry["remaining"] = None if unlimited else max(0, int(limit) - used)
            return entry

        return {
            "plan": plan.value,
            "bills_per_month": _entry("bills_per_month", usage.bills_this_month),
            # counted per bill at the time a participant is added
            "participants_per_bill": _entry("participants_per_bill", None),
            "templates": _entry("templates", usage.templates),
        }

    # --- Feature flags -------------------------------------------------
    def feature_flags(self, plan: PlanType | None) -> Dict[str, Any]:
        limits = self.get_limits(plan)
        return {
            "unlimited_bills": limits.bills_per_month == UNLIMITED,
            "unlimited_participants": limits.participants_per_bill == UNLIMITED,
            "unlimited_templates": limits.templates == UNLIMITED,
            "advanced_analytics": limits.advanced_analytics,
            "priority_support": limits.priority_support,
            "export_formats": list(limits.export_formats),
        }


__all__ = [
    "BillingService",
    "LimitCheck",
    "PlanLimits",
    "PLAN_LIMIT_MATRIX",
    "UsageCounts",
    "may_perform",
    "quota_for",
]
