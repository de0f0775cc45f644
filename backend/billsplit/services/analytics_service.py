"""Spending analytics over a user's bills.

Spending figures use the stated bill totals the user entered.  Anything
about what participants owe is computed by the allocation engine, one
bill at a time, so analytics never disagree with a bill's summary.
"""

from __future__ import annotations

import datetime as dt
import logging
from collections import defaultdict
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billsplit.models.tables import Bill, Product, User
from billsplit.services.allocation import ZERO, BillSummary, aggregate_bill, money_to_float, to_decimal
from billsplit.services.bill_service import BillService, stated_total_of, to_bill_record
from billsplit.utils.helpers import month_key

logger = logging.getLogger(__name__)

WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class AnalyticsService:
    def __init__(self, bills: Optional[BillService] = None) -> None:
        self.bills = bills or BillService()

    async def _load_bills(
        self, db: AsyncSession, user: User, since: Optional[dt.datetime] = None, with_graph: bool = False
    ) -> List[Bill]:
        q = select(Bill).where(Bill.owner_id == user.id)
        if since is not None:
            q = q.where(Bill.created_at >= since)
        if with_graph:
            q = q.options(
                selectinload(Bill.participants),
                selectinload(Bill.products).selectinload(Product.allocations),
            ).execution_options(populate_existing=True)
        q = q.order_by(Bill.created_at.asc(), Bill.id.asc())
        return list((await db.execute(q)).scalars().all())

    @staticmethod
    def _summaries(bills: List[Bill]) -> List[BillSummary]:
        return [aggregate_bill(to_bill_record(b)) for b in bills]

    async def overview(self, db: AsyncSession, user: User, period_days: int = 30) -> Dict[str, Any]:
        since = dt.datetime.utcnow() - dt.timedelta(days=period_days)
        bills = await self._load_bills(db, user, since=since, with_graph=True)
        summaries = self._summaries(bills)
        total_spent = sum((stated_total_of(b) for b in bills), ZERO)
        allocated = sum((s.reconciliation.allocated_total for s in summaries), ZERO)
        orphaned = sum((s.reconciliation.orphaned_amount for s in summaries), ZERO)
        names = {p.name.strip().lower() for b in bills for p in b.participants}
        count = len(bills)
        return {
            "period_days": period_days,
            "total_bills": count,
            "total_spent": money_to_float(total_spent),
            "average_bill": money_to_float(total_spent / count) if count else 0.0,
            "active_participants": len(names),
            "allocated_total": money_to_float(allocated),
            "orphaned_total": money_to_float(orphaned),
        }

    async def spending_over_time(self, db: AsyncSession, user: User, months: int = 12) -> List[Dict[str, Any]]:
        now = dt.datetime.utcnow()
        year, month = now.year, now.month - (months - 1)
        while month <= 0:
            month += 12
            year -= 1
        since = dt.datetime(year, month, 1)
        buckets: Dict[str, Dict[str, Any]] = {}
        for bill in await self._load_bills(db, user, since=since):
            key = month_key(bill.created_at)
            bucket = buckets.setdefault(key, {"month": key, "bill_count": 0, "total": ZERO})
            bucket["bill_count"] += 1
            bucket["total"] += stated_total_of(bill)
        return [
            {"month": b["month"], "bill_count": b["bill_count"], "total_spent": money_to_float(b["total"])}
            for b in sorted(buckets.values(), key=lambda b: b["month"])
        ]

    async def bill_frequency(self, db: AsyncSession, user: User, period_days: int = 90) -> Dict[str, Any]:
        since = dt.datetime.utcnow() - dt.timedelta(days=period_days)
        by_weekday = {day: 0 for day in WEEKDAYS}
        by_hour = {hour: 0 for hour in range(24)}
        for bill in await self._load_bills(db, user, since=since):
            by_weekday[WEEKDAYS[bill.created_at.weekday()]] += 1
            by_hour[bill.created_at.hour] += 1
        return {
            "period_days": period_days,
            "by_weekday": [{"day": d, "count": c} for d, c in by_weekday.items()],
            "by_hour": [{"hour": h, "count": c} for h, c in by_hour.items()],
        }

    async def top_participants(self, db: AsyncSession, user: User, limit: int = 10) -> List[Dict[str, Any]]:
        """Participants grouped by name across bills, ranked by amount owed."""
        bills = await self._load_bills(db, user, with_graph=True)
        owed: Dict[str, Decimal] = defaultdict(lambda: ZERO)
        bill_counts: Dict[str, int] = defaultdict(int)
        display: Dict[str, str] = {}
        for summary in self._summaries(bills):
            for p in summary.participants:
                key = p.name.strip().lower()
                display.setdefault(key, p.name)
                owed[key] += p.total_owed
                bill_counts[key] += 1
        ranked = sorted(owed.items(), key=lambda kv: (-kv[1], display[kv[0]]))[:limit]
        return [
            {"name": display[key], "bills_count": bill_counts[key], "total_owed": money_to_float(amount)}
            for key, amount in ranked
        ]

    async def common_products(self, db: AsyncSession, user: User, limit: int = 20) -> List[Dict[str, Any]]:
        q = (
            select(Product)
            .join(Bill, Product.bill_id == Bill.id)
            .where(Bill.owner_id == user.id)
        )
        products = (await db.execute(q)).scalars().all()
        stats: Dict[str, Dict[str, Any]] = {}
        for product in products:
            try:
                price = to_decimal(product.price)
            except ValueError:
                logger.warning("Skipping product %s with unusable price %r", product.id, product.price)
                continue
            key = product.name.strip().lower()
            entry = stats.setdefault(key, {"name": product.name, "frequency": 0, "price_sum": ZERO, "quantity": 0})
            entry["frequency"] += 1
            entry["price_sum"] += price
            entry["quantity"] += product.quantity
        ranked = sorted(stats.values(), key=lambda e: (-e["frequency"], e["name"]))[:limit]
        return [
            {
                "name": e["name"],
                "frequency": e["frequency"],
                "average_price": money_to_float(e["price_sum"] / e["frequency"]),
                "total_quantity": e["quantity"],
            }
            for e in ranked
        ]

    async def participant_owes(self, db: AsyncSession, user: User, bill_id: int) -> Dict[str, Any]:
        summary = await self.bills.get_bill_summary(db, user, bill_id)
        return {
            "bill_id": summary.bill_id,
            "participants": [
                {"id": p.participant_id, "name": p.name, "total_owed": money_to_float(p.total_owed)}
                for p in summary.participants
            ],
            "orphaned_amount": money_to_float(summary.reconciliation.orphaned_amount),
        }


__all__ = ["AnalyticsService"]
