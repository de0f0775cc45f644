"""Bill, participant and product persistence.

Every lookup is scoped to the requesting user: a bill owned by someone
else is indistinguishable from a missing one and raises ``NotFound``.
Creation flows consult ``BillingService`` before writing anything.

Read paths that need money figures (summary, export, analytics) go
through ``load_bill_graph`` + ``aggregate_bill`` so they all agree on
the numbers.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billsplit.core.errors import NotFound
from billsplit.models.enums import LimitAction
from billsplit.models.tables import Bill, Participant, Product, ProductParticipant, User
from billsplit.services.allocation import (
    AllocationShare,
    BillRecord,
    BillSummary,
    ParticipantRecord,
    ProductRecord,
    RejectedProduct,
    aggregate_bill,
    to_decimal,
)
from billsplit.services.billing_service import BillingService
from billsplit.utils.helpers import equal_shares, participant_color

logger = logging.getLogger(__name__)

_UPDATABLE_BILL_FIELDS = ("title", "description", "total_amount", "image_url")


def _graph_options():
    return (
        selectinload(Bill.participants),
        selectinload(Bill.products).selectinload(Product.allocations),
    )


def _product_record(pr: Product) -> Union[ProductRecord, RejectedProduct]:
    try:
        return ProductRecord(
            id=pr.id,
            name=pr.name,
            price=pr.price,
            quantity=pr.quantity,
            allocations=tuple(
                AllocationShare(participant_id=a.participant_id, share_percentage=a.share_percentage)
                for a in pr.allocations
            ),
        )
    except ValueError as exc:
        logger.warning("Product %s on bill %s cannot be allocated: %s", pr.id, pr.bill_id, exc)
        quantity = pr.quantity if isinstance(pr.quantity, int) and pr.quantity > 0 else 0
        return RejectedProduct(id=pr.id, name=pr.name, reason=str(exc), quantity=quantity)


def stated_total_of(bill: Bill) -> Decimal:
    """The bill's stated total, or zero when the stored value is unusable."""
    value = bill.total_amount or 0
    try:
        amount = to_decimal(value, "total_amount")
    except ValueError:
        amount = None
    if amount is None or amount < 0:
        logger.warning("Bill %s has an unusable stated total %r; reporting 0", bill.id, value)
        return Decimal(0)
    return amount


def to_bill_record(bill: Bill) -> BillRecord:
    """Convert a fully loaded ``Bill`` row into engine input.

    Stored values the engine cannot use become ``RejectedProduct`` entries
    (reported as orphaned) rather than errors, so one bad row never breaks
    the bill's summary.
    """
    return BillRecord(
        id=bill.id,
        title=bill.title,
        stated_total=stated_total_of(bill),
        participants=tuple(ParticipantRecord(id=p.id, name=p.name, color=p.color) for p in bill.participants),
        products=tuple(_product_record(pr) for pr in bill.products),
    )


class BillService:
    """CRUD for bills and their participants/products."""

    def __init__(self, billing: Optional[BillingService] = None) -> None:
        self.billing = billing or BillingService()

    # --- Lookups -------------------------------------------------------
    async def _get_owned_bill(self, db: AsyncSession, user: User, bill_id: int) -> Bill:
        result = await db.execute(select(Bill).where(Bill.id == bill_id, Bill.owner_id == user.id))
        bill = result.scalar_one_or_none()
        if bill is None:
            raise NotFound("bill", bill_id)
        return bill

    async def get_bill(self, db: AsyncSession, user: User, bill_id: int) -> Bill:
        """Return the bill with participants, products and allocations loaded."""
        q = (
            select(Bill)
            .where(Bill.id == bill_id, Bill.owner_id == user.id)
            .options(*_graph_options())
            .execution_options(populate_existing=True)
        )
        result = await db.execute(q)
        bill = result.scalar_one_or_none()
        if bill is None:
            raise NotFound("bill", bill_id)
        return bill

    async def get_product(self, db: AsyncSession, user: User, bill_id: int, product_id: int) -> Product:
        q = (
            select(Product)
            .join(Bill, Product.bill_id == Bill.id)
            .where(Product.id == product_id, Product.bill_id == bill_id, Bill.owner_id == user.id)
            .options(selectinload(Product.allocations))
            .execution_options(populate_existing=True)
        )
        product = (await db.execute(q)).scalar_one_or_none()
        if product is None:
            raise NotFound("product", product_id)
        return product

    async def _get_participant(self, db: AsyncSession, user: User, bill_id: int, participant_id: int) -> Participant:
        q = (
            select(Participant)
            .join(Bill, Participant.bill_id == Bill.id)
            .where(Participant.id == participant_id, Participant.bill_id == bill_id, Bill.owner_id == user.id)
        )
        participant = (await db.execute(q)).scalar_one_or_none()
        if participant is None:
            raise NotFound("participant", participant_id)
        return participant

    async def _check_participants(self, db: AsyncSession, bill_id: int, participant_ids: Sequence[int]) -> None:
        if not participant_ids:
            return
        rows = await db.execute(
            select(Participant.id).where(Participant.bill_id == bill_id, Participant.id.in_(list(participant_ids)))
        )
        found = set(rows.scalars().all())
        for pid in participant_ids:
            if pid not in found:
                raise NotFound("participant", pid)

    # --- Bills ---------------------------------------------------------
    async def list_bills(self, db: AsyncSession, user: User) -> List[Dict[str, Any]]:
        participant_count = (
            select(func.count(Participant.id)).where(Participant.bill_id == Bill.id).correlate(Bill).scalar_subquery()
        )
        product_count = (
            select(func.count(Product.id)).where(Product.bill_id == Bill.id).correlate(Bill).scalar_subquery()
        )
        q = (
            select(Bill, participant_count.label("participant_count"), product_count.label("product_count"))
            .where(Bill.owner_id == user.id)
            .order_by(Bill.created_at.desc(), Bill.id.desc())
        )
        rows = (await db.execute(q)).all()
        return [
            {
                "id": bill.id,
                "title": bill.title,
                "description": bill.description,
                "total_amount": bill.total_amount,
                "image_url": bill.image_url,
                "created_at": bill.created_at,
                "updated_at": bill.updated_at,
                "participant_count": int(p_count or 0),
                "product_count": int(pr_count or 0),
            }
            for bill, p_count, pr_count in rows
        ]

    async def create_bill(
        self,
        db: AsyncSession,
        user: User,
        title: str,
        description: Optional[str] = None,
        participant_names: Sequence[str] = (),
        total_amount: float = 0.0,
        image_url: Optional[str] = None,
        participant_colors: Optional[Sequence[Optional[str]]] = None,
    ) -> Bill:
        names = list(participant_names)
        await self.billing.enforce(db, user, LimitAction.CREATE_BILL)
        if names:
            await self.billing.enforce(db, user, LimitAction.ADD_PARTICIPANT, adding=len(names))
        colors = list(participant_colors or [])
        participants = [
            Participant(name=name, color=(colors[i] if i < len(colors) and colors[i] else participant_color(i)))
            for i, name in enumerate(names)
        ]
        bill = Bill(
            owner_id=user.id,
            title=title,
            description=description,
            total_amount=total_amount or 0.0,
            image_url=image_url,
            participants=participants,
        )
        db.add(bill)
        await db.commit()
        logger.info("Created bill id=%s owner=%s participants=%d", bill.id, user.id, len(names))
        return await self.get_bill(db, user, bill.id)

    async def update_bill(self, db: AsyncSession, user: User, bill_id: int, **fields: Any) -> Bill:
        bill = await self._get_owned_bill(db, user, bill_id)
        for name in _UPDATABLE_BILL_FIELDS:
            if name in fields and fields[name] is not None:
                setattr(bill, name, fields[name])
        await db.commit()
        return await self.get_bill(db, user, bill_id)

    async def delete_bill(self, db: AsyncSession, user: User, bill_id: int) -> None:
        bill = await self.get_bill(db, user, bill_id)
        await db.delete(bill)
        await db.commit()
        logger.info("Deleted bill id=%s owner=%s", bill_id, user.id)

    # --- Participants --------------------------------------------------
    async def add_participant(
        self, db: AsyncSession, user: User, bill_id: int, name: str, color: Optional[str] = None
    ) -> Participant:
        bill = await self._get_owned_bill(db, user, bill_id)
        check = await self.billing.enforce(db, user, LimitAction.ADD_PARTICIPANT, bill_id=bill.id)
        participant = Participant(bill_id=bill.id, name=name, color=color or participant_color(check.usage))
        db.add(participant)
        await db.commit()
        await db.refresh(participant)
        return participant

    async def remove_participant(self, db: AsyncSession, user: User, bill_id: int, participant_id: int) -> None:
        participant = await self._get_participant(db, user, bill_id, participant_id)
        await db.delete(participant)
        await db.commit()

    # --- Products ------------------------------------------------------
    @staticmethod
    def _build_allocations(
        participant_ids: Sequence[int], share_percentages: Optional[Sequence[float]]
    ) -> List[ProductParticipant]:
        ids = list(participant_ids)
        shares = list(share_percentages) if share_percentages is not None else equal_shares(len(ids))
        if len(shares) != len(ids):
            raise ValueError("share_percentages must have one entry per participant id")
        return [ProductParticipant(participant_id=pid, share_percentage=float(s)) for pid, s in zip(ids, shares)]

    async def add_product(
        self,
        db: AsyncSession,
        user: User,
        bill_id: int,
        name: str,
        price: float,
        quantity: int = 1,
        participant_ids: Sequence[int] = (),
        share_percentages: Optional[Sequence[float]] = None,
    ) -> Product:
        """Add a product; without explicit shares each participant gets 100/N."""
        bill = await self._get_owned_bill(db, user, bill_id)
        await self._check_participants(db, bill.id, participant_ids)
        product = Product(
            bill_id=bill.id,
            name=name,
            price=price,
            quantity=quantity,
            allocations=self._build_allocations(participant_ids, share_percentages),
        )
        db.add(product)
        await db.commit()
        if not participant_ids:
            logger.info("Product id=%s on bill id=%s has no participants; its cost is orphaned", product.id, bill.id)
        return await self.get_product(db, user, bill.id, product.id)

    async def update_product(
        self,
        db: AsyncSession,
        user: User,
        bill_id: int,
        product_id: int,
        name: Optional[str] = None,
        price: Optional[float] = None,
        quantity: Optional[int] = None,
        participant_ids: Optional[Sequence[int]] = None,
        share_percentages: Optional[Sequence[float]] = None,
    ) -> Product:
        product = await self.get_product(db, user, bill_id, product_id)
        if name is not None:
            product.name = name
        if price is not None:
            product.price = price
        if quantity is not None:
            product.quantity = quantity
        if participant_ids is not None:
            await self._check_participants(db, bill_id, participant_ids)
            new_allocations = self._build_allocations(participant_ids, share_percentages)
            product.allocations.clear()
            # old rows must be gone before re-inserting the same (product, participant) pairs
            await db.flush()
            product.allocations.extend(new_allocations)
        await db.commit()
        return await self.get_product(db, user, bill_id, product_id)

    async def delete_product(self, db: AsyncSession, user: User, bill_id: int, product_id: int) -> None:
        product = await self.get_product(db, user, bill_id, product_id)
        await db.delete(product)
        await db.commit()

    # --- Allocation read paths -----------------------------------------
    async def load_bill_graph(self, db: AsyncSession, user: User, bill_id: int) -> Tuple[Bill, BillRecord]:
        """Load the bill and its graph in one read transaction.

        The bill row and the ``selectinload`` follow-up queries share a
        transaction so the resulting snapshot is internally consistent.
        """
        if db.in_transaction():
            bill = await self.get_bill(db, user, bill_id)
        else:
            async with db.begin():
                bill = await self.get_bill(db, user, bill_id)
        return bill, to_bill_record(bill)

    async def summarize(self, db: AsyncSession, user: User, bill_id: int) -> Tuple[Bill, BillSummary]:
        bill, record = await self.load_bill_graph(db, user, bill_id)
        summary = aggregate_bill(record)
        orphaned = summary.orphaned_products
        if orphaned:
            logger.info(
                "Bill id=%s has %d orphaned product(s) totalling %s",
                bill_id,
                len(orphaned),
                summary.reconciliation.orphaned_amount,
            )
        return bill, summary

    async def get_bill_summary(self, db: AsyncSession, user: User, bill_id: int) -> BillSummary:
        _, summary = await self.summarize(db, user, bill_id)
        return summary


__all__ = ["BillService", "stated_total_of", "to_bill_record"]
