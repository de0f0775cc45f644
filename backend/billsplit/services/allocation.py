"""Cost allocation engine for bills.

Given a bill's products, each with a price, a quantity and a set of
participants holding share percentages, the engine computes how much
each participant owes and reconciles that against the bill totals.

The engine is made of three pure pieces:

* ``normalize_shares`` – turns a product's share percentages into
  fractional weights.  Shares are relative, so they do not need to sum
  to 100; ``[70, 30]``, ``[7, 3]`` and ``[1.4, 0.6]`` all produce the
  same split.
* ``allocate_product`` – distributes one product's line cost across its
  participants in whole cents.  All participants but the last are
  assigned by multiplication; the last receives ``total - sum(others)``
  so that the amounts always add up to the line cost exactly.
* ``aggregate_bill`` – walks every product on a bill, accumulates
  per-participant totals and produces a reconciliation record comparing
  the stated total, the sum of line costs and the allocated amount.

A product whose shares cannot be normalised (no participants, only
zero shares, unknown participants), or whose stored values are not
usable (a ``RejectedProduct``), does not fail the bill.  Its whole
line cost is reported as orphaned and the reason is kept on the
product breakdown.

Money is handled as :class:`decimal.Decimal`.  Line costs and the
reconciliation keep full precision; owed amounts are whole cents except
the last participant's, which absorbs any sub-cent remainder of the line.
Rounding for display happens in ``format_money`` and ``money_to_float``.
Nothing in this module touches the database.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from billsplit.core.errors import InvalidAllocation

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value: Any, name: str = "value") -> Decimal:
    """Convert a number to ``Decimal`` and reject NaN/infinity.

    Floats go through their shortest ``repr`` so that ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"{name} must be finite")
        result = Decimal(repr(value))
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as exc:
            raise ValueError(f"{name} must be a number") from exc
    if not result.is_finite():
        raise ValueError(f"{name} must be finite")
    return result


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def format_money(value: Any) -> str:
    """Presentation format used by exports: two fixed decimals."""
    return str(quantize_money(to_decimal(value)))


def money_to_float(value: Any) -> float:
    return float(quantize_money(to_decimal(value)))


# ---------------------------------------------------------------------------
# Input records


@dataclass(frozen=True)
class AllocationShare:
    """One participant's relative share of a product."""

    participant_id: Any
    share_percentage: Any = 100

    def __post_init__(self) -> None:
        to_decimal(self.share_percentage, "share_percentage")


@dataclass(frozen=True)
class ParticipantRecord:
    id: Any
    name: str
    color: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name or not str(self.name).strip():
            raise ValueError("participant name must not be empty")


@dataclass(frozen=True)
class ProductRecord:
    """A bill line: ``price`` per unit times a positive integer ``quantity``."""

    id: Any
    name: str
    price: Any
    quantity: int = 1
    allocations: Tuple[AllocationShare, ...] = ()

    def __post_init__(self) -> None:
        price = to_decimal(self.price, "price")
        if price < 0:
            raise ValueError("price must not be negative")
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValueError("quantity must be a positive integer")
        shares = tuple(
            a if isinstance(a, AllocationShare) else AllocationShare(*a)
            for a in self.allocations
        )
        object.__setattr__(self, "allocations", shares)

    @property
    def line_cost(self) -> Decimal:
        return to_decimal(self.price, "price") * self.quantity


@dataclass(frozen=True)
class RejectedProduct:
    """A stored product whose values could not form a ``ProductRecord``.

    The aggregator reports it as orphaned with ``reason`` and a zero line
    cost, since its amount is not a usable number.
    """

    id: Any
    name: str
    reason: str
    quantity: int = 0


@dataclass(frozen=True)
class BillRecord:
    """A bill snapshot: participants and products loaded together."""

    id: Any
    title: str
    stated_total: Any = 0
    participants: Tuple[ParticipantRecord, ...] = ()
    products: Tuple[Union[ProductRecord, RejectedProduct], ...] = ()

    def __post_init__(self) -> None:
        stated = to_decimal(self.stated_total, "stated_total")
        if stated < 0:
            raise ValueError("stated_total must not be negative")
        participants = tuple(self.participants)
        ids = [p.id for p in participants]
        if len(ids) != len(set(ids)):
            raise ValueError("participant ids must be unique within a bill")
        object.__setattr__(self, "participants", participants)
        object.__setattr__(self, "products", tuple(self.products))


# ---------------------------------------------------------------------------
# Output records


@dataclass(frozen=True)
class ParticipantTotal:
    participant_id: Any
    name: str
    color: Optional[str]
    total_owed: Decimal
    items_count: int


@dataclass(frozen=True)
class ProductBreakdown:
    product_id: Any
    name: str
    price: Decimal
    quantity: int
    line_cost: Decimal
    shares: Dict[Any, Decimal] = field(default_factory=dict)
    weights: Dict[Any, Decimal] = field(default_factory=dict)
    orphaned: bool = False
    error: Optional[str] = None


@dataclass(frozen=True)
class Reconciliation:
    """Stated vs computed vs allocated totals for one bill.

    ``allocated_total + orphaned_amount == computed_total`` always holds.
    ``stated_total`` is whatever the user entered and may differ from the
    sum of the product lines; ``stated_difference`` surfaces that gap.
    """

    stated_total: Decimal
    computed_total: Decimal
    allocated_total: Decimal
    orphaned_amount: Decimal

    @property
    def stated_difference(self) -> Decimal:
        return self.stated_total - self.computed_total

    def as_dict(self) -> Dict[str, float]:
        return {
            "stated_total": money_to_float(self.stated_total),
            "computed_total": money_to_float(self.computed_total),
            "allocated_total": money_to_float(self.allocated_total),
            "orphaned_amount": money_to_float(self.orphaned_amount),
            "stated_difference": money_to_float(self.stated_difference),
        }


@dataclass(frozen=True)
class BillSummary:
    bill_id: Any
    title: str
    participants: Tuple[ParticipantTotal, ...]
    products: Tuple[ProductBreakdown, ...]
    reconciliation: Reconciliation

    def total_for(self, participant_id: Any) -> Decimal:
        for p in self.participants:
            if p.participant_id == participant_id:
                return p.total_owed
        return ZERO

    @property
    def orphaned_products(self) -> Tuple[ProductBreakdown, ...]:
        return tuple(p for p in self.products if p.orphaned)

    def as_dict(self) -> Dict[str, Any]:
        """JSON-friendly view with amounts rounded to two decimals."""
        return {
            "bill_id": self.bill_id,
            "title": self.title,
            "participants": [
                {
                    "id": p.participant_id,
                    "name": p.name,
                    "color": p.color,
                    "total_owed": money_to_float(p.total_owed),
                    "items_count": p.items_count,
                }
                for p in self.participants
            ],
            "products": [
                {
                    "id": b.product_id,
                    "name": b.name,
                    "price": money_to_float(b.price),
                    "quantity": b.quantity,
                    "line_cost": money_to_float(b.line_cost),
                    "orphaned": b.orphaned,
                    "error": b.error,
                    "shares": [
                        {"participant_id": pid, "amount": money_to_float(amount)}
                        for pid, amount in b.shares.items()
                    ],
                }
                for b in self.products
            ],
            "reconciliation": self.reconciliation.as_dict(),
        }


# ---------------------------------------------------------------------------
# Engine


def _as_pair(entry: Any) -> Tuple[Any, Any]:
    if isinstance(entry, AllocationShare):
        return entry.participant_id, entry.share_percentage
    participant_id, share = entry
    return participant_id, share


def normalize_shares(shares: Iterable[Any], product_id: Any = None) -> Dict[Any, Decimal]:
    """Resolve share percentages into weights that sum to one.

    ``shares`` is an ordered iterable of ``(participant_id, share)`` pairs
    or :class:`AllocationShare` objects.  Order is preserved in the result
    because the allocator gives the rounding residual to the last entry.

    Raises :class:`InvalidAllocation` when the list is empty, when a
    share is negative or not a finite number, when a participant is
    listed twice, or when the shares sum to zero.
    """
    values: list[Tuple[Any, Decimal]] = []
    seen: set = set()
    total = ZERO
    for entry in shares:
        participant_id, share = _as_pair(entry)
        if participant_id in seen:
            raise InvalidAllocation(f"participant {participant_id!r} is assigned more than once", product_id)
        seen.add(participant_id)
        try:
            value = to_decimal(share, "share_percentage")
        except ValueError as exc:
            raise InvalidAllocation(str(exc), product_id) from exc
        if value < 0:
            raise InvalidAllocation("share percentages must not be negative", product_id)
        values.append((participant_id, value))
        total += value
    if not values:
        raise InvalidAllocation("product has no participants assigned", product_id)
    if total <= 0:
        raise InvalidAllocation("share percentages sum to zero", product_id)
    return {participant_id: value / total for participant_id, value in values}


def allocate_product(product: ProductRecord, weights: Mapping[Any, Any]) -> Dict[Any, Decimal]:
    """Split ``product.line_cost`` across ``weights``.

    Every participant but the last is assigned ``round(total * w_i)`` to
    the cent; the last receives ``total - sum(others)`` so the amounts add
    up to the line cost exactly.  If rounding up the others leaves the last
    amount negative, cents are taken back from the preceding participants,
    nearest first, until it is not.
    """
    if not weights:
        raise InvalidAllocation("product has no weights to allocate", product.id)
    total = product.line_cost
    items = list(weights.items())
    owed: Dict[Any, Decimal] = {}
    for participant_id, weight in items[:-1]:
        w = to_decimal(weight, "weight")
        if w < 0:
            raise InvalidAllocation("weights must not be negative", product.id)
        owed[participant_id] = quantize_money(total * w)
    last_id = items[-1][0]
    residual = total - sum(owed.values(), ZERO)
    if residual < 0:
        for participant_id in reversed(list(owed)):
            while residual < 0 and owed[participant_id] >= CENT:
                owed[participant_id] -= CENT
                residual += CENT
            if residual >= 0:
                break
    owed[last_id] = residual
    return owed


def aggregate_bill(bill: BillRecord) -> BillSummary:
    """Compute per-participant totals and the reconciliation record."""
    totals: Dict[Any, Decimal] = {p.id: ZERO for p in bill.participants}
    counts: Dict[Any, int] = {p.id: 0 for p in bill.participants}
    breakdowns: list[ProductBreakdown] = []
    computed = ZERO

    for product in bill.products:
        if isinstance(product, RejectedProduct):
            breakdowns.append(
                ProductBreakdown(
                    product_id=product.id,
                    name=product.name,
                    price=ZERO,
                    quantity=product.quantity,
                    line_cost=ZERO,
                    orphaned=True,
                    error=product.reason,
                )
            )
            continue
        line_cost = product.line_cost
        computed += line_cost
        price = to_decimal(product.price, "price")
        try:
            for share in product.allocations:
                if share.participant_id not in totals:
                    raise InvalidAllocation(
                        f"participant {share.participant_id!r} is not on this bill", product.id
                    )
            weights = normalize_shares(product.allocations, product_id=product.id)
            amounts = allocate_product(product, weights)
        except InvalidAllocation as exc:
            breakdowns.append(
                ProductBreakdown(
                    product_id=product.id,
                    name=product.name,
                    price=price,
                    quantity=product.quantity,
                    line_cost=line_cost,
                    orphaned=True,
                    error=exc.reason,
                )
            )
            continue

        for participant_id, amount in amounts.items():
            totals[participant_id] += amount
            counts[participant_id] += 1
        breakdowns.append(
            ProductBreakdown(
                product_id=product.id,
                name=product.name,
                price=price,
                quantity=product.quantity,
                line_cost=line_cost,
                shares=amounts,
                weights=weights,
            )
        )

    allocated = sum(totals.values(), ZERO)
    reconciliation = Reconciliation(
        stated_total=to_decimal(bill.stated_total, "stated_total"),
        computed_total=computed,
        allocated_total=allocated,
        orphaned_amount=computed - allocated,
    )
    participants = tuple(
        ParticipantTotal(
            participant_id=p.id,
            name=p.name,
            color=p.color,
            total_owed=totals[p.id],
            items_count=counts[p.id],
        )
        for p in bill.participants
    )
    return BillSummary(
        bill_id=bill.id,
        title=bill.title,
        participants=participants,
        products=tuple(breakdowns),
        reconciliation=reconciliation,
    )


__all__ = [
    "AllocationShare",
    "ParticipantRecord",
    "ProductRecord",
    "RejectedProduct",
    "BillRecord",
    "ParticipantTotal",
    "ProductBreakdown",
    "Reconciliation",
    "BillSummary",
    "normalize_shares",
    "allocate_product",
    "aggregate_bill",
    "format_money",
    "money_to_float",
    "quantize_money",
    "to_decimal",
]
