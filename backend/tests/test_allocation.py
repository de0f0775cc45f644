from __future__ import annotations

from decimal import Decimal

import pytest

from billsplit.core.errors import InvalidAllocation
from billsplit.services.allocation import (
    AllocationShare,
    BillRecord,
    ParticipantRecord,
    ProductRecord,
    RejectedProduct,
    aggregate_bill,
    allocate_product,
    format_money,
    money_to_float,
    normalize_shares,
    to_decimal,
)

A, B, C = 1, 2, 3
PEOPLE = (
    ParticipantRecord(A, "Alice"),
    ParticipantRecord(B, "Bob"),
    ParticipantRecord(C, "Carol"),
)


def _bill(*products, stated_total=0, participants=PEOPLE):
    return BillRecord(id=10, title="Dinner", stated_total=stated_total, participants=participants, products=products)


# --- normalize_shares ---------------------------------------------------


def test_normalize_shares_is_scale_invariant():
    expected = normalize_shares([(A, 70), (B, 30)])
    assert normalize_shares([(A, 7), (B, 3)]) == expected
    assert normalize_shares([(A, 1.4), (B, 0.6)]) == expected
    assert expected == {A: Decimal("0.7"), B: Decimal("0.3")}


def test_normalize_shares_keeps_input_order():
    weights = normalize_shares([AllocationShare(C, 1), AllocationShare(A, 1), AllocationShare(B, 2)])
    assert list(weights) == [C, A, B]


def test_normalize_shares_allows_zero_next_to_positive():
    weights = normalize_shares([(A, 0), (B, 50)])
    assert weights == {A: Decimal("0"), B: Decimal("1")}


@pytest.mark.parametrize(
    "shares, message",
    [
        ([], "no participants"),
        ([(A, 0), (B, 0)], "sum to zero"),
        ([(A, -10), (B, 110)], "negative"),
        ([(A, 50), (A, 50)], "more than once"),
        ([(A, float("nan"))], "finite"),
        ([(A, float("inf"))], "finite"),
    ],
)
def test_normalize_shares_rejects_invalid_input(shares, message):
    with pytest.raises(InvalidAllocation) as excinfo:
        normalize_shares(shares, product_id=99)
    assert message in excinfo.value.reason
    assert excinfo.value.product_id == 99


# --- allocate_product ---------------------------------------------------


def test_allocate_uneven_shares():
    product = ProductRecord(id=1, name="Wine", price=10.00, allocations=[(A, 70), (B, 30)])
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert owed == {A: Decimal("7.00"), B: Decimal("3.00")}


def test_allocate_three_way_split_sums_exactly():
    product = ProductRecord(id=1, name="Pizza", price=9.99, allocations=[(A, 100), (B, 100), (C, 100)])
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert [format_money(v) for v in owed.values()] == ["3.33", "3.33", "3.33"]
    assert sum(owed.values()) == Decimal("9.99")


def test_allocate_ten_dollars_three_ways_last_takes_residual():
    product = ProductRecord(id=1, name="Cake", price=10.00, allocations=[(A, 1), (B, 1), (C, 1)])
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert owed == {A: Decimal("3.33"), B: Decimal("3.33"), C: Decimal("3.34")}


def test_allocate_residual_goes_to_last_in_given_order():
    product = ProductRecord(id=1, name="Cake", price=10.00, allocations=[(C, 1), (A, 1), (B, 1)])
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert list(owed.items()) == [(C, Decimal("3.33")), (A, Decimal("3.33")), (B, Decimal("3.34"))]


def test_allocate_takes_cents_back_when_last_would_go_negative():
    # 0.005 rounds up to a cent for both A and B, leaving -0.01 for C
    product = ProductRecord(id=1, name="Mint", price=0.01, allocations=[(A, 1), (B, 1), (C, 0)])
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert owed == {A: Decimal("0.01"), B: Decimal("0.00"), C: Decimal("0.00")}
    assert sum(owed.values()) == Decimal("0.01")


def test_sub_cent_prices_keep_full_precision():
    product = ProductRecord(id=1, name="Screw", price=Decimal("0.125"), quantity=3, allocations=[(A, 1), (B, 1)])
    assert product.line_cost == Decimal("0.375")
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert owed == {A: Decimal("0.19"), B: Decimal("0.185")}
    summary = aggregate_bill(_bill(product))
    assert summary.reconciliation.computed_total == Decimal("0.375")
    assert summary.reconciliation.allocated_total == Decimal("0.375")
    assert format_money(summary.total_for(B)) == "0.19"


def test_allocate_never_negative_with_many_tiny_shares():
    shares = [(i, 1) for i in range(7)]
    product = ProductRecord(id=1, name="Gum", price=0.05, allocations=shares)
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert sum(owed.values()) == Decimal("0.05")
    assert all(v >= 0 for v in owed.values())


def test_allocate_uses_quantity_and_equal_float_shares():
    equal = 100.0 / 3
    product = ProductRecord(id=1, name="Beer", price=4.50, quantity=3, allocations=[(A, equal), (B, equal), (C, equal)])
    assert product.line_cost == Decimal("13.50")
    owed = allocate_product(product, normalize_shares(product.allocations))
    assert owed == {A: Decimal("4.50"), B: Decimal("4.50"), C: Decimal("4.50")}


def test_allocate_requires_weights():
    product = ProductRecord(id=5, name="Tea", price=2)
    with pytest.raises(InvalidAllocation):
        allocate_product(product, {})


# --- properties over arbitrary shares and bills ------------------------


@pytest.mark.parametrize(
    "shares",
    [
        [1, 1, 1],
        [0.1, 0.2, 0.7],
        [33.3, 33.3, 33.4],
        [100.0 / 3, 100.0 / 3, 100.0 / 3],
        [1, 2, 3, 4, 5, 6, 7],
        [0.001, 999.999],
        [50],
    ],
)
@pytest.mark.parametrize("price, quantity", [(9.99, 1), (10.00, 3), (0.01, 1), (123.45, 7)])
def test_weights_sum_to_one_and_amounts_to_line_cost(shares, price, quantity):
    allocations = [(i, s) for i, s in enumerate(shares)]
    weights = normalize_shares(allocations)
    assert abs(sum(weights.values()) - 1) <= Decimal("1e-9")

    product = ProductRecord(id=1, name="Item", price=price, quantity=quantity, allocations=allocations)
    owed = allocate_product(product, weights)
    assert sum(owed.values()) == product.line_cost
    assert all(v >= 0 for v in owed.values())


MIXED_PRODUCTS = {
    "valid": ProductRecord(id=1, name="Pizza", price=9.99, allocations=[(A, 1), (B, 1), (C, 1)]),
    "uneven": ProductRecord(id=2, name="Wine", price=17.35, quantity=2, allocations=[(A, 70), (C, 30)]),
    "zero_shares": ProductRecord(id=3, name="Water", price=1.25, allocations=[(A, 0), (B, 0)]),
    "unknown_participant": ProductRecord(id=4, name="Soda", price=2.10, allocations=[(A, 50), (42, 50)]),
    "empty": ProductRecord(id=5, name="Bread", price=2.50),
    "rejected": RejectedProduct(id=6, name="Broken", reason="price must be finite", quantity=1),
}


@pytest.mark.parametrize(
    "keys",
    [
        [],
        ["valid"],
        ["empty"],
        ["valid", "uneven"],
        ["valid", "zero_shares", "empty"],
        ["uneven", "unknown_participant"],
        ["valid", "uneven", "zero_shares", "unknown_participant", "empty", "rejected"],
    ],
)
def test_allocated_plus_orphaned_equals_computed(keys):
    products = [MIXED_PRODUCTS[k] for k in keys]
    rec = aggregate_bill(_bill(*products, stated_total=50)).reconciliation
    assert rec.allocated_total + rec.orphaned_amount == rec.computed_total
    assert rec.computed_total == sum((p.line_cost for p in products if isinstance(p, ProductRecord)), Decimal(0))


# --- aggregate_bill -----------------------------------------------------


def test_milk_split_equally_between_two():
    milk = ProductRecord(id=1, name="Milk", price=3.00, quantity=2, allocations=[(A, 50), (B, 50)])
    summary = aggregate_bill(_bill(milk, stated_total=30, participants=PEOPLE[:2]))
    assert summary.total_for(A) == Decimal("3.00")
    assert summary.total_for(B) == Decimal("3.00")
    rec = summary.reconciliation
    assert rec.computed_total == Decimal("6.00")
    assert rec.orphaned_amount == Decimal("0")
    assert rec.stated_difference == Decimal("24.00")


def test_product_without_participants_is_orphaned_not_fatal():
    empty = ProductRecord(id=1, name="Bread", price=2.50)
    milk = ProductRecord(id=2, name="Milk", price=3.00, quantity=2, allocations=[(A, 100), (B, 100)])
    summary = aggregate_bill(_bill(empty, milk))
    assert [p.product_id for p in summary.orphaned_products] == [1]
    assert summary.orphaned_products[0].error == "product has no participants assigned"
    rec = summary.reconciliation
    assert rec.orphaned_amount == Decimal("2.50")
    assert rec.allocated_total == Decimal("6.00")
    assert rec.allocated_total + rec.orphaned_amount == rec.computed_total


def test_unknown_participant_orphans_product():
    product = ProductRecord(id=1, name="Soda", price=1.00, allocations=[(A, 50), (42, 50)])
    summary = aggregate_bill(_bill(product))
    breakdown = summary.products[0]
    assert breakdown.orphaned is True
    assert "not on this bill" in breakdown.error
    assert summary.total_for(A) == Decimal("0")


def test_participants_without_items_still_listed():
    product = ProductRecord(id=1, name="Soup", price=5, allocations=[(A, 100)])
    summary = aggregate_bill(_bill(product))
    assert [p.participant_id for p in summary.participants] == [A, B, C]
    assert [p.items_count for p in summary.participants] == [1, 0, 0]
    assert summary.total_for(C) == Decimal("0")


def test_summary_as_dict_shape():
    product = ProductRecord(id=1, name="Wine", price=10, allocations=[(A, 70), (B, 30)])
    data = aggregate_bill(_bill(product, stated_total=12.5)).as_dict()
    assert data["bill_id"] == 10
    assert data["participants"][0] == {"id": A, "name": "Alice", "color": None, "total_owed": 7.0, "items_count": 1}
    assert data["products"][0]["shares"] == [
        {"participant_id": A, "amount": 7.0},
        {"participant_id": B, "amount": 3.0},
    ]
    assert data["reconciliation"] == {
        "stated_total": 12.5,
        "computed_total": 10.0,
        "allocated_total": 10.0,
        "orphaned_amount": 0.0,
        "stated_difference": 2.5,
    }


def test_duplicate_participant_ids_rejected():
    with pytest.raises(ValueError):
        BillRecord(id=1, title="x", participants=(ParticipantRecord(A, "a"), ParticipantRecord(A, "b")))


def test_record_validation():
    with pytest.raises(ValueError):
        ProductRecord(id=1, name="x", price=-1)
    with pytest.raises(ValueError):
        ProductRecord(id=1, name="x", price=1, quantity=0)
    with pytest.raises(ValueError):
        ParticipantRecord(id=1, name="  ")


def test_rejected_product_is_reported_as_orphaned():
    soup = ProductRecord(id=1, name="Soup", price=5, allocations=[(A, 1), (B, 1)])
    broken = RejectedProduct(id=2, name="Broken", reason="price must be finite", quantity=1)
    summary = aggregate_bill(_bill(soup, broken))
    assert [p.product_id for p in summary.orphaned_products] == [2]
    assert summary.orphaned_products[0].error == "price must be finite"
    assert summary.reconciliation.computed_total == Decimal("5")
    assert summary.total_for(A) == Decimal("2.50")


# --- presentation -------------------------------------------------------


def test_money_helpers():
    assert format_money(Decimal("3.335")) == "3.34"
    assert format_money(2) == "2.00"
    assert money_to_float(Decimal("1.005")) == 1.01
    assert to_decimal(0.1) == Decimal("0.1")
    with pytest.raises(ValueError):
        to_decimal(float("nan"))
    with pytest.raises(ValueError):
        to_decimal(True)
