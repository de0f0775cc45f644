from __future__ import annotations

from decimal import Decimal

import pytest

from billsplit.core.errors import LimitExceeded, NotFound
from billsplit.models.enums import PlanType
from billsplit.models.tables import User
from billsplit.services.bill_service import BillService
from billsplit.utils.helpers import PARTICIPANT_COLORS


@pytest.mark.asyncio
async def test_create_bill_assigns_palette_colors(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Groceries", participant_names=["Ann", "Ben"])
    assert [p.name for p in bill.participants] == ["Ann", "Ben"]
    assert [p.color for p in bill.participants] == PARTICIPANT_COLORS[:2]


@pytest.mark.asyncio
async def test_equal_split_summary(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Shop", participant_names=["A", "B"], total_amount=30)
    a, b = (p.id for p in bill.participants)
    product = await svc.add_product(db_session, free_user, bill.id, name="Milk", price=3.0, quantity=2, participant_ids=[a, b])
    assert [alloc.share_percentage for alloc in product.allocations] == [50.0, 50.0]

    summary = await svc.get_bill_summary(db_session, free_user, bill.id)
    assert summary.total_for(a) == Decimal("3.00")
    assert summary.total_for(b) == Decimal("3.00")
    assert summary.reconciliation.computed_total == Decimal("6.00")
    assert summary.reconciliation.orphaned_amount == Decimal("0")
    assert summary.reconciliation.stated_total == Decimal("30.00")


@pytest.mark.asyncio
async def test_product_without_participants_is_orphaned(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Trip", participant_names=["A", "B", "C"])
    ids = [p.id for p in bill.participants]
    await svc.add_product(db_session, free_user, bill.id, name="Snacks", price=4.5)
    await svc.add_product(db_session, free_user, bill.id, name="Pizza", price=9.99, participant_ids=ids)

    summary = await svc.get_bill_summary(db_session, free_user, bill.id)
    assert [p.name for p in summary.orphaned_products] == ["Snacks"]
    assert summary.reconciliation.orphaned_amount == Decimal("4.50")
    assert sorted(summary.total_for(pid) for pid in ids) == [Decimal("3.33")] * 3
    assert summary.reconciliation.allocated_total == Decimal("9.99")


@pytest.mark.asyncio
async def test_update_product_replaces_allocations(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Dinner", participant_names=["A", "B"])
    a, b = (p.id for p in bill.participants)
    product = await svc.add_product(db_session, free_user, bill.id, name="Wine", price=10, participant_ids=[a, b])

    updated = await svc.update_product(
        db_session, free_user, bill.id, product.id, participant_ids=[a, b], share_percentages=[70, 30]
    )
    assert [(x.participant_id, x.share_percentage) for x in updated.allocations] == [(a, 70.0), (b, 30.0)]

    summary = await svc.get_bill_summary(db_session, free_user, bill.id)
    assert summary.total_for(a) == Decimal("7.00")
    assert summary.total_for(b) == Decimal("3.00")


@pytest.mark.asyncio
async def test_removing_participant_drops_their_allocations(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Lunch", participant_names=["A", "B"])
    a, b = (p.id for p in bill.participants)
    await svc.add_product(db_session, free_user, bill.id, name="Salad", price=8, participant_ids=[a, b])

    await svc.remove_participant(db_session, free_user, bill.id, b)
    summary = await svc.get_bill_summary(db_session, free_user, bill.id)
    assert [p.participant_id for p in summary.participants] == [a]
    assert summary.total_for(a) == Decimal("8.00")


@pytest.mark.asyncio
async def test_bills_are_scoped_to_owner(db_session, free_user):
    other = User(email="other@example.com", name="Other", plan=PlanType.FREE)
    db_session.add(other)
    await db_session.commit()

    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Mine", participant_names=["A"])
    with pytest.raises(NotFound):
        await svc.get_bill(db_session, other, bill.id)
    with pytest.raises(NotFound):
        await svc.get_bill_summary(db_session, other, bill.id)
    assert await svc.list_bills(db_session, other) == []


@pytest.mark.asyncio
async def test_unknown_participant_rejected_on_add_product(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Mine", participant_names=["A"])
    with pytest.raises(NotFound) as excinfo:
        await svc.add_product(db_session, free_user, bill.id, name="X", price=1, participant_ids=[9999])
    assert excinfo.value.to_dict() == {"resource": "participant", "id": 9999}


@pytest.mark.asyncio
async def test_free_plan_caps_bills_and_participants(db_session, free_user):
    svc = BillService()
    for i in range(3):
        await svc.create_bill(db_session, free_user, title=f"Bill {i}")
    with pytest.raises(LimitExceeded):
        await svc.create_bill(db_session, free_user, title="One too many")


@pytest.mark.asyncio
async def test_free_plan_caps_participants_per_bill(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Party", participant_names=[f"P{i}" for i in range(5)])
    with pytest.raises(LimitExceeded):
        await svc.add_participant(db_session, free_user, bill.id, "Sixth")
    with pytest.raises(LimitExceeded):
        await svc.create_bill(db_session, free_user, title="Crowd", participant_names=[f"P{i}" for i in range(6)])


@pytest.mark.asyncio
async def test_premium_has_no_caps(db_session, premium_user):
    svc = BillService()
    for i in range(4):
        await svc.create_bill(db_session, premium_user, title=f"Bill {i}")
    bill = await svc.create_bill(db_session, premium_user, title="Big", participant_names=[f"P{i}" for i in range(8)])
    participant = await svc.add_participant(db_session, premium_user, bill.id, "Ninth")
    assert participant.color == PARTICIPANT_COLORS[8 % len(PARTICIPANT_COLORS)]


@pytest.mark.asyncio
async def test_list_bills_reports_counts(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Counted", participant_names=["A", "B"])
    await svc.add_product(db_session, free_user, bill.id, name="Item", price=1)
    rows = await svc.list_bills(db_session, free_user)
    assert rows[0]["participant_count"] == 2
    assert rows[0]["product_count"] == 1


@pytest.mark.asyncio
async def test_delete_bill(db_session, free_user):
    svc = BillService()
    bill = await svc.create_bill(db_session, free_user, title="Gone", participant_names=["A"])
    await svc.add_product(db_session, free_user, bill.id, name="Item", price=1, participant_ids=[bill.participants[0].id])
    await svc.delete_bill(db_session, free_user, bill.id)
    with pytest.raises(NotFound):
        await svc.get_bill(db_session, free_user, bill.id)
