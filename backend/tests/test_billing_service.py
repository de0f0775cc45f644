from __future__ import annotations

import datetime as dt

import pytest

from billsplit.core.errors import LimitExceeded
from billsplit.models.enums import LimitAction, PlanType
from billsplit.models.tables import Bill, BillTemplate, Participant, User
from billsplit.services.billing_service import BillingService, UsageCounts, may_perform


@pytest.mark.parametrize(
    "action, usage, allowed",
    [
        (LimitAction.CREATE_BILL, UsageCounts(bills_this_month=2), True),
        (LimitAction.CREATE_BILL, UsageCounts(bills_this_month=3), False),
        (LimitAction.ADD_PARTICIPANT, UsageCounts(participants_on_bill=4), True),
        (LimitAction.ADD_PARTICIPANT, UsageCounts(participants_on_bill=5), False),
        (LimitAction.CREATE_TEMPLATE, UsageCounts(templates=1), True),
        (LimitAction.CREATE_TEMPLATE, UsageCounts(templates=2), False),
    ],
)
def test_free_plan_ceilings(action, usage, allowed):
    assert may_perform(PlanType.FREE, action, usage) is allowed


def test_premium_is_unbounded():
    huge = UsageCounts(bills_this_month=10_000, participants_on_bill=10_000, templates=10_000)
    for action in LimitAction:
        assert may_perform(PlanType.PREMIUM, action, huge) is True


def test_adding_several_participants_at_once():
    assert may_perform(PlanType.FREE, LimitAction.ADD_PARTICIPANT, UsageCounts(), adding=5) is True
    assert may_perform(PlanType.FREE, LimitAction.ADD_PARTICIPANT, UsageCounts(), adding=6) is False


def test_effective_plan_honours_expiry():
    svc = BillingService()
    now = dt.datetime(2024, 6, 1)
    lapsed = User(email="a@example.com", name="A", plan=PlanType.PREMIUM, subscription_expires_at=dt.datetime(2024, 5, 1))
    current = User(email="b@example.com", name="B", plan=PlanType.PREMIUM, subscription_expires_at=dt.datetime(2024, 7, 1))
    open_ended = User(email="c@example.com", name="C", plan=PlanType.PREMIUM)
    assert svc.effective_plan(lapsed, now=now) == PlanType.FREE
    assert svc.effective_plan(current, now=now) == PlanType.PREMIUM
    assert svc.effective_plan(open_ended, now=now) == PlanType.PREMIUM


@pytest.mark.asyncio
async def test_monthly_bill_count_ignores_previous_months(db_session, free_user):
    now = dt.datetime.utcnow()
    last_month = dt.datetime(now.year, now.month, 1) - dt.timedelta(days=1)
    db_session.add_all(
        [
            Bill(owner_id=free_user.id, title="old", created_at=last_month, updated_at=last_month),
            Bill(owner_id=free_user.id, title="new 1"),
            Bill(owner_id=free_user.id, title="new 2"),
        ]
    )
    await db_session.commit()
    svc = BillingService()
    assert await svc.get_monthly_bill_count(db_session, free_user.id) == 2
    check = await svc.check(db_session, free_user, LimitAction.CREATE_BILL)
    assert check.allowed is True
    assert check.as_dict() == {
        "allowed": True,
        "action": "create_bill",
        "quota": "bills_per_month",
        "limit": 3,
        "usage": 2,
    }


@pytest.mark.asyncio
async def test_enforce_raises_when_template_quota_used(db_session, free_user):
    db_session.add_all([BillTemplate(owner_id=free_user.id, name=f"t{i}") for i in range(2)])
    await db_session.commit()
    with pytest.raises(LimitExceeded) as excinfo:
        await BillingService().enforce(db_session, free_user, LimitAction.CREATE_TEMPLATE)
    details = excinfo.value.to_dict()
    assert details["quota"] == "templates"
    assert details["limit"] == 2
    assert details["usage"] == 2


@pytest.mark.asyncio
async def test_participant_count_is_per_bill(db_session, free_user):
    bill = Bill(owner_id=free_user.id, title="Trip", participants=[Participant(name=f"p{i}") for i in range(5)])
    db_session.add(bill)
    await db_session.commit()
    svc = BillingService()
    denied = await svc.check(db_session, free_user, LimitAction.ADD_PARTICIPANT, bill_id=bill.id)
    assert denied.allowed is False
    fresh = await svc.check(db_session, free_user, LimitAction.ADD_PARTICIPANT)
    assert fresh.allowed is True


@pytest.mark.asyncio
async def test_limits_report_and_features(db_session, free_user, premium_user):
    svc = BillingService()
    db_session.add(Bill(owner_id=free_user.id, title="one"))
    await db_session.commit()
    report = await svc.limits_report(db_session, free_user)
    assert report["plan"] == "free"
    assert report["bills_per_month"] == {"limit": 3, "unlimited": False, "used": 1, "remaining": 2}
    assert report["participants_per_bill"] == {"limit": 5, "unlimited": False}

    premium_report = await svc.limits_report(db_session, premium_user)
    assert premium_report["templates"]["unlimited"] is True
    assert premium_report["templates"]["remaining"] is None

    assert svc.feature_flags(PlanType.FREE)["export_formats"] == ["json"]
    assert svc.feature_flags(PlanType.PREMIUM)["export_formats"] == ["json", "csv"]


def test_csv_export_requires_premium():
    svc = BillingService()
    free = User(email="f@example.com", name="F", plan=PlanType.FREE)
    premium = User(email="p@example.com", name="P", plan=PlanType.PREMIUM)
    svc.enforce_export_format(free, "json")
    svc.enforce_export_format(premium, "csv")
    with pytest.raises(LimitExceeded):
        svc.enforce_export_format(free, "csv")
