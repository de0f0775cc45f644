"""API routes for bills, their participants and products.

Summary and export both come from ``BillService.summarize`` so the two
never disagree; export only changes the presentation.
"""

from __future__ import annotations

import re
from typing import List

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.api.dependencies import get_bill_service, get_billing_service, get_db_session, get_user
from billsplit.core.observability import sentry_set_tags
from billsplit.models.enums import ExportFormat
from billsplit.models.schemas import (
    BillCreate,
    BillDetail,
    BillRead,
    BillSummaryRead,
    BillUpdate,
    ParticipantCreate,
    ParticipantRead,
    ProductCreate,
    ProductRead,
    ProductUpdate,
)
from billsplit.models.tables import User
from billsplit.services.bill_service import BillService
from billsplit.services.billing_service import BillingService
from billsplit.services.export_service import build_export_document, render_csv

router = APIRouter(prefix="/bills", tags=["bills"])


@router.get("", response_model=List[BillRead])
async def list_bills(
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> List[BillRead]:
    """List the current user's bills, newest first."""
    return [BillRead(**row) for row in await bills.list_bills(db, user)]


@router.post("", response_model=BillDetail, status_code=status.HTTP_201_CREATED)
async def create_bill(
    bill_in: BillCreate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> BillDetail:
    bill = await bills.create_bill(
        db,
        user,
        title=bill_in.title,
        description=bill_in.description,
        participant_names=bill_in.participant_names,
        total_amount=bill_in.total_amount,
        image_url=bill_in.image_url,
    )
    return BillDetail.model_validate(bill)


@router.get("/{bill_id}", response_model=BillDetail)
async def get_bill(
    bill_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> BillDetail:
    return BillDetail.model_validate(await bills.get_bill(db, user, bill_id))


@router.put("/{bill_id}", response_model=BillDetail)
async def update_bill(
    bill_id: int,
    bill_in: BillUpdate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> BillDetail:
    bill = await bills.update_bill(db, user, bill_id, **bill_in.model_dump(exclude_unset=True))
    return BillDetail.model_validate(bill)


@router.delete("/{bill_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_bill(
    bill_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> Response:
    await bills.delete_bill(db, user, bill_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Participants -----------------------------------------------------------


@router.post("/{bill_id}/participants", response_model=ParticipantRead, status_code=status.HTTP_201_CREATED)
async def add_participant(
    bill_id: int,
    participant_in: ParticipantCreate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> ParticipantRead:
    participant = await bills.add_participant(db, user, bill_id, participant_in.name, participant_in.color)
    return ParticipantRead.model_validate(participant)


@router.delete("/{bill_id}/participants/{participant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_participant(
    bill_id: int,
    participant_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> Response:
    await bills.remove_participant(db, user, bill_id, participant_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Products ---------------------------------------------------------------


@router.post("/{bill_id}/products", response_model=ProductRead, status_code=status.HTTP_201_CREATED)
async def add_product(
    bill_id: int,
    product_in: ProductCreate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> ProductRead:
    """Add a product; participants split it equally unless shares are given."""
    product = await bills.add_product(
        db,
        user,
        bill_id,
        name=product_in.name,
        price=product_in.price,
        quantity=product_in.quantity,
        participant_ids=product_in.participant_ids,
        share_percentages=product_in.share_percentages,
    )
    return ProductRead.model_validate(product)


@router.put("/{bill_id}/products/{product_id}", response_model=ProductRead)
async def update_product(
    bill_id: int,
    product_id: int,
    product_in: ProductUpdate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> ProductRead:
    product = await bills.update_product(
        db,
        user,
        bill_id,
        product_id,
        name=product_in.name,
        price=product_in.price,
        quantity=product_in.quantity,
        participant_ids=product_in.participant_ids,
        share_percentages=product_in.share_percentages,
    )
    return ProductRead.model_validate(product)


@router.delete("/{bill_id}/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    bill_id: int,
    product_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> Response:
    await bills.delete_product(db, user, bill_id, product_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# --- Summary & export -------------------------------------------------------


@router.get("/{bill_id}/summary", response_model=BillSummaryRead)
async def get_bill_summary(
    bill_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
) -> BillSummaryRead:
    """Per-participant totals plus the reconciliation record."""
    sentry_set_tags({"bill.id": bill_id})
    summary = await bills.get_bill_summary(db, user, bill_id)
    return BillSummaryRead(**summary.as_dict())


@router.get("/{bill_id}/export")
async def export_bill(
    bill_id: int,
    format: ExportFormat = Query(ExportFormat.JSON),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    bills: BillService = Depends(get_bill_service),
    billing: BillingService = Depends(get_billing_service),
):
    billing.enforce_export_format(user, format.value)
    bill, summary = await bills.summarize(db, user, bill_id)
    document = build_export_document(bill, summary)
    if format == ExportFormat.CSV:
        slug = re.sub(r"[^A-Za-z0-9]+", "-", bill.title).strip("-").lower() or "bill"
        return Response(
            content=render_csv(document),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="{slug}-{bill.id}.csv"'},
        )
    return document
