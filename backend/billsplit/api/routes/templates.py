"""API routes for reusable participant templates."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.api.dependencies import get_db_session, get_template_service, get_user
from billsplit.models.schemas import BillDetail, TemplateApply, TemplateCreate, TemplateRead, TemplateUpdate
from billsplit.models.tables import User
from billsplit.services.template_service import TemplateService

router = APIRouter(prefix="/templates", tags=["templates"])


@router.get("", response_model=List[TemplateRead])
async def list_templates(
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> List[TemplateRead]:
    return [TemplateRead.model_validate(t) for t in await templates.list_templates(db, user)]


@router.post("", response_model=TemplateRead, status_code=status.HTTP_201_CREATED)
async def create_template(
    template_in: TemplateCreate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> TemplateRead:
    template = await templates.create_template(
        db,
        user,
        name=template_in.name,
        description=template_in.description,
        participants=[p.model_dump() for p in template_in.participants],
    )
    return TemplateRead.model_validate(template)


@router.get("/{template_id}", response_model=TemplateRead)
async def get_template(
    template_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> TemplateRead:
    return TemplateRead.model_validate(await templates.get_template(db, user, template_id))


@router.put("/{template_id}", response_model=TemplateRead)
async def update_template(
    template_id: int,
    template_in: TemplateUpdate,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> TemplateRead:
    participants = None
    if template_in.participants is not None:
        participants = [p.model_dump() for p in template_in.participants]
    template = await templates.update_template(
        db,
        user,
        template_id,
        name=template_in.name,
        description=template_in.description,
        participants=participants,
    )
    return TemplateRead.model_validate(template)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> Response:
    await templates.delete_template(db, user, template_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{template_id}/apply", response_model=BillDetail, status_code=status.HTTP_201_CREATED)
async def apply_template(
    template_id: int,
    apply_in: TemplateApply,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    templates: TemplateService = Depends(get_template_service),
) -> BillDetail:
    """Start a new bill with the template's participants."""
    bill = await templates.apply_template(
        db,
        user,
        template_id,
        title=apply_in.title,
        description=apply_in.description,
        total_amount=apply_in.total_amount,
    )
    return BillDetail.model_validate(bill)
