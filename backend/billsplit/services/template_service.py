"""Bill templates: reusable participant lists.

Applying a template creates a regular bill through ``BillService`` so
the same plan limits apply as for a hand-made bill.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from billsplit.core.errors import NotFound
from billsplit.models.enums import LimitAction
from billsplit.models.tables import Bill, BillTemplate, TemplateParticipant, User
from billsplit.services.bill_service import BillService
from billsplit.services.billing_service import BillingService
from billsplit.utils.helpers import participant_color

logger = logging.getLogger(__name__)


def _participant_rows(participants: Sequence[Dict[str, Any]]) -> List[TemplateParticipant]:
    return [
        TemplateParticipant(name=p["name"], color=p.get("color") or participant_color(i))
        for i, p in enumerate(participants)
    ]


class TemplateService:
    def __init__(self, billing: Optional[BillingService] = None, bills: Optional[BillService] = None) -> None:
        self.billing = billing or BillingService()
        self.bills = bills or BillService(self.billing)

    async def list_templates(self, db: AsyncSession, user: User) -> List[BillTemplate]:
        q = (
            select(BillTemplate)
            .where(BillTemplate.owner_id == user.id)
            .options(selectinload(BillTemplate.participants))
            .order_by(BillTemplate.created_at.desc(), BillTemplate.id.desc())
        )
        return list((await db.execute(q)).scalars().all())

    async def get_template(self, db: AsyncSession, user: User, template_id: int) -> BillTemplate:
        q = (
            select(BillTemplate)
            .where(BillTemplate.id == template_id, BillTemplate.owner_id == user.id)
            .options(selectinload(BillTemplate.participants))
            .execution_options(populate_existing=True)
        )
        template = (await db.execute(q)).scalar_one_or_none()
        if template is None:
            raise NotFound("template", template_id)
        return template

    async def create_template(
        self,
        db: AsyncSession,
        user: User,
        name: str,
        description: Optional[str] = None,
        participants: Sequence[Dict[str, Any]] = (),
    ) -> BillTemplate:
        await self.billing.enforce(db, user, LimitAction.CREATE_TEMPLATE)
        if participants:
            await self.billing.enforce(db, user, LimitAction.ADD_PARTICIPANT, adding=len(participants))
        template = BillTemplate(
            owner_id=user.id,
            name=name,
            description=description,
            participants=_participant_rows(participants),
        )
        db.add(template)
        await db.commit()
        logger.info("Created template id=%s owner=%s", template.id, user.id)
        return await self.get_template(db, user, template.id)

    async def update_template(
        self,
        db: AsyncSession,
        user: User,
        template_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
        participants: Optional[Sequence[Dict[str, Any]]] = None,
    ) -> BillTemplate:
        template = await self.get_template(db, user, template_id)
        if name is not None:
            template.name = name
        if description is not None:
            template.description = description
        if participants is not None:
            if participants:
                await self.billing.enforce(db, user, LimitAction.ADD_PARTICIPANT, adding=len(participants))
            template.participants.clear()
            template.participants.extend(_participant_rows(participants))
        await db.commit()
        return await self.get_template(db, user, template_id)

    async def delete_template(self, db: AsyncSession, user: User, template_id: int) -> None:
        template = await self.get_template(db, user, template_id)
        await db.delete(template)
        await db.commit()

    async def apply_template(
        self,
        db: AsyncSession,
        user: User,
        template_id: int,
        title: str,
        description: Optional[str] = None,
        total_amount: float = 0.0,
    ) -> Bill:
        """Create a bill whose participants are copied from the template."""
        template = await self.get_template(db, user, template_id)
        names = [p.name for p in template.participants]
        colors = [p.color for p in template.participants]
        bill = await self.bills.create_bill(
            db,
            user,
            title=title,
            description=description if description is not None else template.description,
            participant_names=names,
            total_amount=total_amount,
            participant_colors=colors,
        )
        logger.info("Applied template id=%s -> bill id=%s", template_id, bill.id)
        return bill


__all__ = ["TemplateService"]
