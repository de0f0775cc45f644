"""Common dependencies for FastAPI routes.

Routers import their database session and authenticated user from here
so tests can swap both through ``app.dependency_overrides`` on
``get_db`` and ``get_current_user``.
"""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.core.database import get_db
from billsplit.core.security import get_current_user
from billsplit.models.tables import User
from billsplit.services.analytics_service import AnalyticsService
from billsplit.services.bill_service import BillService
from billsplit.services.billing_service import BillingService
from billsplit.services.template_service import TemplateService


async def get_db_session(db: AsyncSession = Depends(get_db)) -> AsyncGenerator[AsyncSession, None]:
    """Alias for `get_db` to be imported in routers."""
    yield db


async def get_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def get_billing_service() -> BillingService:
    return BillingService()


def get_bill_service(billing: BillingService = Depends(get_billing_service)) -> BillService:
    return BillService(billing)


def get_template_service(billing: BillingService = Depends(get_billing_service)) -> TemplateService:
    return TemplateService(billing)


def get_analytics_service(bills: BillService = Depends(get_bill_service)) -> AnalyticsService:
    return AnalyticsService(bills)
