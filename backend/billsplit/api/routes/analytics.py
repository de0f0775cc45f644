from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from billsplit.api.dependencies import get_analytics_service, get_db_session, get_user
from billsplit.models.tables import User
from billsplit.services.analytics_service import AnalyticsService

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/overview")
async def overview(
    period_days: int = Query(30, ge=1, le=3650),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics.overview(db, user, period_days=period_days)


@router.get("/spending-over-time")
async def spending_over_time(
    months: int = Query(12, ge=1, le=120),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[Dict[str, Any]]:
    return await analytics.spending_over_time(db, user, months=months)


@router.get("/bill-frequency")
async def bill_frequency(
    period_days: int = Query(90, ge=1, le=3650),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    return await analytics.bill_frequency(db, user, period_days=period_days)


@router.get("/top-participants")
async def top_participants(
    limit: int = Query(10, ge=1, le=100),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[Dict[str, Any]]:
    return await analytics.top_participants(db, user, limit=limit)


@router.get("/common-products")
async def common_products(
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> List[Dict[str, Any]]:
    return await analytics.common_products(db, user, limit=limit)


@router.get("/bills/{bill_id}/owes")
async def participant_owes(
    bill_id: int,
    user: User = Depends(get_user),
    db: AsyncSession = Depends(get_db_session),
    analytics: AnalyticsService = Depends(get_analytics_service),
) -> Dict[str, Any]:
    """What each participant owes on one bill."""
    return await analytics.participant_owes(db, user, bill_id)
