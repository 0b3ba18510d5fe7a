from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ok
from app.schemas.analytics import (
    DailyAnalyticsOut,
    DailySalesOut,
    MonthlySalesOut,
    TopServiceOut,
)
from app.services.analytics_service import (
    get_daily_analytics,
    get_monthly_sales,
    get_sales_series,
    get_top_services,
)
from app.services.audit_logger import Actor

router = APIRouter(prefix="/analytics", tags=["Analytics"])


@router.get("/daily")
def daily(
        day: Optional[date] = Query(None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(DailyAnalyticsOut(**get_daily_analytics(db, day)))


@router.get("/sales")
def sales(
        days: int = Query(7, ge=1, le=366),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = get_sales_series(db, days=days)
    return ok([DailySalesOut(**r) for r in rows], meta={"days": days})


@router.get("/top-services")
def top_services(
        days: int = Query(7, ge=1, le=366),
        limit: int = Query(5, ge=1, le=50),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = get_top_services(db, days=days, limit=limit)
    return ok([TopServiceOut(**r) for r in rows])


@router.get("/monthly")
def monthly(
        month: Optional[date] = Query(None),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(MonthlySalesOut(**get_monthly_sales(db, month=month)))
