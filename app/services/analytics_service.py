# FILE: app/services/analytics_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.analytics import (
    CategoryDailyAnalytics,
    DailySalesAnalytics,
    ServiceDailyAnalytics,
)
from app.models.billing import MedicalBill, PaymentStatus
from app.services.billing_math import D, D0, money2
from app.utils.timezone import local_day, today_local

logger = logging.getLogger(__name__)


# ============================================================
# Delta model
# ============================================================
@dataclass
class LineDelta:
    service_id: Optional[int]
    service_name: str
    category: str
    revenue: Decimal = D0
    quantity: int = 0
    lines: int = 0  # +1 added, -1 removed, 0 re-quantified


@dataclass
class AnalyticsDelta:
    revenue: Decimal = D0
    bills: int = 0
    services: int = 0
    paid: int = 0
    unpaid: int = 0
    partially_paid: int = 0
    lines: List[LineDelta] = field(default_factory=list)

    def bump_status(self, status, step: int) -> None:
        st = PaymentStatus(status)
        if st == PaymentStatus.PAID:
            self.paid += step
        elif st == PaymentStatus.UNPAID:
            self.unpaid += step
        else:
            self.partially_paid += step

    def shift_status(self, old, new) -> None:
        if old is None or new is None or PaymentStatus(old) == PaymentStatus(new):
            return
        self.bump_status(old, -1)
        self.bump_status(new, +1)

    def is_empty(self) -> bool:
        return (money2(self.revenue) == D0 and not self.bills
                and not self.services and not self.paid and not self.unpaid
                and not self.partially_paid and not any(
                    money2(ln.revenue) != D0 or ln.quantity or ln.lines
                    for ln in self.lines))

    def as_log(self) -> Dict[str, Any]:
        return {
            "revenue": str(money2(self.revenue)),
            "bills": self.bills,
            "services": self.services,
            "paid": self.paid,
            "unpaid": self.unpaid,
            "partially_paid": self.partially_paid,
            "lines": len(self.lines),
        }


def delta_for_new_bill(bill: MedicalBill) -> AnalyticsDelta:
    delta = AnalyticsDelta(
        revenue=D(bill.total_amount),
        bills=1,
        services=len(bill.billed_services or []),
    )
    delta.bump_status(bill.payment_status, +1)
    for ln in bill.billed_services or []:
        delta.lines.append(
            LineDelta(service_id=ln.service_id,
                      service_name=ln.service_name,
                      category=ln.service_category,
                      revenue=D(ln.subtotal),
                      quantity=int(ln.quantity or 0),
                      lines=1))
    return delta


def delta_for_removed_bill(bill: MedicalBill) -> AnalyticsDelta:
    """Exact negation of what the bill currently contributes."""
    delta = AnalyticsDelta(
        revenue=-D(bill.total_amount),
        bills=-1,
        services=-len(bill.billed_services or []),
    )
    delta.bump_status(bill.payment_status, -1)
    for ln in bill.billed_services or []:
        delta.lines.append(
            LineDelta(service_id=ln.service_id,
                      service_name=ln.service_name,
                      category=ln.service_category,
                      revenue=-D(ln.subtotal),
                      quantity=-int(ln.quantity or 0),
                      lines=-1))
    return delta


# ============================================================
# Apply
# ============================================================
def _floor_int(x: int) -> int:
    return x if x > 0 else 0


def _floor_money(x) -> Decimal:
    v = money2(x)
    return v if v > D0 else money2(0)


def _locked_day_row(db: Session, day: date) -> DailySalesAnalytics:
    row = (db.query(DailySalesAnalytics).filter(
        DailySalesAnalytics.date == day).with_for_update().first())
    if row:
        return row

    # another request may insert the same day concurrently
    try:
        with db.begin_nested():
            row = DailySalesAnalytics(
                date=day,
                total_revenue=0,
                total_bills=0,
                total_services=0,
                paid_bills=0,
                unpaid_bills=0,
                partially_paid_bills=0,
                average_bill_amount=0,
            )
            db.add(row)
    except IntegrityError:
        row = (db.query(DailySalesAnalytics).filter(
            DailySalesAnalytics.date == day).with_for_update().one())
    return row


def _locked_child(db: Session, model, parent_id: int, key_col, key: str,
                  **defaults):
    row = (db.query(model).filter(
        model.daily_analytics_id == parent_id,
        key_col == key).with_for_update().first())
    if row:
        return row
    try:
        with db.begin_nested():
            row = model(daily_analytics_id=parent_id, **defaults)
            setattr(row, key_col.key, key)
            db.add(row)
    except IntegrityError:
        row = (db.query(model).filter(
            model.daily_analytics_id == parent_id,
            key_col == key).with_for_update().one())
    return row


def _merge_lines(
    lines: List[LineDelta]
) -> Tuple[Dict[str, LineDelta], Dict[str, LineDelta]]:
    by_service: Dict[str, LineDelta] = {}
    by_category: Dict[str, LineDelta] = {}
    for ln in lines:
        s = by_service.setdefault(
            ln.service_name,
            LineDelta(service_id=ln.service_id,
                      service_name=ln.service_name,
                      category=ln.category))
        s.revenue += D(ln.revenue)
        s.quantity += int(ln.quantity)
        s.lines += int(ln.lines)

        c = by_category.setdefault(
            ln.category,
            LineDelta(service_id=None, service_name="", category=ln.category))
        c.revenue += D(ln.revenue)
        c.quantity += int(ln.quantity)
        c.lines += int(ln.lines)
    return by_service, by_category


def apply_delta(db: Session, day: date,
                delta: AnalyticsDelta) -> DailySalesAnalytics:
    """
    Add a relative delta to the day's rollup (never an absolute overwrite).

    Counters are floored at zero; average_bill_amount is recomputed as
    revenue / bills (0 when there are no bills). Caller owns the commit.
    """
    row = _locked_day_row(db, day)

    row.total_revenue = _floor_money(D(row.total_revenue) + D(delta.revenue))
    row.total_bills = _floor_int(int(row.total_bills or 0) + delta.bills)
    row.total_services = _floor_int(
        int(row.total_services or 0) + delta.services)
    row.paid_bills = _floor_int(int(row.paid_bills or 0) + delta.paid)
    row.unpaid_bills = _floor_int(int(row.unpaid_bills or 0) + delta.unpaid)
    row.partially_paid_bills = _floor_int(
        int(row.partially_paid_bills or 0) + delta.partially_paid)

    if row.total_bills > 0:
        row.average_bill_amount = money2(
            D(row.total_revenue) / Decimal(row.total_bills))
    else:
        row.average_bill_amount = money2(0)

    by_service, by_category = _merge_lines(delta.lines)

    for name, ln in by_service.items():
        srow = _locked_child(db,
                             ServiceDailyAnalytics,
                             row.id,
                             ServiceDailyAnalytics.service_name,
                             name,
                             service_id=ln.service_id,
                             service_category=ln.category,
                             total_revenue=0,
                             quantity_sold=0,
                             average_price=0)
        srow.total_revenue = _floor_money(
            D(srow.total_revenue) + D(ln.revenue))
        srow.quantity_sold = _floor_int(
            int(srow.quantity_sold or 0) + ln.quantity)
        if ln.service_id is not None:
            srow.service_id = ln.service_id
        srow.average_price = (money2(
            D(srow.total_revenue) / Decimal(srow.quantity_sold))
                              if srow.quantity_sold > 0 else money2(0))

    for category, ln in by_category.items():
        crow = _locked_child(db,
                             CategoryDailyAnalytics,
                             row.id,
                             CategoryDailyAnalytics.category,
                             category,
                             total_revenue=0,
                             total_services=0,
                             quantity_sold=0)
        crow.total_revenue = _floor_money(
            D(crow.total_revenue) + D(ln.revenue))
        crow.total_services = _floor_int(
            int(crow.total_services or 0) + ln.lines)
        crow.quantity_sold = _floor_int(
            int(crow.quantity_sold or 0) + ln.quantity)

    db.flush()
    logger.debug("analytics delta applied day=%s %s", day, delta.as_log())
    return row


def apply_bill_delta(db: Session, bill: MedicalBill,
                     delta: AnalyticsDelta) -> Optional[DailySalesAnalytics]:
    """Deltas always land on the bill's creation day, not the mutation day."""
    if delta.is_empty():
        return None
    return apply_delta(db, local_day(bill.created_at), delta)


# ============================================================
# Read side
# ============================================================
def _day_out(row: Optional[DailySalesAnalytics],
             day: date,
             *,
             with_breakdown: bool = False) -> Dict[str, Any]:
    if row is None:
        out = {
            "date": day,
            "total_revenue": money2(0),
            "total_bills": 0,
            "total_services": 0,
            "paid_bills": 0,
            "unpaid_bills": 0,
            "partially_paid_bills": 0,
            "average_bill_amount": money2(0),
        }
        if with_breakdown:
            out["services"] = []
            out["categories"] = []
        return out

    out = {
        "date": row.date,
        "total_revenue": money2(row.total_revenue),
        "total_bills": int(row.total_bills or 0),
        "total_services": int(row.total_services or 0),
        "paid_bills": int(row.paid_bills or 0),
        "unpaid_bills": int(row.unpaid_bills or 0),
        "partially_paid_bills": int(row.partially_paid_bills or 0),
        "average_bill_amount": money2(row.average_bill_amount),
    }
    if with_breakdown:
        out["services"] = [{
            "service_id": s.service_id,
            "service_name": s.service_name,
            "service_category": s.service_category,
            "total_revenue": money2(s.total_revenue),
            "quantity_sold": int(s.quantity_sold or 0),
            "average_price": money2(s.average_price),
        } for s in sorted(row.service_analytics,
                          key=lambda s: D(s.total_revenue),
                          reverse=True)]
        out["categories"] = [{
            "category": c.category,
            "total_revenue": money2(c.total_revenue),
            "total_services": int(c.total_services or 0),
            "quantity_sold": int(c.quantity_sold or 0),
        } for c in sorted(row.category_analytics, key=lambda c: c.category)]
    return out


def get_daily_analytics(db: Session, day: Optional[date] = None) -> Dict[str, Any]:
    day = day or today_local()
    row = (db.query(DailySalesAnalytics).filter(
        DailySalesAnalytics.date == day).first())
    return _day_out(row, day, with_breakdown=True)


def get_sales_series(db: Session,
                     *,
                     days: int = 7,
                     end: Optional[date] = None) -> List[Dict[str, Any]]:
    """Last `days` days ending at `end` (inclusive), zero-filled."""
    end = end or today_local()
    start = end - timedelta(days=max(days, 1) - 1)
    rows = (db.query(DailySalesAnalytics).filter(
        DailySalesAnalytics.date >= start,
        DailySalesAnalytics.date <= end).all())
    by_day = {r.date: r for r in rows}

    out = []
    cur = start
    while cur <= end:
        out.append(_day_out(by_day.get(cur), cur))
        cur += timedelta(days=1)
    return out


def get_top_services(db: Session,
                     *,
                     days: int = 7,
                     limit: int = 5,
                     end: Optional[date] = None) -> List[Dict[str, Any]]:
    end = end or today_local()
    start = end - timedelta(days=max(days, 1) - 1)

    revenue = func.sum(ServiceDailyAnalytics.total_revenue)
    rows = (db.query(
        ServiceDailyAnalytics.service_name,
        ServiceDailyAnalytics.service_category,
        revenue.label("total_revenue"),
        func.sum(ServiceDailyAnalytics.quantity_sold).label("quantity_sold"),
    ).join(DailySalesAnalytics,
           DailySalesAnalytics.id == ServiceDailyAnalytics.daily_analytics_id).
            filter(DailySalesAnalytics.date >= start,
                   DailySalesAnalytics.date <= end).group_by(
                       ServiceDailyAnalytics.service_name,
                       ServiceDailyAnalytics.service_category).order_by(
                           revenue.desc()).limit(limit).all())

    return [{
        "service_name": r.service_name,
        "service_category": r.service_category,
        "total_revenue": money2(r.total_revenue),
        "quantity_sold": int(r.quantity_sold or 0),
    } for r in rows]


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _month_revenue(db: Session, start: date, end: date) -> Decimal:
    total = (db.query(func.sum(DailySalesAnalytics.total_revenue)).filter(
        DailySalesAnalytics.date >= start,
        DailySalesAnalytics.date < end).scalar())
    return money2(total or 0)


def get_monthly_sales(db: Session,
                      *,
                      month: Optional[date] = None) -> Dict[str, Any]:
    """
    Revenue of the month containing `month` against the month before it.
    percentage_change is 0 when the previous month has no revenue.
    """
    cur_start = _month_start(month or today_local())
    prev_start = _month_start(cur_start - timedelta(days=1))
    next_start = _month_start(cur_start + timedelta(days=32))

    current = _month_revenue(db, cur_start, next_start)
    previous = _month_revenue(db, prev_start, cur_start)

    change = D0
    if previous > D0:
        change = money2((current - previous) / previous * 100)

    return {
        "month": cur_start.strftime("%Y-%m"),
        "previous_month": prev_start.strftime("%Y-%m"),
        "current_revenue": current,
        "previous_revenue": previous,
        "percentage_change": change,
    }


def apply_after_commit(db: Session, bill: MedicalBill, delta: AnalyticsDelta,
                       *, op: str) -> None:
    """
    Post-commit rollup update. Rollups are derived data: a failure is
    logged and the committed billing change stands.
    """
    try:
        apply_bill_delta(db, bill, delta)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("%s: analytics update failed bill_id=%s delta=%s",
                         op, bill.id, delta.as_log())
