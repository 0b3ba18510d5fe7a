# FILE: app/api/routes_billing.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ok
from app.models.billing import MedicalBill, PaymentStatus
from app.schemas.billing import (
    AuditLogOut,
    AuditTrailOut,
    BillBreakdownOut,
    BillChangesOut,
    BillCreateIn,
    BillOut,
    BillUpdateIn,
    BillUpdateOut,
    ServiceOut,
)
from app.schemas.common import PageMeta
from app.services.audit_logger import Actor
from app.services.billing_math import D0, money2
from app.services.billing_service import (
    bill_totals,
    create_bill,
    get_bill,
    get_bill_audit_trail,
    get_unsettled_bills,
    list_bills_by_status,
    update_bill,
)
from app.services.catalog_service import list_services

router = APIRouter(prefix="/billing", tags=["Billing"])


def bill_out(bill: MedicalBill) -> BillOut:
    t = bill_totals(bill)
    bal = money2(bill.balance)
    return BillOut.model_validate(bill).model_copy(
        update={
            "amount_due":
            float(bal if bal > D0 else D0),
            "overpaid":
            float(-bal if bal < D0 else D0),
            "breakdown":
            BillBreakdownOut(
                services_subtotal=float(t.services_subtotal),
                discount_type=t.discount_type,
                discount_rate=float(t.discount_rate),
                discount_amount=float(t.discount_amount),
                services_total=float(t.services_total),
                consultation_fee=float(t.consultation_fee),
                total_amount=float(t.total_amount),
            ),
        })


def _page_meta(limit: int, next_cursor: Optional[int]) -> PageMeta:
    return PageMeta(limit=limit,
                    next_cursor=next_cursor,
                    has_more=next_cursor is not None)


@router.post("/bills", status_code=201)
def create_bill_endpoint(
        payload: BillCreateIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    bill = create_bill(
        db,
        inp=payload,
        actor=actor,
        cleanup_documentation_on_failure=payload.
        cleanup_documentation_on_failure,
    )
    return ok(bill_out(bill), status_code=201)


@router.get("/bills/unsettled")
def unsettled_bills(
        limit: int = Query(20, ge=1, le=100),
        cursor: Optional[int] = Query(None, ge=1),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows, next_cursor = get_unsettled_bills(db, limit=limit, cursor=cursor)
    return ok([bill_out(b) for b in rows],
              meta=_page_meta(limit, next_cursor).model_dump())


@router.get("/bills")
def bills_by_status(
        status: Optional[PaymentStatus] = Query(None),
        limit: int = Query(20, ge=1, le=100),
        cursor: Optional[int] = Query(None, ge=1),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows, next_cursor = list_bills_by_status(db,
                                             status=status,
                                             limit=limit,
                                             cursor=cursor)
    return ok([bill_out(b) for b in rows],
              meta=_page_meta(limit, next_cursor).model_dump())


@router.get("/bills/{bill_id}")
def bill_detail(
        bill_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    return ok(bill_out(get_bill(db, bill_id)))


@router.patch("/bills/{bill_id}")
def update_bill_endpoint(
        bill_id: int,
        payload: BillUpdateIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    bill, changes = update_bill(db, bill_id=bill_id, inp=payload, actor=actor)
    return ok(
        BillUpdateOut(bill=bill_out(bill),
                      changes=BillChangesOut(**changes)))


@router.get("/bills/{bill_id}/audit-logs")
def bill_audit_logs(
        bill_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    trail = get_bill_audit_trail(db, bill_id)
    return ok(
        AuditTrailOut(
            bill=[AuditLogOut.model_validate(r) for r in trail["bill"]],
            services=[
                AuditLogOut.model_validate(r) for r in trail["services"]
            ],
        ))


@router.get("/services")
def catalog_services(
        category: Optional[str] = Query(None),
        active_only: bool = Query(True),
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = list_services(db, category=category, active_only=active_only)
    return ok([ServiceOut.model_validate(s) for s in rows])
