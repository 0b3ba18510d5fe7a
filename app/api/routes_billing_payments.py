from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import current_actor, get_db
from app.api.response import ok
from app.api.routes_billing import bill_out
from app.schemas.billing_payments import PaymentIn, PaymentOut
from app.services.audit_logger import Actor
from app.services.billing_payment_service import list_payments, record_payment

router = APIRouter(prefix="/billing/bills", tags=["Billing Payments"])


@router.post("/{bill_id}/payments", status_code=201)
def add_payment(
        bill_id: int,
        payload: PaymentIn,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    bill = record_payment(
        db,
        bill_id=bill_id,
        amount=payload.amount,
        payment_method=payload.payment_method,
        notes=payload.notes,
        actor=actor,
    )
    return ok(bill_out(bill), status_code=201)


@router.get("/{bill_id}/payments")
def payment_history(
        bill_id: int,
        db: Session = Depends(get_db),
        actor: Actor = Depends(current_actor),
):
    rows = list_payments(db, bill_id)
    return ok([PaymentOut.model_validate(p) for p in rows])
