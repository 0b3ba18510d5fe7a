# FILE: app/services/billing_payment_service.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.audit import AuditAction
from app.models.billing import MedicalBill, PaymentHistory, PaymentMethod, PaymentStatus
from app.services import analytics_service
from app.services.audit_logger import Actor, bill_row, record_bill_audit
from app.services.billing_errors import (
    BillingError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    translate_storage_error,
)
from app.services.billing_math import D0, balance_for, money2, payment_status_for

logger = logging.getLogger(__name__)


def _method(value) -> str:
    raw = (value or settings.DEFAULT_PAYMENT_METHOD)
    try:
        return PaymentMethod(getattr(raw, "value", raw)).value
    except ValueError:
        raise InvalidInputError("Unsupported payment method",
                                detail={"payment_method": str(raw)})


def ledger_sum(db: Session, bill_id: int) -> Decimal:
    """Sum of the ledger; the only source of truth for amount_paid."""
    total = (db.query(func.coalesce(func.sum(PaymentHistory.amount_paid),
                                    0)).filter(PaymentHistory.medical_bill_id
                                               == int(bill_id)).scalar())
    return money2(total)


def add_payment_entry(
    db: Session,
    *,
    bill_id: int,
    amount,
    payment_method=None,
    notes: Optional[str] = None,
    actor: Actor,
) -> PaymentHistory:
    """
    Append one ledger entry in the caller's transaction (no commit).
    Entries are never updated or deleted afterwards.
    """
    amt = money2(amount)
    if amt <= D0:
        raise InvalidInputError("Payment amount must be greater than zero")

    entry = PaymentHistory(
        medical_bill_id=int(bill_id),
        amount_paid=amt,
        payment_method=_method(payment_method),
        notes=(notes or None),
        recorded_by_name=actor.name,
        recorded_by_role=actor.role,
    )
    db.add(entry)
    db.flush()
    return entry


def reconcile_from_ledger(db: Session, bill: MedicalBill) -> MedicalBill:
    """Re-read the ledger and refresh amount_paid / balance / status."""
    paid = ledger_sum(db, bill.id)
    bill.amount_paid = paid
    bill.balance = balance_for(paid, bill.total_amount)
    bill.payment_status = payment_status_for(paid, bill.total_amount).value
    return bill


def list_payments(db: Session, bill_id: int) -> List[PaymentHistory]:
    if not db.get(MedicalBill, int(bill_id)):
        raise NotFoundError("Medical bill not found",
                            detail={"bill_id": bill_id})
    return (db.query(PaymentHistory).filter(
        PaymentHistory.medical_bill_id == int(bill_id)).order_by(
            PaymentHistory.created_at.asc(), PaymentHistory.id.asc()).all())


def record_payment(
    db: Session,
    *,
    bill_id: int,
    amount,
    payment_method=None,
    notes: Optional[str] = None,
    actor: Actor,
) -> MedicalBill:
    """
    Standalone payment against an outstanding balance.

    amount must be > 0 and must not exceed the balance; a paid bill takes no
    further payments. Commits on success.
    """
    try:
        bill = (db.query(MedicalBill).filter(
            MedicalBill.id == int(bill_id)).with_for_update().first())
        if not bill:
            raise NotFoundError("Medical bill not found",
                                detail={"bill_id": bill_id})

        amt = money2(amount)
        if amt <= D0:
            raise InvalidInputError("Payment amount must be greater than zero")

        reconcile_from_ledger(db, bill)
        if bill.payment_status == PaymentStatus.PAID.value:
            raise InvalidStateError("Bill is already fully paid",
                                    detail={"bill_id": bill.id})
        if amt > money2(bill.balance):
            raise InvalidInputError(
                "Payment exceeds outstanding balance",
                detail={
                    "bill_id": bill.id,
                    "balance": str(bill.balance),
                    "amount": str(amt)
                },
            )

        previous = bill_row(bill)
        old_status = bill.payment_status

        add_payment_entry(db,
                          bill_id=bill.id,
                          amount=amt,
                          payment_method=payment_method,
                          notes=notes,
                          actor=actor)
        reconcile_from_ledger(db, bill)
        bill.last_updated_by_name = actor.name
        bill.last_updated_by_role = actor.role
        db.flush()

        record_bill_audit(
            db,
            bill_id=bill.id,
            action=AuditAction.PAYMENT_RECORDED,
            fields_changed=["amountPaid", "balance", "paymentStatus"],
            previous=previous,
            new={
                **bill_row(bill),
                "paymentAmount": amt,
                "paymentMethod": _method(payment_method),
            },
            actor=actor,
        )
        db.commit()
    except BillingError as exc:
        db.rollback()
        logger.warning("record_payment rejected bill_id=%s actor=%s: %s",
                       bill_id, actor.name, exc.message)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("record_payment failed bill_id=%s actor=%s",
                         bill_id, actor.name)
        raise translate_storage_error(exc) from exc

    db.refresh(bill)
    logger.info("payment recorded bill_id=%s amount=%s status=%s actor=%s",
                bill.id, amt, bill.payment_status, actor.name)

    if old_status != bill.payment_status:
        delta = analytics_service.AnalyticsDelta()
        delta.shift_status(old_status, bill.payment_status)
        analytics_service.apply_after_commit(db, bill, delta,
                                             op="record_payment")

    return bill

