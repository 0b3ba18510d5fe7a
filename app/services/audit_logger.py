from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.orm import Session

from app.models.audit import AuditAction, BillAuditLog, BilledServiceAuditLog


@dataclass(frozen=True)
class Actor:
    name: str
    role: str


def _fields(fields_changed: Iterable[str]) -> Optional[str]:
    joined = ",".join(f for f in fields_changed if f)
    return joined or None


def _snapshot(data: Any) -> Any:
    if data is None:
        return None
    return jsonable_encoder(data)


def billed_service_row(line) -> Dict[str, Any]:
    """Full column snapshot of a billed line (used for added / removed)."""
    return {
        "id": line.id,
        "medicalBillId": line.medical_bill_id,
        "serviceId": line.service_id,
        "serviceName": line.service_name,
        "serviceCategory": line.service_category,
        "servicePriceAtTime": line.service_price_at_time,
        "quantity": line.quantity,
        "subtotal": line.subtotal,
        "createdAt": line.created_at,
    }


def record_bill_audit(
    db: Session,
    *,
    bill_id: int,
    action: AuditAction,
    fields_changed: Iterable[str],
    previous: Optional[Dict[str, Any]] = None,
    new: Optional[Dict[str, Any]] = None,
    actor: Actor,
) -> BillAuditLog:
    """
    Append one bill-level audit row inside the caller's transaction.
    Only storage errors escape; the commit belongs to the caller.
    """
    log = BillAuditLog(
        medical_bill_id=int(bill_id),
        action=AuditAction(action).value,
        fields_changed=_fields(fields_changed),
        previous_data=_snapshot(previous),
        new_data=_snapshot(new),
        changed_by_name=actor.name,
        changed_by_role=actor.role,
    )
    db.add(log)
    db.flush()
    return log


def record_billed_service_audit(
    db: Session,
    *,
    billed_service_id: int,
    bill_id: int,
    action: AuditAction,
    fields_changed: Iterable[str],
    previous: Optional[Dict[str, Any]] = None,
    new: Optional[Dict[str, Any]] = None,
    actor: Actor,
) -> BilledServiceAuditLog:
    log = BilledServiceAuditLog(
        billed_service_id=int(billed_service_id),
        medical_bill_id=int(bill_id),
        action=AuditAction(action).value,
        fields_changed=_fields(fields_changed),
        previous_data=_snapshot(previous),
        new_data=_snapshot(new),
        changed_by_name=actor.name,
        changed_by_role=actor.role,
    )
    db.add(log)
    db.flush()
    return log


def bill_row(bill) -> Dict[str, Any]:
    """Money / policy snapshot of a bill for previous_data / new_data."""
    return {
        "consultationFee": bill.consultation_fee,
        "isSeniorPwdDiscountApplied": bool(bill.is_senior_pwd_discount_applied),
        "discountRate": bill.discount_rate,
        "totalAmount": bill.total_amount,
        "amountPaid": bill.amount_paid,
        "balance": bill.balance,
        "paymentStatus": bill.payment_status,
        "notes": bill.notes,
    }
