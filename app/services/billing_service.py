# FILE: app/services/billing_service.py
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.models.audit import AuditAction, BillAuditLog, BilledServiceAuditLog
from app.models.billing import BilledService, MedicalBill, PaymentStatus
from app.models.patient import MedicalDocumentation
from app.schemas.billing import BillCreateIn, BillUpdateIn
from app.services import analytics_service
from app.services.audit_logger import (
    Actor,
    bill_row,
    billed_service_row,
    record_bill_audit,
    record_billed_service_audit,
)
from app.services.billing_errors import (
    BillingError,
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    translate_storage_error,
)
from app.services.billing_math import (
    D,
    D0,
    BillTotals,
    clamp_rate,
    compute_bill_totals,
    ensure_quantity,
    line_subtotal,
    money2,
    normalize_consultation_fee,
)
from app.services.billing_payment_service import (
    add_payment_entry,
    ledger_sum,
    reconcile_from_ledger,
)
from app.services.catalog_service import resolve_service
from app.services.documentation_service import delete_documentation_if_orphaned
from app.utils.timezone import local_day

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


# ============================================================
# Helpers
# ============================================================
def _require_senior_pwd_id(doc: MedicalDocumentation) -> None:
    patient = doc.patient if doc else None
    if not patient or not (patient.csd_id_or_pwd_id or "").strip():
        raise InvalidStateError(
            "Senior citizen / PWD discount requires an ID on file",
            detail={"documentation_id": getattr(doc, "id", None)},
        )


def _new_line(db: Session, bill: MedicalBill, item) -> BilledService:
    qty = ensure_quantity(item.quantity)
    svc = resolve_service(db, item.service_id)
    line = BilledService(
        service_id=svc.id,
        service_name=svc.name,
        service_category=svc.category,
        service_price_at_time=svc.price,
        quantity=qty,
        subtotal=line_subtotal(svc.price, qty),
    )
    bill.billed_services.append(line)
    return line


def _line_delta(line: BilledService, sign: int) -> analytics_service.LineDelta:
    return analytics_service.LineDelta(
        service_id=line.service_id,
        service_name=line.service_name,
        category=line.service_category,
        revenue=D(line.subtotal) * sign,
        quantity=int(line.quantity or 0) * sign,
        lines=sign,
    )


def _breakdown(totals: BillTotals) -> Dict[str, Any]:
    return {
        "servicesSubtotal": totals.services_subtotal,
        "discountType": totals.discount_type,
        "discountRate": totals.discount_rate,
        "discountAmount": totals.discount_amount,
        "servicesTotal": totals.services_total,
        "consultationFee": totals.consultation_fee,
        "totalAmount": totals.total_amount,
    }


def bill_totals(bill: MedicalBill) -> BillTotals:
    """Breakdown of a persisted bill (for read models)."""
    return compute_bill_totals(
        [ln.subtotal for ln in bill.billed_services],
        consultation_fee=bill.consultation_fee,
        senior_pwd=bool(bill.is_senior_pwd_discount_applied),
        discount_rate=bill.discount_rate,
    )


# ============================================================
# Create
# ============================================================
def _build_bill(db: Session, doc: MedicalDocumentation, inp: BillCreateIn,
                actor: Actor) -> MedicalBill:
    if (doc.status or "").lower() != "finalized":
        raise InvalidStateError(
            "Cannot create a bill for a draft medical documentation",
            detail={"documentation_id": doc.id},
        )

    existing = (db.query(MedicalBill.id).filter(
        MedicalBill.medical_documentation_id == doc.id).first())
    if existing:
        raise ConflictError(
            "A medical bill already exists for this documentation",
            detail={
                "documentation_id": doc.id,
                "bill_id": existing.id
            },
        )

    if inp.is_senior_pwd_discount_applied:
        _require_senior_pwd_id(doc)

    fee = normalize_consultation_fee(inp.consultation_fee)

    bill = MedicalBill(
        medical_documentation_id=doc.id,
        consultation_fee=fee,
        is_senior_pwd_discount_applied=bool(
            inp.is_senior_pwd_discount_applied),
        discount_rate=D0,
        total_amount=fee,
        amount_paid=D0,
        balance=fee,
        payment_status=PaymentStatus.UNPAID.value,
        notes=inp.notes,
        created_by_name=actor.name,
        created_by_role=actor.role,
    )
    db.add(bill)

    # validates quantity + catalog state for every line before any flush
    for item in inp.services:
        _new_line(db, bill, item)

    totals = compute_bill_totals(
        [ln.subtotal for ln in bill.billed_services],
        consultation_fee=fee,
        senior_pwd=bool(inp.is_senior_pwd_discount_applied),
        discount_rate=inp.discount_rate,
    )
    if totals.discount_ignored:
        logger.info(
            "create_bill: discount ignored on consultation-only bill "
            "documentation_id=%s", doc.id)

    initial = money2(inp.initial_payment_amount)
    if initial < D0:
        raise InvalidInputError("Initial payment cannot be negative")
    if initial > totals.total_amount:
        raise InvalidInputError(
            "Initial payment exceeds the total amount",
            detail={
                "initial_payment": str(initial),
                "total_amount": str(totals.total_amount)
            },
        )

    bill.discount_rate = totals.discount_rate
    bill.total_amount = totals.total_amount
    bill.balance = totals.total_amount
    db.flush()

    if initial > D0:
        add_payment_entry(db,
                          bill_id=bill.id,
                          amount=initial,
                          payment_method=inp.payment_method,
                          notes="Initial payment",
                          actor=actor)
    reconcile_from_ledger(db, bill)
    db.flush()

    record_bill_audit(
        db,
        bill_id=bill.id,
        action=AuditAction.CREATED,
        fields_changed=["all"],
        new={
            **bill_row(bill),
            **_breakdown(totals),
            "medicalDocumentationId": doc.id,
            "initialPayment": initial,
            "services": [billed_service_row(ln) for ln in bill.billed_services],
        },
        actor=actor,
    )

    analytics_service.apply_delta(db, local_day(bill.created_at),
                                  analytics_service.delta_for_new_bill(bill))
    return bill


def _compensate(db: Session, documentation_id: int, actor: Actor) -> None:
    try:
        removed = delete_documentation_if_orphaned(db, documentation_id)
        if removed:
            logger.info(
                "create_bill: removed orphan documentation_id=%s actor=%s",
                documentation_id, actor.name)
    except Exception:
        db.rollback()
        logger.exception(
            "create_bill: documentation cleanup failed documentation_id=%s",
            documentation_id)


def create_bill(
    db: Session,
    *,
    inp: BillCreateIn,
    actor: Actor,
    cleanup_documentation_on_failure: bool = False,
) -> MedicalBill:
    """
    Create the bill for a finalized documentation in one transaction:
    lines, discount, fee, optional initial payment, `created` audit and the
    analytics delta for the creation day.

    With cleanup_documentation_on_failure the documentation (created solely
    for this bill by the caller) is removed if anything after its lookup
    fails. The original error is always the one raised.
    """
    doc_id = int(inp.medical_documentation_id)
    found = False
    try:
        doc = (db.query(MedicalDocumentation).options(
            joinedload(MedicalDocumentation.patient)).filter(
                MedicalDocumentation.id == doc_id).first())
        if not doc:
            raise NotFoundError("Medical documentation not found",
                                detail={"documentation_id": doc_id})
        found = True

        bill = _build_bill(db, doc, inp, actor)
        db.commit()
    except BillingError as exc:
        db.rollback()
        logger.warning("create_bill rejected documentation_id=%s actor=%s: %s",
                       doc_id, actor.name, exc.message)
        if found and cleanup_documentation_on_failure:
            _compensate(db, doc_id, actor)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("create_bill failed documentation_id=%s actor=%s",
                         doc_id, actor.name)
        err = translate_storage_error(exc)
        if found and cleanup_documentation_on_failure:
            _compensate(db, doc_id, actor)
        raise err from exc

    db.refresh(bill)
    logger.info("bill created bill_id=%s documentation_id=%s total=%s "
                "status=%s actor=%s", bill.id, doc_id, bill.total_amount,
                bill.payment_status, actor.name)
    return bill


# ============================================================
# Update
# ============================================================
def _empty_changes() -> Dict[str, Any]:
    return {
        "services_added": 0,
        "services_removed": 0,
        "services_updated": 0,
        "discount_changed": False,
        "notes_changed": False,
        "payment_updated": False,
        "status_changed": False,
    }


def _remove_lines(db: Session, bill: MedicalBill, ids: List[int],
                  actor: Actor,
                  delta: analytics_service.AnalyticsDelta) -> int:
    wanted = sorted({int(i) for i in ids})
    if not wanted:
        return 0

    rows = (db.query(BilledService).filter(
        BilledService.medical_bill_id == bill.id,
        BilledService.id.in_(wanted)).all())
    missing = sorted(set(wanted) - {int(r.id) for r in rows})
    if missing:
        # all-or-nothing: nothing is removed when any id is foreign
        raise InvalidInputError(
            "One or more billed services were not found on this bill",
            detail={
                "bill_id": bill.id,
                "missing": missing
            },
        )

    for row in rows:
        record_billed_service_audit(
            db,
            billed_service_id=row.id,
            bill_id=bill.id,
            action=AuditAction.REMOVED,
            fields_changed=["all"],
            previous=billed_service_row(row),
            actor=actor,
        )
        delta.lines.append(_line_delta(row, -1))
        bill.billed_services.remove(row)
    db.flush()
    return len(rows)


def _update_quantities(db: Session, bill: MedicalBill, updates, actor: Actor,
                       delta: analytics_service.AnalyticsDelta) -> int:
    by_id = {int(ln.id): ln for ln in bill.billed_services}
    count = 0
    for upd in updates:
        line = by_id.get(int(upd.billed_service_id))
        if line is None:
            raise NotFoundError(
                "Billed service not found on this bill",
                detail={
                    "bill_id": bill.id,
                    "billed_service_id": upd.billed_service_id
                },
            )
        qty = ensure_quantity(upd.quantity)
        if qty == int(line.quantity):
            continue

        previous = {"quantity": line.quantity, "subtotal": line.subtotal}
        old_subtotal = D(line.subtotal)
        old_qty = int(line.quantity)

        line.quantity = qty
        line.subtotal = line_subtotal(line.service_price_at_time, qty)
        db.flush()

        record_billed_service_audit(
            db,
            billed_service_id=line.id,
            bill_id=bill.id,
            action=AuditAction.QUANTITY_UPDATED,
            fields_changed=["quantity", "subtotal"],
            previous=previous,
            new={
                "quantity": line.quantity,
                "subtotal": line.subtotal
            },
            actor=actor,
        )
        delta.lines.append(
            analytics_service.LineDelta(
                service_id=line.service_id,
                service_name=line.service_name,
                category=line.service_category,
                revenue=D(line.subtotal) - old_subtotal,
                quantity=qty - old_qty,
                lines=0,
            ))
        count += 1
    return count


def _add_lines(db: Session, bill: MedicalBill, items, actor: Actor,
               delta: analytics_service.AnalyticsDelta) -> int:
    added = [_new_line(db, bill, item) for item in items]
    if not added:
        return 0
    db.flush()
    for line in added:
        record_billed_service_audit(
            db,
            billed_service_id=line.id,
            bill_id=bill.id,
            action=AuditAction.ADDED,
            fields_changed=["all"],
            new=billed_service_row(line),
            actor=actor,
        )
        delta.lines.append(_line_delta(line, +1))
    return len(added)


def _custom_rate(bill: MedicalBill, inp: BillUpdateIn) -> Decimal:
    if inp.discount_rate is not None:
        return clamp_rate(inp.discount_rate)
    # a stored rate under senior/PWD belongs to that policy, not to a custom one
    if bill.is_senior_pwd_discount_applied:
        return D0
    return D(bill.discount_rate)


def _apply_amount_paid(db: Session, bill: MedicalBill, inp: BillUpdateIn,
                       actor: Actor) -> bool:
    """
    amount_paid on update is the new cumulative paid-to-date; the
    difference against the ledger is appended as one entry.
    """
    if inp.amount_paid is None:
        return False

    target = money2(inp.amount_paid)
    if target < D0:
        raise InvalidInputError("Amount paid cannot be negative")
    if target > money2(bill.total_amount):
        raise InvalidInputError(
            "Amount paid exceeds the total amount",
            detail={
                "amount_paid": str(target),
                "total_amount": str(bill.total_amount)
            },
        )

    current = ledger_sum(db, bill.id)
    diff = money2(target - current)
    if diff < D0:
        raise InvalidInputError(
            "Amount paid cannot be lower than payments already recorded",
            detail={
                "amount_paid": str(target),
                "recorded": str(current)
            },
        )
    if diff == D0:
        return False

    add_payment_entry(db,
                      bill_id=bill.id,
                      amount=diff,
                      payment_method=inp.payment_method,
                      notes=(inp.payment_notes
                             or "Payment recorded via bill update"),
                      actor=actor)
    return True


def update_bill(
    db: Session,
    *,
    bill_id: int,
    inp: BillUpdateIn,
    actor: Actor,
) -> Tuple[MedicalBill, Dict[str, Any]]:
    """
    Apply removals, quantity changes, additions, discount / notes changes and
    a payment in one transaction, then recompute totals from the persisted
    lines and the ledger.

    Returns (bill, changes). The analytics delta lands on the bill's
    creation day after commit; a failure there does not undo the update.
    """
    changes = _empty_changes()
    delta = analytics_service.AnalyticsDelta()

    try:
        bill = (db.query(MedicalBill).filter(
            MedicalBill.id == int(bill_id)).with_for_update().first())
        if not bill:
            raise NotFoundError("Medical bill not found",
                                detail={"bill_id": bill_id})

        previous = bill_row(bill)
        old_total = D(bill.total_amount)
        old_status = bill.payment_status
        old_senior = bool(bill.is_senior_pwd_discount_applied)
        old_rate = money2(bill.discount_rate)

        senior = (old_senior if inp.is_senior_pwd_discount_applied is None
                  else bool(inp.is_senior_pwd_discount_applied))
        if senior:
            _require_senior_pwd_id(bill.medical_documentation)

        changes["services_removed"] = _remove_lines(db, bill,
                                                    inp.services_to_remove,
                                                    actor, delta)
        changes["services_updated"] = _update_quantities(
            db, bill, inp.services_to_update, actor, delta)
        changes["services_added"] = _add_lines(db, bill, inp.services_to_add,
                                               actor, delta)

        # re-read persisted lines; never trust the in-memory collection alone
        subtotals = [
            s for (s, ) in db.query(BilledService.subtotal).filter(
                BilledService.medical_bill_id == bill.id).all()
        ]
        totals = compute_bill_totals(
            subtotals,
            consultation_fee=bill.consultation_fee,
            senior_pwd=senior,
            discount_rate=_custom_rate(bill, inp),
        )
        if totals.discount_ignored:
            logger.info(
                "update_bill: discount ignored on consultation-only bill "
                "bill_id=%s", bill.id)

        bill.is_senior_pwd_discount_applied = senior
        bill.discount_rate = totals.discount_rate
        bill.total_amount = totals.total_amount
        changes["discount_changed"] = (senior != old_senior or
                                       totals.discount_rate != old_rate)

        if inp.notes is not None and inp.notes != (bill.notes or ""):
            bill.notes = inp.notes
            changes["notes_changed"] = True

        changes["payment_updated"] = _apply_amount_paid(db, bill, inp, actor)

        # status is recomputed even for an already paid bill; balance may
        # turn negative after a downward revision
        reconcile_from_ledger(db, bill)
        changes["status_changed"] = old_status != bill.payment_status

        fields = []
        if (changes["services_added"] or changes["services_removed"]
                or changes["services_updated"]):
            fields.append("billedServices")
        if changes["discount_changed"]:
            fields += ["isSeniorPwdDiscountApplied", "discountRate"]
        if money2(old_total) != money2(bill.total_amount):
            fields.append("totalAmount")
        if changes["payment_updated"]:
            fields.append("amountPaid")
        if money2(previous["balance"]) != money2(bill.balance):
            fields.append("balance")
        if changes["status_changed"]:
            fields.append("paymentStatus")
        if changes["notes_changed"]:
            fields.append("notes")

        if fields:
            bill.last_updated_by_name = actor.name
            bill.last_updated_by_role = actor.role
            db.flush()

            only_payment = set(fields) <= {
                "amountPaid", "balance", "paymentStatus"
            }
            record_bill_audit(
                db,
                bill_id=bill.id,
                action=(AuditAction.PAYMENT_RECORDED
                        if only_payment else AuditAction.UPDATED),
                fields_changed=fields,
                previous=previous,
                new={
                    **bill_row(bill),
                    **_breakdown(totals), "changes": changes
                },
                actor=actor,
            )
        db.commit()
    except BillingError as exc:
        db.rollback()
        logger.warning("update_bill rejected bill_id=%s actor=%s: %s",
                       bill_id, actor.name, exc.message)
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("update_bill failed bill_id=%s actor=%s", bill_id,
                         actor.name)
        raise translate_storage_error(exc) from exc

    db.refresh(bill)
    logger.info("bill updated bill_id=%s total=%s paid=%s status=%s actor=%s",
                bill.id, bill.total_amount, bill.amount_paid,
                bill.payment_status, actor.name)

    delta.revenue = D(bill.total_amount) - old_total
    delta.services = changes["services_added"] - changes["services_removed"]
    delta.shift_status(old_status, bill.payment_status)
    if not delta.is_empty():
        analytics_service.apply_after_commit(db, bill, delta,
                                             op="update_bill")
        db.refresh(bill)

    return bill, changes


# ============================================================
# Queries
# ============================================================
def get_bill(db: Session, bill_id: int) -> MedicalBill:
    bill = (db.query(MedicalBill).options(
        joinedload(MedicalBill.medical_documentation).joinedload(
            MedicalDocumentation.patient)).filter(
                MedicalBill.id == int(bill_id)).first())
    if not bill:
        raise NotFoundError("Medical bill not found",
                            detail={"bill_id": bill_id})
    return bill


def _page(q, *, limit: int,
          cursor: Optional[int]) -> Tuple[List[MedicalBill], Optional[int]]:
    """Keyset page, newest first. next_cursor is the last id of the page."""
    limit = max(1, min(int(limit or 20), MAX_PAGE_SIZE))
    if cursor is not None:
        q = q.filter(MedicalBill.id < int(cursor))
    rows = q.order_by(MedicalBill.id.desc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = rows[:limit]
    next_cursor = int(rows[-1].id) if (has_more and rows) else None
    return rows, next_cursor


def _with_patient(db: Session):
    return db.query(MedicalBill).options(
        joinedload(MedicalBill.medical_documentation).joinedload(
            MedicalDocumentation.patient))


def get_unsettled_bills(
        db: Session,
        *,
        limit: int = 20,
        cursor: Optional[int] = None
) -> Tuple[List[MedicalBill], Optional[int]]:
    q = _with_patient(db).filter(
        MedicalBill.payment_status != PaymentStatus.PAID.value)
    return _page(q, limit=limit, cursor=cursor)


def list_bills_by_status(
        db: Session,
        *,
        status: Optional[str] = None,
        limit: int = 20,
        cursor: Optional[int] = None
) -> Tuple[List[MedicalBill], Optional[int]]:
    q = _with_patient(db)
    if status:
        try:
            st = PaymentStatus(getattr(status, "value", status))
        except ValueError:
            raise InvalidInputError("Unknown payment status",
                                    detail={"status": status})
        q = q.filter(MedicalBill.payment_status == st.value)
    return _page(q, limit=limit, cursor=cursor)


def get_bill_audit_trail(db: Session, bill_id: int) -> Dict[str, List[Any]]:
    """
    Bill-level and line-level history, oldest first. Works for bills that
    were cold-archived, as long as the archive entry is kept.
    """
    bill_logs = (db.query(BillAuditLog).filter(
        BillAuditLog.medical_bill_id == int(bill_id)).order_by(
            BillAuditLog.created_at.asc(), BillAuditLog.id.asc()).all())
    line_logs = (db.query(BilledServiceAuditLog).filter(
        BilledServiceAuditLog.medical_bill_id == int(bill_id)).order_by(
            BilledServiceAuditLog.created_at.asc(),
            BilledServiceAuditLog.id.asc()).all())

    if not bill_logs and not line_logs and not db.get(MedicalBill,
                                                      int(bill_id)):
        raise NotFoundError("Medical bill not found",
                            detail={"bill_id": bill_id})
    return {"bill": bill_logs, "services": line_logs}
