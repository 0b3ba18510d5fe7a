# FILE: app/services/archive_service.py
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.models.audit import AuditAction, BillAuditLog, BilledServiceAuditLog
from app.models.billing import BilledService, MedicalBill, PaymentHistory
from app.models.patient import MedicalDocumentation, Patient
from app.services import analytics_service
from app.services.audit_logger import Actor, bill_row, record_bill_audit
from app.services.billing_errors import translate_storage_error
from app.utils.timezone import local_day

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = Actor(name="System (Automated)", role="admin")


@dataclass
class ArchiveResult:
    patients_archived: int = 0
    documentations_archived: int = 0
    bills_removed: int = 0
    archive_file: Optional[str] = None
    archive_path: Optional[str] = None
    execution_time: str = "0.00s"
    bill_ids: List[int] = field(default_factory=list)


# ============================================================
# Export
# ============================================================
def _rows(objs) -> List[Dict[str, Any]]:
    return [{c.name: getattr(o, c.name)
             for c in o.__table__.columns} for o in objs]


def _export_bill(db: Session, bill: Optional[MedicalBill]):
    if bill is None:
        return None
    data = _rows([bill])[0]
    data["billed_services"] = _rows(bill.billed_services)
    data["payment_history"] = _rows(bill.payment_history)
    data["audit_logs"] = _rows(
        db.query(BillAuditLog).filter(
            BillAuditLog.medical_bill_id == bill.id).order_by(
                BillAuditLog.id.asc()).all())
    data["billed_service_audit_logs"] = _rows(
        db.query(BilledServiceAuditLog).filter(
            BilledServiceAuditLog.medical_bill_id == bill.id).order_by(
                BilledServiceAuditLog.id.asc()).all())
    return data


def _export_documentation(db: Session,
                          doc: MedicalDocumentation) -> Dict[str, Any]:
    data = _rows([doc])[0]
    data["medical_bill"] = _export_bill(db, doc.medical_bill)
    return data


def _write_archive(payload: Dict[str, Any], directory: Path,
                   now: datetime) -> Path:
    directory.mkdir(parents=True, exist_ok=True)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S-%f")
    path = directory / f"archive_{stamp}.json"
    path.write_text(json.dumps(jsonable_encoder(payload), indent=2),
                    encoding="utf-8")
    return path


# ============================================================
# Selection
# ============================================================
def _doc_loader():
    return selectinload(MedicalDocumentation.medical_bill).selectinload(
        MedicalBill.billed_services)


def find_archivable(db: Session, *, cutoff: datetime):
    """Patients and documentations archived at or before `cutoff`."""
    patients = (db.query(Patient).options(
        selectinload(Patient.documentations).selectinload(
            MedicalDocumentation.medical_bill)).filter(
                Patient.is_archived.is_(True),
                Patient.archived_at.isnot(None),
                Patient.archived_at <= cutoff).order_by(Patient.id.asc()).all())

    docs = (db.query(MedicalDocumentation).options(_doc_loader()).filter(
        MedicalDocumentation.is_archived.is_(True),
        MedicalDocumentation.archived_at.isnot(None),
        MedicalDocumentation.archived_at <= cutoff).order_by(
            MedicalDocumentation.id.asc()).all())

    # documentations of a cold-archived patient go with the patient
    by_id = {int(d.id): d for d in docs}
    for p in patients:
        for d in p.documentations:
            by_id.setdefault(int(d.id), d)
    return patients, [by_id[k] for k in sorted(by_id)]


# ============================================================
# Delete
# ============================================================
def _purge(db: Session, bill_ids: List[int], doc_ids: List[int],
           patient_ids: List[int]) -> None:
    """Children first; no reliance on DB-level cascades."""
    if bill_ids:
        for model in (BilledServiceAuditLog, BillAuditLog):
            db.query(model).filter(model.medical_bill_id.in_(bill_ids)).delete(
                synchronize_session=False)
        for model in (BilledService, PaymentHistory):
            db.query(model).filter(model.medical_bill_id.in_(bill_ids)).delete(
                synchronize_session=False)
        db.query(MedicalBill).filter(MedicalBill.id.in_(bill_ids)).delete(
            synchronize_session=False)
    if doc_ids:
        db.query(MedicalDocumentation).filter(
            MedicalDocumentation.id.in_(doc_ids)).delete(
                synchronize_session=False)
    if patient_ids:
        db.query(Patient).filter(Patient.id.in_(patient_ids)).delete(
            synchronize_session=False)
    db.flush()


# ============================================================
# Run
# ============================================================
def run_cold_archive(
    db: Session,
    *,
    older_than_days: Optional[int] = None,
    archive_dir: Optional[str] = None,
    now: Optional[datetime] = None,
    dry_run: bool = False,
    actor: Actor = SYSTEM_ACTOR,
) -> ArchiveResult:
    """
    Move long-archived records to cold storage.

    1. export everything about them to one JSON file
    2. in one transaction: remove each bill's contribution from the daily
       rollups, purge its audit rows, delete bill / lines / payments /
       documentation / patient, then leave one `cold_archived` entry per
       bill pointing at the export file
    """
    started = time.monotonic()
    now = now or datetime.utcnow()
    days = settings.COLD_ARCHIVE_AFTER_DAYS if older_than_days is None else int(
        older_than_days)
    cutoff = now - timedelta(days=days)

    patients, docs = find_archivable(db, cutoff=cutoff)
    result = ArchiveResult(
        patients_archived=len(patients),
        documentations_archived=len(docs),
        bills_removed=sum(1 for d in docs if d.medical_bill is not None),
    )
    if not patients and not docs:
        logger.info("cold archive: nothing to archive cutoff=%s", cutoff)
        return result
    if dry_run:
        logger.info("cold archive (dry run): patients=%s documentations=%s",
                    len(patients), len(docs))
        return result

    payload = {
        "archived_at": now,
        "cutoff_date": cutoff,
        "summary": {
            "total_patients": len(patients),
            "total_documentations": len(docs),
        },
        "patients": _rows(patients),
        "medical_documentations": [_export_documentation(db, d) for d in docs],
    }
    path = _write_archive(payload,
                          Path(archive_dir or settings.COLD_STORAGE_DIR), now)
    result.archive_file = path.name
    result.archive_path = str(path.resolve())
    logger.info("cold archive file written path=%s", result.archive_path)

    try:
        pending = []
        for doc in docs:
            bill = doc.medical_bill
            if bill is None:
                continue
            pending.append((
                int(bill.id),
                local_day(bill.created_at),
                analytics_service.delta_for_removed_bill(bill),
                {
                    **bill_row(bill),
                    "id": bill.id,
                    "medicalDocumentationId": doc.id,
                },
            ))
        _purge(db, [b[0] for b in pending], [int(d.id) for d in docs],
               [int(p.id) for p in patients])

        for bill_id, day, delta, snapshot in pending:
            analytics_service.apply_delta(db, day, delta)
            record_bill_audit(
                db,
                bill_id=bill_id,
                action=AuditAction.COLD_ARCHIVED,
                fields_changed=["all_fields"],
                previous=snapshot,
                new={
                    "archiveFile": result.archive_file,
                    "archivePath": result.archive_path,
                    "archivedToStorage": now,
                },
                actor=actor,
            )
            result.bill_ids.append(bill_id)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("cold archive failed; export kept at %s",
                         result.archive_path)
        raise translate_storage_error(exc) from exc

    result.execution_time = f"{time.monotonic() - started:.2f}s"
    logger.info(
        "cold archive done patients=%s documentations=%s bills=%s in %s",
        result.patients_archived, result.documentations_archived,
        result.bills_removed, result.execution_time)
    return result
