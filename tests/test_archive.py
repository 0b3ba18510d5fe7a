import json
from datetime import datetime, timedelta
from decimal import Decimal

from app.models import (
    BillAuditLog,
    BilledService,
    BilledServiceAuditLog,
    DailySalesAnalytics,
    MedicalBill,
    MedicalDocumentation,
    Patient,
    PaymentHistory,
)
from app.schemas.billing import BillCreateIn, BillUpdateIn
from app.services.archive_service import run_cold_archive
from app.services.billing_service import (
    create_bill,
    get_bill_audit_trail,
    update_bill,
)
from app.utils.timezone import local_day


def _bill_for(db, doc_id, catalog, actor, **kw):
    return create_bill(db,
                       inp=BillCreateIn(medical_documentation_id=doc_id,
                                        services=[{
                                            "service_id": catalog["b"],
                                            "quantity": 2
                                        }],
                                        **kw),
                       actor=actor)


def test_old_archived_documentation_goes_to_cold_storage(
        db, catalog, actor, make_documentation, tmp_path):
    bill = _bill_for(db,
                     make_documentation(archived_days_ago=40),
                     catalog,
                     actor,
                     initial_payment_amount=Decimal("100"))
    line = db.query(BilledService).filter_by(medical_bill_id=bill.id).one()
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(services_to_update=[{
                    "billed_service_id": line.id,
                    "quantity": 1
                }]),
                actor=actor)
    bill_id = bill.id
    day = local_day(bill.created_at)

    result = run_cold_archive(db, archive_dir=str(tmp_path))

    assert result.documentations_archived == 1
    assert result.bills_removed == 1
    assert result.bill_ids == [bill_id]

    exported = json.loads((tmp_path / result.archive_file).read_text())
    doc = exported["medical_documentations"][0]
    assert doc["medical_bill"]["id"] == bill_id
    assert len(doc["medical_bill"]["billed_services"]) == 1
    assert len(doc["medical_bill"]["payment_history"]) == 1
    assert [a["action"] for a in doc["medical_bill"]["audit_logs"]
            ] == ["created", "updated"]

    assert db.get(MedicalBill, bill_id) is None
    assert db.query(MedicalDocumentation).count() == 0
    assert db.query(BilledService).count() == 0
    assert db.query(PaymentHistory).count() == 0
    assert db.query(BilledServiceAuditLog).count() == 0

    logs = db.query(BillAuditLog).filter_by(medical_bill_id=bill_id).all()
    assert [log.action for log in logs] == ["cold_archived"]
    assert logs[0].new_data["archiveFile"] == result.archive_file
    assert logs[0].new_data["archivePath"] == result.archive_path

    trail = get_bill_audit_trail(db, bill_id)
    assert [log.action for log in trail["bill"]] == ["cold_archived"]

    row = db.query(DailySalesAnalytics).filter_by(date=day).one()
    assert row.total_bills == 0
    assert row.total_revenue == Decimal("0.00")
    assert row.partially_paid_bills == 0
    assert row.total_services == 0


def test_recent_archives_are_left_alone(db, catalog, actor,
                                        make_documentation, tmp_path):
    _bill_for(db, make_documentation(archived_days_ago=5), catalog, actor)
    _bill_for(db, make_documentation(), catalog, actor)

    result = run_cold_archive(db, archive_dir=str(tmp_path))

    assert result.documentations_archived == 0
    assert result.archive_file is None
    assert db.query(MedicalBill).count() == 2
    assert list(tmp_path.iterdir()) == []


def test_dry_run_changes_nothing(db, catalog, actor, make_documentation,
                                 tmp_path):
    _bill_for(db, make_documentation(archived_days_ago=45), catalog, actor)

    result = run_cold_archive(db, archive_dir=str(tmp_path), dry_run=True)

    assert result.documentations_archived == 1
    assert result.archive_file is None
    assert db.query(MedicalBill).count() == 1


def test_archived_patient_takes_documentations_along(db, catalog, actor,
                                                     make_documentation,
                                                     tmp_path):
    doc_id = make_documentation()
    _bill_for(db, doc_id, catalog, actor)
    patient = db.get(MedicalDocumentation, doc_id).patient
    patient.is_archived = True
    patient.archived_at = datetime.utcnow() - timedelta(days=31)
    db.commit()

    result = run_cold_archive(db, archive_dir=str(tmp_path))

    assert result.patients_archived == 1
    assert result.documentations_archived == 1
    assert db.query(Patient).count() == 0
    assert db.query(MedicalBill).count() == 0
