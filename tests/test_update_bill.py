from decimal import Decimal

import pytest

from app.models import (
    BillAuditLog,
    BilledService,
    BilledServiceAuditLog,
    DailySalesAnalytics,
    MedicalBill,
    PaymentHistory,
)
from app.schemas.billing import BillCreateIn, BillUpdateIn
from app.services import analytics_service
from app.services.billing_errors import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnavailableError,
)
from app.services.billing_payment_service import ledger_sum, record_payment
from app.services.billing_service import create_bill, update_bill
from app.utils.timezone import local_day


@pytest.fixture
def bill(db, catalog, actor, make_documentation):
    """300 x1 + 500 x2, default fee: total 1550, unpaid."""
    return create_bill(
        db,
        inp=BillCreateIn(
            medical_documentation_id=make_documentation(senior_id="PWD-77"),
            services=[
                {
                    "service_id": catalog["a"],
                    "quantity": 1
                },
                {
                    "service_id": catalog["b"],
                    "quantity": 2
                },
            ],
        ),
        actor=actor,
    )


def _lines(db, bill_id):
    return (db.query(BilledService).filter_by(medical_bill_id=bill_id).order_by(
        BilledService.id).all())


def _day_row(db, bill):
    return db.query(DailySalesAnalytics).filter_by(
        date=local_day(bill.created_at)).one()


def test_full_lifecycle_paid_bill_revised_down(db, bill, actor):
    assert bill.total_amount == Decimal("1550.00")
    assert bill.payment_status == "unpaid"

    paid = record_payment(db,
                          bill_id=bill.id,
                          amount=Decimal("1550"),
                          actor=actor)
    assert paid.payment_status == "paid"
    assert paid.balance == Decimal("0.00")

    line_b = _lines(db, bill.id)[1]
    updated, changes = update_bill(
        db,
        bill_id=bill.id,
        inp=BillUpdateIn(services_to_remove=[line_b.id]),
        actor=actor,
    )
    assert updated.total_amount == Decimal("550.00")
    assert updated.amount_paid == Decimal("1550.00")
    assert updated.balance == Decimal("-1000.00")
    assert updated.payment_status == "paid"
    assert changes["services_removed"] == 1
    assert changes["status_changed"] is False

    # ledger stays the source of truth
    assert ledger_sum(db, bill.id) == updated.amount_paid


def test_partial_removal_is_all_or_nothing(db, bill, actor):
    line_a = _lines(db, bill.id)[0]
    with pytest.raises(InvalidInputError) as exc:
        update_bill(db,
                    bill_id=bill.id,
                    inp=BillUpdateIn(services_to_remove=[line_a.id, 987654]),
                    actor=actor)
    assert exc.value.detail["missing"] == [987654]

    assert len(_lines(db, bill.id)) == 2
    assert db.query(BilledServiceAuditLog).count() == 0
    assert db.get(MedicalBill, bill.id).total_amount == Decimal("1550.00")


def test_line_from_another_bill_cannot_be_removed(db, bill, catalog, actor,
                                                  make_documentation):
    other = create_bill(db,
                        inp=BillCreateIn(
                            medical_documentation_id=make_documentation(),
                            services=[{
                                "service_id": catalog["a"],
                                "quantity": 1
                            }]),
                        actor=actor)
    foreign = _lines(db, other.id)[0]
    with pytest.raises(InvalidInputError):
        update_bill(db,
                    bill_id=bill.id,
                    inp=BillUpdateIn(services_to_remove=[foreign.id]),
                    actor=actor)
    assert len(_lines(db, other.id)) == 1


def test_removal_writes_one_audit_per_line(db, bill, actor):
    ids = [ln.id for ln in _lines(db, bill.id)]
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(services_to_remove=ids),
                actor=actor)

    logs = db.query(BilledServiceAuditLog).order_by(
        BilledServiceAuditLog.id).all()
    assert [log.action for log in logs] == ["removed", "removed"]
    assert sorted(log.billed_service_id for log in logs) == sorted(ids)
    assert logs[0].previous_data["serviceName"] in {
        "Complete Blood Count", "Liver Function Test"
    }
    assert db.get(MedicalBill, bill.id).total_amount == Decimal("250.00")


def test_quantity_update_and_addition(db, bill, catalog, actor):
    line_a = _lines(db, bill.id)[0]
    updated, changes = update_bill(
        db,
        bill_id=bill.id,
        inp=BillUpdateIn(
            services_to_update=[{
                "billed_service_id": line_a.id,
                "quantity": 3
            }],
            services_to_add=[{
                "service_id": catalog["odd"],
                "quantity": 3
            }],
        ),
        actor=actor,
    )
    # 900 + 1000 + 1000 + 250
    assert updated.total_amount == Decimal("3150.00")
    assert changes["services_updated"] == 1
    assert changes["services_added"] == 1

    actions = sorted(
        log.action for log in db.query(BilledServiceAuditLog).all())
    assert actions == ["added", "quantity_updated"]

    qlog = db.query(BilledServiceAuditLog).filter_by(
        action="quantity_updated").one()
    assert qlog.previous_data == {"quantity": 1, "subtotal": 300.0}
    assert qlog.new_data == {"quantity": 3, "subtotal": 900.0}


def test_same_quantity_is_not_a_change(db, bill, actor):
    line_a = _lines(db, bill.id)[0]
    _, changes = update_bill(db,
                             bill_id=bill.id,
                             inp=BillUpdateIn(services_to_update=[{
                                 "billed_service_id": line_a.id,
                                 "quantity": 1
                             }]),
                             actor=actor)
    assert changes["services_updated"] == 0
    assert db.query(BilledServiceAuditLog).count() == 0


def test_adding_unavailable_service_rolls_back_everything(
        db, bill, catalog, actor):
    line_a = _lines(db, bill.id)[0]
    with pytest.raises(UnavailableError):
        update_bill(db,
                    bill_id=bill.id,
                    inp=BillUpdateIn(
                        services_to_remove=[line_a.id],
                        services_to_add=[{
                            "service_id": catalog["inactive"],
                            "quantity": 1
                        }],
                    ),
                    actor=actor)
    assert len(_lines(db, bill.id)) == 2


def test_amount_paid_is_cumulative(db, bill, actor):
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(amount_paid=Decimal("500")),
                actor=actor)
    updated, changes = update_bill(db,
                                   bill_id=bill.id,
                                   inp=BillUpdateIn(amount_paid=Decimal("800"),
                                                    payment_method="card"),
                                   actor=actor)

    entries = (db.query(PaymentHistory).filter_by(
        medical_bill_id=bill.id).order_by(PaymentHistory.id).all())
    assert [e.amount_paid for e in entries] == [
        Decimal("500.00"), Decimal("300.00")
    ]
    assert entries[1].payment_method == "card"
    assert updated.amount_paid == Decimal("800.00")
    assert updated.payment_status == "partially_paid"
    assert changes["payment_updated"] is True

    last = (db.query(BillAuditLog).filter_by(medical_bill_id=bill.id).order_by(
        BillAuditLog.id.desc()).first())
    assert last.action == "payment_recorded"


def test_payment_notes_reach_the_ledger(db, bill, actor):
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn.model_validate({
                    "amount_paid": 100,
                    "payment_method": "gcash",
                    "payment_notes": "GCash ref 123",
                }),
                actor=actor)
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(amount_paid=Decimal("200")),
                actor=actor)

    notes = [
        e.notes for e in db.query(PaymentHistory).filter_by(
            medical_bill_id=bill.id).order_by(PaymentHistory.id)
    ]
    assert notes == ["GCash ref 123", "Payment recorded via bill update"]


def test_amount_paid_below_ledger_is_rejected(db, bill, actor):
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(amount_paid=Decimal("500")),
                actor=actor)
    with pytest.raises(InvalidInputError):
        update_bill(db,
                    bill_id=bill.id,
                    inp=BillUpdateIn(amount_paid=Decimal("400")),
                    actor=actor)
    assert ledger_sum(db, bill.id) == Decimal("500.00")


def test_same_amount_paid_appends_nothing(db, bill, actor):
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(amount_paid=Decimal("500")),
                actor=actor)
    _, changes = update_bill(db,
                             bill_id=bill.id,
                             inp=BillUpdateIn(amount_paid=Decimal("500")),
                             actor=actor)
    assert changes["payment_updated"] is False
    assert db.query(PaymentHistory).count() == 1


def test_discount_toggle(db, bill, actor):
    on, changes = update_bill(
        db,
        bill_id=bill.id,
        inp=BillUpdateIn(is_senior_pwd_discount_applied=True),
        actor=actor)
    # 1300 - 260 + 250
    assert on.total_amount == Decimal("1290.00")
    assert changes["discount_changed"] is True

    off, _ = update_bill(
        db,
        bill_id=bill.id,
        inp=BillUpdateIn(is_senior_pwd_discount_applied=False),
        actor=actor)
    assert off.discount_rate == Decimal("0.00")
    assert off.total_amount == Decimal("1550.00")

    custom, _ = update_bill(db,
                            bill_id=bill.id,
                            inp=BillUpdateIn(discount_rate=Decimal("10")),
                            actor=actor)
    assert custom.total_amount == Decimal("1420.00")


def test_senior_discount_without_id_is_rejected_before_any_change(
        db, catalog, actor, make_documentation):
    b = create_bill(db,
                    inp=BillCreateIn(
                        medical_documentation_id=make_documentation(),
                        services=[{
                            "service_id": catalog["a"],
                            "quantity": 1
                        }]),
                    actor=actor)
    line = _lines(db, b.id)[0]
    with pytest.raises(InvalidStateError):
        update_bill(db,
                    bill_id=b.id,
                    inp=BillUpdateIn(services_to_remove=[line.id],
                                     is_senior_pwd_discount_applied=True),
                    actor=actor)
    assert len(_lines(db, b.id)) == 1


def test_stored_senior_discount_needs_an_id_on_every_update(db, bill, actor):
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(is_senior_pwd_discount_applied=True),
                actor=actor)
    patient = db.get(MedicalBill, bill.id).medical_documentation.patient
    patient.csd_id_or_pwd_id = None
    db.commit()

    with pytest.raises(InvalidStateError):
        update_bill(db,
                    bill_id=bill.id,
                    inp=BillUpdateIn(notes="follow-up"),
                    actor=actor)
    stored = db.get(MedicalBill, bill.id)
    assert stored.notes != "follow-up"
    assert stored.total_amount == Decimal("1290.00")

    # switching the discount off does not need the ID
    off, _ = update_bill(
        db,
        bill_id=bill.id,
        inp=BillUpdateIn(is_senior_pwd_discount_applied=False),
        actor=actor)
    assert off.is_senior_pwd_discount_applied is False
    assert off.total_amount == Decimal("1550.00")


def test_notes_change_is_audited(db, bill, actor):
    _, changes = update_bill(db,
                             bill_id=bill.id,
                             inp=BillUpdateIn(notes="Patient requested OR"),
                             actor=actor)
    assert changes["notes_changed"] is True
    last = (db.query(BillAuditLog).filter_by(medical_bill_id=bill.id).order_by(
        BillAuditLog.id.desc()).first())
    assert last.action == "updated"
    assert last.fields_changed == "notes"
    assert last.changed_by_name == actor.name


def test_update_applies_analytics_delta_to_creation_day(db, bill, actor):
    line_b = _lines(db, bill.id)[1]
    update_bill(db,
                bill_id=bill.id,
                inp=BillUpdateIn(services_to_remove=[line_b.id],
                                 amount_paid=Decimal("550")),
                actor=actor)

    row = _day_row(db, bill)
    assert row.total_revenue == Decimal("550.00")
    assert row.total_bills == 1
    assert row.total_services == 1
    assert row.unpaid_bills == 0
    assert row.paid_bills == 1

    by_name = {s.service_name: s for s in row.service_analytics}
    assert by_name["Liver Function Test"].quantity_sold == 0
    assert by_name["Liver Function Test"].total_revenue == Decimal("0.00")


def test_analytics_failure_does_not_undo_the_update(db, bill, actor,
                                                    monkeypatch):

    def boom(*args, **kwargs):
        raise RuntimeError("analytics down")

    monkeypatch.setattr(analytics_service, "apply_bill_delta", boom)

    updated, _ = update_bill(db,
                             bill_id=bill.id,
                             inp=BillUpdateIn(amount_paid=Decimal("1550")),
                             actor=actor)
    assert updated.payment_status == "paid"
    assert db.get(MedicalBill, bill.id).payment_status == "paid"
    # rollup still reflects creation only
    assert _day_row(db, bill).unpaid_bills == 1


def test_unknown_bill(db, actor):
    with pytest.raises(NotFoundError):
        update_bill(db, bill_id=404, inp=BillUpdateIn(notes="x"), actor=actor)
