from decimal import Decimal

import pytest

from app.models import (
    BillAuditLog,
    BilledService,
    DailySalesAnalytics,
    MedicalBill,
    MedicalDocumentation,
    PaymentHistory,
)
from app.schemas.billing import BillCreateIn
from app.services.billing_errors import (
    ConflictError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnavailableError,
)
from app.services.billing_service import create_bill
from app.utils.timezone import local_day


def _inp(doc_id, services=(), **kw):
    return BillCreateIn(medical_documentation_id=doc_id,
                        services=[{
                            "service_id": sid,
                            "quantity": qty
                        } for sid, qty in services],
                        **kw)


def test_create_bill_computes_totals_and_writes_audit(db, catalog, actor,
                                                      make_documentation):
    doc_id = make_documentation()
    bill = create_bill(db,
                       inp=_inp(doc_id, [(catalog["a"], 1),
                                         (catalog["b"], 2)]),
                       actor=actor)

    assert bill.total_amount == Decimal("1550.00")
    assert bill.amount_paid == Decimal("0.00")
    assert bill.balance == Decimal("1550.00")
    assert bill.payment_status == "unpaid"
    assert bill.consultation_fee == Decimal("250.00")
    assert [ln.subtotal for ln in bill.billed_services] == [
        Decimal("300.00"), Decimal("1000.00")
    ]

    logs = db.query(BillAuditLog).filter_by(medical_bill_id=bill.id).all()
    assert [log.action for log in logs] == ["created"]
    assert logs[0].new_data["servicesSubtotal"] == 1300.0
    assert len(logs[0].new_data["services"]) == 2
    assert logs[0].changed_by_name == actor.name


def test_line_rounding_for_sub_cent_price(db, catalog, actor,
                                          make_documentation):
    bill = create_bill(db,
                       inp=_inp(make_documentation(), [(catalog["odd"], 3)]),
                       actor=actor)
    assert bill.billed_services[0].subtotal == Decimal("1000.00")
    assert bill.total_amount == Decimal("1250.00")


def test_consultation_only_bill(db, catalog, actor, make_documentation):
    bill = create_bill(db,
                       inp=_inp(make_documentation(),
                                is_senior_pwd_discount_applied=False,
                                discount_rate=Decimal("30")),
                       actor=actor)
    assert bill.billed_services == []
    assert bill.total_amount == Decimal("250.00")
    assert bill.discount_rate == Decimal("0")


def test_follow_up_fee_and_unknown_fee(db, catalog, actor, make_documentation):
    follow_up = create_bill(db,
                            inp=_inp(make_documentation(),
                                     consultation_fee=Decimal("350")),
                            actor=actor)
    odd = create_bill(db,
                      inp=_inp(make_documentation(),
                               consultation_fee=Decimal("275")),
                      actor=actor)
    assert follow_up.total_amount == Decimal("350.00")
    assert odd.total_amount == Decimal("250.00")


def test_senior_pwd_discount_precedence(db, catalog, actor, make_documentation):
    doc_id = make_documentation(senior_id="SC-2231")
    bill = create_bill(db,
                       inp=_inp(doc_id, [(catalog["b"], 2)],
                                is_senior_pwd_discount_applied=True,
                                discount_rate=Decimal("50")),
                       actor=actor)
    # 1000 - 20% + 250
    assert bill.discount_rate == Decimal("20.00")
    assert bill.total_amount == Decimal("1050.00")


def test_senior_pwd_requires_id_on_file(db, catalog, actor,
                                        make_documentation):
    doc_id = make_documentation(senior_id=None)
    with pytest.raises(InvalidStateError):
        create_bill(db,
                    inp=_inp(doc_id, [(catalog["a"], 1)],
                             is_senior_pwd_discount_applied=True),
                    actor=actor)
    assert db.query(MedicalBill).count() == 0


def test_initial_payment_goes_through_the_ledger(db, catalog, actor,
                                                 make_documentation):
    bill = create_bill(db,
                       inp=_inp(make_documentation(), [(catalog["a"], 1)],
                                initial_payment_amount=Decimal("200"),
                                payment_method="gcash"),
                       actor=actor)
    entries = db.query(PaymentHistory).filter_by(medical_bill_id=bill.id).all()
    assert [(e.amount_paid, e.payment_method) for e in entries] == [
        (Decimal("200.00"), "gcash")
    ]
    assert bill.amount_paid == Decimal("200.00")
    assert bill.balance == Decimal("350.00")
    assert bill.payment_status == "partially_paid"


def test_initial_payment_above_total_is_rejected(db, catalog, actor,
                                                 make_documentation):
    with pytest.raises(InvalidInputError):
        create_bill(db,
                    inp=_inp(make_documentation(), [(catalog["a"], 1)],
                             initial_payment_amount=Decimal("551")),
                    actor=actor)
    assert db.query(MedicalBill).count() == 0
    assert db.query(PaymentHistory).count() == 0


def test_draft_documentation_is_rejected_and_nothing_persists(
        db, catalog, actor, make_documentation):
    doc_id = make_documentation(status="draft")
    with pytest.raises(InvalidStateError):
        create_bill(db,
                    inp=_inp(doc_id, [(catalog["a"], 1)]),
                    actor=actor)
    assert db.query(MedicalBill).count() == 0
    assert db.query(BilledService).count() == 0
    assert db.query(BillAuditLog).count() == 0
    assert db.query(DailySalesAnalytics).count() == 0


def test_missing_documentation(db, catalog, actor):
    with pytest.raises(NotFoundError):
        create_bill(db, inp=_inp(9999, [(catalog["a"], 1)]), actor=actor)


def test_duplicate_bill_is_rejected(db, catalog, actor, make_documentation):
    doc_id = make_documentation()
    create_bill(db, inp=_inp(doc_id, [(catalog["a"], 1)]), actor=actor)
    with pytest.raises(ConflictError):
        create_bill(db, inp=_inp(doc_id, [(catalog["b"], 1)]), actor=actor)
    assert db.query(MedicalBill).count() == 1


@pytest.mark.parametrize("key", ["inactive", "unavailable"])
def test_unavailable_service_is_rejected(db, catalog, actor,
                                         make_documentation, key):
    with pytest.raises(UnavailableError):
        create_bill(db,
                    inp=_inp(make_documentation(), [(catalog[key], 1)]),
                    actor=actor)
    assert db.query(MedicalBill).count() == 0


def test_unknown_service_is_not_found(db, catalog, actor, make_documentation):
    with pytest.raises(NotFoundError):
        create_bill(db,
                    inp=_inp(make_documentation(), [(424242, 1)]),
                    actor=actor)


@pytest.mark.parametrize("qty", [0, -2, 1.5])
def test_bad_quantity_is_rejected(db, catalog, actor, make_documentation, qty):
    with pytest.raises(InvalidInputError):
        create_bill(db,
                    inp=_inp(make_documentation(), [(catalog["a"], qty)]),
                    actor=actor)


def test_creation_updates_daily_analytics(db, catalog, actor,
                                          make_documentation):
    b1 = create_bill(db,
                     inp=_inp(make_documentation(), [(catalog["a"], 1),
                                                     (catalog["b"], 2)]),
                     actor=actor)
    create_bill(db,
                inp=_inp(make_documentation(), [(catalog["a"], 1)],
                         initial_payment_amount=Decimal("550")),
                actor=actor)

    row = db.query(DailySalesAnalytics).filter_by(
        date=local_day(b1.created_at)).one()
    assert row.total_revenue == Decimal("2100.00")
    assert row.total_bills == 2
    assert row.total_services == 3
    assert row.unpaid_bills == 1
    assert row.paid_bills == 1
    assert row.average_bill_amount == Decimal("1050.00")

    by_name = {s.service_name: s for s in row.service_analytics}
    assert by_name["Complete Blood Count"].quantity_sold == 2
    assert by_name["Complete Blood Count"].total_revenue == Decimal("600.00")
    assert by_name["Liver Function Test"].average_price == Decimal("500.00")


def test_cleanup_removes_orphan_documentation_on_failure(
        db, catalog, actor, make_documentation):
    doc_id = make_documentation()
    with pytest.raises(UnavailableError):
        create_bill(db,
                    inp=_inp(doc_id, [(catalog["inactive"], 1)]),
                    actor=actor,
                    cleanup_documentation_on_failure=True)
    assert db.get(MedicalDocumentation, doc_id) is None


def test_cleanup_never_touches_a_billed_documentation(db, catalog, actor,
                                                      make_documentation):
    doc_id = make_documentation()
    create_bill(db, inp=_inp(doc_id, [(catalog["a"], 1)]), actor=actor)
    with pytest.raises(ConflictError):
        create_bill(db,
                    inp=_inp(doc_id, [(catalog["a"], 1)]),
                    actor=actor,
                    cleanup_documentation_on_failure=True)
    assert db.get(MedicalDocumentation, doc_id) is not None


def test_without_cleanup_flag_documentation_is_kept(db, catalog, actor,
                                                    make_documentation):
    doc_id = make_documentation()
    with pytest.raises(UnavailableError):
        create_bill(db,
                    inp=_inp(doc_id, [(catalog["unavailable"], 1)]),
                    actor=actor)
    assert db.get(MedicalDocumentation, doc_id) is not None
