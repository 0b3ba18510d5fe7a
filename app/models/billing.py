# FILE: app/models/billing.py
from __future__ import annotations

import enum
from datetime import datetime
from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    DateTime,
    Index,
    ForeignKey,
    Text,
)
from sqlalchemy.orm import relationship
from app.db.base import Base


class PaymentStatus(str, enum.Enum):
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    GCASH = "gcash"
    INSURANCE = "insurance"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class ActorRole(str, enum.Enum):
    ADMIN = "admin"
    ENCODER = "encoder"


class MedicalBill(Base):
    """
    Financial record for one medical documentation (one-to-one).

    Money fields:
    - total_amount = (services subtotal - discount) + consultation_fee
    - amount_paid  = sum(payment_history.amount_paid)   (cached copy)
    - balance      = total_amount - amount_paid         (may go negative
                     after a downward revision of an already paid bill)
    - payment_status is derived from (amount_paid, total_amount)
    """

    __tablename__ = "medical_bills"
    __table_args__ = (
        Index("ix_medical_bills_status_created", "payment_status",
              "created_at"), )

    id = Column(Integer, primary_key=True, index=True)

    medical_documentation_id = Column(
        Integer,
        ForeignKey("medical_documentations.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    consultation_fee = Column(Numeric(12, 2), nullable=False, default=250)

    is_senior_pwd_discount_applied = Column(Boolean,
                                            nullable=False,
                                            default=False)
    # effective rate: 20 for senior/PWD, custom 0-100 otherwise
    discount_rate = Column(Numeric(5, 2), nullable=False, default=0)

    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    balance = Column(Numeric(12, 2), nullable=False, default=0)

    # unpaid | partially_paid | paid
    payment_status = Column(String(20),
                            nullable=False,
                            default=PaymentStatus.UNPAID.value)

    notes = Column(Text, nullable=True)

    created_by_name = Column(String(120), nullable=False)
    created_by_role = Column(String(20), nullable=False)
    last_updated_by_name = Column(String(120), nullable=True)
    last_updated_by_role = Column(String(20), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    medical_documentation = relationship("MedicalDocumentation",
                                         back_populates="medical_bill")
    billed_services = relationship(
        "BilledService",
        back_populates="medical_bill",
        cascade="all, delete-orphan",
        order_by="BilledService.id",
    )
    payment_history = relationship(
        "PaymentHistory",
        back_populates="medical_bill",
        cascade="all, delete-orphan",
        order_by="PaymentHistory.id",
    )


class BilledService(Base):
    """
    One priced line on a bill. Name / category / price are snapshots taken
    at billing time; service_id is kept for traceability only.
    """
    __tablename__ = "billed_services"
    __table_args__ = (
        Index("ix_billed_services_bill", "medical_bill_id"),
        Index("ix_billed_services_service", "service_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    medical_bill_id = Column(
        Integer,
        ForeignKey("medical_bills.id", ondelete="CASCADE"),
        nullable=False,
    )

    # weak reference (no FK): catalog rows may be deleted later
    service_id = Column(Integer, nullable=True)
    service_name = Column(String(191), nullable=False)
    service_category = Column(String(40), nullable=False)
    service_price_at_time = Column(Numeric(12, 4), nullable=False)

    quantity = Column(Integer, nullable=False, default=1)
    # round2(service_price_at_time * quantity)
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    medical_bill = relationship("MedicalBill",
                                back_populates="billed_services")


class PaymentHistory(Base):
    """
    Append-only payment ledger. The sum per bill is the source of truth
    for MedicalBill.amount_paid.
    """

    __tablename__ = "payment_history"
    __table_args__ = (Index("ix_payment_history_bill", "medical_bill_id"), )

    id = Column(Integer, primary_key=True, index=True)
    medical_bill_id = Column(
        Integer,
        ForeignKey("medical_bills.id", ondelete="CASCADE"),
        nullable=False,
    )

    amount_paid = Column(Numeric(12, 2), nullable=False)
    payment_method = Column(String(20),
                            nullable=False,
                            default=PaymentMethod.CASH.value)
    notes = Column(String(255), nullable=True)

    recorded_by_name = Column(String(120), nullable=False)
    recorded_by_role = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    medical_bill = relationship("MedicalBill",
                                back_populates="payment_history")
