# FILE: app/models/patient.py
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


class Patient(Base):
    __tablename__ = "patients"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)

    first_name = Column(String(120), nullable=False)
    middle_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)

    # senior citizen / PWD card number; required for the 20% discount
    csd_id_or_pwd_id = Column(String(64), nullable=True)

    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    documentations = relationship("MedicalDocumentation",
                                  back_populates="patient")


class MedicalDocumentation(Base):
    """
    Visit documentation (assessment / diagnosis). Only the fields the
    billing engine reads are modelled here.
    """
    __tablename__ = "medical_documentations"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id", ondelete="CASCADE"),
                        nullable=False,
                        index=True)

    status = Column(String(16), nullable=False,
                    default="draft")  # draft | finalized

    is_archived = Column(Boolean, default=False, nullable=False)
    archived_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )

    patient = relationship("Patient", back_populates="documentations")
    medical_bill = relationship("MedicalBill",
                                back_populates="medical_documentation",
                                uselist=False)
