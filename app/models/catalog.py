# FILE: app/models/catalog.py
from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, Boolean, DateTime, Index

from app.db.base import Base


class ServiceCategory(str, enum.Enum):
    HEMATOLOGY = "hematology"
    BACTERIOLOGY = "bacteriology"
    CLINICAL_MICROSCOPY = "clinical_microscopy"
    TWENTY_FOUR_HOUR_URINE_TEST = "twenty_four_hour_urine_test"
    SEROLOGY_IMMUNOLOGY = "serology_immunology"
    CLINICAL_CHEMISTRY = "clinical_chemistry"
    ELECTROLYTES = "electrolytes"
    VACCINE = "vaccine"
    HISTOPATHOLOGY = "histopathology"
    TO_BE_READ_BY_PATHOLOGIST = "to_be_read_by_pathologist"
    TUMOR_MARKERS = "tumor_markers"
    THYROID_FUNCTION_TEST = "thyroid_function_test"
    HORMONES = "hormones"
    HEPATITIS = "hepatitis"
    ENZYMES = "enzymes"
    OTHERS = "others"


class Service(Base):
    """
    Catalog entry that can be billed.

    Price changes never touch past bills: billed lines keep their own
    name / category / price snapshot.
    """
    __tablename__ = "services"
    __table_args__ = (Index("ix_services_category", "category"), )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(191), nullable=False, unique=True)
    category = Column(String(40), nullable=False,
                      default=ServiceCategory.OTHERS.value)

    # 4 decimals so sub-cent catalog prices survive until line rounding
    price = Column(Numeric(12, 4), nullable=False, default=0)

    is_activated = Column(Boolean, nullable=False, default=True)
    is_available = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(
        DateTime,
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )
