# app/db/init_db.py
from __future__ import annotations

import argparse
from typing import List, Tuple

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db.session import engine
from app.db.base import Base

# Import all models so metadata is complete
from app.models import (  # noqa: F401
    Service, ServiceCategory, Patient, MedicalDocumentation, MedicalBill,
    BilledService, PaymentHistory, BillAuditLog, BilledServiceAuditLog,
    DailySalesAnalytics, ServiceDailyAnalytics, CategoryDailyAnalytics)
from app.core.config import settings

# (name, category, price)
CATALOG: List[Tuple[str, ServiceCategory, str]] = [
    ("Complete Blood Count", ServiceCategory.HEMATOLOGY, "350"),
    ("Hemoglobin Test", ServiceCategory.HEMATOLOGY, "180"),
    ("Platelet Count", ServiceCategory.HEMATOLOGY, "200"),
    ("ESR Test", ServiceCategory.HEMATOLOGY, "150"),
    ("Blood Glucose Test", ServiceCategory.CLINICAL_CHEMISTRY, "120"),
    ("Creatinine Test", ServiceCategory.CLINICAL_CHEMISTRY, "250"),
    ("Uric Acid Test", ServiceCategory.CLINICAL_CHEMISTRY, "220"),
    ("Cholesterol Panel", ServiceCategory.CLINICAL_CHEMISTRY, "450"),
    ("Liver Function Test", ServiceCategory.CLINICAL_CHEMISTRY, "600"),
    ("Sodium Test", ServiceCategory.ELECTROLYTES, "200"),
    ("Potassium Test", ServiceCategory.ELECTROLYTES, "200"),
    ("Calcium Test", ServiceCategory.ELECTROLYTES, "280"),
    ("RA Factor Test", ServiceCategory.SEROLOGY_IMMUNOLOGY, "320"),
    ("CRP Test", ServiceCategory.SEROLOGY_IMMUNOLOGY, "300"),
    ("Urinalysis", ServiceCategory.CLINICAL_MICROSCOPY, "150"),
    ("Fecalysis", ServiceCategory.CLINICAL_MICROSCOPY, "180"),
    ("Pregnancy Test", ServiceCategory.CLINICAL_MICROSCOPY, "100"),
    ("24H Urine Protein", ServiceCategory.TWENTY_FOUR_HOUR_URINE_TEST, "500"),
    ("Culture & Sensitivity", ServiceCategory.BACTERIOLOGY, "650"),
    ("Gram Stain", ServiceCategory.BACTERIOLOGY, "280"),
    ("Flu Vaccine", ServiceCategory.VACCINE, "800"),
    ("Hepatitis B Vaccine", ServiceCategory.VACCINE, "950"),
    ("Biopsy Examination", ServiceCategory.HISTOPATHOLOGY, "1200"),
    ("Peripheral Smear", ServiceCategory.TO_BE_READ_BY_PATHOLOGIST, "400"),
    ("PSA Test", ServiceCategory.TUMOR_MARKERS, "850"),
    ("CA-125 Test", ServiceCategory.TUMOR_MARKERS, "900"),
    ("TSH Test", ServiceCategory.THYROID_FUNCTION_TEST, "450"),
    ("Thyroid Panel", ServiceCategory.THYROID_FUNCTION_TEST, "1200"),
    ("Cortisol Test", ServiceCategory.HORMONES, "600"),
    ("HBsAg Test", ServiceCategory.HEPATITIS, "350"),
    ("Hepatitis Panel", ServiceCategory.HEPATITIS, "1200"),
    ("Amylase Test", ServiceCategory.ENZYMES, "320"),
    ("Lipase Test", ServiceCategory.ENZYMES, "350"),
    ("Medical Certificate", ServiceCategory.OTHERS, "150"),
]


def print_tables() -> None:
    names = sorted(inspect(engine).get_table_names())
    print("Existing tables:", names)


def seed_catalog(db: Session) -> int:
    """
    Insert ONLY missing catalog names; safe to run multiple times.
    """
    existing = {name for (name, ) in db.query(Service.name).all()}
    created = 0
    for name, category, price in CATALOG:
        if name in existing:
            continue
        db.add(
            Service(name=name,
                    category=category.value,
                    price=price,
                    is_activated=True,
                    is_available=True))
        created += 1
    return created


def run(fresh: bool = False, seed: bool = False) -> None:
    if fresh:
        print("WARNING: Dropping ALL tables (dev only) …")
        Base.metadata.drop_all(bind=engine)

    print("Creating all missing tables …")
    Base.metadata.create_all(bind=engine)
    print_tables()

    if not (seed or settings.SEED_CATALOG):
        return

    try:
        with Session(engine) as db:
            created = seed_catalog(db)
            db.commit()
            print(f"Catalog seeded ({created} services inserted).")
    except SQLAlchemyError as e:
        print("Seeding failed:", e)
        raise


if __name__ == "__main__":
    parser = argparse.ArgumentParser(
        description="Initialize DB (create tables, optionally seed catalog).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Insert the starter service catalog (missing names only).",
    )
    args = parser.parse_args()
    run(fresh=args.fresh, seed=args.seed)
