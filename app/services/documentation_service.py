# FILE: app/services/documentation_service.py
from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from app.models.billing import MedicalBill
from app.models.patient import MedicalDocumentation

logger = logging.getLogger(__name__)


def delete_documentation_if_orphaned(db: Session, documentation_id: int) -> bool:
    """
    Remove a documentation that has no bill attached. Used to undo a
    documentation created only so a bill could be issued for it.
    A documentation that already carries a bill is never touched.
    """
    doc = db.get(MedicalDocumentation, int(documentation_id))
    if not doc:
        return False

    has_bill = (db.query(MedicalBill.id).filter(
        MedicalBill.medical_documentation_id == doc.id).first())
    if has_bill:
        logger.info("documentation_id=%s kept: bill_id=%s attached", doc.id,
                    has_bill.id)
        return False

    db.delete(doc)
    db.commit()
    return True
