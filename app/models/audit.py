import enum
from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Index,
)

from app.db.base import Base


class AuditAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    ADDED = "added"
    REMOVED = "removed"
    QUANTITY_UPDATED = "quantity_updated"
    PAYMENT_RECORDED = "payment_recorded"
    COLD_ARCHIVED = "cold_archived"


class BillAuditLog(Base):
    """
    Bill-level audit trail. Append-only.

    medical_bill_id is a plain column (no FK) so the cold_archived entry
    outlives the bill it describes.
    """
    __tablename__ = "bill_audit_logs"
    __table_args__ = (
        Index("ix_bill_audit_logs_bill", "medical_bill_id"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    medical_bill_id = Column(Integer, nullable=False)

    action = Column(String(20), nullable=False)
    fields_changed = Column(String(500), nullable=True)  # comma-joined

    previous_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)

    changed_by_name = Column(String(120), nullable=False)
    changed_by_role = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class BilledServiceAuditLog(Base):
    """
    Line-item audit trail: one row per added / removed / re-quantified line.
    """
    __tablename__ = "billed_service_audit_logs"
    __table_args__ = (
        Index("ix_billed_service_audit_logs_bill", "medical_bill_id"),
        Index("ix_billed_service_audit_logs_line", "billed_service_id"),
        {
            "mysql_engine": "InnoDB",
            "mysql_charset": "utf8mb4",
            "mysql_collate": "utf8mb4_unicode_ci",
        },
    )

    id = Column(Integer, primary_key=True, index=True)
    billed_service_id = Column(Integer, nullable=False)
    medical_bill_id = Column(Integer, nullable=False)

    action = Column(String(20), nullable=False)
    fields_changed = Column(String(500), nullable=True)

    previous_data = Column(JSON, nullable=True)
    new_data = Column(JSON, nullable=True)

    changed_by_name = Column(String(120), nullable=False)
    changed_by_role = Column(String(20), nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
