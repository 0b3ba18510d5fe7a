# app/models/__init__.py
from .catalog import Service, ServiceCategory
from .patient import Patient, MedicalDocumentation
from .billing import (MedicalBill, BilledService, PaymentHistory,
                      PaymentStatus, PaymentMethod, ActorRole)
from .audit import BillAuditLog, BilledServiceAuditLog, AuditAction
from .analytics import (DailySalesAnalytics, ServiceDailyAnalytics,
                        CategoryDailyAnalytics)

__all__ = [
    "Service",
    "ServiceCategory",
    "Patient",
    "MedicalDocumentation",
    "MedicalBill",
    "BilledService",
    "PaymentHistory",
    "PaymentStatus",
    "PaymentMethod",
    "ActorRole",
    "BillAuditLog",
    "BilledServiceAuditLog",
    "AuditAction",
    "DailySalesAnalytics",
    "ServiceDailyAnalytics",
    "CategoryDailyAnalytics",
]
