# FILE: app/schemas/billing.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.models.billing import PaymentMethod


def _rate_0_100(v: Optional[Decimal]) -> Optional[Decimal]:
    if v is None:
        return v
    if v < 0 or v > 100:
        raise ValueError("discount_rate must be between 0 and 100")
    return v


# ---------- inputs ----------
class ServiceItemIn(BaseModel):
    service_id: int
    # validated by the engine (positive whole number)
    quantity: Any = 1


class ServiceQtyUpdateIn(BaseModel):
    billed_service_id: int
    quantity: Any


class BillCreateIn(BaseModel):
    medical_documentation_id: int
    services: List[ServiceItemIn] = Field(default_factory=list)
    notes: Optional[str] = None

    initial_payment_amount: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None

    consultation_fee: Optional[Decimal] = None
    is_senior_pwd_discount_applied: bool = False
    discount_rate: Optional[Decimal] = None

    # documentation was created only for this bill; remove it on failure
    cleanup_documentation_on_failure: bool = False

    @field_validator("discount_rate")
    @classmethod
    def discount_rate_range(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _rate_0_100(v)


class BillUpdateIn(BaseModel):
    services_to_add: List[ServiceItemIn] = Field(default_factory=list)
    services_to_remove: List[int] = Field(default_factory=list)
    services_to_update: List[ServiceQtyUpdateIn] = Field(default_factory=list)

    is_senior_pwd_discount_applied: Optional[bool] = None
    discount_rate: Optional[Decimal] = None
    notes: Optional[str] = None

    # new cumulative paid-to-date
    amount_paid: Optional[Decimal] = None
    payment_method: Optional[PaymentMethod] = None
    payment_notes: Optional[str] = None

    @field_validator("discount_rate")
    @classmethod
    def discount_rate_range(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        return _rate_0_100(v)


# ---------- outputs ----------
class PatientMiniOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    middle_name: Optional[str] = None
    last_name: Optional[str] = None
    csd_id_or_pwd_id: Optional[str] = None


class DocumentationMiniOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    patient: Optional[PatientMiniOut] = None


class BilledServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    service_id: Optional[int] = None
    service_name: str
    service_category: str
    service_price_at_time: float
    quantity: int
    subtotal: float
    created_at: Optional[datetime] = None


class BillBreakdownOut(BaseModel):
    services_subtotal: float
    discount_type: str
    discount_rate: float
    discount_amount: float
    services_total: float
    consultation_fee: float
    total_amount: float


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_documentation_id: int
    consultation_fee: float
    is_senior_pwd_discount_applied: bool
    discount_rate: float
    total_amount: float
    amount_paid: float
    balance: float
    # display helpers: a revised-down paid bill keeps a negative balance
    amount_due: float = 0
    overpaid: float = 0
    payment_status: str
    notes: Optional[str] = None

    created_by_name: str
    created_by_role: str
    last_updated_by_name: Optional[str] = None
    last_updated_by_role: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    billed_services: List[BilledServiceOut] = Field(default_factory=list)
    breakdown: Optional[BillBreakdownOut] = None
    medical_documentation: Optional[DocumentationMiniOut] = None


class BillChangesOut(BaseModel):
    services_added: int = 0
    services_removed: int = 0
    services_updated: int = 0
    discount_changed: bool = False
    notes_changed: bool = False
    payment_updated: bool = False
    status_changed: bool = False


class BillUpdateOut(BaseModel):
    bill: BillOut
    changes: BillChangesOut


class AuditLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_bill_id: int
    billed_service_id: Optional[int] = None
    action: str
    fields_changed: Optional[str] = None
    previous_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    changed_by_name: str
    changed_by_role: str
    created_at: datetime


class AuditTrailOut(BaseModel):
    bill: List[AuditLogOut] = Field(default_factory=list)
    services: List[AuditLogOut] = Field(default_factory=list)


class ServiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category: str
    price: float
    is_activated: bool
    is_available: bool
