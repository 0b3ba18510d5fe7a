# FILE: app/schemas/billing_payments.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from app.models.billing import PaymentMethod


class PaymentIn(BaseModel):
    amount: Decimal
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None

    @field_validator("amount")
    @classmethod
    def positive_amount(cls, v: Decimal) -> Decimal:
        if Decimal(str(v or 0)) <= 0:
            raise ValueError("amount must be > 0")
        return v


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_bill_id: int
    amount_paid: float
    payment_method: str
    notes: Optional[str] = None
    recorded_by_name: str
    recorded_by_role: str
    created_at: datetime
