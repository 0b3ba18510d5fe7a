# app/services/billing_math.py
from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Iterable, Optional

from app.core.config import settings
from app.models.billing import PaymentStatus
from app.services.billing_errors import InvalidInputError

D0 = Decimal("0")
D100 = Decimal("100")


def D(x) -> Decimal:
    try:
        return Decimal(str(x or 0))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def money2(x) -> Decimal:
    return D(x).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def line_subtotal(price, quantity) -> Decimal:
    return money2(D(price) * D(quantity))


def ensure_quantity(value) -> int:
    """Quantity must be a finite, positive whole number."""
    if isinstance(value, bool) or value is None:
        raise InvalidInputError("Service quantity must be a positive number")
    try:
        f = float(value)
    except (TypeError, ValueError):
        raise InvalidInputError("Service quantity must be a positive number")
    if not math.isfinite(f) or f <= 0:
        raise InvalidInputError("Service quantity must be a positive number")
    if f != int(f):
        raise InvalidInputError("Service quantity must be a whole number")
    return int(f)


def clamp_rate(rate) -> Decimal:
    r = D(rate)
    if r < D0:
        return D0
    if r > D100:
        return D100
    return r


def normalize_consultation_fee(fee) -> Decimal:
    """Only the two configured tiers are valid; anything else is the default."""
    allowed = {
        money2(settings.CONSULTATION_FEE_DEFAULT),
        money2(settings.CONSULTATION_FEE_FOLLOW_UP),
    }
    if fee is None:
        return money2(settings.CONSULTATION_FEE_DEFAULT)
    f = money2(fee)
    return f if f in allowed else money2(settings.CONSULTATION_FEE_DEFAULT)


@dataclass
class BillTotals:
    services_subtotal: Decimal
    discount_type: str  # none | senior_pwd | custom
    discount_rate: Decimal
    discount_amount: Decimal
    services_total: Decimal
    consultation_fee: Decimal
    total_amount: Decimal
    discount_ignored: bool = False


def compute_bill_totals(
    subtotals: Iterable,
    *,
    consultation_fee,
    senior_pwd: bool,
    discount_rate: Optional[Decimal] = None,
) -> BillTotals:
    """
    services_subtotal = sum(round2(price * qty))        (already rounded lines)
    discount          = 20% if senior/PWD, else custom rate, services only
    total             = round2((subtotal - discount) + consultation_fee)

    A discount request on a consultation-only bill is a no-op.
    """
    subtotal = money2(sum((money2(s) for s in subtotals), D0))
    rate = clamp_rate(discount_rate)
    fee = money2(consultation_fee)

    discount_type = "none"
    effective_rate = D0
    discount_amount = D0
    ignored = False

    if subtotal > 0:
        if senior_pwd:
            effective_rate = clamp_rate(settings.SENIOR_PWD_DISCOUNT_RATE)
            discount_type = "senior_pwd"
        elif rate > 0:
            effective_rate = rate
            discount_type = "custom"
        discount_amount = money2(subtotal * effective_rate / D100)
    elif senior_pwd or rate > 0:
        ignored = True

    services_total = money2(subtotal - discount_amount)
    return BillTotals(
        services_subtotal=subtotal,
        discount_type=discount_type,
        discount_rate=effective_rate,
        discount_amount=discount_amount,
        services_total=services_total,
        consultation_fee=fee,
        total_amount=money2(services_total + fee),
        discount_ignored=ignored,
    )


def payment_status_for(amount_paid, total_amount) -> PaymentStatus:
    paid = money2(amount_paid)
    if paid == D0:
        return PaymentStatus.UNPAID
    if paid >= money2(total_amount):
        return PaymentStatus.PAID
    return PaymentStatus.PARTIALLY_PAID


def balance_for(amount_paid, total_amount) -> Decimal:
    return money2(D(total_amount) - D(amount_paid))
