# FILE: app/schemas/analytics.py
from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field


class ServiceAnalyticsOut(BaseModel):
    service_id: Optional[int] = None
    service_name: str
    service_category: str
    total_revenue: float
    quantity_sold: int
    average_price: float


class CategoryAnalyticsOut(BaseModel):
    category: str
    total_revenue: float
    total_services: int
    quantity_sold: int


class DailySalesOut(BaseModel):
    date: dt.date
    total_revenue: float
    total_bills: int
    total_services: int
    paid_bills: int
    unpaid_bills: int
    partially_paid_bills: int
    average_bill_amount: float


class DailyAnalyticsOut(DailySalesOut):
    services: List[ServiceAnalyticsOut] = Field(default_factory=list)
    categories: List[CategoryAnalyticsOut] = Field(default_factory=list)


class TopServiceOut(BaseModel):
    service_name: str
    service_category: str
    total_revenue: float
    quantity_sold: int


class MonthlySalesOut(BaseModel):
    month: str
    previous_month: str
    current_revenue: float
    previous_revenue: float
    percentage_change: float
