# app/api/router.py
from fastapi import APIRouter
from app.api import (
    routes_billing,
    routes_billing_payments,
    routes_analytics,
)

api_router = APIRouter()

api_router.include_router(routes_billing.router)
api_router.include_router(routes_billing_payments.router)
api_router.include_router(routes_analytics.router)
