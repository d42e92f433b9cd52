# billing_ledger/api/router.py
from fastapi import APIRouter
from billing_ledger.api import (
    routes_billing,
    routes_billing_payments,
    routes_billing_revenue,
)

api_router = APIRouter()

api_router.include_router(routes_billing.router)
api_router.include_router(routes_billing_payments.router)
api_router.include_router(routes_billing_revenue.router)
