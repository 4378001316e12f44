# clinic_billing/api/router.py
from fastapi import APIRouter

from clinic_billing.api import routes_invoice_conversion

api_router = APIRouter()

# ---- Billing
api_router.include_router(routes_invoice_conversion.router,
                          prefix="/invoices",
                          tags=["invoices"])
