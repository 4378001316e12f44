# clinic_billing/models/__init__.py
from .patient import Patient
from .visit import Visit, Prescription
from .product import Product
from .customer_invoice import CustomerInvoice, CustomerInvoiceItem
from .stock import StockTransaction

__all__ = [
    "Patient",
    "Visit",
    "Prescription",
    "Product",
    "CustomerInvoice",
    "CustomerInvoiceItem",
    "StockTransaction",
]
