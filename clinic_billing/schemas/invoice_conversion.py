# clinic_billing/schemas/invoice_conversion.py
from __future__ import annotations

from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel

# camelCase field names are the wire format the invoices screen reads


class CreatedInvoiceRow(BaseModel):
    status: Literal["created"] = "created"
    invoiceId: int
    invoiceNumber: str
    visitId: int
    opdNo: Optional[str] = None
    customerName: str
    totalAmount: Decimal


class ConversionErrorRow(BaseModel):
    visitId: Optional[int] = None
    opdNo: Optional[str] = None
    error: str
    customerName: str = "Unknown"


class ProgressEvent(BaseModel):
    type: Literal["progress"] = "progress"
    current: int = 0
    total: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    success: bool = True
    message: str = ""
    created: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    invoicesCreated: List[CreatedInvoiceRow] = []
    errors: List[ConversionErrorRow] = []


class CancelledEvent(BaseModel):
    type: Literal["cancelled"] = "cancelled"


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    error: str


class ConversionPreviewOut(BaseModel):
    total: int
    alreadyInvoiced: int
    pending: int
