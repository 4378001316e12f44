"""Factories and run helpers shared by the test modules."""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from clinic_billing.core.config import Settings
from clinic_billing.models import (
    CustomerInvoice,
    Patient,
    Prescription,
    Product,
    Visit,
)
from clinic_billing.services.cancellation import CancellationToken
from clinic_billing.services.visit_invoice_conversion import VisitInvoiceConversion
from clinic_billing.services.visit_invoice_progress import ProgressPublisher

BASE_DATE = datetime(2024, 1, 1, 10, 0, 0)



def make_patient(db: Session, first_name="Asha", last_name="Rao", **kw) -> Patient:
    p = Patient(first_name=first_name, last_name=last_name, **kw)
    db.add(p)
    db.flush()
    return p


def make_product(db: Session, name="Arnica 30C", price="120.00", quantity=50, total_sales=0) -> Product:
    p = Product(name=name,
                price_rupees=Decimal(str(price)),
                quantity=quantity,
                total_sales=total_sales)
    db.add(p)
    db.flush()
    return p


def make_visit(
    db: Session,
    *,
    patient: Optional[Patient] = None,
    days: int = 0,
    amount=None,
    prescriptions: Optional[List[tuple]] = None,
    **kw,
) -> Visit:
    v = Visit(
        patient_id=patient.id if patient else None,
        date=BASE_DATE + timedelta(days=days),
        amount=Decimal(str(amount)) if amount is not None else None,
        **kw,
    )
    db.add(v)
    db.flush()
    for product, qty in prescriptions or []:
        db.add(Prescription(visit_id=v.id,
                            product_id=product.id if product else None,
                            quantity=qty))
    db.flush()
    return v


def make_invoice(db: Session, number: str, notes: str = None, source_visit_id: int = None) -> CustomerInvoice:
    inv = CustomerInvoice(
        invoice_number=number,
        customer_name="Manual",
        invoice_date=BASE_DATE,
        notes=notes,
        source_visit_id=source_visit_id,
    )
    db.add(inv)
    db.flush()
    return inv


def run_conversion(
    session_factory,
    settings: Settings,
    token: Optional[CancellationToken] = None,
    on_event: Optional[Callable[[dict, CancellationToken], None]] = None,
) -> List[dict]:
    """Drive VisitInvoiceConversion.events() and return the JSON payloads."""
    token = token or CancellationToken()

    async def _collect():
        run = VisitInvoiceConversion(session_factory, settings, token)
        out = []
        async for event in run.events():
            payload = ProgressPublisher.payload(event)
            out.append(payload)
            if on_event is not None:
                on_event(payload, token)
        return out

    return asyncio.run(_collect())
