# clinic_billing/services/visit_invoice_drafter.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from clinic_billing.models.visit import Visit
from clinic_billing.services.billing_math import D, line_total, money0, money2
from clinic_billing.services.errors import VisitDraftError
from clinic_billing.services.invoice_ledger import visit_marker

WALK_IN_CUSTOMER = "Walk-in Customer"
CONSULTATION_FEE = "Consultation Fee"
DEFAULT_PAYMENT_METHOD = "CASH"
DEFAULT_TERMS = "Payment due within 30 days."


@dataclass
class DraftLine:
    product_id: Optional[int]
    description: str
    quantity: int
    unit_price: Decimal
    tax_rate: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")


@dataclass
class InvoiceDraft:
    visit_id: int
    opd_no: Optional[str]
    patient_id: Optional[int]
    invoice_number: str
    invoice_date: datetime

    customer_name: str
    customer_email: str
    customer_phone: str
    customer_address: str

    lines: List[DraftLine] = field(default_factory=list)

    subtotal: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    paid_amount: Decimal = Decimal("0")
    balance_amount: Decimal = Decimal("0")
    status: str = "paid"
    payment_method: str = DEFAULT_PAYMENT_METHOD
    notes: str = ""
    terms_and_conditions: str = DEFAULT_TERMS

    # product_id -> units this invoice takes out of stock
    consumption: Dict[int, int] = field(default_factory=dict)


def visit_notes(visit_id: int, visit_date: datetime) -> str:
    return (f"Auto-generated from visit on {visit_date.strftime('%d/%m/%Y')} "
            f"({visit_marker(visit_id)})")


def _customer_fields(visit: Visit) -> Dict[str, str]:
    patient = visit.patient
    if patient is not None:
        name = patient.full_name or WALK_IN_CUSTOMER
    else:
        name = WALK_IN_CUSTOMER
    return {
        "customer_name": name,
        "customer_phone": (patient.phone if patient else None) or visit.phone or "",
        "customer_email": (patient.email if patient else None) or "",
        "customer_address": (patient.address if patient else None) or visit.address or "",
    }


def build_visit_lines(visit: Visit) -> List[DraftLine]:
    """
    Prescription lines (product price, historical: no tax, no discount).
    Falls back to one "Consultation Fee" line when nothing billable was
    prescribed but the visit recorded an amount.
    """
    lines: List[DraftLine] = []

    for rx in visit.prescriptions or []:
        product = rx.product
        qty = int(rx.quantity or 0)
        if product is None or qty <= 0:
            continue
        unit_price = abs(D(product.price_rupees))
        if unit_price <= 0:
            continue
        lines.append(
            DraftLine(
                product_id=product.id,
                description=product.name or "Product",
                quantity=abs(qty),
                unit_price=money2(unit_price),
            ))

    if not lines:
        fee = abs(D(visit.amount))
        if fee > 0:
            lines.append(
                DraftLine(
                    product_id=None,
                    description=CONSULTATION_FEE,
                    quantity=1,
                    unit_price=money2(fee),
                ))

    return lines


def draft_invoice_for_visit(
    visit: Visit,
    *,
    next_number: Callable[[], str],
) -> Optional[InvoiceDraft]:
    """
    Invoice draft for one visit, or None when the visit has nothing billable.

    next_number is only called once a draft will exist, so skipped visits
    never burn an invoice number.
    """
    if visit.date is None:
        raise VisitDraftError(visit.id, "Visit has no date")

    lines = build_visit_lines(visit)
    if not lines:
        return None

    subtotal = Decimal("0")
    consumption: Dict[int, int] = {}

    for line in lines:
        line.total_amount = line_total(line.quantity, line.unit_price)
        subtotal += line.total_amount

        if line.product_id is not None:
            consumption[line.product_id] = consumption.get(line.product_id, 0) + line.quantity

    total = money0(subtotal)

    draft = InvoiceDraft(
        visit_id=visit.id,
        opd_no=visit.opd_no,
        patient_id=visit.patient_id,
        invoice_number=next_number(),
        invoice_date=visit.date,
        lines=lines,
        subtotal=money0(subtotal),
        tax_amount=Decimal("0"),
        discount=Decimal("0"),
        total_amount=total,
        # historical visit: already settled
        paid_amount=total,
        balance_amount=Decimal("0"),
        status="paid",
        notes=visit_notes(visit.id, visit.date),
        consumption=consumption,
        **_customer_fields(visit),
    )
    return draft
