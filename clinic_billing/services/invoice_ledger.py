# clinic_billing/services/invoice_ledger.py
from __future__ import annotations

import re
from typing import Optional, Set

from sqlalchemy.orm import Session

from clinic_billing.models.customer_invoice import CustomerInvoice

VISIT_MARKER_RE = re.compile(r"visit ID: (\d+)")


def visit_marker(visit_id: int) -> str:
    return f"visit ID: {visit_id}"


def extract_visit_id(notes: Optional[str]) -> Optional[int]:
    if not notes:
        return None
    m = VISIT_MARKER_RE.search(notes)
    if not m:
        return None
    return int(m.group(1))


def load_invoiced_visit_ids(db: Session) -> Set[int]:
    """
    Visit ids that already have an invoice.

    Sources:
    - source_visit_id column (rows written by the converter)
    - "visit ID: <n>" marker inside notes (older rows, or rows whose
      structured link was cleared by an edit)

    Invoices with neither were not produced from a visit and are ignored.
    """
    rows = db.query(CustomerInvoice.source_visit_id,
                    CustomerInvoice.notes).all()

    invoiced: Set[int] = set()
    for source_visit_id, notes in rows:
        if source_visit_id is not None:
            invoiced.add(int(source_visit_id))
        marked = extract_visit_id(notes)
        if marked is not None:
            invoiced.add(marked)
    return invoiced
