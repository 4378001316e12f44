# clinic_billing/services/invoice_numbers.py
from __future__ import annotations

from sqlalchemy import func
from sqlalchemy.orm import Session

from clinic_billing.models.customer_invoice import CustomerInvoice


def _numeric_suffix(number: str | None, prefix: str) -> int:
    if not number or not number.startswith(prefix):
        return 0
    tail = number[len(prefix):]
    return int(tail) if tail.isdigit() else 0


class InvoiceNumberAllocator:
    """
    Hands out INV-000001 style numbers for one conversion run.

    Starts after the highest existing invoice id (or the highest numeric
    INV- suffix, if someone numbered past the ids). The counter lives in
    this process only: two runs started together begin from the same base
    and race on the UNIQUE invoice_number column.
    """

    def __init__(self, last_number: int, prefix: str = "INV-", padding: int = 6) -> None:
        self.prefix = prefix
        self.padding = padding
        self._next = int(last_number or 0) + 1

    @classmethod
    def from_db(cls, db: Session, prefix: str = "INV-", padding: int = 6) -> "InvoiceNumberAllocator":
        max_id = db.query(func.max(CustomerInvoice.id)).scalar() or 0

        max_suffix = 0
        rows = (db.query(CustomerInvoice.invoice_number).filter(
            CustomerInvoice.invoice_number.like(f"{prefix}%")).all())
        for (number, ) in rows:
            max_suffix = max(max_suffix, _numeric_suffix(number, prefix))

        return cls(max(int(max_id), max_suffix), prefix=prefix, padding=padding)

    def format(self, n: int) -> str:
        return f"{self.prefix}{str(n).zfill(self.padding)}"

    def next_number(self) -> str:
        n = self._next
        self._next = n + 1
        return self.format(n)
