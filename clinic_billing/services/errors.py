# clinic_billing/services/errors.py
from __future__ import annotations


class InvoiceConversionError(RuntimeError):
    pass


class VisitDraftError(InvoiceConversionError):
    """A single visit could not be turned into an invoice draft."""

    def __init__(self, visit_id: int | None, msg: str) -> None:
        super().__init__(msg)
        self.visit_id = visit_id


class TransactionTimeout(InvoiceConversionError):
    """A bounded transaction ran past its execution bound and was rolled back."""

    def __init__(self, label: str, elapsed: float, limit: float) -> None:
        super().__init__(
            f"{label} transaction exceeded {limit:.0f}s (took {elapsed:.1f}s)")
        self.label = label
        self.elapsed = elapsed
        self.limit = limit
