# clinic_billing/services/visit_invoice_progress.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder

from clinic_billing.schemas.invoice_conversion import (
    CancelledEvent,
    CompleteEvent,
    ConversionErrorRow,
    CreatedInvoiceRow,
    ErrorEvent,
    ProgressEvent,
)


@dataclass
class ConversionProgress:
    """
    Counters for one run.

    processed == created + skipped_already + skipped_empty + errors,
    and processed never exceeds total.
    """

    total: int = 0
    created: int = 0
    skipped_already: int = 0
    skipped_empty: int = 0
    errors: int = 0

    created_rows: List[CreatedInvoiceRow] = field(default_factory=list)
    error_rows: List[ConversionErrorRow] = field(default_factory=list)

    @property
    def skipped(self) -> int:
        return self.skipped_already + self.skipped_empty

    @property
    def processed(self) -> int:
        return self.created + self.skipped + self.errors

    def record_created(
        self,
        *,
        invoice_id: int,
        invoice_number: str,
        visit_id: int,
        opd_no: Optional[str],
        customer_name: str,
        total_amount: Decimal,
    ) -> None:
        self.created += 1
        self.created_rows.append(
            CreatedInvoiceRow(
                invoiceId=invoice_id,
                invoiceNumber=invoice_number,
                visitId=visit_id,
                opdNo=opd_no,
                customerName=customer_name,
                totalAmount=total_amount,
            ))

    def record_error(
        self,
        *,
        visit_id: Optional[int],
        opd_no: Optional[str],
        error: str,
        customer_name: str,
    ) -> None:
        self.errors += 1
        self.error_rows.append(
            ConversionErrorRow(
                visitId=visit_id,
                opdNo=opd_no,
                error=error,
                customerName=customer_name,
            ))

    # ---------- events ----------

    def progress_event(self) -> ProgressEvent:
        return ProgressEvent(
            current=min(self.processed, self.total),
            total=self.total,
            created=self.created,
            skipped=self.skipped,
            errors=self.errors,
        )

    def complete_event(self) -> CompleteEvent:
        return CompleteEvent(
            message=f"Created {self.created} invoices from visits",
            created=self.created,
            skipped=self.skipped,
            failed=self.errors,
            total=self.total,
            invoicesCreated=list(self.created_rows),
            errors=list(self.error_rows),
        )


class ProgressPublisher:
    """
    Renders events as server-sent-event frames: one JSON object per
    `data:` line, blank line terminated. Never closes the stream.
    """

    media_type = "text/event-stream"
    headers = {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        # nginx: do not buffer the stream
        "X-Accel-Buffering": "no",
    }

    @staticmethod
    def payload(event: Any) -> Dict[str, Any]:
        if isinstance(event, dict):
            return jsonable_encoder(event)
        return jsonable_encoder(event.model_dump())

    @classmethod
    def encode(cls, event: Any) -> bytes:
        body = json.dumps(cls.payload(event), separators=(",", ":"))
        return f"data: {body}\n\n".encode("utf-8")

    @staticmethod
    def cancelled() -> CancelledEvent:
        return CancelledEvent()

    @staticmethod
    def error(message: str) -> ErrorEvent:
        return ErrorEvent(error=message)
