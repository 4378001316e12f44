# clinic_billing/services/visit_invoice_committer.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from clinic_billing.core.config import Settings
from clinic_billing.db.transactions import bounded_transaction
from clinic_billing.models.customer_invoice import CustomerInvoice, CustomerInvoiceItem
from clinic_billing.models.product import Product
from clinic_billing.models.stock import StockTransaction
from clinic_billing.services.cancellation import CancellationToken
from clinic_billing.services.visit_invoice_drafter import InvoiceDraft

logger = logging.getLogger(__name__)

REF_TYPE_INVOICE = "CustomerInvoice"
TXN_OUT = "OUT"


@dataclass
class ProductStock:
    quantity: int
    total_sales: int


class StockSnapshot:
    """
    In-process copy of products.quantity / products.total_sales.

    Loaded once per run and advanced only after a chunk's stock update
    commits. No version check: an outside write to the same product during
    the run is overwritten by the next chunk update.
    """

    def __init__(self, rows: Optional[Dict[int, ProductStock]] = None) -> None:
        self._rows: Dict[int, ProductStock] = dict(rows or {})

    @classmethod
    def load(cls, db: Session) -> "StockSnapshot":
        rows = db.query(Product.id, Product.quantity, Product.total_sales).all()
        return cls({
            int(pid): ProductStock(int(qty or 0), int(sold or 0))
            for pid, qty, sold in rows
        })

    def get(self, product_id: int) -> Optional[ProductStock]:
        return self._rows.get(product_id)


@dataclass
class CommittedInvoice:
    draft: InvoiceDraft
    invoice_id: int


@dataclass
class FailedDraft:
    draft: InvoiceDraft
    error: str


@dataclass
class ChunkResult:
    committed: List[CommittedInvoice] = field(default_factory=list)
    failed: List[FailedDraft] = field(default_factory=list)
    consumption: Dict[int, int] = field(default_factory=dict)
    stock_error: Optional[str] = None
    cancelled: bool = False
    # product_id -> on-hand after this chunk's committed invoices
    projected: Dict[int, int] = field(default_factory=dict)


def aggregate_consumption(drafts: List[InvoiceDraft]) -> Dict[int, int]:
    totals: Dict[int, int] = {}
    for d in drafts:
        for product_id, qty in d.consumption.items():
            totals[product_id] = totals.get(product_id, 0) + int(qty)
    return totals


class VisitInvoiceCommitter:
    """
    Writes one chunk of drafts.

    Default (two-tier):
      1. one short transaction per invoice: invoice + items + OUT stock rows
      2. one transaction per chunk: products.quantity / total_sales for every
         product the committed invoices consumed

    Product rows are therefore locked once per chunk instead of once per
    invoice. A failed stock update leaves the chunk's invoices committed.

    With INVOICE_CONVERSION_ATOMIC_CHUNKS the whole chunk is one transaction.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        snapshot: StockSnapshot,
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.snapshot = snapshot
        self.settings = settings

    # ---------- writes ----------

    def _write_invoice(
        self,
        db: Session,
        draft: InvoiceDraft,
        projected: Dict[int, int],
    ) -> CustomerInvoice:
        inv = CustomerInvoice(
            invoice_number=draft.invoice_number,
            patient_id=draft.patient_id,
            source_visit_id=draft.visit_id,
            customer_name=draft.customer_name,
            customer_email=draft.customer_email,
            customer_phone=draft.customer_phone,
            customer_address=draft.customer_address,
            customer_gstin=None,
            invoice_date=draft.invoice_date,
            due_date=None,
            subtotal=draft.subtotal,
            tax_amount=draft.tax_amount,
            discount=draft.discount,
            total_amount=draft.total_amount,
            paid_amount=draft.paid_amount,
            balance_amount=draft.balance_amount,
            status=draft.status,
            payment_method=draft.payment_method,
            notes=draft.notes,
            terms_and_conditions=draft.terms_and_conditions,
        )
        for line in draft.lines:
            inv.items.append(
                CustomerInvoiceItem(
                    product_id=line.product_id,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_rate=line.tax_rate,
                    discount=line.discount,
                    total_amount=line.total_amount,
                ))
        db.add(inv)
        db.flush()

        for line in draft.lines:
            if line.product_id is None:
                continue
            current = self._projected_qty(projected, line.product_id)
            if current is None:
                logger.warning(
                    "Product %s not in stock snapshot, no stock row for invoice %s",
                    line.product_id, draft.invoice_number)
                continue
            balance = max(0, current - line.quantity)
            projected[line.product_id] = balance
            db.add(
                StockTransaction(
                    product_id=line.product_id,
                    transaction_type=TXN_OUT,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    total_value=line.unit_price * Decimal(line.quantity),
                    balance_quantity=balance,
                    reference_type=REF_TYPE_INVOICE,
                    reference_id=inv.id,
                    notes=f"Auto-generated - Invoice {draft.invoice_number}",
                ))
        db.flush()
        return inv

    def _projected_qty(self, projected: Dict[int, int], product_id: int) -> Optional[int]:
        if product_id in projected:
            return projected[product_id]
        row = self.snapshot.get(product_id)
        return None if row is None else row.quantity

    def _apply_stock(self, db: Session, consumption: Dict[int, int]) -> Dict[int, ProductStock]:
        """
        Decrement on-hand (floored at 0) and bump total_sales from the
        snapshot. Returns the new values; the caller advances the snapshot
        only after commit.
        """
        updated: Dict[int, ProductStock] = {}
        # fixed order so concurrent writers lock products the same way
        for product_id in sorted(consumption):
            qty = int(consumption[product_id])
            row = self.snapshot.get(product_id)
            if row is None or qty <= 0:
                continue
            new_row = ProductStock(
                quantity=max(0, row.quantity - qty),
                total_sales=row.total_sales + qty,
            )
            (db.query(Product).filter(Product.id == product_id).update(
                {
                    Product.quantity: new_row.quantity,
                    Product.total_sales: new_row.total_sales,
                },
                synchronize_session=False,
            ))
            updated[product_id] = new_row
        return updated

    def _advance_snapshot(self, updated: Dict[int, ProductStock]) -> None:
        for product_id, row in updated.items():
            current = self.snapshot.get(product_id)
            if current is None:
                continue
            current.quantity = row.quantity
            current.total_sales = row.total_sales

    # ---------- chunk (two-tier) ----------

    def commit_draft(self, chunk: ChunkResult, draft: InvoiceDraft) -> bool:
        """
        Tier 1: invoice + items + stock rows in one bounded transaction.
        A failure is recorded on the chunk and never raised.
        """
        s = self.settings
        attempt = dict(chunk.projected)
        try:
            with bounded_transaction(
                    self.session_factory,
                    label=f"invoice {draft.invoice_number}",
                    max_wait=s.INVOICE_TX_MAX_WAIT_SECONDS,
                    timeout=s.INVOICE_TX_TIMEOUT_SECONDS,
            ) as db:
                inv = self._write_invoice(db, draft, attempt)
                invoice_id = inv.id
        except Exception as e:
            logger.exception("Error creating invoice for visit %s",
                             draft.visit_id)
            chunk.failed.append(FailedDraft(draft, str(e) or "Failed to create invoice"))
            return False

        chunk.projected = attempt
        chunk.committed.append(CommittedInvoice(draft, invoice_id))
        return True

    def finish_chunk(self, chunk: ChunkResult) -> ChunkResult:
        """
        Tier 2: one bounded transaction applying the chunk's summed
        consumption to products. Failure is logged, invoices stay.
        """
        s = self.settings
        chunk.consumption = aggregate_consumption([c.draft for c in chunk.committed])
        if not chunk.consumption:
            return chunk

        try:
            with bounded_transaction(
                    self.session_factory,
                    label="chunk stock update",
                    max_wait=s.STOCK_TX_MAX_WAIT_SECONDS,
                    timeout=s.STOCK_TX_TIMEOUT_SECONDS,
            ) as db:
                updated = self._apply_stock(db, chunk.consumption)
        except Exception as e:
            logger.exception("Error updating product quantities for %s products",
                             len(chunk.consumption))
            chunk.stock_error = str(e) or "Failed to update stock"
            return chunk

        self._advance_snapshot(updated)
        return chunk

    def commit_chunk(
        self,
        drafts: List[InvoiceDraft],
        token: Optional[CancellationToken] = None,
    ) -> ChunkResult:
        """
        Writes one chunk. Runs in the thread pool; the token is read from
        there while the event loop may flip it.

        Two-tier checkpoints: before each invoice transaction, and once more
        before the stock update. Invoices already committed stay.
        """
        if self.settings.INVOICE_CONVERSION_ATOMIC_CHUNKS:
            return self.commit_chunk_atomic(drafts)

        chunk = ChunkResult()
        for draft in drafts:
            if token is not None and token.cancelled:
                logger.info("Cancellation detected, stopping invoice creation")
                chunk.cancelled = True
                break
            self.commit_draft(chunk, draft)

        if token is not None and token.cancelled:
            logger.info("Cancellation detected, skipping product updates")
            chunk.cancelled = True
            chunk.consumption = aggregate_consumption([c.draft for c in chunk.committed])
            return chunk

        return self.finish_chunk(chunk)

    # ---------- chunk (atomic) ----------

    def commit_chunk_atomic(self, drafts: List[InvoiceDraft]) -> ChunkResult:
        s = self.settings
        chunk = ChunkResult()
        if not drafts:
            return chunk

        consumption = aggregate_consumption(drafts)
        committed: List[CommittedInvoice] = []
        try:
            with bounded_transaction(
                    self.session_factory,
                    label=f"chunk of {len(drafts)} invoices",
                    max_wait=s.STOCK_TX_MAX_WAIT_SECONDS,
                    timeout=s.STOCK_TX_TIMEOUT_SECONDS,
            ) as db:
                projected: Dict[int, int] = {}
                for draft in drafts:
                    inv = self._write_invoice(db, draft, projected)
                    committed.append(CommittedInvoice(draft, inv.id))
                updated = self._apply_stock(db, consumption)
        except Exception as e:
            logger.exception("Chunk transaction failed for %s visits", len(drafts))
            msg = str(e) or "Failed to create invoice"
            chunk.failed = [FailedDraft(d, msg) for d in drafts]
            return chunk

        self._advance_snapshot(updated)
        chunk.committed = committed
        chunk.consumption = consumption
        return chunk
