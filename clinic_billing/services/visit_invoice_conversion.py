# clinic_billing/services/visit_invoice_conversion.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import AsyncIterator, Callable, List, Optional, Set

from pydantic import BaseModel
from sqlalchemy.orm import Session, selectinload
from starlette.concurrency import run_in_threadpool

from clinic_billing.core.config import Settings
from clinic_billing.models.visit import Visit, Prescription
from clinic_billing.services.cancellation import CancellationToken
from clinic_billing.services.invoice_ledger import load_invoiced_visit_ids
from clinic_billing.services.invoice_numbers import InvoiceNumberAllocator
from clinic_billing.services.visit_invoice_committer import (
    ChunkResult,
    StockSnapshot,
    VisitInvoiceCommitter,
)
from clinic_billing.services.visit_invoice_drafter import (
    WALK_IN_CUSTOMER,
    InvoiceDraft,
    draft_invoice_for_visit,
)
from clinic_billing.services.visit_invoice_progress import (
    ConversionProgress,
    ProgressPublisher,
)

logger = logging.getLogger(__name__)


@dataclass
class ConversionScan:
    visit_ids: List[int]  # every visit, oldest first
    invoiced: Set[int]
    snapshot: StockSnapshot
    allocator: InvoiceNumberAllocator


def load_conversion_scan(db: Session, settings: Settings) -> ConversionScan:
    rows = (db.query(Visit.id).order_by(Visit.date.asc(), Visit.id.asc()).all())
    return ConversionScan(
        visit_ids=[int(r[0]) for r in rows],
        invoiced=load_invoiced_visit_ids(db),
        snapshot=StockSnapshot.load(db),
        allocator=InvoiceNumberAllocator.from_db(
            db,
            prefix=settings.INVOICE_NUMBER_PREFIX,
            padding=settings.INVOICE_NUMBER_PADDING,
        ),
    )


def load_chunk_visits(db: Session, visit_ids: List[int]) -> List[Visit]:
    """Full visits for one chunk, returned in the order of visit_ids."""
    rows = (db.query(Visit).options(
        selectinload(Visit.patient),
        selectinload(Visit.prescriptions).selectinload(Prescription.product),
    ).filter(Visit.id.in_(visit_ids)).all())
    by_id = {v.id: v for v in rows}
    return [by_id[vid] for vid in visit_ids if vid in by_id]


def _chunks(ids: List[int], size: int) -> List[List[int]]:
    size = max(1, int(size or 1))
    return [ids[i:i + size] for i in range(0, len(ids), size)]


def _visit_customer_name(visit: Optional[Visit]) -> str:
    if visit is None:
        return "Unknown"
    if visit.patient is not None:
        return visit.patient.full_name or WALK_IN_CUSTOMER
    return WALK_IN_CUSTOMER


class VisitInvoiceConversion:
    """
    Turns every not-yet-invoiced visit into a paid customer invoice.

    events() is an async generator of event models (progress / complete /
    cancelled / error). Every database call goes through the thread pool.
    A transaction already running when the client leaves always finishes.

    Checkpoints on the cancellation token:
      - before a chunk starts
      - before each invoice transaction (committer)
      - after the invoice loop, before the chunk stock update (committer)
      - after a chunk completes
    Whatever was committed before a checkpoint stays; a re-run skips it.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Settings,
        token: Optional[CancellationToken] = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.token = token or CancellationToken()
        self.progress = ConversionProgress()
        self.invoiced: Set[int] = set()
        self.allocator: Optional[InvoiceNumberAllocator] = None
        self.committer: Optional[VisitInvoiceCommitter] = None

    # ---------- db (thread pool) ----------

    def _scan(self) -> ConversionScan:
        db = self.session_factory()
        try:
            return load_conversion_scan(db, self.settings)
        finally:
            db.close()

    def _load_chunk(self, visit_ids: List[int]) -> List[Visit]:
        db = self.session_factory()
        try:
            return load_chunk_visits(db, visit_ids)
        finally:
            db.close()

    # ---------- steps ----------

    def _draft_chunk(self, visit_ids: List[int], visits: List[Visit]) -> List[InvoiceDraft]:
        """Drafts in visit order; skips and drafting errors are counted here."""
        p = self.progress
        found = {v.id for v in visits}
        for vid in visit_ids:
            if vid not in found:
                # deleted between the scan and this chunk
                logger.warning("Visit %s disappeared before invoicing, skipped", vid)
                p.skipped_empty += 1

        drafts: List[InvoiceDraft] = []
        for visit in visits:
            if visit.id in self.invoiced:
                p.skipped_already += 1
                continue
            try:
                draft = draft_invoice_for_visit(
                    visit, next_number=self.allocator.next_number)
            except Exception as e:
                logger.exception("Error preparing visit %s", visit.id)
                p.record_error(
                    visit_id=visit.id,
                    opd_no=visit.opd_no,
                    error=str(e) or "Unknown error",
                    customer_name=_visit_customer_name(visit),
                )
                continue
            if draft is None:
                p.skipped_empty += 1
                continue
            # a visit appearing twice in one run is billed once
            self.invoiced.add(visit.id)
            drafts.append(draft)
        return drafts

    def _record_chunk(self, chunk: ChunkResult) -> None:
        p = self.progress
        for c in chunk.committed:
            p.record_created(
                invoice_id=c.invoice_id,
                invoice_number=c.draft.invoice_number,
                visit_id=c.draft.visit_id,
                opd_no=c.draft.opd_no,
                customer_name=c.draft.customer_name,
                total_amount=c.draft.total_amount,
            )
        for f in chunk.failed:
            # failed visits may be retried by the next run
            self.invoiced.discard(f.draft.visit_id)
            p.record_error(
                visit_id=f.draft.visit_id,
                opd_no=f.draft.opd_no,
                error=f.error,
                customer_name=f.draft.customer_name,
            )

    # ---------- run ----------

    async def events(self) -> AsyncIterator[BaseModel]:
        p = self.progress
        yield p.progress_event()

        try:
            scan = await run_in_threadpool(self._scan)
        except Exception as e:
            logger.exception("Failed to load visits for invoice generation")
            yield ProgressPublisher.error(str(e) or "Failed to generate invoices")
            return

        self.invoiced = set(scan.invoiced)
        self.allocator = scan.allocator
        self.committer = VisitInvoiceCommitter(self.session_factory,
                                               scan.snapshot, self.settings)

        pending = [vid for vid in scan.visit_ids if vid not in self.invoiced]
        p.total = len(scan.visit_ids)
        p.skipped_already = p.total - len(pending)
        logger.info(
            "Invoice generation started: %s visits, %s already invoiced, %s pending",
            p.total, p.skipped_already, len(pending))
        yield p.progress_event()

        try:
            for chunk_no, visit_ids in enumerate(
                    _chunks(pending, self.settings.INVOICE_CONVERSION_CHUNK_SIZE), start=1):
                if self.token.cancelled:
                    logger.info("Cancellation detected at chunk %s start", chunk_no)
                    yield ProgressPublisher.cancelled()
                    return

                try:
                    visits = await run_in_threadpool(self._load_chunk, visit_ids)
                except Exception as e:
                    logger.exception("Failed to load visits for chunk %s", chunk_no)
                    for vid in visit_ids:
                        p.record_error(visit_id=vid,
                                       opd_no=None,
                                       error=str(e) or "Failed to load visit",
                                       customer_name="Unknown")
                    yield p.progress_event()
                    continue

                drafts = self._draft_chunk(visit_ids, visits)

                chunk = await run_in_threadpool(self.committer.commit_chunk, drafts, self.token)
                self._record_chunk(chunk)
                if chunk.stock_error:
                    logger.warning(
                        "Chunk %s: product stock not updated, %s invoices kept: %s",
                        chunk_no, len(chunk.committed), chunk.stock_error)

                if chunk.cancelled or self.token.cancelled:
                    logger.info(
                        "Cancellation detected after chunk %s: %s created so far",
                        chunk_no, p.created)
                    yield ProgressPublisher.cancelled()
                    return

                yield p.progress_event()
        except Exception as e:
            logger.exception("Generate invoices error")
            yield ProgressPublisher.error(str(e) or "Failed to generate invoices")
            return

        logger.info("Invoice generation finished: created=%s skipped=%s failed=%s total=%s",
                    p.created, p.skipped, p.errors, p.total)
        yield p.complete_event()
