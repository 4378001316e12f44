# clinic_billing/api/routes_invoice_conversion.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_billing.api.deps import get_db, get_session_factory, get_settings
from clinic_billing.core.config import Settings
from clinic_billing.models.visit import Visit
from clinic_billing.schemas.invoice_conversion import ConversionPreviewOut
from clinic_billing.services.cancellation import CancellationMonitor, CancellationToken
from clinic_billing.services.invoice_ledger import load_invoiced_visit_ids
from clinic_billing.services.visit_invoice_conversion import VisitInvoiceConversion
from clinic_billing.services.visit_invoice_progress import ProgressPublisher
from clinic_billing.utils.resp import ok, err

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/generate-from-visits/preview")
def preview_generate_from_visits(db: Session = Depends(get_db)):
    try:
        visit_ids = {int(r[0]) for r in db.query(Visit.id).all()}
        invoiced = load_invoiced_visit_ids(db) & visit_ids
        out = ConversionPreviewOut(
            total=len(visit_ids),
            alreadyInvoiced=len(invoiced),
            pending=len(visit_ids) - len(invoiced),
        )
        return ok(out.model_dump())
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to preview invoice generation")
        return err("Database error", 500)


@router.post("/generate-from-visits")
async def generate_from_visits(
    request: Request,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    cfg: Settings = Depends(get_settings),
):
    """
    Creates paid invoices for every visit that has none yet.

    The response is a server-sent event stream: progress events after each
    chunk, then exactly one of complete / cancelled / error. Closing the
    connection cancels the run at the next checkpoint; re-running resumes.
    """
    token = CancellationToken()
    monitor = CancellationMonitor(request, token, poll_interval=cfg.DISCONNECT_POLL_SECONDS)
    run = VisitInvoiceConversion(session_factory, cfg, token)

    async def stream():
        finished = False
        monitor.start()
        try:
            async for event in run.events():
                yield ProgressPublisher.encode(event)
            finished = True
        except asyncio.CancelledError:
            token.cancel("response stream cancelled")
            raise
        finally:
            if not finished:
                token.cancel("response stream closed")
            monitor.stop()

    return StreamingResponse(
        stream(),
        media_type=ProgressPublisher.media_type,
        headers=ProgressPublisher.headers,
    )
