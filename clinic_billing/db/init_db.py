# clinic_billing/db/init_db.py
from __future__ import annotations

import argparse
import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_billing.db.base import Base

# Import all models so metadata is complete
from clinic_billing import models  # noqa: F401
from clinic_billing.models.customer_invoice import CustomerInvoice
from clinic_billing.models.visit import Visit
from clinic_billing.services.invoice_ledger import extract_visit_id

logger = logging.getLogger(__name__)


def existing_tables(bind: Engine) -> set:
    names = set(inspect(bind).get_table_names())
    return names & set(Base.metadata.tables)


def backfill_source_visit_ids(db: Session) -> int:
    """
    Copy the notes marker into source_visit_id for invoices written before
    the column existed. Skips markers pointing at missing visits and visits
    already linked to another invoice. Returns the number of rows linked.
    """
    linked = {
        int(vid)
        for (vid, ) in db.query(CustomerInvoice.source_visit_id).filter(
            CustomerInvoice.source_visit_id.isnot(None))
    }
    visit_ids = {int(vid) for (vid, ) in db.query(Visit.id)}

    count = 0
    rows = (db.query(CustomerInvoice).filter(
        CustomerInvoice.source_visit_id.is_(None),
        CustomerInvoice.notes.like("%visit ID:%"),
    ).order_by(CustomerInvoice.id.asc()).all())
    for inv in rows:
        vid = extract_visit_id(inv.notes)
        if vid is None or vid not in visit_ids or vid in linked:
            continue
        inv.source_visit_id = vid
        linked.add(vid)
        count += 1
    return count


def run(bind: Engine, fresh: bool = False, backfill: bool = False) -> None:
    if fresh:
        logger.warning("Dropping ALL tables (dev only)")
        Base.metadata.drop_all(bind=bind)

    Base.metadata.create_all(bind=bind)
    logger.info("Tables present: %s", sorted(existing_tables(bind)))

    if not backfill:
        return
    try:
        with Session(bind) as db:
            n = backfill_source_visit_ids(db)
            db.commit()
        logger.info("Linked %s invoices to their source visit", n)
    except SQLAlchemyError:
        logger.exception("Backfill of source_visit_id failed")
        raise


if __name__ == "__main__":
    from clinic_billing.db.session import engine

    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(
        description="Initialize DB (create missing tables).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    parser.add_argument(
        "--backfill-visit-links",
        action="store_true",
        help="Fill customer_invoices.source_visit_id from the notes marker.",
    )
    args = parser.parse_args()
    run(engine, fresh=args.fresh, backfill=args.backfill_visit_links)
