# clinic_billing/db/transactions.py
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from sqlalchemy import text
from sqlalchemy.orm import Session

from clinic_billing.services.errors import TransactionTimeout

logger = logging.getLogger(__name__)


def _apply_lock_bounds(db: Session, max_wait: float, timeout: float) -> Optional[int]:
    """
    Push the lock-wait bound down to the database where it supports it.

    MySQL: innodb_lock_wait_timeout is a session variable and outlives the
    transaction on a pooled connection, so the previous value is returned
    for _restore_lock_wait. MySQL has no statement bound for INSERT/UPDATE;
    the elapsed-time check in bounded_transaction is the execution bound.

    PostgreSQL: SET LOCAL ends with the transaction, nothing to restore.
    SQLite: neither knob; only the elapsed-time check applies.
    """
    dialect = db.get_bind().dialect.name

    if dialect == "mysql":
        previous = db.execute(text("SELECT @@SESSION.innodb_lock_wait_timeout")).scalar()
        # whole seconds, minimum 1
        db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {max(1, int(round(max_wait)))}"))
        return int(previous) if previous is not None else None

    if dialect == "postgresql":
        db.execute(text(f"SET LOCAL lock_timeout = '{max(1, int(max_wait * 1000))}ms'"))
        db.execute(text(f"SET LOCAL statement_timeout = '{max(1, int(timeout * 1000))}ms'"))
    return None


def _restore_lock_wait(db: Session, previous: Optional[int]) -> None:
    if previous is None:
        return
    try:
        db.execute(text(f"SET SESSION innodb_lock_wait_timeout = {int(previous)}"))
    except Exception:
        # keep the bounded value off the pool: drop the connection instead
        logger.warning("Could not restore innodb_lock_wait_timeout, discarding connection",
                       exc_info=True)
        db.invalidate()


@contextmanager
def bounded_transaction(
    session_factory: Callable[[], Session],
    *,
    label: str,
    max_wait: float,
    timeout: float,
) -> Generator[Session, None, None]:
    """
    One short transaction on its own session.

    Commits on normal exit, rolls back on any exception and re-raises.
    If the body ran longer than `timeout` seconds the work is rolled back
    and TransactionTimeout is raised instead of committing. Session-level
    settings changed for the bound are put back before the connection
    returns to the pool.
    """
    db = session_factory()
    previous_wait: Optional[int] = None
    started = time.monotonic()
    try:
        previous_wait = _apply_lock_bounds(db, max_wait, timeout)
        yield db
        elapsed = time.monotonic() - started
        if elapsed > timeout:
            raise TransactionTimeout(label, elapsed, timeout)
        db.commit()
        logger.debug("%s transaction committed in %.3fs", label, elapsed)
    except Exception:
        db.rollback()
        logger.debug("%s transaction rolled back", label, exc_info=True)
        raise
    finally:
        _restore_lock_wait(db, previous_wait)
        db.close()
