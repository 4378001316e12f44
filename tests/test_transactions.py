"""Tests for clinic_billing.db.transactions.bounded_transaction."""

import pytest

from clinic_billing.db import transactions
from clinic_billing.db.transactions import bounded_transaction
from clinic_billing.models import Product
from clinic_billing.services.errors import TransactionTimeout


def _count(session_factory):
    db = session_factory()
    try:
        return db.query(Product).count()
    finally:
        db.close()


def test_commits_on_success(session_factory):
    with bounded_transaction(session_factory, label="test", max_wait=1, timeout=5) as db:
        db.add(Product(name="Arnica", quantity=1))

    assert _count(session_factory) == 1


def test_rolls_back_and_reraises(session_factory):
    with pytest.raises(ValueError):
        with bounded_transaction(session_factory, label="test", max_wait=1, timeout=5) as db:
            db.add(Product(name="Arnica", quantity=1))
            db.flush()
            raise ValueError("bad line")

    assert _count(session_factory) == 0


def test_overrun_is_rolled_back(session_factory, monkeypatch):
    ticks = [100.0, 120.0]

    def monotonic():
        return ticks.pop(0) if len(ticks) > 1 else ticks[0]

    monkeypatch.setattr(transactions.time, "monotonic", monotonic)

    with pytest.raises(TransactionTimeout) as exc:
        with bounded_transaction(session_factory, label="invoice INV-000001",
                                 max_wait=5, timeout=15) as db:
            db.add(Product(name="Arnica", quantity=1))

    assert exc.value.limit == 15
    assert exc.value.elapsed == pytest.approx(20.0)
    assert "invoice INV-000001" in str(exc.value)
    assert _count(session_factory) == 0


# =============================================================================
# MySQL session variables
# =============================================================================


class RecordingSession:
    """Session stand-in reporting the mysql dialect and recording SQL."""

    def __init__(self, lock_wait=50, fail_on=None):
        self.lock_wait = lock_wait
        self.fail_on = fail_on
        self.statements = []
        self.calls = []

    def get_bind(self):
        return type("Bind", (), {"dialect": type("Dialect", (), {"name": "mysql"})()})()

    def execute(self, stmt):
        sql = str(stmt)
        if self.fail_on and self.fail_on in sql and self.statements:
            raise RuntimeError("connection lost")
        self.statements.append(sql)
        value = self.lock_wait
        return type("Result", (), {"scalar": lambda _self: value})()

    def commit(self):
        self.calls.append("commit")

    def rollback(self):
        self.calls.append("rollback")

    def invalidate(self):
        self.calls.append("invalidate")

    def close(self):
        self.calls.append("close")


def test_mysql_lock_wait_restored_after_commit():
    session = RecordingSession(lock_wait=50)

    with bounded_transaction(lambda: session, label="invoice", max_wait=5, timeout=15):
        pass

    assert session.statements == [
        "SELECT @@SESSION.innodb_lock_wait_timeout",
        "SET SESSION innodb_lock_wait_timeout = 5",
        "SET SESSION innodb_lock_wait_timeout = 50",
    ]
    assert session.calls == ["commit", "close"]
    assert not any("max_execution_time" in s for s in session.statements)


def test_mysql_lock_wait_restored_after_rollback():
    session = RecordingSession(lock_wait=50)

    with pytest.raises(ValueError):
        with bounded_transaction(lambda: session, label="invoice", max_wait=10, timeout=30):
            raise ValueError("duplicate invoice number")

    assert session.statements[-1] == "SET SESSION innodb_lock_wait_timeout = 50"
    assert session.calls == ["rollback", "close"]


def test_connection_discarded_when_restore_fails():
    session = RecordingSession(lock_wait=50, fail_on="= 50")

    with bounded_transaction(lambda: session, label="invoice", max_wait=5, timeout=15):
        pass

    assert session.calls == ["commit", "invalidate", "close"]
