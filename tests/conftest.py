"""
Pytest fixtures for the clinic billing test suite.

Provides:
- a file-backed SQLite database per test (each session gets its own
  connection, like the pooled MySQL connections in production)
- a Settings instance with test-friendly conversion knobs

Factories live in factories.py.
"""

import os
from typing import Callable

# must be set before clinic_billing.db.session builds its engine
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from clinic_billing import models  # noqa: F401
from clinic_billing.core.config import Settings
from clinic_billing.db.base import Base


@pytest.fixture
def engine(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'clinic.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> Callable[[], Session]:
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory) -> Session:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        INVOICE_CONVERSION_CHUNK_SIZE=100,
        INVOICE_CONVERSION_ATOMIC_CHUNKS=False,
        DISCONNECT_POLL_SECONDS=0.01,
    )
