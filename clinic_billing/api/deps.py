# clinic_billing/api/deps.py
from __future__ import annotations

from typing import Callable, Generator

from sqlalchemy.orm import Session

from clinic_billing.core.config import Settings, settings
from clinic_billing.db.session import SessionLocal


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    """Long-running jobs open their own short sessions instead of one request session."""
    return SessionLocal


def get_settings() -> Settings:
    return settings
