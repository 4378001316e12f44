# clinic_billing/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All clinic tables (patients, visits, products, invoices, stock) inherit from this."""
    pass
