# clinic_billing/models/customer_invoice.py
from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Text,
)
from sqlalchemy.orm import relationship

from clinic_billing.db.base import Base

Money = Numeric(14, 2)


class CustomerInvoice(Base):
    """
    Customer (patient) invoice.

    Invoices generated from visits carry the source visit twice:
    - source_visit_id: structured link, UNIQUE so a visit can be billed once
    - notes: "... (visit ID: <id>)" marker, kept for older rows and for humans
    """

    __tablename__ = "customer_invoices"

    id = Column(Integer, primary_key=True, index=True)
    invoice_number = Column(String(32), unique=True, index=True, nullable=False)

    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=True, index=True)
    source_visit_id = Column(Integer,
                             ForeignKey("visits.id"),
                             unique=True,
                             nullable=True)

    # customer snapshot at billing time
    customer_name = Column(String(255), nullable=False, default="")
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)
    customer_address = Column(String(500), nullable=True)
    customer_gstin = Column(String(50), nullable=True)

    invoice_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    due_date = Column(DateTime, nullable=True)

    subtotal = Column(Money, nullable=False, default=Decimal("0"))
    tax_amount = Column(Money, nullable=False, default=Decimal("0"))
    discount = Column(Money, nullable=False, default=Decimal("0"))
    total_amount = Column(Money, nullable=False, default=Decimal("0"))
    paid_amount = Column(Money, nullable=False, default=Decimal("0"))
    balance_amount = Column(Money, nullable=False, default=Decimal("0"))

    status = Column(String(16), nullable=False,
                    default="unpaid")  # unpaid | partial | paid
    payment_method = Column(String(30), nullable=True)

    notes = Column(Text, nullable=True)
    terms_and_conditions = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow)

    patient = relationship("Patient")
    items = relationship(
        "CustomerInvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="CustomerInvoiceItem.id",
    )


class CustomerInvoiceItem(Base):
    __tablename__ = "customer_invoice_items"

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(Integer,
                        ForeignKey("customer_invoices.id", ondelete="CASCADE"),
                        nullable=False,
                        index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=True)

    description = Column(String(500), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Money, nullable=False, default=Decimal("0"))
    tax_rate = Column(Numeric(5, 2), nullable=False, default=Decimal("0"))
    discount = Column(Money, nullable=False, default=Decimal("0"))
    total_amount = Column(Money, nullable=False, default=Decimal("0"))

    invoice = relationship("CustomerInvoice", back_populates="items")
    product = relationship("Product")
