# clinic_billing/models/visit.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    Numeric,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from clinic_billing.db.base import Base


class Visit(Base):
    """
    Historical OPD visit. Written by the visit CRUD screens / bulk import,
    only read by billing.
    """
    __tablename__ = "visits"
    __table_args__ = (Index("ix_visits_date_id", "date", "id"), )

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=True,
                        index=True)
    opd_no = Column(String(50), nullable=True, index=True)
    date = Column(DateTime, nullable=False, default=datetime.utcnow)

    # consultation amount billed when no medicine was prescribed
    amount = Column(Numeric(14, 2), nullable=True)

    # contact captured on the visit itself (used when no patient is linked)
    phone = Column(String(20), nullable=True)
    address = Column(String(500), nullable=True)

    patient = relationship("Patient", back_populates="visits")
    prescriptions = relationship(
        "Prescription",
        back_populates="visit",
        order_by="Prescription.id",
    )


class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    visit_id = Column(Integer,
                      ForeignKey("visits.id"),
                      nullable=False,
                      index=True)
    product_id = Column(Integer,
                        ForeignKey("products.id"),
                        nullable=True,
                        index=True)
    quantity = Column(Integer, nullable=False, default=0)

    visit = relationship("Visit", back_populates="prescriptions")
    product = relationship("Product")
