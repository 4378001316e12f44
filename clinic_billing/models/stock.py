# clinic_billing/models/stock.py
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, Index
from sqlalchemy.orm import relationship

from clinic_billing.db.base import Base


class StockTransaction(Base):
    """Append-only stock ledger. One row per movement, never updated."""
    __tablename__ = "stock_transactions"
    __table_args__ = (
        Index("ix_stock_txn_product_time", "product_id", "created_at"),
        Index("ix_stock_txn_ref", "reference_type", "reference_id"),
    )

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    transaction_type = Column(String(10), nullable=False)  # IN / OUT
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(14, 2), default=Decimal("0"))
    total_value = Column(Numeric(14, 2), default=Decimal("0"))

    # on-hand after this movement
    balance_quantity = Column(Integer, nullable=False, default=0)

    reference_type = Column(String(50), default="")
    reference_id = Column(Integer, nullable=True)
    notes = Column(String(1000), default="")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    product = relationship("Product")
