# clinic_billing/models/product.py
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Column, Integer, String, DateTime, Numeric, CheckConstraint

from clinic_billing.db.base import Base


class Product(Base):
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("quantity >= 0",
                                      name="ck_products_quantity_non_negative"), )

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)

    # selling price per unit
    price_rupees = Column(Numeric(14, 2), nullable=False, default=Decimal("0"))

    # on-hand stock, never negative
    quantity = Column(Integer, nullable=False, default=0)
    # cumulative units sold
    total_sales = Column(Integer, nullable=False, default=0)

    updated_at = Column(DateTime,
                        default=datetime.utcnow,
                        onupdate=datetime.utcnow)
