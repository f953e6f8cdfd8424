from datetime import datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Column, Integer, Numeric, ForeignKey, DateTime, String, Text
from sqlalchemy.orm import relationship

from controlai.models.base import Base


class SaleStatus(str, Enum):
    pending = "pending"
    partially_paid = "partially_paid"
    paid = "paid"
    cancelled = "cancelled"


CENTS = Decimal("0.01")


class Sale(Base):
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("customers.id", ondelete="SET NULL"), nullable=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    subtotal = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default=SaleStatus.pending.value, index=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", order_by="SaleItem.id")
    payments = relationship("Payment", back_populates="sale", order_by="Payment.id")
    customer = relationship("Customer", back_populates="sales")
    seller = relationship("User")

    def recalculate_totals(self) -> None:
        """total = subtotal - discount + tax, subtotal being the sum of item totals."""
        for item in self.items:
            item.recalculate_total()
        subtotal = sum((Decimal(item.total) for item in self.items), Decimal("0"))
        self.subtotal = subtotal.quantize(CENTS)
        discount = Decimal(self.discount or 0).quantize(CENTS)
        tax = Decimal(self.tax or 0).quantize(CENTS)
        self.total = (self.subtotal - discount + tax).quantize(CENTS)


class SaleItem(Base):
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)
    discount = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False, default=0)

    sale = relationship("Sale", back_populates="items")
    product = relationship("Product")

    def recalculate_total(self) -> None:
        gross = Decimal(self.unit_price or 0) * int(self.quantity or 0)
        self.total = (gross - Decimal(self.discount or 0)).quantize(CENTS)
