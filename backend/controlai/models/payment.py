from datetime import datetime
from enum import Enum

from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Text, CheckConstraint, Index
from sqlalchemy.orm import relationship

from controlai.models.base import Base


class PaymentMethod(str, Enum):
    cash = "cash"
    credit = "credit"
    debit = "debit"
    pix = "pix"
    transfer = "transfer"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    cancelled = "cancelled"


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
        Index("ix_payments_sale_transaction_date", "sale_id", "transaction_date"),
    )

    id = Column(Integer, primary_key=True, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Numeric(10, 2), nullable=False)
    method = Column(String(20), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=PaymentStatus.pending.value, index=True)
    reference = Column(String(100), nullable=True)
    notes = Column(Text, nullable=True)
    processed_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    transaction_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    sale = relationship("Sale", back_populates="payments")
    processed_by = relationship("User")
