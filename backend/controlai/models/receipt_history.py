from datetime import datetime
from enum import Enum

from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship

from controlai.models.base import Base


class EmailStatus(str, Enum):
    sent = "sent"
    failed = "failed"
    pending = "pending"


class ReceiptHistory(Base):
    __tablename__ = "receipt_history"
    __table_args__ = (
        UniqueConstraint("receipt_number", name="uq_receipt_history_number"),
        Index("ix_receipt_history_email_sent", "email_sent_to", "email_sent_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    receipt_number = Column(String(20), nullable=False)
    generated_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    generated_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    qr_code_data = Column(Text, nullable=False)
    verification_url = Column(String(500), nullable=False)
    file_path = Column(String(500), nullable=True)
    signature_path = Column(String(500), nullable=True)
    email_sent_to = Column(String(255), nullable=True)
    email_sent_at = Column(DateTime, nullable=True)
    email_status = Column(String(20), nullable=False, default=EmailStatus.pending.value)
    email_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=True, onupdate=datetime.utcnow)

    payment = relationship("Payment")
    sale = relationship("Sale")
    generated_by = relationship("User")


class ReceiptJobStatus(str, Enum):
    pending = "pending"
    done = "done"
    failed = "failed"


class ReceiptJob(Base):
    """Outbox row written in the payment transaction; drained after commit."""

    __tablename__ = "receipt_jobs"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True)
    requested_by_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    send_email = Column(Boolean, nullable=False, default=False)
    status = Column(String(20), nullable=False, default=ReceiptJobStatus.pending.value, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    receipt_history_id = Column(Integer, ForeignKey("receipt_history.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    processed_at = Column(DateTime, nullable=True)

    payment = relationship("Payment")
    receipt_history = relationship("ReceiptHistory")
