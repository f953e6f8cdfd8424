from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from controlai.core.config import settings
from controlai.core.database import get_db
from controlai.core.deps import get_current_user, get_email_service, get_receipt_service, require_admin
from controlai.core.errors import bad_request_on_error
from controlai.models.user import User
from controlai.services import payment_service
from controlai.services.payment_service import VALID_METHODS


router = APIRouter()


class PaymentIn(BaseModel):
    class Config:
        populate_by_name = True

    sale_id: int = Field(alias="saleId")
    amount: Decimal
    method: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    send_email: bool = Field(default=False, alias="sendEmail")

    @field_validator("amount")
    @classmethod
    def amount_positive(cls, value: Decimal) -> Decimal:
        if not value.is_finite() or value.quantize(Decimal("0.01")) <= 0:
            raise ValueError("Valor do pagamento deve ser maior que zero")
        return value

    @field_validator("method")
    @classmethod
    def method_known(cls, value: str) -> str:
        if value not in VALID_METHODS:
            raise ValueError(f"Método de pagamento inválido. Valores aceitos: {', '.join(VALID_METHODS)}")
        return value

    @field_validator("reference")
    @classmethod
    def reference_length(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and len(value) > 100:
            raise ValueError("Referência não pode ter mais de 100 caracteres")
        return value


class PaymentOut(BaseModel):
    class Config:
        from_attributes = True

    id: int
    sale_id: int
    amount: Decimal
    method: str
    status: str
    reference: Optional[str] = None
    notes: Optional[str] = None
    processed_by_id: Optional[int] = None
    transaction_date: datetime


class PaymentListOut(BaseModel):
    success: bool = True
    count: int
    data: List[PaymentOut]


class PaymentEnvelope(BaseModel):
    success: bool = True
    data: PaymentOut


class ResendResult(BaseModel):
    emailSent: bool
    receiptNumber: str


class ResendEnvelope(BaseModel):
    success: bool = True
    data: ResendResult


class OutboxSummary(BaseModel):
    success: bool = True
    processed: int
    succeeded: int
    failed: int


def pdf_response(pdf: bytes, filename: str, receipt_number: str) -> Response:
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f"attachment; filename={filename}",
            "X-Receipt-Number": receipt_number,
        },
    )


@router.post("", response_class=Response)
def process_payment(
    data: PaymentIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    receipts=Depends(get_receipt_service),
    email=Depends(get_email_service),
):
    """Record a payment and answer with the receipt PDF itself."""
    with bad_request_on_error("processing payment"):
        result = payment_service.process_payment(
            db,
            user,
            receipts,
            email,
            sale_id=data.sale_id,
            amount=data.amount,
            method=data.method,
            reference=data.reference,
            notes=data.notes,
            send_email=data.send_email,
        )
    return pdf_response(
        result.receipt.pdf,
        f"receipt-{result.payment.id}.pdf",
        result.receipt.history.receipt_number,
    )


@router.get("/sale/{sale_id}", response_model=PaymentListOut)
def get_sale_payments(
    sale_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    payments = payment_service.list_sale_payments(db, sale_id)
    return PaymentListOut(count=len(payments), data=payments)


@router.post("/outbox/process", response_model=OutboxSummary, dependencies=[Depends(require_admin)])
def process_receipt_outbox(
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    receipts=Depends(get_receipt_service),
    email=Depends(get_email_service),
):
    summary = payment_service.process_pending_receipts(
        db, receipts, email, max_attempts=settings.outbox_max_attempts, limit=limit
    )
    return OutboxSummary(**summary)


@router.get("/{payment_id}/receipt", response_class=Response)
def get_payment_receipt(
    payment_id: int,
    send_email: bool = Query(False, alias="sendEmail"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    receipts=Depends(get_receipt_service),
    email=Depends(get_email_service),
):
    with bad_request_on_error("getting payment receipt"):
        issued = payment_service.get_payment_receipt(db, payment_id, user, receipts, email, send_email=send_email)
    return pdf_response(issued.pdf, f"receipt-{payment_id}.pdf", issued.history.receipt_number)


@router.patch("/{payment_id}/cancel", response_model=PaymentEnvelope, dependencies=[Depends(require_admin)])
def cancel_payment(
    payment_id: int,
    db: Session = Depends(get_db),
):
    with bad_request_on_error("cancelling payment"):
        payment = payment_service.cancel_payment(db, payment_id)
    return PaymentEnvelope(data=payment)


@router.post("/{payment_id}/resend-receipt", response_model=ResendEnvelope)
def resend_receipt(
    payment_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    receipts=Depends(get_receipt_service),
    email=Depends(get_email_service),
):
    with bad_request_on_error("resending receipt email"):
        result = payment_service.resend_receipt_email(db, payment_id, user, receipts, email)
    return ResendEnvelope(data=ResendResult(**result))
