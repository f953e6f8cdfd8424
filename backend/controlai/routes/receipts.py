import logging
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from controlai.core.database import get_db
from controlai.core.deps import get_current_user, get_receipt_service, get_signature_service
from controlai.core.errors import NotFoundError, bad_request_on_error
from controlai.models.payment import Payment
from controlai.models.receipt_history import ReceiptHistory
from controlai.models.sale import Sale
from controlai.models.user import User
from controlai.services.signature_service import SignatureError


logger = logging.getLogger(__name__)
router = APIRouter()

STATS_DAYS = 30


class ReceiptPaymentOut(BaseModel):
    id: int
    amount: Decimal
    method: str
    reference: Optional[str] = None
    transactionDate: Optional[datetime] = None


class ReceiptSaleOut(BaseModel):
    id: int
    total: Decimal
    status: str
    createdAt: Optional[datetime] = None


class ReceiptOut(BaseModel):
    id: int
    receiptNumber: str
    generatedAt: datetime
    generatedBy: Optional[str] = None
    verificationUrl: Optional[str] = None
    emailSentTo: Optional[str] = None
    emailSentAt: Optional[datetime] = None
    emailStatus: str
    emailError: Optional[str] = None
    signed: bool = False
    payment: Optional[ReceiptPaymentOut] = None
    sale: Optional[ReceiptSaleOut] = None


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class ReceiptListOut(BaseModel):
    success: bool = True
    data: List[ReceiptOut]
    pagination: Pagination


class ReceiptEnvelope(BaseModel):
    success: bool = True
    data: ReceiptOut


class ReceiptStats(BaseModel):
    totalReceipts: int
    emailStats: Dict[str, int]
    dailyGeneration: List[dict]


class ReceiptStatsEnvelope(BaseModel):
    success: bool = True
    data: ReceiptStats


def serialize_receipt(history: ReceiptHistory) -> ReceiptOut:
    payment = history.payment
    sale = history.sale
    return ReceiptOut(
        id=history.id,
        receiptNumber=history.receipt_number,
        generatedAt=history.generated_at,
        generatedBy=history.generated_by.name if history.generated_by else None,
        verificationUrl=history.verification_url,
        emailSentTo=history.email_sent_to,
        emailSentAt=history.email_sent_at,
        emailStatus=history.email_status,
        emailError=history.email_error,
        signed=bool(history.signature_path),
        payment=ReceiptPaymentOut(
            id=payment.id,
            amount=payment.amount,
            method=payment.method,
            reference=payment.reference,
            transactionDate=payment.transaction_date,
        ) if payment else None,
        sale=ReceiptSaleOut(
            id=sale.id,
            total=sale.total,
            status=sale.status,
            createdAt=sale.created_at,
        ) if sale else None,
    )


def _find_receipt(db: Session, receipt_number: str) -> ReceiptHistory:
    history = (
        db.query(ReceiptHistory)
        .options(
            selectinload(ReceiptHistory.payment).selectinload(Payment.processed_by),
            selectinload(ReceiptHistory.sale).selectinload(Sale.items),
            selectinload(ReceiptHistory.sale).selectinload(Sale.customer),
            selectinload(ReceiptHistory.generated_by),
        )
        .filter(ReceiptHistory.receipt_number == receipt_number)
        .first()
    )
    if not history:
        raise NotFoundError("Recibo não encontrado")
    return history


@router.get("", response_model=ReceiptListOut)
def list_receipts(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    email_sent_to: Optional[str] = Query(None, alias="emailSentTo"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    query = db.query(ReceiptHistory)
    # Date range applies only when both ends are given
    if start_date and end_date:
        query = query.filter(
            ReceiptHistory.generated_at >= datetime.combine(start_date, time.min),
            ReceiptHistory.generated_at <= datetime.combine(end_date, time.max),
        )
    if email_sent_to:
        query = query.filter(ReceiptHistory.email_sent_to == email_sent_to)

    total = query.count()
    receipts = (
        query.options(
            selectinload(ReceiptHistory.payment),
            selectinload(ReceiptHistory.sale),
            selectinload(ReceiptHistory.generated_by),
        )
        .order_by(ReceiptHistory.generated_at.desc(), ReceiptHistory.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return ReceiptListOut(
        data=[serialize_receipt(r) for r in receipts],
        pagination=Pagination(page=page, limit=limit, total=total, pages=-(-total // limit)),
    )


@router.get("/stats", response_model=ReceiptStatsEnvelope)
def receipt_stats(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    total = db.query(func.count(ReceiptHistory.id)).scalar() or 0

    email_rows = (
        db.query(ReceiptHistory.email_status, func.count(ReceiptHistory.id))
        .group_by(ReceiptHistory.email_status)
        .all()
    )

    since = datetime.combine(datetime.utcnow().date() - timedelta(days=STATS_DAYS - 1), time.min)
    day = func.date(ReceiptHistory.generated_at)
    daily_rows = (
        db.query(day.label("day"), func.count(ReceiptHistory.id))
        .filter(ReceiptHistory.generated_at >= since)
        .group_by(day)
        .order_by(day.desc())
        .limit(STATS_DAYS)
        .all()
    )

    return ReceiptStatsEnvelope(data=ReceiptStats(
        totalReceipts=total,
        emailStats={status: count for status, count in email_rows},
        dailyGeneration=[{"_id": str(d), "count": count} for d, count in daily_rows],
    ))


@router.get("/verify/{receipt_number}")
def verify_receipt(
    receipt_number: str,
    db: Session = Depends(get_db),
    receipts=Depends(get_receipt_service),
    signatures=Depends(get_signature_service),
):
    """Public authenticity check used by the QR code link."""
    history = _find_receipt(db, receipt_number)
    data = receipts.build_verification(history)
    data["signatureValid"] = None
    if history.signature_path and signatures is not None:
        try:
            data["signatureValid"] = signatures.verify_file(history.file_path, history.signature_path)
        except (SignatureError, OSError) as e:
            logger.warning("Could not check signature of receipt %s: %s", receipt_number, e)
            data["signatureValid"] = False
    return {"success": True, "data": data}


@router.get("/{receipt_number}", response_model=ReceiptEnvelope)
def get_receipt(receipt_number: str, db: Session = Depends(get_db)):
    return ReceiptEnvelope(data=serialize_receipt(_find_receipt(db, receipt_number)))


@router.get("/{receipt_number}/download", response_class=Response)
def download_receipt(
    receipt_number: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    receipts=Depends(get_receipt_service),
):
    history = _find_receipt(db, receipt_number)
    with bad_request_on_error("downloading receipt"):
        pdf = receipts.load_or_render(history)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=receipt-{history.receipt_number}.pdf"},
    )
