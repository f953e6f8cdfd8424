"""
Serviço de pagamentos: registro, status da venda e emissão do recibo.

O pagamento, o novo status da venda e a tarefa de recibo (outbox) são
gravados em uma única transação. A geração do PDF, o histórico e o email
rodam depois do commit e podem ser reprocessados a partir da outbox.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from controlai.core.errors import AppError, BadRequestError, NotFoundError
from controlai.models.payment import Payment, PaymentMethod, PaymentStatus
from controlai.models.receipt_history import EmailStatus, ReceiptHistory, ReceiptJob, ReceiptJobStatus
from controlai.models.sale import Sale, SaleStatus
from controlai.models.user import User
from controlai.services.receipt_service import IssuedReceipt, ReceiptService


logger = logging.getLogger(__name__)

VALID_METHODS = [m.value for m in PaymentMethod]


class ReceiptGenerationError(AppError):
    """The payment is committed but its receipt could not be produced yet."""

    def __init__(self, message: str, payment_id: int, job_id: int):
        super().__init__(message)
        self.payment_id = payment_id
        self.job_id = job_id

    @property
    def extra(self) -> Dict[str, Any]:
        return {"paymentId": self.payment_id, "receiptJobId": self.job_id, "receiptPending": True}


@dataclass
class PaymentResult:
    payment: Payment
    receipt: IssuedReceipt


def sum_paid_amount(db: Session, sale_id: int) -> Decimal:
    total = (
        db.query(func.coalesce(func.sum(Payment.amount), 0))
        .filter(Payment.sale_id == sale_id, Payment.status == PaymentStatus.paid.value)
        .scalar()
    )
    return Decimal(str(total or 0))


def recompute_sale_status(db: Session, sale: Sale, reset_when_unpaid: bool = False) -> str:
    """
    Deriva o status da venda a partir da soma dos pagamentos `paid`.

    paid >= total -> paid; 0 < paid < total -> partially_paid; sem pagamentos
    o status só volta para `pending` quando `reset_when_unpaid` (cancelamento).
    Vendas canceladas não mudam de status.
    """
    if sale.status == SaleStatus.cancelled.value:
        return sale.status

    paid = sum_paid_amount(db, sale.id)
    if paid >= Decimal(sale.total):
        sale.status = SaleStatus.paid.value
    elif paid > 0:
        sale.status = SaleStatus.partially_paid.value
    elif reset_when_unpaid:
        sale.status = SaleStatus.pending.value
    return sale.status


def _validate_amount(amount) -> Decimal:
    try:
        value = Decimal(str(amount))
    except (InvalidOperation, TypeError, ValueError):
        raise BadRequestError("Valor do pagamento deve ser um número")
    if not value.is_finite():
        raise BadRequestError("Valor do pagamento deve ser maior que zero")
    # Stored with two decimals, so sub-cent amounts count as zero
    value = value.quantize(Decimal("0.01"))
    if value <= 0:
        raise BadRequestError("Valor do pagamento deve ser maior que zero")
    return value


def get_payment(db: Session, payment_id: int) -> Payment:
    payment = db.query(Payment).filter(Payment.id == payment_id).first()
    if not payment:
        raise NotFoundError("Pagamento não encontrado")
    return payment


def _payment_sale(db: Session, payment: Payment) -> Sale:
    sale = db.query(Sale).filter(Sale.id == payment.sale_id).first()
    if not sale:
        raise NotFoundError("Venda relacionada não encontrada")
    return sale


def latest_receipt(db: Session, payment_id: int) -> Optional[ReceiptHistory]:
    return (
        db.query(ReceiptHistory)
        .filter(ReceiptHistory.payment_id == payment_id)
        .order_by(ReceiptHistory.generated_at.desc(), ReceiptHistory.id.desc())
        .first()
    )


def record_payment(
    db: Session,
    user: User,
    sale_id: int,
    amount,
    method: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    send_email: bool = False,
) -> ReceiptJob:
    """Persist payment + sale status + outbox job atomically and return the job."""
    sale = db.query(Sale).filter(Sale.id == sale_id).first()
    if not sale:
        raise NotFoundError("Venda não encontrada")

    value = _validate_amount(amount)
    if method not in VALID_METHODS:
        raise BadRequestError(
            f"Método de pagamento inválido. Valores aceitos: {', '.join(VALID_METHODS)}"
        )
    if sale.status == SaleStatus.cancelled.value:
        raise BadRequestError("Não é possível registrar pagamento em venda cancelada")

    # Overpayment and payments on already paid sales are accepted on purpose
    try:
        payment = Payment(
            sale_id=sale.id,
            amount=value,
            method=method,
            reference=reference,
            notes=notes,
            processed_by_id=user.id,
            status=PaymentStatus.paid.value,
            transaction_date=datetime.utcnow(),
        )
        db.add(payment)
        db.flush()

        recompute_sale_status(db, sale)

        job = ReceiptJob(
            payment_id=payment.id,
            requested_by_id=user.id,
            send_email=bool(send_email),
            status=ReceiptJobStatus.pending.value,
        )
        db.add(job)
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("Payment %s of %s recorded on sale %s (status=%s)", payment.id, value, sale.id, sale.status)
    return job


def close_open_jobs(db: Session, payment_id: int, history: ReceiptHistory) -> int:
    """Mark pending/failed outbox jobs of a payment as done once it has a receipt."""
    jobs = (
        db.query(ReceiptJob)
        .filter(
            ReceiptJob.payment_id == payment_id,
            ReceiptJob.status.in_([ReceiptJobStatus.pending.value, ReceiptJobStatus.failed.value]),
        )
        .all()
    )
    for job in jobs:
        job.status = ReceiptJobStatus.done.value
        job.last_error = None
        job.receipt_history_id = history.id
        job.processed_at = datetime.utcnow()
    if jobs:
        db.commit()
        logger.info("Closed %s receipt job(s) of payment %s with receipt %s", len(jobs), payment_id, history.receipt_number)
    return len(jobs)


def _existing_receipt(
    db: Session,
    history: ReceiptHistory,
    payment: Payment,
    sale: Sale,
    receipt_service: ReceiptService,
    email_service=None,
    send_email: bool = False,
) -> IssuedReceipt:
    pdf = receipt_service.load_or_render(history)
    data = receipt_service.build_receipt_data(payment, sale, history.receipt_number, history.qr_code_data)
    recipient = sale.customer.email if sale.customer else None
    if send_email and recipient and email_service is not None:
        sent = receipt_service.deliver_email(db, history, data, pdf, email_service, recipient)
        if not sent:
            logger.warning("Não foi possível enviar o email do recibo %s", history.receipt_number)
    return IssuedReceipt(history=history, data=data, pdf=pdf)


def run_receipt_job(
    db: Session,
    job: ReceiptJob,
    receipt_service: ReceiptService,
    email_service=None,
) -> IssuedReceipt:
    """Execute one outbox job: PDF, history row and optional email.

    A payment keeps a single receipt, so a job whose payment already has one
    reuses it instead of issuing a second number.
    """
    job.attempts = (job.attempts or 0) + 1
    db.commit()

    payment = job.payment
    try:
        sale = _payment_sale(db, payment)
        history = latest_receipt(db, payment.id)
        if history is not None:
            send_email = job.send_email and history.email_status != EmailStatus.sent.value
            issued = _existing_receipt(db, history, payment, sale, receipt_service, email_service, send_email)
        else:
            user = db.get(User, job.requested_by_id) if job.requested_by_id else None
            issued = receipt_service.issue_for_payment(
                db,
                payment,
                sale,
                generated_by=user,
                email_service=email_service,
                send_email=job.send_email,
            )
    except Exception as e:
        db.rollback()
        job.status = ReceiptJobStatus.failed.value
        job.last_error = str(e)
        job.processed_at = datetime.utcnow()
        db.commit()
        logger.error("Receipt job %s for payment %s failed (attempt %s): %s", job.id, job.payment_id, job.attempts, e)
        raise

    job.status = ReceiptJobStatus.done.value
    job.last_error = None
    job.receipt_history_id = issued.history.id
    job.processed_at = datetime.utcnow()
    db.commit()
    return issued


def process_payment(
    db: Session,
    user: User,
    receipt_service: ReceiptService,
    email_service=None,
    *,
    sale_id: int,
    amount,
    method: str,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    send_email: bool = False,
) -> PaymentResult:
    job = record_payment(db, user, sale_id, amount, method, reference, notes, send_email)
    try:
        issued = run_receipt_job(db, job, receipt_service, email_service)
    except Exception as e:
        raise ReceiptGenerationError(str(e) or e.__class__.__name__, job.payment_id, job.id) from e
    return PaymentResult(payment=job.payment, receipt=issued)


def process_pending_receipts(
    db: Session,
    receipt_service: ReceiptService,
    email_service=None,
    max_attempts: int = 5,
    limit: int = 50,
) -> Dict[str, int]:
    jobs = (
        db.query(ReceiptJob)
        .filter(
            ReceiptJob.status.in_([ReceiptJobStatus.pending.value, ReceiptJobStatus.failed.value]),
            ReceiptJob.attempts < max_attempts,
        )
        .order_by(ReceiptJob.created_at.asc(), ReceiptJob.id.asc())
        .limit(limit)
        .all()
    )
    summary = {"processed": 0, "succeeded": 0, "failed": 0}
    for job in jobs:
        summary["processed"] += 1
        try:
            run_receipt_job(db, job, receipt_service, email_service)
        except Exception:
            summary["failed"] += 1
            continue
        summary["succeeded"] += 1
    if jobs:
        logger.info("Receipt outbox drained: %s", summary)
    return summary


def cancel_payment(db: Session, payment_id: int) -> Payment:
    payment = get_payment(db, payment_id)
    if payment.status == PaymentStatus.cancelled.value:
        raise BadRequestError("Pagamento já está cancelado")

    try:
        payment.status = PaymentStatus.cancelled.value
        db.flush()
        sale = db.query(Sale).filter(Sale.id == payment.sale_id).first()
        if sale:
            recompute_sale_status(db, sale, reset_when_unpaid=True)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info("Payment %s cancelled", payment.id)
    return payment


def list_sale_payments(db: Session, sale_id: int) -> List[Payment]:
    return (
        db.query(Payment)
        .filter(Payment.sale_id == sale_id)
        .order_by(Payment.transaction_date.desc(), Payment.id.desc())
        .all()
    )


def get_payment_receipt(
    db: Session,
    payment_id: int,
    user: User,
    receipt_service: ReceiptService,
    email_service=None,
    send_email: bool = False,
) -> IssuedReceipt:
    """Return the stored receipt of a payment (regenerated when the file is gone), issuing one if none exists."""
    payment = get_payment(db, payment_id)
    sale = _payment_sale(db, payment)

    history = latest_receipt(db, payment.id)
    if history is None:
        issued = receipt_service.issue_for_payment(
            db, payment, sale, generated_by=user, email_service=email_service, send_email=send_email
        )
        close_open_jobs(db, payment.id, issued.history)
        return issued

    return _existing_receipt(db, history, payment, sale, receipt_service, email_service, send_email)


def resend_receipt_email(
    db: Session,
    payment_id: int,
    user: User,
    receipt_service: ReceiptService,
    email_service,
) -> Dict[str, Any]:
    payment = get_payment(db, payment_id)
    sale = _payment_sale(db, payment)
    recipient = sale.customer.email if sale.customer else None
    if not recipient:
        raise BadRequestError("Cliente não possui email cadastrado")

    history = latest_receipt(db, payment.id)
    if history is None:
        issued = receipt_service.issue_for_payment(db, payment, sale, generated_by=user)
        close_open_jobs(db, payment.id, issued.history)
    else:
        issued = IssuedReceipt(
            history=history,
            data=receipt_service.build_receipt_data(payment, sale, history.receipt_number, history.qr_code_data),
            pdf=receipt_service.load_or_render(history),
        )

    sent = receipt_service.deliver_email(
        db, issued.history, issued.data, issued.pdf, email_service, recipient,
        error_message="Failed to resend email",
    )
    return {"emailSent": sent, "receiptNumber": issued.history.receipt_number}
