"""
Serviço de recibos: número, QR Code de verificação, PDF e histórico.

Cada emissão cria uma nova linha em `receipt_history` com número distinto.
A unicidade do número é garantida pelo índice único; em caso de colisão o
número é regenerado até `receipt_number_attempts` vezes.
"""
import base64
import io
import json
import logging
import os
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

import qrcode
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from controlai.core.config import Settings
from controlai.core.errors import InternalError
from controlai.models.payment import Payment
from controlai.models.receipt_history import EmailStatus, ReceiptHistory
from controlai.models.sale import Sale
from controlai.models.user import User
from controlai.services.pdf_service import PDFService
from controlai.services.receipt_data import CompanyInfo, ReceiptData, build_receipt_data
from controlai.services.signature_service import SignatureError, SignatureService


logger = logging.getLogger(__name__)


@dataclass
class IssuedReceipt:
    history: ReceiptHistory
    data: ReceiptData
    pdf: bytes


def generate_receipt_number(now: Optional[datetime] = None) -> str:
    """REC{year}{month}{4 random digits}; unique only together with the DB index."""
    now = now or datetime.utcnow()
    return f"REC{now.year}{now.month:02d}{random.randint(0, 9999):04d}"


def generate_qr_code(payload: Dict[str, Any]) -> str:
    """Encode the payload as JSON inside a PNG QR code, returned as a data URL."""
    try:
        image = qrcode.make(json.dumps(payload, default=str))
        buffer = io.BytesIO()
        image.save(buffer, format="PNG")
    except Exception:
        logger.exception("Erro ao gerar QR Code para %s", payload.get("receiptNumber"))
        return ""
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


class ReceiptService:
    def __init__(
        self,
        settings: Settings,
        pdf_service: PDFService,
        signature_service: Optional[SignatureService] = None,
    ):
        self.settings = settings
        self.pdf_service = pdf_service
        self.signature_service = signature_service
        self.company = CompanyInfo(
            name=settings.company_name,
            document=settings.company_document,
            address=settings.company_address,
        )

    # Building blocks

    def generate_receipt_number(self) -> str:
        return generate_receipt_number()

    def receipt_path(self, receipt_number: str) -> str:
        return os.path.join(self.settings.receipts_dir, f"{receipt_number}.pdf")

    def build_qr_payload(self, payment: Payment, receipt_number: str) -> Dict[str, Any]:
        return {
            "receiptNumber": receipt_number,
            "paymentId": payment.id,
            "saleId": payment.sale_id,
            "amount": str(payment.amount),
            "date": payment.transaction_date.isoformat() if payment.transaction_date else None,
            "verificationUrl": self.settings.verification_url(receipt_number),
        }

    def build_receipt_data(
        self,
        payment: Payment,
        sale: Sale,
        receipt_number: str,
        qr_code_data: Optional[str] = None,
    ) -> ReceiptData:
        if qr_code_data is None:
            qr_code_data = generate_qr_code(self.build_qr_payload(payment, receipt_number))
        return build_receipt_data(
            payment,
            sale,
            receipt_number,
            company=self.company,
            verification_url=self.settings.verification_url(receipt_number),
            qr_code_data=qr_code_data,
        )

    def render_pdf(self, data: ReceiptData) -> bytes:
        return self.pdf_service.generate_pdf(data)

    # Issuing

    def _reserve_history(self, db: Session, payment: Payment, sale: Sale, generated_by: Optional[User]) -> ReceiptHistory:
        attempts = max(1, self.settings.receipt_number_attempts)
        for attempt in range(1, attempts + 1):
            number = self.generate_receipt_number()
            history = ReceiptHistory(
                payment_id=payment.id,
                sale_id=sale.id,
                receipt_number=number,
                generated_at=datetime.utcnow(),
                generated_by_id=generated_by.id if generated_by else None,
                qr_code_data=generate_qr_code(self.build_qr_payload(payment, number)),
                verification_url=self.settings.verification_url(number),
                file_path=self.receipt_path(number),
                email_status=EmailStatus.pending.value,
            )
            db.add(history)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                logger.warning("Receipt number collision on %s (attempt %d/%d)", number, attempt, attempts)
                continue
            db.refresh(history)
            return history
        raise InternalError("Não foi possível gerar um número de recibo único")

    def _store_file(self, history: ReceiptHistory, pdf: bytes) -> None:
        os.makedirs(os.path.dirname(history.file_path) or ".", exist_ok=True)
        with open(history.file_path, "wb") as fh:
            fh.write(pdf)

    def _sign(self, history: ReceiptHistory, pdf: bytes) -> None:
        if not (self.settings.signing_enabled and self.signature_service):
            return
        try:
            signed = self.signature_service.sign_pdf(pdf, issuer=self.settings.signing_issuer)
            history.signature_path = self.signature_service.write_detached(history.file_path, pdf, signed)
        except (SignatureError, OSError) as e:
            logger.error("Failed to sign receipt %s: %s", history.receipt_number, e)

    def issue_for_payment(
        self,
        db: Session,
        payment: Payment,
        sale: Sale,
        generated_by: Optional[User] = None,
        email_service=None,
        send_email: bool = False,
    ) -> IssuedReceipt:
        """Generate, store and (optionally) email a new receipt for a committed payment."""
        history = self._reserve_history(db, payment, sale, generated_by)
        try:
            data = self.build_receipt_data(payment, sale, history.receipt_number, history.qr_code_data)
            pdf = self.render_pdf(data)
            self._store_file(history, pdf)
        except Exception:
            # Only successful generations keep a history row
            db.delete(history)
            db.commit()
            raise

        self._sign(history, pdf)
        db.commit()
        logger.info("Receipt %s issued for payment %s", history.receipt_number, payment.id)

        recipient = sale.customer.email if sale.customer else None
        if send_email and recipient and email_service is not None:
            self.deliver_email(db, history, data, pdf, email_service, recipient)

        return IssuedReceipt(history=history, data=data, pdf=pdf)

    def deliver_email(
        self,
        db: Session,
        history: ReceiptHistory,
        data: ReceiptData,
        pdf: bytes,
        email_service,
        recipient: str,
        error_message: str = "Failed to send email",
    ) -> bool:
        """Send the receipt and record the outcome on the history row; never raises for SMTP errors."""
        sent = email_service.send_receipt_email(data, recipient, pdf)
        history.email_sent_to = recipient
        if sent:
            history.email_sent_at = datetime.utcnow()
            history.email_status = EmailStatus.sent.value
            history.email_error = None
        else:
            history.email_status = EmailStatus.failed.value
            history.email_error = error_message
        db.commit()
        return sent

    # Read side

    def regenerate(self, history: ReceiptHistory) -> IssuedReceipt:
        data = self.build_receipt_data(history.payment, history.sale, history.receipt_number, history.qr_code_data)
        return IssuedReceipt(history=history, data=data, pdf=self.render_pdf(data))

    def load_or_render(self, history: ReceiptHistory) -> bytes:
        """Serve the cached PDF when present, otherwise render it again and re-cache it."""
        if history.file_path:
            try:
                with open(history.file_path, "rb") as fh:
                    return fh.read()
            except OSError:
                logger.warning("Arquivo do recibo %s não encontrado, gerando novo PDF", history.receipt_number)

        pdf = self.regenerate(history).pdf
        if history.file_path:
            try:
                self._store_file(history, pdf)
            except OSError as e:
                logger.warning("Could not cache receipt %s: %s", history.receipt_number, e)
        return pdf

    def build_verification(self, history: ReceiptHistory) -> Dict[str, Any]:
        sale = history.sale
        payment = history.payment
        return {
            "receiptNumber": history.receipt_number,
            "generatedAt": history.generated_at,
            "sale": {
                "id": sale.id,
                "items": [
                    {"name": item.name, "quantity": item.quantity, "price": item.unit_price, "total": item.total}
                    for item in sale.items
                ],
                "subtotal": sale.subtotal,
                "discount": sale.discount,
                "tax": sale.tax,
                "total": sale.total,
                "status": sale.status,
                "date": sale.created_at,
                "customer": sale.customer.name if sale.customer else None,
            },
            "payment": {
                "id": payment.id,
                "method": payment.method,
                "amount": payment.amount,
                "status": payment.status,
                "date": payment.transaction_date,
                "reference": payment.reference,
                "processedBy": payment.processed_by.name if payment.processed_by else None,
            },
            "qrCodeData": history.qr_code_data,
            "verificationUrl": history.verification_url,
            "signed": bool(history.signature_path),
        }
