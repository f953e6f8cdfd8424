"""
Estrutura de dados do recibo (DTO) e helpers de formatação.
Não contém acesso a banco, apenas a montagem do snapshot de venda/pagamento.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from controlai.models.payment import Payment
from controlai.models.sale import Sale


PAYMENT_METHOD_LABELS = {
    "cash": "Dinheiro",
    "credit": "Cartão de Crédito",
    "debit": "Cartão de Débito",
    "pix": "PIX",
    "transfer": "Transferência Bancária",
}

DEFAULT_CUSTOMER_NAME = "Consumidor Final"


def format_method(method: str) -> str:
    return PAYMENT_METHOD_LABELS.get(method, method)


def format_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y %H:%M")


def format_money(value) -> str:
    return f"R$ {Decimal(value or 0):.2f}"


class CompanyInfo(BaseModel):
    name: str
    document: str
    address: str


class ReceiptItem(BaseModel):
    name: str
    quantity: int
    price: Decimal
    discount: Decimal = Decimal("0")
    total: Decimal


class SaleDetails(BaseModel):
    saleId: int
    date: str
    customerName: str
    items: List[ReceiptItem]
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    total: Decimal


class PaymentDetails(BaseModel):
    paymentId: int
    method: str
    amount: Decimal
    reference: Optional[str] = None
    date: str
    processedBy: str


class ReceiptData(BaseModel):
    receiptNumber: str
    saleDetails: SaleDetails
    paymentDetails: PaymentDetails
    company: CompanyInfo
    verificationUrl: str
    qrCodeData: str = ""


def build_receipt_data(
    payment: Payment,
    sale: Sale,
    receipt_number: str,
    company: CompanyInfo,
    verification_url: str,
    qr_code_data: str = "",
) -> ReceiptData:
    customer_name = sale.customer.name if sale.customer else DEFAULT_CUSTOMER_NAME
    processed_by = payment.processed_by.name if payment.processed_by else ""

    return ReceiptData(
        receiptNumber=receipt_number,
        saleDetails=SaleDetails(
            saleId=sale.id,
            date=format_datetime(sale.created_at),
            customerName=customer_name,
            items=[
                ReceiptItem(
                    name=item.name,
                    quantity=item.quantity,
                    price=item.unit_price,
                    discount=item.discount or 0,
                    total=item.total,
                )
                for item in sale.items
            ],
            subtotal=sale.subtotal,
            discount=sale.discount,
            tax=sale.tax,
            total=sale.total,
        ),
        paymentDetails=PaymentDetails(
            paymentId=payment.id,
            method=format_method(payment.method),
            amount=payment.amount,
            reference=payment.reference,
            date=format_datetime(payment.transaction_date),
            processedBy=processed_by,
        ),
        company=company,
        verificationUrl=verification_url,
        qrCodeData=qr_code_data,
    )
