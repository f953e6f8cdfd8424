from datetime import datetime
from decimal import Decimal

import pytest

from controlai.core.config import settings
from controlai.services.email_service import EmailService
from controlai.services.pdf_service import PDFService, decode_data_url
from controlai.services.receipt_data import (
    CompanyInfo,
    PaymentDetails,
    ReceiptData,
    ReceiptItem,
    SaleDetails,
    format_method,
)
from controlai.services.receipt_service import generate_qr_code, generate_receipt_number


def make_receipt(items=1, qr=''):
    return ReceiptData(
        receiptNumber='REC2026100042',
        saleDetails=SaleDetails(
            saleId=7,
            date='19/10/2026 10:00',
            customerName='Maria <Silva>',
            items=[
                ReceiptItem(name=f'Item {i}', quantity=1, price=Decimal('10.00'), total=Decimal('10.00'))
                for i in range(items)
            ],
            subtotal=Decimal('10.00') * items,
            discount=Decimal('0'),
            tax=Decimal('0'),
            total=Decimal('10.00') * items,
        ),
        paymentDetails=PaymentDetails(
            paymentId=3,
            method=format_method('pix'),
            amount=Decimal('10.00'),
            reference='E2E-1',
            date='19/10/2026 10:01',
            processedBy='Caixa',
        ),
        company=CompanyInfo(name='ControlAI Vendas', document='12.345.678/0001-90', address='Rua A, 1'),
        verificationUrl='https://controlai.com/verify/REC2026100042',
        qrCodeData=qr,
    )


def test_receipt_number_format():
    number = generate_receipt_number(datetime(2026, 3, 5))
    assert number.startswith('REC202603')
    assert len(number) == 13
    assert number[9:].isdigit()


def test_qr_code_is_png_data_url():
    qr = generate_qr_code({'receiptNumber': 'REC2026100042', 'amount': '10.00'})
    assert qr.startswith('data:image/png;base64,')
    assert decode_data_url(qr).startswith(b'\x89PNG')


def test_method_labels():
    assert format_method('cash') == 'Dinheiro'
    assert format_method('transfer') == 'Transferência Bancária'
    assert format_method('other') == 'other'


@pytest.mark.parametrize('quality', ['high', 'medium', 'low'])
def test_pdf_presets(quality):
    qr = generate_qr_code({'receiptNumber': 'REC2026100042'})
    pdf = PDFService().generate_pdf(make_receipt(qr=qr), quality=quality)
    assert pdf.startswith(b'%PDF')


def test_long_receipts_flow_onto_more_pages():
    service = PDFService()
    short = service.generate_pdf(make_receipt(items=1))
    long = service.generate_pdf(make_receipt(items=150))
    assert long.startswith(b'%PDF')
    assert len(long) > len(short)


def test_unknown_preset_or_page_size():
    with pytest.raises(ValueError):
        PDFService().generate_pdf(make_receipt(), quality='ultra')
    with pytest.raises(ValueError):
        PDFService().generate_pdf(make_receipt(), page_size='A0')
    with pytest.raises(ValueError):
        PDFService(default_quality='ultra')


def test_email_html_escapes_and_links():
    html = EmailService(settings).render_receipt_email(make_receipt())
    assert 'Maria &lt;Silva&gt;' in html
    assert 'https://controlai.com/verify/REC2026100042' in html
    assert 'R$ 10.00' in html


def test_email_message_has_pdf_attachment():
    message = EmailService(settings).build_message(make_receipt(), 'maria@example.com', b'%PDF-1.4')
    assert message['Subject'] == 'Recibo de Pagamento #REC2026100042'
    attachments = list(message.iter_attachments())
    assert attachments[0].get_filename() == 'recibo-REC2026100042.pdf'
    assert attachments[0].get_content() == b'%PDF-1.4'


def test_send_without_smtp_host_returns_false():
    service = EmailService(settings.model_copy(update={'smtp_host': None}))
    assert service.send_receipt_email(make_receipt(), 'maria@example.com', b'%PDF') is False
    assert service.verify_connection() is False


def test_unexpected_send_error_returns_false(monkeypatch):
    service = EmailService(settings.model_copy(update={'smtp_host': 'smtp.example.com'}))

    def broken_connect():
        raise RuntimeError('unexpected failure')

    monkeypatch.setattr(service, '_connect', broken_connect)
    assert service.send_receipt_email(make_receipt(), 'maria@example.com', b'%PDF-1.4') is False
