"""
Renderização do recibo em PDF com reportlab.

Presets de qualidade: `high` mantém fundos e escala 1.0; `medium` e `low`
ativam compressão de página e omitem os fundos; `low` também reduz o QR Code.
"""
import base64
import io
import logging
from dataclasses import dataclass
from typing import List

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, letter, landscape as to_landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from xml.sax.saxutils import escape

from controlai.services.receipt_data import ReceiptData, format_money


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QualityPreset:
    compress: bool
    backgrounds: bool
    scale: float


QUALITY_PRESETS = {
    "high": QualityPreset(compress=False, backgrounds=True, scale=1.0),
    "medium": QualityPreset(compress=True, backgrounds=False, scale=1.0),
    "low": QualityPreset(compress=True, backgrounds=False, scale=0.8),
}

PAGE_SIZES = {"A4": A4, "Letter": letter}

MARGIN = 15  # points, ~20px
QR_SIZE = 1.6 * inch


def decode_data_url(data_url: str) -> bytes:
    """Return the raw bytes of a `data:<mime>;base64,<payload>` URL."""
    if not data_url or "," not in data_url:
        return b""
    header, payload = data_url.split(",", 1)
    if not header.endswith(";base64"):
        return b""
    return base64.b64decode(payload)


class PDFService:
    def __init__(self, default_quality: str = "high"):
        if default_quality not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality preset: {default_quality}")
        self.default_quality = default_quality

    def generate_pdf(
        self,
        receipt: ReceiptData,
        quality: str | None = None,
        page_size: str = "A4",
        landscape: bool = False,
    ) -> bytes:
        quality = quality or self.default_quality
        if quality not in QUALITY_PRESETS:
            raise ValueError(f"Unknown quality preset: {quality}")
        if page_size not in PAGE_SIZES:
            raise ValueError(f"Unknown page size: {page_size}")
        preset = QUALITY_PRESETS[quality]

        pagesize = PAGE_SIZES[page_size]
        if landscape:
            pagesize = to_landscape(pagesize)

        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=pagesize,
            leftMargin=MARGIN,
            rightMargin=MARGIN,
            topMargin=MARGIN,
            bottomMargin=MARGIN,
            pageCompression=1 if preset.compress else 0,
            title=f"Recibo de Pagamento {receipt.receiptNumber}",
            author=receipt.company.name,
            subject=f"Recibo {receipt.receiptNumber}",
        )
        doc.build(self._build_elements(receipt, preset))
        pdf = buffer.getvalue()
        logger.debug("Rendered receipt %s (%s, %d bytes)", receipt.receiptNumber, quality, len(pdf))
        return pdf

    def _build_elements(self, receipt: ReceiptData, preset: QualityPreset) -> List:
        styles = getSampleStyleSheet()
        center = ParagraphStyle(name="Center", parent=styles["Normal"], alignment=1)
        right = ParagraphStyle(name="RightAlign", parent=styles["Normal"], alignment=2)
        small = ParagraphStyle(name="Small", parent=styles["Normal"], fontSize=8, textColor=colors.grey, alignment=1)

        sale = receipt.saleDetails
        payment = receipt.paymentDetails
        company = receipt.company

        elements: List = [
            Paragraph(escape(company.name), styles["Heading2"]),
            Paragraph(f"CNPJ: {escape(company.document)}", center),
            Paragraph(escape(company.address), center),
            Paragraph("Recibo de Pagamento", styles["Title"]),
            Paragraph(f"Nº {escape(receipt.receiptNumber)}", center),
            Spacer(1, 0.2 * inch),
            Paragraph("Dados da Venda", styles["Heading3"]),
            Paragraph(f"Venda Nº: {sale.saleId}", styles["Normal"]),
            Paragraph(f"Data: {escape(sale.date)}", styles["Normal"]),
            Paragraph(f"Cliente: {escape(sale.customerName)}", styles["Normal"]),
            Spacer(1, 0.1 * inch),
            Paragraph("Itens", styles["Heading3"]),
        ]

        rows = [["Item", "Qtd", "Preço Unit.", "Total"]]
        for item in sale.items:
            rows.append([
                Paragraph(escape(item.name), styles["Normal"]),
                str(item.quantity),
                format_money(item.price),
                format_money(item.total),
            ])
        # repeatRows keeps the header on every page of a long item list
        table = Table(rows, colWidths=[3.4 * inch, 0.7 * inch, 1.3 * inch, 1.3 * inch], repeatRows=1)
        table_style = [
            ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("ALIGN", (1, 1), (-1, -1), "RIGHT"),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]
        if preset.backgrounds:
            table_style.append(("BACKGROUND", (0, 0), (-1, 0), colors.whitesmoke))
        table.setStyle(TableStyle(table_style))
        elements.append(table)

        elements.extend([
            Spacer(1, 0.1 * inch),
            Paragraph(f"Subtotal: {format_money(sale.subtotal)}", right),
            Paragraph(f"Desconto: {format_money(sale.discount)}", right),
        ])
        if sale.tax:
            elements.append(Paragraph(f"Impostos: {format_money(sale.tax)}", right))
        elements.append(Paragraph(f"<b>Total: {format_money(sale.total)}</b>", right))

        elements.extend([
            Spacer(1, 0.2 * inch),
            Paragraph("Dados do Pagamento", styles["Heading3"]),
            Paragraph(f"Método: {escape(payment.method)}", styles["Normal"]),
            Paragraph(f"Valor: {format_money(payment.amount)}", styles["Normal"]),
        ])
        if payment.reference:
            elements.append(Paragraph(f"Referência: {escape(payment.reference)}", styles["Normal"]))
        elements.extend([
            Paragraph(f"Data: {escape(payment.date)}", styles["Normal"]),
            Paragraph(f"Processado por: {escape(payment.processedBy)}", styles["Normal"]),
            Spacer(1, 0.3 * inch),
            Paragraph("Este recibo é um documento comprobatório de pagamento.", small),
        ])

        qr_png = decode_data_url(receipt.qrCodeData)
        if qr_png:
            size = QR_SIZE * preset.scale
            elements.append(Image(io.BytesIO(qr_png), width=size, height=size))
            elements.append(Paragraph("Escaneie para verificar a autenticidade", small))
        elements.append(Paragraph(escape(receipt.verificationUrl), small))
        return elements
