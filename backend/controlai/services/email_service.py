"""
Envio do recibo por email via SMTP.

Uma única tentativa por chamada; qualquer erro é registrado no log e
convertido em `False` para não bloquear o pagamento.
"""
import logging
import smtplib
from datetime import datetime
from email.message import EmailMessage
from html import escape
from typing import Optional

from controlai.core.config import Settings
from controlai.services.receipt_data import ReceiptData, format_money


logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self, settings: Settings):
        self.settings = settings

    def _connect(self) -> smtplib.SMTP:
        s = self.settings
        if not s.smtp_host:
            raise smtplib.SMTPException("SMTP host is not configured")
        if s.smtp_secure:
            smtp = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout)
        else:
            smtp = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout)
            if s.smtp_starttls:
                smtp.starttls()
        if s.smtp_user:
            smtp.login(s.smtp_user, s.smtp_pass or "")
        return smtp

    def render_receipt_email(self, receipt: ReceiptData) -> str:
        sale = receipt.saleDetails
        payment = receipt.paymentDetails
        company = receipt.company
        cell = "padding: 12px; border-bottom: 1px solid #eee;"

        rows = "".join(
            f"""
            <tr>
              <td style="{cell}">{escape(item.name)}</td>
              <td style="{cell} text-align: center;">{item.quantity}</td>
              <td style="{cell} text-align: right;">{format_money(item.price)}</td>
              <td style="{cell} text-align: right;">{format_money(item.total)}</td>
            </tr>"""
            for item in sale.items
        )
        reference = (
            f"<p><strong>Referência:</strong> {escape(payment.reference)}</p>" if payment.reference else ""
        )
        url = escape(receipt.verificationUrl)

        return f"""<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Recibo de Pagamento - {escape(company.name)}</title>
  </head>
  <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; margin: 0; padding: 0;">
    <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
      <div style="text-align: center; background-color: #f8f9fa; padding: 20px; border-radius: 8px 8px 0 0;">
        <h1 style="color: #2c3e50; margin: 0;">Recibo de Pagamento</h1>
        <p style="color: #7f8c8d; margin: 5px 0;">Nº {escape(receipt.receiptNumber)}</p>
      </div>
      <div style="background-color: #ffffff; padding: 20px;">
        <h2 style="color: #2c3e50; border-bottom: 2px solid #eee;">Detalhes da Venda</h2>
        <p><strong>Venda Nº:</strong> {sale.saleId}</p>
        <p><strong>Data:</strong> {escape(sale.date)}</p>
        <p><strong>Cliente:</strong> {escape(sale.customerName)}</p>

        <h2 style="color: #2c3e50; border-bottom: 2px solid #eee;">Itens</h2>
        <table style="width: 100%; border-collapse: collapse;">
          <thead>
            <tr style="background-color: #f8f9fa;">
              <th style="padding: 12px; text-align: left;">Item</th>
              <th style="padding: 12px; text-align: center;">Qtd</th>
              <th style="padding: 12px; text-align: right;">Preço Unit.</th>
              <th style="padding: 12px; text-align: right;">Total</th>
            </tr>
          </thead>
          <tbody>{rows}
          </tbody>
        </table>
        <div style="margin-top: 20px; text-align: right;">
          <p style="margin: 5px 0;"><strong>Subtotal:</strong> {format_money(sale.subtotal)}</p>
          <p style="margin: 5px 0;"><strong>Desconto:</strong> {format_money(sale.discount)}</p>
          <p style="margin: 5px 0; font-size: 1.2em;"><strong>Total:</strong> {format_money(sale.total)}</p>
        </div>

        <h2 style="color: #2c3e50; border-bottom: 2px solid #eee;">Dados do Pagamento</h2>
        <p><strong>Método:</strong> {escape(payment.method)}</p>
        <p><strong>Valor:</strong> {format_money(payment.amount)}</p>
        {reference}
        <p><strong>Data:</strong> {escape(payment.date)}</p>
        <p><strong>Processado por:</strong> {escape(payment.processedBy)}</p>

        <div style="text-align: center; margin-top: 30px; padding: 20px; background-color: #f8f9fa; border-radius: 8px;">
          <p style="margin: 0; color: #7f8c8d;">Para verificar a autenticidade deste recibo, acesse:</p>
          <a href="{url}" style="color: #3498db; font-weight: bold;">{url}</a>
        </div>
      </div>
      <div style="text-align: center; margin-top: 20px; color: #7f8c8d; font-size: 12px;">
        <p>Este é um recibo eletrônico gerado automaticamente pelo sistema {escape(company.name)}.</p>
        <p>CNPJ: {escape(company.document)}</p>
        <p>&copy; {datetime.utcnow().year} {escape(company.name)}. Todos os direitos reservados.</p>
      </div>
    </div>
  </body>
</html>
"""

    def build_message(self, receipt: ReceiptData, recipient: str, pdf: bytes) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.settings.smtp_from
        message["To"] = recipient
        message["Subject"] = f"Recibo de Pagamento #{receipt.receiptNumber}"
        message.set_content(
            f"Recibo de pagamento {receipt.receiptNumber}. "
            f"Verifique a autenticidade em {receipt.verificationUrl}"
        )
        message.add_alternative(self.render_receipt_email(receipt), subtype="html")
        message.add_attachment(
            pdf,
            maintype="application",
            subtype="pdf",
            filename=f"recibo-{receipt.receiptNumber}.pdf",
        )
        return message

    def send_receipt_email(self, receipt: ReceiptData, recipient: str, pdf: bytes) -> bool:
        try:
            message = self.build_message(receipt, recipient, pdf)
            with self._connect() as smtp:
                smtp.send_message(message)
        except Exception as e:
            logger.exception("Error sending receipt email %s to %s: %s", receipt.receiptNumber, recipient, e)
            return False
        logger.info("Receipt %s emailed to %s", receipt.receiptNumber, recipient)
        return True

    def verify_connection(self) -> bool:
        try:
            with self._connect() as smtp:
                smtp.noop()
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Error verifying email connection: %s", e)
            return False
        return True

    def describe(self) -> Optional[str]:
        if not self.settings.smtp_host:
            return None
        return f"{self.settings.smtp_host}:{self.settings.smtp_port}"
