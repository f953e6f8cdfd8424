#!/usr/bin/env python3
"""
Drain the receipt outbox: regenerate receipts whose generation failed after
the payment was committed. Meant to run from cron or a scheduler.
"""
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from controlai.core.config import settings
from controlai.core.database import SessionLocal
from controlai.core.logging_config import setup_logging
from controlai.services.email_service import EmailService
from controlai.services.payment_service import process_pending_receipts
from controlai.services.pdf_service import PDFService
from controlai.services.receipt_service import ReceiptService
from controlai.services.signature_service import SignatureService


def main() -> int:
    setup_logging(settings.log_level, settings.log_file)
    receipts = ReceiptService(
        settings,
        PDFService(),
        SignatureService(settings.signing_private_key_path, settings.signing_public_key_path),
    )
    email = EmailService(settings)

    db = SessionLocal()
    try:
        summary = process_pending_receipts(db, receipts, email, max_attempts=settings.outbox_max_attempts)
    finally:
        db.close()

    print(f"processed={summary['processed']} succeeded={summary['succeeded']} failed={summary['failed']}")
    return 1 if summary["failed"] else 0


if __name__ == '__main__':
    sys.exit(main())
