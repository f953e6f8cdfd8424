import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from controlai.core.config import Settings, settings as default_settings
from controlai.core.database import init_db
from controlai.core.errors import register_exception_handlers
from controlai.core.logging_config import setup_logging
from controlai.routes.auth import router as auth_router
from controlai.routes.customers import router as customers_router
from controlai.routes.health import router as health_router
from controlai.routes.payments import router as payments_router
from controlai.routes.products import router as products_router
from controlai.routes.receipts import router as receipts_router
from controlai.routes.sales import router as sales_router
from controlai.services.email_service import EmailService
from controlai.services.pdf_service import PDFService
from controlai.services.receipt_service import ReceiptService
from controlai.services.signature_service import SignatureService


logger = logging.getLogger("controlai")


def build_services(app: FastAPI, settings: Settings) -> None:
    signature_service = SignatureService(settings.signing_private_key_path, settings.signing_public_key_path)
    app.state.signature_service = signature_service
    app.state.pdf_service = PDFService()
    app.state.receipt_service = ReceiptService(settings, app.state.pdf_service, signature_service)
    app.state.email_service = EmailService(settings)


def create_app(settings: Settings = default_settings) -> FastAPI:
    setup_logging(settings.log_level, settings.log_file)
    app = FastAPI(title="ControlAI Vendas API", version="0.1.0")

    origins = settings.cors_origins
    if origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
            expose_headers=["Content-Disposition", "X-Receipt-Number"],
        )

    register_exception_handlers(app)
    build_services(app, settings)

    app.include_router(health_router, tags=["health"])
    app.include_router(auth_router, prefix="/auth", tags=["auth"])
    app.include_router(products_router, prefix="/api/products", tags=["products"])
    app.include_router(customers_router, prefix="/api/customers", tags=["customers"])
    app.include_router(sales_router, prefix="/api/sales", tags=["sales"])
    app.include_router(payments_router, prefix="/api/payments", tags=["payments"])
    app.include_router(receipts_router, prefix="/api/receipts", tags=["receipts"])

    if settings.env in {"dev", "test"}:
        init_db(settings.env)

    logger.info("ControlAI API started (env=%s)", settings.env)
    return app


app = create_app()
