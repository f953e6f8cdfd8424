import os
import tempfile
from decimal import Decimal

# Settings are read at import time
os.environ['ENV'] = 'test'
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['PASSWORD_HASH_ROUNDS'] = '4'
os.environ['RECEIPTS_DIR'] = tempfile.mkdtemp(prefix='controlai-receipts-')
os.environ['LOG_LEVEL'] = 'WARNING'
os.environ['SMTP_HOST'] = ''

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from controlai.core.config import settings
from controlai.core.database import get_db
from controlai.core.deps import get_email_service, get_receipt_service
from controlai.main import app
from controlai.models import Base, Customer, Product
from controlai.services.pdf_service import PDFService
from controlai.services.receipt_service import ReceiptService
from controlai.tests.factories import auth_headers, make_sale, make_user


engine = create_engine(
    'sqlite://',
    connect_args={'check_same_thread': False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeEmailService:
    """Records receipts instead of talking to SMTP."""

    def __init__(self, succeed=True):
        self.succeed = succeed
        self.sent = []

    def send_receipt_email(self, receipt, recipient, pdf):
        self.sent.append((receipt.receiptNumber, recipient, pdf))
        return self.succeed

    def describe(self):
        return None


@pytest.fixture
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def receipt_service(tmp_path):
    test_settings = settings.model_copy(update={'receipts_dir': str(tmp_path / 'receipts')})
    return ReceiptService(test_settings, PDFService())


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def client(db, receipt_service, email_service):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_receipt_service] = lambda: receipt_service
    app.dependency_overrides[get_email_service] = lambda: email_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()

@pytest.fixture
def cashier(db):
    return make_user(db)


@pytest.fixture
def admin(db):
    return make_user(db, email='admin@test.com', role='admin', name='Admin Teste')


@pytest.fixture
def cashier_headers(cashier):
    return auth_headers(cashier)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def product(db):
    product = Product(name='Camiseta', sku='CAM-001', price=Decimal('50.00'), cost_price=Decimal('20.00'), stock=10)
    db.add(product)
    db.commit()
    db.refresh(product)
    return product

@pytest.fixture
def sale(db, cashier):
    return make_sale(db, cashier)


@pytest.fixture
def customer_with_email(db):
    customer = Customer(name='Maria Silva', email='maria@example.com', document='123.456.789-00')
    db.add(customer)
    db.commit()
    db.refresh(customer)
    return customer
