from .base import Base
from .user import User
from .product import Product
from .customer import Customer
from .sale import Sale, SaleItem
from .payment import Payment
from .receipt_history import ReceiptHistory, ReceiptJob

__all__ = ["Base", "User", "Product", "Customer", "Sale", "SaleItem", "Payment", "ReceiptHistory", "ReceiptJob"]
