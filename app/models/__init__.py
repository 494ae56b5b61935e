"""Models package - exports all SQLAlchemy models."""
from app.models.sale import Sale, SaleStatus, SalePaymentMethod, CreditStatus
from app.models.sale_item import SaleItem
from app.models.sale_payment import SalePayment, PaymentMethod

__all__ = [
    'Sale', 'SaleStatus', 'SalePaymentMethod', 'CreditStatus',
    'SaleItem',
    'SalePayment', 'PaymentMethod',
]
