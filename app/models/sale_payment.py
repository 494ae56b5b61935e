"""Sale Payment model for credit sales."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, DateTime, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class PaymentMethod(str, enum.Enum):
    """How an individual credit payment was made."""
    CASH = 'cash'
    BANK_TRANSFER = 'bank_transfer'
    ONLINE = 'online'


class SalePayment(Base):
    """
    Sale Payment - one installment against a credit sale.

    Rows are only ever inserted. A sale's credit status is derived from
    the full set of its payments.
    """

    __tablename__ = 'sale_payment'
    __table_args__ = (
        UniqueConstraint('sale_id', 'idempotency_key', name='uq_sale_payment_idempotency'),
    )

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    payment_method = Column(Enum(PaymentMethod, name='payment_method'), nullable=False, default=PaymentMethod.CASH)

    # Bank transfer details, descriptive only
    bank_name = Column(String(120))
    account_name = Column(String(120))
    card_number = Column(String(40))
    notes = Column(Text)

    # Client supplied key so a retried request is not counted twice
    idempotency_key = Column(String(64), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # Relationships
    sale = relationship('Sale', back_populates='payments')

    def __repr__(self):
        return f"<SalePayment(id={self.id}, sale_id={self.sale_id}, method={self.payment_method.value}, amount={self.amount})>"
