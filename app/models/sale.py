"""Sale model."""
from sqlalchemy import Column, BigInteger, Integer, String, Text, Numeric, DateTime, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base
import enum


class SalePaymentMethod(str, enum.Enum):
    """How the sale is settled."""
    CASH = 'cash'
    CREDIT = 'credit'


class SaleStatus(str, enum.Enum):
    """Sale status enum."""
    COMPLETED = 'completed'
    PENDING = 'pending'
    CANCELLED = 'cancelled'


class CreditStatus(str, enum.Enum):
    """Payment progress of a credit sale, derived from its payments."""
    UNPAID = 'unpaid'
    PARTIAL = 'partial'
    PAID = 'paid'


class Sale(Base):
    """Sale (invoice) owned by the agent who recorded it."""

    __tablename__ = 'sale'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)

    customer_name = Column(String(200), nullable=False)
    customer_email = Column(String(255), nullable=True)
    customer_phone = Column(String(50), nullable=True)

    # Weak references: resolved by the Client and identity services
    client_id = Column(String(64), nullable=True, index=True)
    agent_id = Column(String(64), nullable=False, index=True)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    final_amount = Column(Numeric(12, 2), nullable=False, default=0)

    payment_method = Column(Enum(SalePaymentMethod, name='sale_payment_method'), nullable=False)
    status = Column(Enum(SaleStatus, name='sale_status'), nullable=False, default=SaleStatus.COMPLETED)
    sale_date = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    due_date = Column(DateTime(timezone=True), nullable=True)
    notes = Column(Text, nullable=True)

    # Credit tracking, NULL for cash sales
    credit_status = Column(Enum(CreditStatus, name='credit_status'), nullable=True, index=True)
    amount_paid = Column(Numeric(12, 2), nullable=False, default=0, server_default='0')

    version = Column(Integer, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    # Relationships
    items = relationship(
        'SaleItem', back_populates='sale', cascade='all, delete-orphan',
        order_by='SaleItem.position'
    )
    payments = relationship(
        'SalePayment', back_populates='sale', cascade='all, delete-orphan',
        order_by='SalePayment.id'
    )

    __mapper_args__ = {'version_id_col': version}

    @property
    def is_credit(self) -> bool:
        return self.payment_method == SalePaymentMethod.CREDIT

    def __repr__(self):
        return f"<Sale(id={self.id}, final_amount={self.final_amount}, method={self.payment_method.value})>"
