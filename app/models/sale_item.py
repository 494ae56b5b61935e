"""Sale Item model."""
from sqlalchemy import Column, BigInteger, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base


class SaleItem(Base):
    """Priced line of a sale. Totals are computed by the invoice service."""

    __tablename__ = 'sale_item'

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    sale_id = Column(BigInteger, ForeignKey('sale.id', ondelete='CASCADE'), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    item_name = Column(String(200), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    line_total = Column(Numeric(12, 2), nullable=False)

    # Relationships
    sale = relationship('Sale', back_populates='items')

    def __repr__(self):
        return f"<SaleItem(id={self.id}, item_name='{self.item_name}', quantity={self.quantity})>"
