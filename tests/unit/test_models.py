"""
Unit tests for SQLAlchemy models.
"""

import pytest
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from app.models import (
    Sale, SaleItem, SalePayment, SalePaymentMethod, SaleStatus, CreditStatus, PaymentMethod
)


def _sale(**overrides):
    values = dict(
        customer_name='Test Customer',
        agent_id='agent-1',
        payment_method=SalePaymentMethod.CREDIT,
        subtotal=Decimal('100.00'),
        discount_total=Decimal('0.00'),
        final_amount=Decimal('100.00'),
        credit_status=CreditStatus.UNPAID,
    )
    values.update(overrides)
    return Sale(**values)


class TestSaleModel:
    """Tests for Sale model."""

    def test_create_sale(self, session):
        sale = _sale()
        sale.items.append(SaleItem(position=0, item_name='Widget', quantity=1,
                                   unit_price=Decimal('100.00'), discount_percent=Decimal('0'),
                                   line_total=Decimal('100.00')))
        session.add(sale)
        session.commit()

        assert sale.id is not None
        assert sale.status == SaleStatus.COMPLETED
        assert sale.version == 1
        assert sale.is_credit is True
        assert sale.final_amount == Decimal('100.00')

    def test_version_increments_on_update(self, session):
        sale = _sale()
        session.add(sale)
        session.commit()

        sale.notes = 'Updated'
        session.commit()

        assert sale.version == 2

    def test_items_keep_position_order(self, session):
        sale = _sale()
        for position, name in [(2, 'Third'), (0, 'First'), (1, 'Second')]:
            sale.items.append(SaleItem(position=position, item_name=name, quantity=1,
                                       unit_price=Decimal('1.00'), discount_percent=Decimal('0'),
                                       line_total=Decimal('1.00')))
        session.add(sale)
        session.commit()
        sale_id = sale.id
        session.expire_all()

        reloaded = session.get(Sale, sale_id)
        assert [item.item_name for item in reloaded.items] == ['First', 'Second', 'Third']

    def test_deleting_sale_removes_children(self, session):
        sale = _sale()
        sale.payments.append(SalePayment(amount=Decimal('10.00'), payment_method=PaymentMethod.CASH))
        session.add(sale)
        session.commit()

        session.delete(sale)
        session.commit()

        assert session.query(SalePayment).count() == 0


class TestSalePaymentModel:
    """Tests for SalePayment model."""

    def test_idempotency_key_unique_per_sale(self, session):
        sale = _sale()
        sale.payments.append(SalePayment(amount=Decimal('10.00'), payment_method=PaymentMethod.CASH,
                                         idempotency_key='key-1'))
        session.add(sale)
        session.commit()

        sale.payments.append(SalePayment(amount=Decimal('10.00'), payment_method=PaymentMethod.CASH,
                                         idempotency_key='key-1'))
        with pytest.raises(IntegrityError):
            session.commit()

    def test_same_key_allowed_on_different_sales(self, session):
        first, second = _sale(), _sale()
        first.payments.append(SalePayment(amount=Decimal('5.00'), payment_method=PaymentMethod.CASH,
                                          idempotency_key='shared'))
        second.payments.append(SalePayment(amount=Decimal('5.00'), payment_method=PaymentMethod.CASH,
                                           idempotency_key='shared'))
        session.add_all([first, second])
        session.commit()

        assert session.query(SalePayment).filter_by(idempotency_key='shared').count() == 2

    def test_payments_without_key_do_not_collide(self, session):
        sale = _sale()
        for _ in range(3):
            sale.payments.append(SalePayment(amount=Decimal('1.00'), payment_method=PaymentMethod.CASH))
        session.add(sale)
        session.commit()

        assert len(sale.payments) == 3
