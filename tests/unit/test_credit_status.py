"""
Unit tests for credit status derivation and balances.
"""

import itertools
from decimal import Decimal

from app.models import Sale, SalePayment, SalePaymentMethod, CreditStatus, PaymentMethod
from app.services.payment_service import (
    derive_credit_status, total_paid, get_balance, apply_credit_state, is_overpaid
)


def _credit_sale(final_amount, amounts=()):
    sale = Sale(
        customer_name='Test',
        agent_id='agent-1',
        payment_method=SalePaymentMethod.CREDIT,
        final_amount=Decimal(str(final_amount)),
    )
    for amount in amounts:
        sale.payments.append(SalePayment(amount=Decimal(str(amount)), payment_method=PaymentMethod.CASH))
    return sale


class TestDeriveCreditStatus:
    """Tests for derive_credit_status."""

    def test_no_payments_is_unpaid(self):
        assert derive_credit_status(Decimal('2700'), []) == CreditStatus.UNPAID

    def test_partial_payment(self):
        assert derive_credit_status(Decimal('2700'), [Decimal('1000')]) == CreditStatus.PARTIAL

    def test_exact_payment_is_paid(self):
        assert derive_credit_status(Decimal('2700'), [Decimal('1000'), Decimal('1700')]) == CreditStatus.PAID

    def test_overpayment_saturates_at_paid(self):
        assert derive_credit_status(Decimal('100'), [Decimal('250')]) == CreditStatus.PAID

    def test_zero_final_amount_without_payments_is_unpaid(self):
        assert derive_credit_status(Decimal('0'), []) == CreditStatus.UNPAID

    def test_accepts_payment_rows(self):
        payments = [SalePayment(amount=Decimal('40.00')), SalePayment(amount=Decimal('60.00'))]
        assert derive_credit_status(Decimal('100.00'), payments) == CreditStatus.PAID

    def test_order_of_payments_does_not_matter(self):
        amounts = [Decimal('100.10'), Decimal('250.00'), Decimal('0.90'), Decimal('649.00')]
        final_amount = Decimal('1200.00')

        results = {
            (derive_credit_status(final_amount, order), total_paid(order))
            for order in itertools.permutations(amounts)
        }
        assert results == {(CreditStatus.PARTIAL, Decimal('1000.00'))}

    def test_status_never_moves_backward(self):
        rank = {CreditStatus.UNPAID: 0, CreditStatus.PARTIAL: 1, CreditStatus.PAID: 2}
        final_amount = Decimal('500.00')
        history = []
        previous = derive_credit_status(final_amount, history)

        for amount in ['0.01', '99.99', '150', '250', '0.50', '300']:
            history.append(Decimal(amount))
            current = derive_credit_status(final_amount, history)
            assert rank[current] >= rank[previous]
            previous = current

        assert previous == CreditStatus.PAID


class TestBalance:
    """Tests for get_balance and apply_credit_state."""

    def test_balance_after_payments(self):
        assert get_balance(_credit_sale('2700', ['1000'])) == Decimal('1700.00')
        assert get_balance(_credit_sale('2700', ['1000', '1700'])) == Decimal('0.00')

    def test_balance_is_floored_at_zero(self):
        sale = _credit_sale('100', ['150'])

        assert get_balance(sale) == Decimal('0.00')
        assert is_overpaid(sale) is True

    def test_cash_sale_has_no_balance(self):
        sale = Sale(customer_name='Cash', agent_id='a', payment_method=SalePaymentMethod.CASH,
                    final_amount=Decimal('80.00'))

        assert get_balance(sale) == Decimal('0.00')
        assert is_overpaid(sale) is False

    def test_apply_credit_state_is_repeatable(self):
        sale = _credit_sale('300', ['100', '50'])

        apply_credit_state(sale)
        first = (sale.credit_status, sale.amount_paid, len(sale.payments))
        apply_credit_state(sale)
        second = (sale.credit_status, sale.amount_paid, len(sale.payments))

        assert first == second == (CreditStatus.PARTIAL, Decimal('150.00'), 2)

    def test_apply_credit_state_clears_cash_sales(self):
        sale = Sale(customer_name='Cash', agent_id='a', payment_method=SalePaymentMethod.CASH,
                    final_amount=Decimal('80.00'), credit_status=CreditStatus.UNPAID)

        apply_credit_state(sale)

        assert sale.credit_status is None
        assert sale.amount_paid == Decimal('0.00')
