"""
Payment ledger for credit sales.

A credit sale's payments are append-only. Its credit status and balance are
pure functions of the sale's final amount and the full payment history:

    total paid == 0            -> unpaid
    total paid >= final amount -> paid (saturates, overpayment stays 'paid')
    otherwise                  -> partial

Concurrent payments on the same sale are serialized with a row lock where
the backend supports it and with the sale's version counter everywhere: a
writer that lost the race gets StaleDataError at commit, reloads the sale
and retries, so no appended payment is ever overwritten.
"""
import logging
from decimal import Decimal
from typing import Iterable, Optional

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models import Sale, SalePayment, CreditStatus
from app.exceptions import LedgerError, ValidationError, ConflictError, StorageError
from app.services.sale_access import get_sale_or_404
from app.services.sale_validation import parse_payment
from app.services.cache_service import invalidate_reports
from app.utils.money import ZERO, to_money, utcnow

logger = logging.getLogger(__name__)

OVERPAYMENT_FLAG = 'flag'
OVERPAYMENT_REJECT = 'reject'

MAX_IDEMPOTENCY_KEY_LENGTH = 64


def total_paid(payments: Iterable) -> Decimal:
    """Sum of payment amounts. Accepts SalePayment rows or plain amounts."""
    total = ZERO
    for payment in payments:
        total += to_money(getattr(payment, 'amount', payment))
    return to_money(total)


def derive_credit_status(final_amount: Decimal, payments: Iterable) -> CreditStatus:
    """Credit status for a final amount and a payment history."""
    paid = total_paid(payments)
    if paid == ZERO:
        return CreditStatus.UNPAID
    if paid >= to_money(final_amount):
        return CreditStatus.PAID
    return CreditStatus.PARTIAL


def get_balance(sale: Sale) -> Decimal:
    """Amount still owed, floored at zero. Cash sales owe nothing."""
    if not sale.is_credit:
        return ZERO
    return max(ZERO, to_money(sale.final_amount) - total_paid(sale.payments))


def is_overpaid(sale: Sale) -> bool:
    return sale.is_credit and total_paid(sale.payments) > to_money(sale.final_amount)


def apply_credit_state(sale: Sale) -> None:
    """Rewrite the denormalized amount_paid / credit_status from the payments."""
    if not sale.is_credit:
        sale.amount_paid = ZERO
        sale.credit_status = None
        return
    sale.amount_paid = total_paid(sale.payments)
    sale.credit_status = derive_credit_status(sale.final_amount, sale.payments)


def _validate_idempotency_key(key: Optional[str]) -> Optional[str]:
    if key is None:
        return None
    key = key.strip()
    if not key:
        return None
    if len(key) > MAX_IDEMPOTENCY_KEY_LENGTH:
        raise ValidationError.single(
            'Idempotency-Key', f'Idempotency key must be at most {MAX_IDEMPOTENCY_KEY_LENGTH} characters'
        )
    return key


def _check_overpayment(sale: Sale, amount: Decimal, policy: str) -> None:
    balance = get_balance(sale)
    if amount <= balance:
        return
    if policy == OVERPAYMENT_REJECT:
        raise ValidationError.single(
            'amount', f'Payment amount ({amount}) exceeds the outstanding balance ({balance})'
        )
    logger.warning(
        f"Overpayment on sale #{sale.id}: amount={amount} balance={balance} final_amount={sale.final_amount}"
    )


def record_payment(
    sale_id: int,
    payload: dict,
    session: Session,
    agent_id: str,
    role: str,
    idempotency_key: Optional[str] = None
) -> Sale:
    """
    Append a payment to a credit sale and re-derive its credit status.

    Args:
        sale_id: Sale ID
        payload: Request body {amount, paymentMethod?, paymentDate?, bankName?,
            accountName?, cardNumber?, notes?}
        session: SQLAlchemy session
        agent_id: Caller (agents only reach their own sales)
        role: Caller role
        idempotency_key: Optional client key; a repeated key returns the
            sale without appending a second payment

    Returns:
        The updated Sale

    Raises:
        ValidationError: amount <= 0, bad fields, or the sale is not a credit sale
        NotFoundError: sale absent or not visible to the caller
        ConflictError: still losing the race after the configured retries
        StorageError: database failure
    """
    data = parse_payment(payload)
    idempotency_key = _validate_idempotency_key(idempotency_key)

    max_retries = current_app.config.get('LEDGER_PAYMENT_MAX_RETRIES', 3)
    policy = current_app.config.get('LEDGER_OVERPAYMENT_POLICY', OVERPAYMENT_FLAG)

    attempt = 0
    while True:
        attempt += 1
        try:
            sale = get_sale_or_404(session, sale_id, agent_id, role, for_update=True)

            if not sale.is_credit:
                raise ValidationError.single('paymentMethod', 'Only credit sales can receive payments')

            if idempotency_key:
                for existing in sale.payments:
                    if existing.idempotency_key == idempotency_key:
                        logger.info(f"Payment replay on sale #{sale.id} (key={idempotency_key}), nothing appended")
                        session.commit()
                        return sale

            _check_overpayment(sale, data['amount'], policy)

            sale.payments.append(SalePayment(
                amount=data['amount'],
                payment_method=data['payment_method'],
                payment_date=data['payment_date'] or utcnow(),
                bank_name=data['bank_name'],
                account_name=data['account_name'],
                card_number=data['card_number'],
                notes=data['notes'],
                idempotency_key=idempotency_key
            ))
            apply_credit_state(sale)
            # Always touch the sale row so the version check guards the append
            sale.updated_at = utcnow()

            session.commit()
            break

        except LedgerError:
            session.rollback()
            raise
        except StaleDataError:
            session.rollback()
            _count_conflict()
            if attempt > max_retries:
                logger.error(f"Payment on sale #{sale_id} gave up after {attempt} attempts")
                raise ConflictError()
            logger.warning(f"Concurrent update on sale #{sale_id}, retrying payment (attempt {attempt})")
        except IntegrityError as e:
            session.rollback()
            # A concurrent request with the same idempotency key won; the retry returns its result
            if idempotency_key and attempt <= max_retries:
                logger.warning(f"Idempotency key race on sale #{sale_id}, re-reading")
                continue
            logger.error(f"Integrity error recording payment on sale #{sale_id}: {e.orig}")
            raise StorageError('Error recording payment')
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error recording payment on sale #{sale_id}: {e}")
            raise StorageError('Error recording payment')
        except Exception:
            session.rollback()
            raise

    logger.info(
        f"Payment recorded on sale #{sale.id}: amount={data['amount']} "
        f"total_paid={sale.amount_paid} credit_status={sale.credit_status.value}"
    )
    _count_payment(data['payment_method'].value, data['amount'])
    invalidate_reports(sale.agent_id)
    return sale


def _count_payment(method: str, amount: Decimal) -> None:
    from app.blueprints import metrics
    metrics.record_payment(method, amount)


def _count_conflict() -> None:
    from app.blueprints import metrics
    metrics.record_payment_conflict()
