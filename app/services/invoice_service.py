"""Invoice builder: prices line items and creates / edits sales."""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.models import Sale, SaleItem, SalePaymentMethod, SaleStatus, CreditStatus
from app.exceptions import LedgerError, ValidationError, ConflictError, StorageError
from app.services.sale_access import get_sale_or_404
from app.services.sale_validation import MAX_QUANTITY, parse_sale_create, parse_sale_update
from app.services.payment_service import apply_credit_state
from app.services.cache_service import invalidate_reports
from app.utils.money import MAX_MONEY, ZERO, has_at_most_cents, parse_decimal, parse_int, to_money, utcnow

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')


def _normalize_item(item: Dict[str, Any], index: int, violations: List[Dict[str, str]]) -> Optional[Dict[str, Any]]:
    """Coerce one item to exact types; record any violation and return None."""
    prefix = f'items[{index}]'
    start = len(violations)

    item_name = str(item.get('item_name') or '').strip()
    if not item_name:
        violations.append({'field': f'{prefix}.itemName', 'message': 'Item name is required'})

    try:
        quantity = parse_int(item.get('quantity'))
    except ValueError:
        quantity = None
    if quantity is None or quantity < 1:
        violations.append({'field': f'{prefix}.quantity', 'message': 'Quantity must be at least 1'})
    elif quantity > MAX_QUANTITY:
        violations.append({'field': f'{prefix}.quantity', 'message': f'Quantity must be at most {MAX_QUANTITY}'})

    try:
        unit_price = parse_decimal(item.get('unit_price'))
    except ValueError:
        unit_price = None
    if unit_price is None or unit_price < 0:
        violations.append({'field': f'{prefix}.unitPrice', 'message': 'Unit price must be non-negative'})
    elif unit_price > MAX_MONEY:
        violations.append({'field': f'{prefix}.unitPrice', 'message': 'Unit price exceeds the maximum supported amount'})

    raw_discount = item.get('discount_percent')
    try:
        discount = ZERO if raw_discount is None else parse_decimal(raw_discount)
    except ValueError:
        discount = None
    if discount is None or discount < 0 or discount > HUNDRED or not has_at_most_cents(discount):
        violations.append({'field': f'{prefix}.discount', 'message': 'Discount must be between 0 and 100'})

    if len(violations) > start:
        return None
    return {'item_name': item_name, 'quantity': quantity, 'unit_price': unit_price, 'discount_percent': discount}


def price_items(items: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Price a list of line items.

    Per line, gross = quantity * unit_price and the discount amount
    (gross * discount_percent / 100) are rounded to cents, and
    line_total = gross - discount. Totals are sums of the rounded values, so
    final_amount == subtotal - discount_total == sum(line_total) exactly.

    Args:
        items: dicts with item_name, quantity, unit_price, discount_percent

    Returns:
        {'lines': [...], 'subtotal', 'discount_total', 'final_amount'}

    Raises:
        ValidationError: empty list, quantity not an integer in
            [1, MAX_QUANTITY], negative or oversized unit price, discount
            outside [0, 100], or a subtotal beyond MAX_MONEY
    """
    if not items:
        raise ValidationError.single('items', 'At least one item is required')

    violations: List[Dict[str, str]] = []
    normalized = [_normalize_item(item, index, violations) for index, item in enumerate(items)]
    if violations:
        raise ValidationError(violations)

    lines = []
    subtotal = ZERO
    discount_total = ZERO

    for item in normalized:
        quantity = item['quantity']
        unit_price = to_money(item['unit_price'])
        discount_percent = item['discount_percent']

        gross = to_money(quantity * unit_price)
        discount_amount = to_money(gross * discount_percent / HUNDRED)
        line_total = gross - discount_amount

        lines.append({
            'item_name': item['item_name'],
            'quantity': quantity,
            'unit_price': unit_price,
            'discount_percent': discount_percent,
            'gross': gross,
            'discount_amount': discount_amount,
            'line_total': line_total
        })
        subtotal += gross
        discount_total += discount_amount

    if subtotal > MAX_MONEY:
        raise ValidationError.single('items', 'Sale total exceeds the maximum supported amount')

    return {
        'lines': lines,
        'subtotal': subtotal,
        'discount_total': discount_total,
        'final_amount': subtotal - discount_total
    }


def _build_items(priced: Dict[str, Any]) -> List[SaleItem]:
    return [
        SaleItem(
            position=position,
            item_name=line['item_name'],
            quantity=line['quantity'],
            unit_price=line['unit_price'],
            discount_percent=line['discount_percent'],
            line_total=line['line_total']
        )
        for position, line in enumerate(priced['lines'])
    ]


def _apply_totals(sale: Sale, priced: Dict[str, Any]) -> None:
    sale.items = _build_items(priced)
    sale.subtotal = priced['subtotal']
    sale.discount_total = priced['discount_total']
    sale.final_amount = priced['final_amount']


def create_sale(payload: dict, session: Session, agent_id: str) -> Sale:
    """
    Validate, price and persist a new sale.

    Everything is validated and priced before the session is touched, so a
    rejected request never leaves a partial write behind.

    Args:
        payload: Request body (customerName, customerEmail?, customerPhone?,
            client?, items, paymentMethod, notes?, dueDate?)
        session: SQLAlchemy session
        agent_id: Authenticated agent recording the sale

    Returns:
        The created Sale
    """
    if agent_id is None or not str(agent_id).strip():
        raise ValidationError.single('agent', 'Agent is required')

    data = parse_sale_create(payload)
    priced = price_items(data['items'])
    is_credit = data['payment_method'] == SalePaymentMethod.CREDIT

    sale = Sale(
        customer_name=data['customer_name'],
        customer_email=data['customer_email'],
        customer_phone=data['customer_phone'],
        client_id=data['client_id'],
        agent_id=str(agent_id),
        payment_method=data['payment_method'],
        status=SaleStatus.COMPLETED,
        sale_date=utcnow(),
        due_date=data['due_date'] if is_credit else None,
        notes=data['notes'],
        credit_status=CreditStatus.UNPAID if is_credit else None,
        amount_paid=ZERO
    )
    _apply_totals(sale, priced)

    try:
        session.add(sale)
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database error creating sale: {e}")
        raise StorageError('Error creating sale')
    except Exception:
        session.rollback()
        raise

    logger.info(
        f"Sale #{sale.id} created by agent {sale.agent_id}: method={sale.payment_method.value} "
        f"subtotal={sale.subtotal} discount={sale.discount_total} final={sale.final_amount}"
    )
    from app.blueprints.metrics import record_sale_created
    record_sale_created(sale.payment_method.value)
    invalidate_reports(sale.agent_id)
    return sale


def update_sale(sale_id: int, payload: dict, session: Session, agent_id: str, role: str) -> Sale:
    """
    Edit a credit sale.

    Customer fields, notes, due date and items may change. New items are
    re-priced and the credit status is re-derived against the new final
    amount from the untouched payment history; recorded payments are never
    rescaled. Payment method, agent and totals sent by the caller are ignored.

    Raises:
        ValidationError: bad fields, or the sale is a cash sale
        NotFoundError: sale absent or not visible to the caller
        ConflictError: the sale changed underneath this edit
        StorageError: database failure
    """
    data = parse_sale_update(payload)
    priced = price_items(data['items']) if 'items' in data else None

    try:
        sale = get_sale_or_404(session, sale_id, agent_id, role, for_update=True)

        if not sale.is_credit:
            raise ValidationError.single('paymentMethod', 'Only credit sales can be edited')

        for field in ('customer_name', 'customer_email', 'customer_phone', 'notes', 'due_date'):
            if field in data:
                setattr(sale, field, data[field])

        if priced is not None:
            previous_final = sale.final_amount
            _apply_totals(sale, priced)
            if sale.payments and to_money(previous_final) != priced['final_amount']:
                logger.warning(
                    f"Sale #{sale.id} re-priced from {previous_final} to {priced['final_amount']} "
                    f"with {len(sale.payments)} payment(s) recorded"
                )

        apply_credit_state(sale)
        sale.updated_at = utcnow()
        session.commit()

    except LedgerError:
        session.rollback()
        raise
    except StaleDataError:
        session.rollback()
        logger.warning(f"Concurrent update on sale #{sale_id}, edit rejected")
        raise ConflictError()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"Database error updating sale #{sale_id}: {e}")
        raise StorageError('Error updating sale')
    except Exception:
        session.rollback()
        raise

    logger.info(f"Sale #{sale.id} updated: final={sale.final_amount} credit_status={sale.credit_status.value}")
    invalidate_reports(sale.agent_id)
    return sale
