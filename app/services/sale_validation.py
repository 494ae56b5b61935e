"""
Request body validation for sales and payments.

Every parser walks the whole body and collects all violations before
raising, so the caller receives the complete list in one response.
Values that pass are returned normalized (trimmed strings, Decimal money,
enum members, UTC timestamps).
"""
import re
from decimal import Decimal
from typing import Any, Dict, List, Optional

from app.exceptions import ValidationError
from app.models import SalePaymentMethod, PaymentMethod
from app.utils.money import (
    MAX_MONEY, parse_decimal, parse_int, parse_timestamp, has_at_most_cents
)

EMAIL_PATTERN = re.compile(r'^[^@\s]+@[^@\s]+\.[^@\s]+$')

MAX_NAME_LENGTH = 200
MAX_REFERENCE_LENGTH = 64
MAX_BANK_FIELD_LENGTH = 120
MAX_CARD_NUMBER_LENGTH = 40

# Well inside the Integer column on every backend
MAX_QUANTITY = 1_000_000


class FieldErrors:
    """Accumulates field-level violations."""

    def __init__(self):
        self.errors: List[Dict[str, str]] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({'field': field, 'message': message})

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(self.errors)


def _require_object(data: Any) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ValidationError.single(None, 'Request body must be a JSON object')
    return data


def _optional_text(data: Dict[str, Any], key: str, errors: FieldErrors, max_length: int = None) -> Optional[str]:
    """Trimmed string or None; empty strings become None."""
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        errors.add(key, f'{key} must be a string')
        return None
    value = value.strip()
    if not value:
        return None
    if max_length and len(value) > max_length:
        errors.add(key, f'{key} must be at most {max_length} characters')
        return None
    return value


def _parse_money_field(value: Any, field: str, errors: FieldErrors, label: str, strictly_positive: bool) -> Optional[Decimal]:
    try:
        number = parse_decimal(value)
    except ValueError:
        if strictly_positive:
            errors.add(field, f'{label} must be greater than 0')
        else:
            errors.add(field, f'{label} must be non-negative')
        return None

    if strictly_positive and number <= 0:
        errors.add(field, f'{label} must be greater than 0')
        return None
    if not strictly_positive and number < 0:
        errors.add(field, f'{label} must be non-negative')
        return None
    if number > MAX_MONEY:
        errors.add(field, f'{label} exceeds the maximum supported amount')
        return None
    if not has_at_most_cents(number):
        errors.add(field, f'{label} must have at most 2 decimal places')
        return None
    return number


def parse_items(raw_items: Any, errors: FieldErrors, field: str = 'items') -> List[Dict[str, Any]]:
    """
    Validate a list of line items.

    Each item: {itemName, quantity, unitPrice, discount?}. Caller supplied
    totals (totalPrice, lineTotal) are ignored.
    """
    if not isinstance(raw_items, list) or len(raw_items) == 0:
        errors.add(field, 'At least one item is required')
        return []

    items = []
    for index, raw in enumerate(raw_items):
        prefix = f'{field}[{index}]'
        if not isinstance(raw, dict):
            errors.add(prefix, 'Item must be an object')
            continue

        valid = True

        item_name = raw.get('itemName')
        if not isinstance(item_name, str) or not item_name.strip():
            errors.add(f'{prefix}.itemName', 'Item name is required')
            valid = False
        elif len(item_name.strip()) > MAX_NAME_LENGTH:
            errors.add(f'{prefix}.itemName', f'Item name must be at most {MAX_NAME_LENGTH} characters')
            valid = False

        try:
            quantity = parse_int(raw.get('quantity'))
            if quantity < 1:
                raise ValueError('quantity below 1')
        except ValueError:
            errors.add(f'{prefix}.quantity', 'Quantity must be at least 1')
            quantity = None
            valid = False
        else:
            if quantity > MAX_QUANTITY:
                errors.add(f'{prefix}.quantity', f'Quantity must be at most {MAX_QUANTITY}')
                valid = False

        unit_price = _parse_money_field(raw.get('unitPrice'), f'{prefix}.unitPrice', errors, 'Unit price', strictly_positive=False)
        if unit_price is None:
            valid = False

        discount = Decimal('0')
        if raw.get('discount') is not None:
            try:
                discount = parse_decimal(raw.get('discount'))
                if discount < 0 or discount > 100 or not has_at_most_cents(discount):
                    raise ValueError('discount out of range')
            except ValueError:
                errors.add(f'{prefix}.discount', 'Discount must be between 0 and 100')
                valid = False

        if valid:
            items.append({
                'item_name': item_name.strip(),
                'quantity': quantity,
                'unit_price': unit_price,
                'discount_percent': discount,
            })

    return items


def _parse_contact_fields(data: Dict[str, Any], errors: FieldErrors, parsed: Dict[str, Any]) -> None:
    if 'customerEmail' in data:
        email = _optional_text(data, 'customerEmail', errors, max_length=255)
        if email is not None and not EMAIL_PATTERN.match(email):
            errors.add('customerEmail', 'Customer email is invalid')
        else:
            parsed['customer_email'] = email.lower() if email else None

    if 'customerPhone' in data:
        parsed['customer_phone'] = _optional_text(data, 'customerPhone', errors, max_length=50)

    if 'notes' in data:
        parsed['notes'] = _optional_text(data, 'notes', errors)


def _parse_due_date(data: Dict[str, Any], errors: FieldErrors, parsed: Dict[str, Any]) -> None:
    if 'dueDate' not in data:
        return
    if data['dueDate'] in (None, ''):
        parsed['due_date'] = None
        return
    try:
        parsed['due_date'] = parse_timestamp(data['dueDate'])
    except ValueError:
        errors.add('dueDate', 'Due date must be an ISO 8601 date')


def parse_sale_create(data: Any) -> Dict[str, Any]:
    """Validate the body of a sale creation request."""
    data = _require_object(data)
    errors = FieldErrors()
    parsed: Dict[str, Any] = {}

    customer_name = data.get('customerName')
    if not isinstance(customer_name, str) or not customer_name.strip():
        errors.add('customerName', 'Customer name is required')
    elif len(customer_name.strip()) > MAX_NAME_LENGTH:
        errors.add('customerName', f'Customer name must be at most {MAX_NAME_LENGTH} characters')
    else:
        parsed['customer_name'] = customer_name.strip()

    parsed['customer_email'] = None
    parsed['customer_phone'] = None
    parsed['notes'] = None
    parsed['due_date'] = None
    _parse_contact_fields(data, errors, parsed)
    _parse_due_date(data, errors, parsed)

    client = data.get('client')
    if client is None or client == '':
        parsed['client_id'] = None
    elif isinstance(client, (str, int)) and not isinstance(client, bool) and len(str(client)) <= MAX_REFERENCE_LENGTH:
        parsed['client_id'] = str(client).strip() or None
    else:
        errors.add('client', 'Client must be an identifier')

    parsed['items'] = parse_items(data.get('items'), errors)

    try:
        parsed['payment_method'] = SalePaymentMethod(data.get('paymentMethod'))
    except ValueError:
        errors.add('paymentMethod', 'Invalid payment method')

    errors.raise_if_any()
    return parsed


def parse_sale_update(data: Any) -> Dict[str, Any]:
    """
    Validate the body of a sale edit. Only the keys present are returned.

    paymentMethod, agent and every derived total are not editable and are
    ignored when sent.
    """
    data = _require_object(data)
    errors = FieldErrors()
    parsed: Dict[str, Any] = {}

    if 'customerName' in data:
        customer_name = data['customerName']
        if not isinstance(customer_name, str) or not customer_name.strip():
            errors.add('customerName', 'Customer name cannot be empty')
        elif len(customer_name.strip()) > MAX_NAME_LENGTH:
            errors.add('customerName', f'Customer name must be at most {MAX_NAME_LENGTH} characters')
        else:
            parsed['customer_name'] = customer_name.strip()

    _parse_contact_fields(data, errors, parsed)
    _parse_due_date(data, errors, parsed)

    if 'items' in data:
        parsed['items'] = parse_items(data['items'], errors)

    errors.raise_if_any()
    return parsed


def parse_payment(data: Any) -> Dict[str, Any]:
    """Validate the body of a record-payment request."""
    data = _require_object(data)
    errors = FieldErrors()
    parsed: Dict[str, Any] = {}

    parsed['amount'] = _parse_money_field(data.get('amount'), 'amount', errors, 'Payment amount', strictly_positive=True)

    method = data.get('paymentMethod')
    if method is None or method == '':
        parsed['payment_method'] = PaymentMethod.CASH
    else:
        try:
            parsed['payment_method'] = PaymentMethod(method)
        except ValueError:
            errors.add('paymentMethod', 'Invalid payment method')

    parsed['payment_date'] = None
    if data.get('paymentDate') not in (None, ''):
        try:
            parsed['payment_date'] = parse_timestamp(data['paymentDate'])
        except ValueError:
            errors.add('paymentDate', 'Payment date must be an ISO 8601 date')

    parsed['bank_name'] = _optional_text(data, 'bankName', errors, MAX_BANK_FIELD_LENGTH)
    parsed['account_name'] = _optional_text(data, 'accountName', errors, MAX_BANK_FIELD_LENGTH)
    parsed['card_number'] = _optional_text(data, 'cardNumber', errors, MAX_CARD_NUMBER_LENGTH)
    parsed['notes'] = _optional_text(data, 'notes', errors)

    errors.raise_if_any()
    return parsed
