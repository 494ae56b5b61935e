"""Decimal and timestamp parsing helpers shared by validation and services."""
import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional

CENT = Decimal('0.01')
ZERO = Decimal('0.00')

# Largest value a Numeric(12, 2) column holds
MAX_MONEY = Decimal('9999999999.99')

INT_PATTERN = re.compile(r"^[+-]?\d+$")


def to_money(value: Any) -> Decimal:
    """Round a number to cents (half up)."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any) -> Decimal:
    """
    Parse a JSON number or numeric string to Decimal.

    Raises:
        ValueError: for booleans, empty values, NaN/Infinity or garbage.
    """
    if value is None or isinstance(value, bool):
        raise ValueError('not a number')
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError('not a number')
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValueError('not a number')
    if not number.is_finite():
        raise ValueError('not a finite number')
    return number


def parse_int(value: Any) -> int:
    """Parse an integer, accepting integral floats (3.0) and digit strings."""
    if value is None or isinstance(value, bool):
        raise ValueError('not an integer')
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value.is_integer():
            return int(value)
        raise ValueError('not an integer')
    if isinstance(value, str) and INT_PATTERN.match(value.strip()):
        return int(value.strip())
    raise ValueError('not an integer')


def has_at_most_cents(number: Decimal) -> bool:
    """True when the value needs no more than two decimal places."""
    try:
        return number == number.quantize(CENT)
    except InvalidOperation:
        # Too many digits for the context precision
        return False


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO 8601 date or datetime into an aware UTC datetime.

    Naive values are taken as UTC. A trailing 'Z' is accepted.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError('invalid date')
    else:
        raise ValueError('invalid date')

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def money_str(value: Optional[Decimal]) -> Optional[str]:
    """Serialize money with exactly two decimals."""
    if value is None:
        return None
    return str(to_money(value))
