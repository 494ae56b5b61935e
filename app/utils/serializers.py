"""JSON representations of ledger objects (API field names, money as strings)."""
from datetime import datetime, date
from decimal import Decimal
from typing import Any, Dict, Optional

from app.models import Sale, SaleItem, SalePayment, CreditStatus
from app.services.payment_service import get_balance, total_paid, is_overpaid
from app.utils.money import money_str


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def serialize_item(item: SaleItem) -> Dict[str, Any]:
    return {
        'itemName': item.item_name,
        'quantity': item.quantity,
        'unitPrice': money_str(item.unit_price),
        'discount': money_str(item.discount_percent),
        'lineTotal': money_str(item.line_total),
    }


def serialize_payment(payment: SalePayment) -> Dict[str, Any]:
    return {
        'id': payment.id,
        'amount': money_str(payment.amount),
        'paymentDate': _iso(payment.payment_date),
        'paymentMethod': payment.payment_method.value,
        'bankName': payment.bank_name,
        'accountName': payment.account_name,
        'cardNumber': payment.card_number,
        'notes': payment.notes,
    }


def serialize_sale(sale: Sale) -> Dict[str, Any]:
    """
    Full sale document. Cash sales report creditStatus 'paid' and an empty
    payment list; balance and totalPaid are derived on the fly.
    """
    if sale.is_credit:
        credit_status = (sale.credit_status or CreditStatus.UNPAID).value
        paid = total_paid(sale.payments)
    else:
        credit_status = CreditStatus.PAID.value
        paid = sale.final_amount

    return {
        'id': sale.id,
        'customerName': sale.customer_name,
        'customerEmail': sale.customer_email,
        'customerPhone': sale.customer_phone,
        'client': sale.client_id,
        'agent': sale.agent_id,
        'items': [serialize_item(item) for item in sale.items],
        'subtotal': money_str(sale.subtotal),
        'discountTotal': money_str(sale.discount_total),
        'finalAmount': money_str(sale.final_amount),
        'paymentMethod': sale.payment_method.value,
        'status': sale.status.value,
        'saleDate': _iso(sale.sale_date),
        'dueDate': _iso(sale.due_date),
        'creditStatus': credit_status,
        'totalPaid': money_str(paid),
        'balance': money_str(get_balance(sale)),
        'overpaid': is_overpaid(sale),
        'payments': [serialize_payment(payment) for payment in sale.payments],
        'notes': sale.notes,
        'createdAt': _iso(sale.created_at),
        'updatedAt': _iso(sale.updated_at),
    }


def to_json_ready(value: Any) -> Any:
    """Recursively turn Decimals into money strings and dates into ISO text."""
    if isinstance(value, Decimal):
        return money_str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: to_json_ready(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_ready(item) for item in value]
    return value
