"""Sales listing and reporting - read-only views over the ledger."""
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
import logging
import math

from flask import current_app
from sqlalchemy import func, case
from sqlalchemy.orm import Session, selectinload

from app.models import Sale, SalePaymentMethod, SaleStatus, CreditStatus
from app.exceptions import ValidationError
from app.services.sale_access import scoped_sales_query, is_admin
from app.services.cache_service import ALL_SCOPE, REPORTS_MODULE, get_cache
from app.services.sale_validation import FieldErrors
from app.utils.money import ZERO, parse_int, parse_timestamp, to_money, utcnow

logger = logging.getLogger(__name__)

PERIODS = ('daily', 'weekly', 'monthly')


def _parse_date_range(args: Dict[str, Any], errors: FieldErrors) -> Tuple[Optional[datetime], Optional[datetime]]:
    """startDate/endDate filter only when both are given."""
    start = end = None
    for key in ('startDate', 'endDate'):
        raw = args.get(key)
        if raw in (None, ''):
            continue
        try:
            value = parse_timestamp(raw)
        except ValueError:
            errors.add(key, f'{key} must be an ISO 8601 date')
            continue
        if key == 'startDate':
            start = value
        else:
            end = value
    if start is None or end is None:
        return None, None
    return start, end


def _escape_like(text: str) -> str:
    """Make LIKE wildcards in user input match literally."""
    return text.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')


def _parse_enum(args: Dict[str, Any], key: str, enum_cls, errors: FieldErrors):
    raw = args.get(key)
    if raw in (None, ''):
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        errors.add(key, f'Invalid {key}')
        return None


def _parse_positive_int(args: Dict[str, Any], key: str, default: int, errors: FieldErrors) -> int:
    raw = args.get(key)
    if raw in (None, ''):
        return default
    try:
        value = parse_int(raw)
        if value < 1:
            raise ValueError('not positive')
        return value
    except ValueError:
        errors.add(key, f'{key} must be a positive integer')
        return default


def list_sales(session: Session, agent_id: str, role: str, args: Dict[str, Any]) -> Tuple[List[Sale], Dict[str, int]]:
    """
    Paginated listing, newest first.

    Filters: paymentMethod, status, creditStatus, customerName (substring,
    case-insensitive), startDate + endDate (inclusive).
    """
    errors = FieldErrors()
    payment_method = _parse_enum(args, 'paymentMethod', SalePaymentMethod, errors)
    status = _parse_enum(args, 'status', SaleStatus, errors)
    credit_status = _parse_enum(args, 'creditStatus', CreditStatus, errors)
    start, end = _parse_date_range(args, errors)

    default_limit = current_app.config.get('SALES_PAGE_SIZE_DEFAULT', 10)
    max_limit = current_app.config.get('SALES_PAGE_SIZE_MAX', 100)
    page = _parse_positive_int(args, 'page', 1, errors)
    limit = min(_parse_positive_int(args, 'limit', default_limit, errors), max_limit)
    errors.raise_if_any()

    query = scoped_sales_query(session, agent_id, role)
    if payment_method:
        query = query.filter(Sale.payment_method == payment_method)
    if status:
        query = query.filter(Sale.status == status)
    if credit_status:
        query = query.filter(Sale.credit_status == credit_status)
    if start and end:
        query = query.filter(Sale.sale_date >= start, Sale.sale_date <= end)

    customer_name = (args.get('customerName') or '').strip()
    if customer_name:
        pattern = _escape_like(customer_name)
        query = query.filter(Sale.customer_name.ilike(f'%{pattern}%', escape='\\'))

    total = query.count()
    sales = (
        query.options(selectinload(Sale.items), selectinload(Sale.payments))
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    pagination = {
        'page': page,
        'limit': limit,
        'total': total,
        'pages': math.ceil(total / limit) if total else 0
    }
    return sales, pagination


def get_recent_sales(session: Session, agent_id: str, role: str, limit: Any = None) -> List[Sale]:
    """Latest sales for dashboards (default 5)."""
    errors = FieldErrors()
    limit = _parse_positive_int({'limit': limit}, 'limit', 5, errors)
    errors.raise_if_any()
    limit = min(limit, current_app.config.get('SALES_PAGE_SIZE_MAX', 100))

    return (
        scoped_sales_query(session, agent_id, role)
        .options(selectinload(Sale.items), selectinload(Sale.payments))
        .order_by(Sale.sale_date.desc(), Sale.id.desc())
        .limit(limit)
        .all()
    )


def period_start(period: str, now: Optional[datetime] = None) -> datetime:
    """
    Start of the reporting period containing now (UTC).

    daily: midnight today; weekly: midnight of the most recent Sunday;
    monthly: first day of the month.
    """
    if period not in PERIODS:
        raise ValidationError.single('period', f'Period must be one of: {", ".join(PERIODS)}')
    now = now or utcnow()
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == 'daily':
        return midnight
    if period == 'weekly':
        # isoweekday: Monday=1 ... Sunday=7
        return midnight - timedelta(days=now.isoweekday() % 7)
    return midnight.replace(day=1)


def _aggregate(query) -> Dict[str, Any]:
    """Counts and amounts split by payment method over a sale query."""
    is_cash = Sale.payment_method == SalePaymentMethod.CASH
    is_credit = Sale.payment_method == SalePaymentMethod.CREDIT
    pending_credit = is_credit & (Sale.credit_status != CreditStatus.PAID)

    row = query.with_entities(
        func.count(Sale.id),
        func.coalesce(func.sum(Sale.final_amount), 0),
        func.coalesce(func.sum(case((is_cash, 1), else_=0)), 0),
        func.coalesce(func.sum(case((is_credit, 1), else_=0)), 0),
        func.coalesce(func.sum(case((is_cash, Sale.final_amount), else_=0)), 0),
        func.coalesce(func.sum(case((is_credit, Sale.final_amount), else_=0)), 0),
        func.coalesce(func.sum(case((pending_credit, 1), else_=0)), 0),
    ).one()

    return {
        'totalSales': int(row[0]),
        'totalAmount': to_money(row[1]),
        'cashSales': int(row[2]),
        'creditSales': int(row[3]),
        'cashAmount': to_money(row[4]),
        'creditAmount': to_money(row[5]),
        'pendingCredits': int(row[6]),
        'outstandingBalance': _outstanding(query),
    }


def _outstanding(query) -> Decimal:
    """Sum of per-sale balances; overpaid sales contribute zero, not a negative."""
    balance = Sale.final_amount - Sale.amount_paid
    value = query.filter(
        Sale.payment_method == SalePaymentMethod.CREDIT,
        balance > 0
    ).with_entities(func.coalesce(func.sum(balance), 0)).scalar()
    return to_money(value or ZERO)


def _scope(agent_id: str, role: str) -> str:
    return ALL_SCOPE if is_admin(role) else str(agent_id)


def _cached(scope: str, key: str, loader):
    try:
        cache = get_cache()
    except RuntimeError:
        logger.debug(f"[CACHE] Not initialized, computing {key} directly")
        return loader()
    ttl = current_app.config.get('CACHE_REPORTS_TTL', 60)
    return cache.memoize(scope, REPORTS_MODULE, key, loader, ttl)


def get_summary(session: Session, agent_id: str, role: str, period: str = 'daily', now: Optional[datetime] = None) -> Dict[str, Any]:
    """Totals for the current day, week or month."""
    start = period_start(period, now)

    def load():
        query = scoped_sales_query(session, agent_id, role).filter(Sale.sale_date >= start)
        summary = _aggregate(query)
        summary['period'] = period
        summary['startDate'] = start.isoformat()
        return summary

    return _cached(_scope(agent_id, role), f'summary:{period}:{start.date().isoformat()}', load)


def get_stats(session: Session, agent_id: str, role: str, args: Dict[str, Any]) -> Dict[str, Any]:
    """Totals over an optional date range plus a month-by-month breakdown."""
    errors = FieldErrors()
    start, end = _parse_date_range(args, errors)
    errors.raise_if_any()

    def load():
        query = scoped_sales_query(session, agent_id, role)
        if start and end:
            query = query.filter(Sale.sale_date >= start, Sale.sale_date <= end)

        stats = _aggregate(query)

        monthly: Dict[Tuple[int, int], Dict[str, Any]] = {}
        for sale_date, final_amount in query.with_entities(Sale.sale_date, Sale.final_amount).all():
            if sale_date.tzinfo is not None:
                sale_date = sale_date.astimezone(timezone.utc)
            bucket = monthly.setdefault((sale_date.year, sale_date.month), {'total': ZERO, 'count': 0})
            bucket['total'] += to_money(final_amount or ZERO)
            bucket['count'] += 1

        stats['monthly'] = [
            {'year': year, 'month': month, 'total': data['total'], 'count': data['count']}
            for (year, month), data in sorted(monthly.items())
        ]
        return stats

    key = f"stats:{start.isoformat() if start else '-'}:{end.isoformat() if end else '-'}"
    return _cached(_scope(agent_id, role), key, load)
