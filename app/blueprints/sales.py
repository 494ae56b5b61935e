"""Sales blueprint - JSON API for the invoice builder and payment ledger."""
from flask import Blueprint, request, jsonify, g, Response
from typing import Tuple

from app.database import get_session
from app.middleware import require_agent
from app.services.invoice_service import create_sale, update_sale
from app.services.payment_service import record_payment
from app.services.sale_access import get_sale_or_404
from app.services import sales_report_service
from app.utils.serializers import serialize_sale, to_json_ready

sales_bp = Blueprint('sales', __name__, url_prefix='/sales')


def _json_body():
    """Parsed JSON body; malformed or missing JSON becomes None so validation reports it."""
    return request.get_json(silent=True)


@sales_bp.route('', methods=['GET'])
@sales_bp.route('/', methods=['GET'])
@require_agent
def list_sales() -> Response:
    """List sales visible to the caller, newest first, paginated."""
    db_session = get_session()
    sales, pagination = sales_report_service.list_sales(db_session, g.agent_id, g.user_role, request.args)
    return jsonify({
        'sales': [serialize_sale(sale) for sale in sales],
        'pagination': pagination
    })


@sales_bp.route('/summary', methods=['GET'])
@require_agent
def sales_summary() -> Response:
    """Daily, weekly or monthly totals."""
    db_session = get_session()
    period = request.args.get('period', 'daily')
    summary = sales_report_service.get_summary(db_session, g.agent_id, g.user_role, period)
    return jsonify(to_json_ready(summary))


@sales_bp.route('/stats', methods=['GET'])
@require_agent
def sales_stats() -> Response:
    """Totals over a date range plus a monthly breakdown."""
    db_session = get_session()
    stats = sales_report_service.get_stats(db_session, g.agent_id, g.user_role, request.args)
    return jsonify(to_json_ready(stats))


@sales_bp.route('/recent/list', methods=['GET'])
@require_agent
def recent_sales() -> Response:
    """Latest sales for dashboards."""
    db_session = get_session()
    sales = sales_report_service.get_recent_sales(
        db_session, g.agent_id, g.user_role, request.args.get('limit')
    )
    return jsonify([serialize_sale(sale) for sale in sales])


@sales_bp.route('', methods=['POST'])
@sales_bp.route('/', methods=['POST'])
@require_agent
def create() -> Tuple[Response, int]:
    """Create a sale; totals are always computed server side."""
    db_session = get_session()
    sale = create_sale(_json_body(), db_session, g.agent_id)
    return jsonify({
        'message': 'Sale created successfully',
        'sale': serialize_sale(sale)
    }), 201


@sales_bp.route('/<int:sale_id>', methods=['GET'])
@require_agent
def detail(sale_id: int) -> Response:
    """Show a single sale."""
    db_session = get_session()
    sale = get_sale_or_404(db_session, sale_id, g.agent_id, g.user_role)
    return jsonify(serialize_sale(sale))


@sales_bp.route('/<int:sale_id>', methods=['PUT'])
@require_agent
def update(sale_id: int) -> Response:
    """Edit a credit sale and re-derive its totals and credit status."""
    db_session = get_session()
    sale = update_sale(sale_id, _json_body(), db_session, g.agent_id, g.user_role)
    return jsonify({
        'message': 'Sale updated successfully',
        'sale': serialize_sale(sale)
    })


@sales_bp.route('/<int:sale_id>/payments', methods=['POST'])
@sales_bp.route('/<int:sale_id>/payment', methods=['POST'])
@require_agent
def add_payment(sale_id: int) -> Response:
    """Record a payment on a credit sale."""
    db_session = get_session()
    sale = record_payment(
        sale_id,
        _json_body(),
        db_session,
        g.agent_id,
        g.user_role,
        idempotency_key=request.headers.get('Idempotency-Key')
    )
    return jsonify({
        'message': 'Payment recorded successfully',
        'sale': serialize_sale(sale)
    })
