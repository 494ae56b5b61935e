"""
Prometheus metrics blueprint for the sales ledger.

Exposes /metrics with per-endpoint HTTP metrics and the ledger counters
(sales created, payments recorded, concurrency conflicts).
The endpoint is unauthenticated; restrict it at the network level.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

# Ledger
sales_created_total = Counter(
    'sales_created_total',
    'Sales created',
    ['payment_method'],
    registry=_metric_registry
)

sale_payments_recorded_total = Counter(
    'sale_payments_recorded_total',
    'Payments appended to credit sales',
    ['payment_method'],
    registry=_metric_registry
)

sale_payment_amount = Histogram(
    'sale_payment_amount',
    'Amount of recorded credit payments',
    registry=_metric_registry,
    buckets=(10, 50, 100, 500, 1000, 5000, 10000, 50000, 100000)
)

sale_payment_conflicts_total = Counter(
    'sale_payment_conflicts_total',
    'Payment writes that lost an optimistic concurrency check',
    registry=_metric_registry
)

# HTTP
http_requests_total = Counter(
    'http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0)
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_metric_registry
)


def record_sale_created(payment_method: str) -> None:
    sales_created_total.labels(payment_method=payment_method).inc()


def record_payment(payment_method: str, amount) -> None:
    sale_payments_recorded_total.labels(payment_method=payment_method).inc()
    sale_payment_amount.observe(float(amount))


def record_payment_conflict() -> None:
    sale_payment_conflicts_total.inc()


def setup_metrics_instrumentation(app):
    """
    Register request hooks that time every request except the scrape itself.

    Called from the app factory.
    """

    @app.before_request
    def start_request_timer():
        if request.endpoint == 'metrics.metrics':
            return
        g._metrics_started = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def observe_request(response):
        started = g.get('_metrics_started')
        if started is None:
            return response

        endpoint = request.endpoint or 'unknown'
        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint
        ).observe(time.perf_counter() - started)
        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            http_status=response.status_code
        ).inc()
        return response

    @app.teardown_request
    def leave_flight(exception=None):
        # Runs even when the response was never built
        if g.pop('_metrics_started', None) is not None:
            http_requests_in_flight.dec()


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus exposition for the scraper."""
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
