"""Flask application factory."""
from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException
from app.database import init_db
import os


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Initialize Sentry for error tracking in production
    if os.getenv('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=os.getenv('SENTRY_DSN'),
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,  # 10% of transactions for performance monitoring
            environment=os.getenv('FLASK_ENV', 'production'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Initialize Redis Cache
    from app.services.cache_service import init_cache
    init_cache(app)

    # Setup Prometheus metrics instrumentation
    from app.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Production: Enable ProxyFix behind a reverse proxy
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Resolve the calling agent from the bearer token before each request
    from app.middleware import load_agent_context

    @app.before_request
    def before_request_handler():
        """Load agent context for each request."""
        load_agent_context()

    # Error Handlers
    from app.exceptions import LedgerError

    @app.errorhandler(LedgerError)
    def handle_ledger_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"LedgerError [{error.status_code}] {request.method} {request.path}: {error.message}")
        else:
            app.logger.warning(f"LedgerError [{error.status_code}] {request.method} {request.path}: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        import traceback
        app.logger.error(f"Unhandled Exception: {error}")
        app.logger.error(f"Traceback: {traceback.format_exc()}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from app.blueprints.sales import sales_bp
    from app.blueprints.metrics import metrics_bp

    app.register_blueprint(sales_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from app.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"Payment ledger: max_retries={app.config.get('LEDGER_PAYMENT_MAX_RETRIES')} "
                    f"overpayment_policy={app.config.get('LEDGER_OVERPAYMENT_POLICY')}")

    return app
