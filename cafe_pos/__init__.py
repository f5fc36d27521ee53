"""Flask application factory."""
import logging
import os

from flask import Flask, request, jsonify
from werkzeug.exceptions import HTTPException

from cafe_pos.database import init_db


def create_app(config_object='config.Config'):
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get('LOG_LEVEL', 'INFO'),
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    app.logger.setLevel(app.config.get('LOG_LEVEL', 'INFO'))

    # Sentry error tracking in production
    if app.config.get('SENTRY_DSN') and app.config.get('ENV') == 'production':
        import sentry_sdk
        from sentry_sdk.integrations.flask import FlaskIntegration

        sentry_sdk.init(
            dsn=app.config['SENTRY_DSN'],
            integrations=[FlaskIntegration()],
            traces_sample_rate=0.1,
            environment=app.config.get('ENV'),
            release=os.getenv('GIT_COMMIT', 'unknown')
        )

    # Production: trust the reverse proxy headers
    if app.config.get('ENV') == 'production':
        from werkzeug.middleware.proxy_fix import ProxyFix
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_port=1, x_prefix=0)

    # Initialize database
    init_db(app)

    # Local durable storage (recovery snapshot, settlement log)
    from cafe_pos.services.storage_service import init_storage
    init_storage(app)

    # Remote data API, then the terminal (restores the last snapshot)
    from cafe_pos.services.data_api import init_data_api
    init_data_api(app)

    from cafe_pos.services.terminal_service import init_terminal
    init_terminal(app)

    # Prometheus metrics instrumentation
    from cafe_pos.blueprints.metrics import setup_metrics_instrumentation
    setup_metrics_instrumentation(app)

    # Error Handlers
    from cafe_pos.exceptions import PosError

    @app.errorhandler(PosError)
    def handle_pos_error(error):
        """Handle custom application exceptions."""
        if error.status_code >= 500:
            app.logger.error(f"PosError [{error.status_code}]: {error.message}")
        else:
            app.logger.warning(f"PosError [{error.status_code}]: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({'status': 'error', 'message': error.description}), error.code

    @app.errorhandler(Exception)
    def internal_error(error):
        app.logger.exception(f"Unhandled Exception on {request.path}: {error}")
        return jsonify({'status': 'error', 'message': 'Internal Server Error'}), 500

    # Register blueprints
    from cafe_pos.blueprints.pos import pos_bp
    from cafe_pos.blueprints.kitchen import kitchen_bp
    from cafe_pos.blueprints.metrics import metrics_bp

    app.register_blueprint(pos_bp)
    app.register_blueprint(kitchen_bp)
    app.register_blueprint(metrics_bp)

    # Register CLI commands
    from cafe_pos.cli_commands import init_cli_commands
    init_cli_commands(app)

    app.logger.info(f"POS terminal ready (data API: {app.config.get('DATA_API_BACKEND')}, "
                    f"storage: {app.config.get('STORAGE_BACKEND')})")
    return app
