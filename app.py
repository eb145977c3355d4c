import os
import logging
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_compress import Compress
from sqlalchemy.orm import DeclarativeBase
from werkzeug.middleware.proxy_fix import ProxyFix
from datetime import datetime, timezone

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass

db = SQLAlchemy(model_class=Base)
compress = Compress()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).strip().lower() in ('true', '1', 'yes')


def _env_int(name, default):
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {value!r}")


def create_app(test_config=None):
    # Create the app
    app = Flask(__name__)
    # Enforce SESSION_SECRET requirement
    app.secret_key = os.environ.get("SESSION_SECRET")
    if not app.secret_key:
        raise RuntimeError("SESSION_SECRET environment variable is required but not set")
    # x_for=1: Trust one proxy for X-Forwarded-For header (client IP used by rate limiting)
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1)

    # Configure the database - use PostgreSQL in production, SQLite for development
    database_url = os.environ.get("DATABASE_URL") or "sqlite:///driver_workflow.db"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
    if database_url.startswith("postgresql://"):
        # Ensure psycopg2 driver is specified
        database_url = database_url.replace("postgresql://", "postgresql+psycopg2://", 1)
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_size": 10,
            "pool_recycle": 280,
            "pool_pre_ping": True,
            "max_overflow": 15,
            "pool_timeout": 20,
            "connect_args": {
                "connect_timeout": 10,
                "application_name": "driver_workflow",
            }
        }
    else:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = {
            "pool_pre_ping": True,
        }
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    # Daily workflow rules
    app.config['OPERATING_TIMEZONE'] = os.environ.get('OPERATING_TIMEZONE', 'Europe/London')
    app.config['SCREENSHOT_MAX_BYTES'] = _env_int('SCREENSHOT_MAX_BYTES', 5 * 1024 * 1024)
    app.config['DOCUMENT_MAX_BYTES'] = _env_int('DOCUMENT_MAX_BYTES', 10 * 1024 * 1024)
    app.config['REQUIRE_SOD_BEFORE_EOD'] = _env_flag('REQUIRE_SOD_BEFORE_EOD')

    # File upload configuration
    app.config["UPLOAD_FOLDER"] = os.environ.get('UPLOAD_FOLDER', 'uploads')
    app.config["MAX_CONTENT_LENGTH"] = 20 * 1024 * 1024

    # Outbound email (Resend HTTP API)
    app.config['RESEND_API_KEY'] = os.environ.get('RESEND_API_KEY')
    app.config['NOTIFICATION_FROM_ADDRESS'] = os.environ.get(
        'NOTIFICATION_FROM_ADDRESS', 'Driver Portal <noreply@example.com>')
    app.config['APP_LOGIN_URL'] = os.environ.get('APP_LOGIN_URL', 'http://localhost:3000/auth')

    # Admin endpoints and throttling
    app.config['ADMIN_API_TOKEN'] = os.environ.get('ADMIN_API_TOKEN')
    app.config['RATE_LIMIT_MAX_ATTEMPTS'] = _env_int('RATE_LIMIT_MAX_ATTEMPTS', 10)
    app.config['RATE_LIMIT_WINDOW_SECONDS'] = _env_int('RATE_LIMIT_WINDOW_SECONDS', 3600)

    if test_config:
        app.config.update(test_config)

    from utils.logging_config import setup_logging, log_request_start, log_request_end
    setup_logging(app)
    app.before_request(log_request_start)
    app.after_request(log_request_end)

    # CORS Configuration (restricted origins for the single-page client)
    production_origins = os.environ.get('ALLOWED_ORIGINS', '').split(',')
    allowed_origins = [origin.strip() for origin in production_origins if origin.strip()]
    if not allowed_origins:
        allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
    CORS(app, resources={r"/api/*": {"origins": allowed_origins}},
         supports_credentials=False,
         allow_headers=["Content-Type", "Authorization", "X-Admin-Token", "X-Admin-User", "X-Request-ID"],
         methods=["GET", "POST", "PATCH", "OPTIONS"])

    # Compress JSON and CSV report responses
    app.config['COMPRESS_MIMETYPES'] = ['application/json', 'text/csv']
    app.config['COMPRESS_LEVEL'] = 6  # Balance between compression ratio and speed
    app.config['COMPRESS_MIN_SIZE'] = 500  # Only compress bodies larger than 500 bytes
    compress.init_app(app)

    # Initialize extensions
    db.init_app(app)

    from utils.rate_limiter import RateLimiter
    app.extensions['rate_limiter'] = RateLimiter(
        max_attempts=app.config['RATE_LIMIT_MAX_ATTEMPTS'],
        window_seconds=app.config['RATE_LIMIT_WINDOW_SECONDS'],
    )

    register_error_handlers(app)

    from api_routes import api_bp
    app.register_blueprint(api_bp, url_prefix='/api')

    from utils.config_validator import check_production_readiness
    check_production_readiness(app.config)

    with app.app_context():
        import models  # noqa: F401
        db.create_all()

    # Health check endpoint for deployment
    @app.route('/health')
    def health():
        """Simple health check endpoint for deployment readiness"""
        from services.transaction_helper import TransactionHelper
        healthy, issues = TransactionHelper.check_connection()
        return {
            'status': 'ok' if healthy else 'degraded',
            'database': 'ok' if healthy else issues,
            'timestamp': datetime.now(timezone.utc).isoformat()
        }, 200 if healthy else 503

    return app


def register_error_handlers(app):
    """Map service-layer errors onto the JSON error envelope"""
    from services.errors import (ValidationError, DuplicateEntryError, ActionNotPermitted,
                                 NotFoundError, StoreError)

    @app.errorhandler(ValidationError)
    def handle_validation_error(error):
        status = 400
        code = 'VALIDATION_ERROR'
        if isinstance(error, DuplicateEntryError):
            status, code = 409, 'DUPLICATE_ENTRY'
        elif isinstance(error, ActionNotPermitted):
            status, code = 403, 'ACTION_NOT_PERMITTED'
        body = {'success': False, 'error': code}
        body.update(error.to_dict())
        return jsonify(body), status

    @app.errorhandler(NotFoundError)
    def handle_not_found(error):
        return jsonify({
            'success': False,
            'error': 'NOT_FOUND',
            'message': str(error)
        }), 404

    @app.errorhandler(StoreError)
    def handle_store_error(error):
        # Raw platform text stays in the logs
        logger.error(f"Store error: {error.detail}")
        return jsonify({
            'success': False,
            'error': 'SERVICE_UNAVAILABLE',
            'message': 'Something went wrong saving your data. Please try again.'
        }), 503
