"""
Taskflow — task lifecycle & edit-approval service
Flask Application Factory.

Usage:
    from taskflow import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate

from taskflow.config import config
from taskflow.integrations.functions_gateway import FunctionsGateway
from taskflow.middleware.logging_config import configure_logging
from taskflow.middleware.rate_limiter import init_rate_limits, rate_limit_key
from taskflow.middleware.timing import init_request_timing
from taskflow.models import db
from taskflow.services.cache_service import QueryCache
from taskflow.services.change_feed import ChangeFeed
from taskflow.services.storage_service import LocalStorage

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine

logger = logging.getLogger(__name__)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[],                     # no global limit — apply per-blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Shared services (one instance per app) ───────────────────────────
    ChangeFeed().init_app(app, db)
    app.extensions["query_cache"] = QueryCache.from_config(app.config)
    app.extensions["functions_gateway"] = FunctionsGateway.from_config(app.config)
    app.extensions["storage"] = LocalStorage.from_config(app.config)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (Content-Type) ────────────────────────────────────
    @app.before_request
    def _guard_request():
        from flask import abort
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct and "multipart/form-data" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from taskflow.models import user as _user_models                  # noqa: F401
    from taskflow.models import project as _project_models            # noqa: F401
    from taskflow.models import task as _task_models                  # noqa: F401
    from taskflow.models import notification as _notification_models  # noqa: F401
    from taskflow.models import report_audit as _report_audit_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from taskflow.blueprints import register_error_handlers
    from taskflow.blueprints.task_bp import task_bp
    from taskflow.blueprints.edit_request_bp import edit_request_bp
    from taskflow.blueprints.project_bp import project_bp
    from taskflow.blueprints.notification_bp import notification_bp
    from taskflow.blueprints.user_bp import user_bp
    from taskflow.blueprints.report_bp import report_bp
    from taskflow.blueprints.health_bp import health_bp

    app.register_blueprint(task_bp)
    app.register_blueprint(edit_request_bp)
    app.register_blueprint(project_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(report_bp)
    app.register_blueprint(health_bp)

    register_error_handlers(app)

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
