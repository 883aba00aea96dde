"""
Expense Desk
Flask Application Factory.

Usage:
    from expensedesk import create_app
    app = create_app()           # defaults to APP_ENV, then "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from expensedesk.auth import init_auth
from expensedesk.config import config
from expensedesk.middleware.logging_config import configure_logging
from expensedesk.middleware.rate_limiter import init_rate_limits, rate_limit_key
from expensedesk.middleware.timing import init_request_timing
from expensedesk.models import db
from expensedesk.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
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
    default_limits=[],  # no global limit, applied per blueprint
)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    config_cls = config[config_name]
    app.config.from_object(config_cls() if config_name == "production" else config_cls)

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

    # ── Service exceptions → JSON ────────────────────────────────────────
    register_error_handlers(app)

    # ── Request timing middleware (before auth so 401s are stamped) ──────
    init_request_timing(app)

    # ── Identity (X-User-Id) ─────────────────────────────────────────────
    init_auth(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from expensedesk.models import chat as _chat_models                # noqa: F401
    from expensedesk.models import delegation as _delegation_models    # noqa: F401
    from expensedesk.models import expense as _expense_models          # noqa: F401
    from expensedesk.models import notification as _notification_models  # noqa: F401
    from expensedesk.models import project as _project_models          # noqa: F401
    from expensedesk.models import scheduling as _scheduling_models    # noqa: F401
    from expensedesk.models import user as _user_models                # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
        except SQLAlchemyError as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from expensedesk.blueprints import register_blueprints
    register_blueprints(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return api_error(E.NOT_FOUND, f"Not found: {request.path}")

    @app.errorhandler(405)
    def method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return api_error(E.RATE_LIMITED, "Too many requests", details={"limit": str(e.description)})

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error on %s: %s", request.path, getattr(e, "original_exception", e),
                     exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (importing the jobs registers them) ─────
    from expensedesk.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    try:
        SchedulerService.ensure_jobs_registered()
    except SQLAlchemyError as e:
        app.logger.warning("Scheduled job registry not initialised: %s", e)

    return app
