"""
OmPro — Maintenance Task Tracking
Flask Application Factory.

Usage:
    from ompro import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from ompro.config import config
from ompro.models import db
from ompro.middleware.logging_config import configure_logging
from ompro.middleware.timing import init_request_timing
from ompro.middleware.security_headers import init_security_headers
from ompro.middleware.rate_limiter import init_rate_limits
from ompro.middleware.jwt_auth import init_jwt_middleware
from ompro.services.change_feed import init_change_feed
from ompro.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# ── SQLite FK enforcement (global engine event) ─────────────────────────
from sqlalchemy import event as _sa_event, engine as _sa_engine


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # no global limit, applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
)

# Mutating endpoints that take multipart uploads instead of JSON
_MULTIPART_SUFFIXES = ("/import", "/import/preview")


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
    if app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite:///") and ":memory:" not in app.config["SQLALCHEMY_DATABASE_URI"]:
        os.makedirs(app.instance_path, exist_ok=True)
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_change_feed(app)

    # ── Security headers ─────────────────────────────────────────────────
    init_security_headers(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    @app.before_request
    def _guard_request():
        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and request.content_length and request.content_length > max_len:
            return api_error(E.VALIDATION_INVALID, "Request body too large", status=413)
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.path.endswith(_MULTIPART_SUFFIXES) and "multipart/form-data" in ct:
                return None
            if request.content_length and "json" not in ct:
                return api_error(
                    E.VALIDATION_INVALID, "Content-Type must be application/json", status=415,
                )
        return None

    # ── JWT auth middleware (sets g.current_user) ────────────────────────
    init_jwt_middleware(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from ompro.models import auth as _auth_models                # noqa: F401
    from ompro.models import maintenance as _maintenance_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from ompro.blueprints.auth_bp import auth_bp
    from ompro.blueprints.group_bp import group_bp
    from ompro.blueprints.health_bp import health_bp
    from ompro.blueprints.import_bp import import_bp
    from ompro.blueprints.report_bp import report_bp
    from ompro.blueprints.task_bp import task_bp
    from ompro.blueprints.user_bp import user_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(group_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(import_bp)
    app.register_blueprint(report_bp)
    app.register_blueprint(task_bp)
    app.register_blueprint(user_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("create-user")
    @click.option("--name", required=True)
    @click.option("--login", required=True, help="Email or username")
    @click.option("--role", default="manager", show_default=True,
                  type=click.Choice(["manager", "administrator", "executor"]))
    @click.password_option()
    def create_user_cmd(name, login, role, password):
        """Provision a user profile (first manager account, service accounts)."""
        from ompro.core.exceptions import ConflictError, ValidationError
        from ompro.services.user_service import create_user

        try:
            user = create_user(name=name, login=login, role=role, password=password)
        except (ValidationError, ConflictError) as exc:
            details = getattr(exc, "details", None)
            raise click.ClickException(f"{exc} {details or ''}".strip())
        click.echo(f"Created {user.role} {user.email} (id={user.id})")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": E.NOT_FOUND, "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large", "code": E.VALIDATION_INVALID}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": E.INTERNAL}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
