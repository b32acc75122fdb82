"""
DocOps Compliance Engine
Flask Application Factory.

Usage:
    from docops import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from docops.config import config
from docops.models import db
from docops.middleware.logging_config import configure_logging
from docops.middleware.rate_limiter import init_rate_limits
from docops.middleware.timing import init_request_timing

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
    default_limits=[],                     # no global limit; applied per blueprint
    storage_uri=os.getenv("REDIS_URL", "memory://"),  # Redis in production, memory for dev
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
    app.config.from_object(config[config_name])

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    os.makedirs(app.instance_path, exist_ok=True)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        from flask import request as _req, abort

        max_len = app.config.get("MAX_CONTENT_LENGTH")
        if max_len and _req.content_length and _req.content_length > max_len:
            abort(413, description="Request body too large")
        if _req.method in ("POST", "PUT", "PATCH") and _req.path.startswith("/api/"):
            ct = _req.content_type or ""
            if _req.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from docops.models import project as _project_models     # noqa: F401
    from docops.models import matrix as _matrix_models       # noqa: F401
    from docops.models import document as _document_models   # noqa: F401
    from docops.models import workflow as _workflow_models   # noqa: F401
    from docops.models import package as _package_models     # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        try:
            db.create_all()
            app.logger.info("db.create_all() completed successfully")
        except Exception as e:
            app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from docops.blueprints.document_bp import document_bp
    from docops.blueprints.health_bp import health_bp
    from docops.blueprints.matrix_bp import matrix_bp
    from docops.blueprints.package_bp import package_bp

    app.register_blueprint(matrix_bp)
    app.register_blueprint(document_bp)
    app.register_blueprint(package_bp)
    app.register_blueprint(health_bp)

    # ── Rate limiting (per blueprint, after registration) ────────────────
    init_rate_limits(app, limiter)

    # ── JSON error responses for non-blueprint errors ────────────────────
    from docops.utils.errors import E, api_error

    @app.errorhandler(404)
    def _not_found(e):
        return api_error(E.NOT_FOUND, "Resource not found")

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(413)
    def _too_large(e):
        return api_error(E.VALIDATION_CONSTRAINT, "Request body too large", status=413)

    @app.errorhandler(415)
    def _unsupported(e):
        return api_error(E.VALIDATION_INVALID, "Content-Type must be application/json", status=415)

    @app.errorhandler(429)
    def _rate_limited(e):
        return api_error(E.VALIDATION_CONSTRAINT, "Too many requests", status=429)

    @app.errorhandler(500)
    def _internal(e):
        db.session.rollback()
        return api_error(E.INTERNAL, "Internal server error")

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-matrix")
    def seed_matrix_cmd():
        """Seed the built-in global document matrix (idempotent)."""
        from docops.services.rule_catalog import install_default_rules
        count = install_default_rules()
        logger.info("Seeded %s new matrix rules.", count)

    return app
