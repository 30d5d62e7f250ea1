"""
ImmiTracker
Flask Application Factory.

Usage:
    from immitracker import create_app
    app = create_app()           # defaults to APP_ENV or "development"
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
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from immitracker.config import config
from immitracker.middleware.jwt_auth import init_jwt_middleware
from immitracker.middleware.logging_config import configure_logging
from immitracker.middleware.rate_limiter import init_rate_limits
from immitracker.middleware.timing import init_request_timing
from immitracker.models import db

logger = logging.getLogger(__name__)


# ── SQLite connection setup (global engine events) ──────────────────────
# pysqlite defers BEGIN until the first DML statement, which breaks
# SAVEPOINT; take transaction control away from the driver instead.


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _configure_sqlite(dbapi_conn, connection_record):
    """Enable foreign keys and driver-level autocommit for SQLite."""
    if "sqlite" in type(dbapi_conn).__module__:
        dbapi_conn.isolation_level = None
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@_sa_event.listens_for(_sa_engine.Engine, "begin")
def _sqlite_begin(conn):
    if conn.dialect.name == "sqlite":
        conn.exec_driver_sql("BEGIN")


migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],                     # per-blueprint limits only
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
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
    os.makedirs(app.instance_path, exist_ok=True)

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

    # ── Request timing + JWT identity ────────────────────────────────────
    init_request_timing(app)
    init_jwt_middleware(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 1024 * 1024)  # 1 MB

    @app.before_request
    def _guard_request():
        from flask import abort

        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from immitracker.models import application as _application_models  # noqa: F401
    from immitracker.models import milestone as _milestone_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        with app.app_context():
            try:
                db.create_all()
            except Exception as e:
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from immitracker.blueprints.application_type_bp import application_type_bp
    from immitracker.blueprints.health_bp import health_bp
    from immitracker.blueprints.milestone_bp import milestone_bp

    app.register_blueprint(milestone_bp)
    app.register_blueprint(application_type_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("normalize-milestones")
    @click.option("--merge", is_flag=True, help="Merge duplicate groups after normalizing.")
    def normalize_milestones_cmd(merge):
        """Recompute milestone template keys and report (or merge) duplicates."""
        from immitracker.services.milestone_merge import run_normalization

        result = run_normalization(merge=merge)
        click.echo(
            f"updated={result['updated_count']} duplicate_groups={result['duplicate_groups']} "
            f"merged_groups={result['merged_groups']} failed_groups={len(result['failed_groups'])}"
        )
        if result["failed_groups"]:
            raise SystemExit(1)

    @app.cli.command("seed-milestones")
    def seed_milestones_cmd():
        """Seed default milestone lists from the bundled program catalog."""
        from immitracker.services.milestone_service import MilestoneService

        for row in MilestoneService().seed_all_programs():
            click.echo(f"{row['program_id']}: {row['milestones_created']} milestones")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"error": e.description, "code": "ERR_VALIDATION_INVALID"}, 415

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    return app
