"""
KPI Tracker
Flask Application Factory.

Usage:
    from kpi_tracker import create_app
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

from kpi_tracker.config import config
from kpi_tracker.models import db
from kpi_tracker.middleware.logging_config import configure_logging
from kpi_tracker.middleware.timing import init_request_timing
from kpi_tracker.middleware.actor_context import init_actor_context

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
    default_limits=[],                     # uploads carry their own per-route limit
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
    app.config.from_object(config[config_name]())

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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Actor context (Bearer JWT → g.actor) ─────────────────────────────
    init_actor_context(app)

    # ── Domain exception → HTTP mapping ──────────────────────────────────
    from kpi_tracker.blueprints import register_error_handlers
    register_error_handlers(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from kpi_tracker.models import dashboard as _dashboard_models            # noqa: F401
    from kpi_tracker.models import import_history as _import_history_models  # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    with app.app_context():
        if app.config.get("SQLALCHEMY_DATABASE_URI", "").startswith("sqlite:///") and not app.testing:
            os.makedirs(app.instance_path, exist_ok=True)
        db.create_all()
        app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from kpi_tracker.blueprints.import_bp import import_bp
    from kpi_tracker.blueprints.dataset_bp import dataset_bp
    from kpi_tracker.blueprints.health_bp import health_bp

    app.register_blueprint(import_bp)
    app.register_blueprint(dataset_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    _register_cli(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def payload_too_large(e):
        limit_mb = app.config.get("IMPORT_MAX_FILE_MB")
        return {"error": f"File exceeds the {limit_mb} MB upload limit"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app


def _register_cli(app):
    @app.cli.command("import-report")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--role", default="admin", show_default=True, help="Role of the importing user.")
    @click.option("--name", default="CLI", show_default=True, help="Display name for the history entry.")
    @click.option("--area", default=None, help="Area of an area_manager actor.")
    @click.option("--id", "actor_id", default="cli", show_default=True, help="Actor id.")
    def import_report_cmd(path, role, name, area, actor_id):
        """Import an HTML or spreadsheet report file into the dataset."""
        from kpi_tracker.core.exceptions import KpiTrackerError
        from kpi_tracker.services.dataset_store import RetryPolicy, SqlDatasetStore, SqlHistoryStore
        from kpi_tracker.services.import_service import ImportService
        from kpi_tracker.services.permission import Actor

        with open(path, "rb") as fh:
            data = fh.read()

        service = ImportService(
            SqlDatasetStore(),
            SqlHistoryStore(),
            retry=RetryPolicy.from_config(app.config),
        )
        actor = Actor(id=actor_id, name=name, role=role, area=area)
        try:
            summary = service.import_file(os.path.basename(path), data, actor)
        except KpiTrackerError as exc:
            raise click.ClickException(str(exc)) from exc

        counts = summary.counts
        click.echo(
            f"Imported {summary.file_name}: {counts.get('indicators', 0)} indicators, "
            f"{counts.get('activities', 0)} activities, {counts.get('risks', 0)} risks "
            f"(areas: {', '.join(summary.affected_areas) or '-'})"
        )
