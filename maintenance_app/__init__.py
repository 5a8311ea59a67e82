"""
Maintenance Period Platform
Flask Application Factory.

Usage:
    from maintenance_app import create_app
    app = create_app()           # defaults to APP_ENV or "development"
    app = create_app("testing")  # explicit config
"""

import importlib
import logging
import os

import click
from flask import Flask
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event

from maintenance_app.config import config
from maintenance_app.middleware.logging_config import configure_logging
from maintenance_app.middleware.rate_limiter import init_rate_limits
from maintenance_app.middleware.timing import init_request_timing
from maintenance_app.models import db

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
    key_func=get_remote_address,
    default_limits=[],                                   # per-blueprint limits only
    storage_uri=os.getenv("REDIS_URL") or "memory://",
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
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    init_request_timing(app)

    # Import all models so SQLAlchemy knows about them
    from maintenance_app.models import catalog as _catalog_models        # noqa: F401
    from maintenance_app.models import identity as _identity_models      # noqa: F401
    from maintenance_app.models import period as _period_models          # noqa: F401
    from maintenance_app.models import completion as _completion_models  # noqa: F401
    from maintenance_app.models import scheduling as _scheduling_models  # noqa: F401

    from maintenance_app.services import identity_resolver
    identity_resolver.init_app(app)

    # ── Blueprints ───────────────────────────────────────────────────────
    from maintenance_app.blueprints.admin_bp import admin_bp
    from maintenance_app.blueprints.collaborator_bp import collaborator_bp
    from maintenance_app.blueprints.completion_bp import completion_bp
    from maintenance_app.blueprints.health_bp import health_bp
    from maintenance_app.blueprints.period_bp import period_bp

    app.register_blueprint(period_bp)
    app.register_blueprint(collaborator_bp)
    app.register_blueprint(completion_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(health_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("sweep-periods")
    def sweep_periods_cmd():
        """Deactivate every period whose end date has passed."""
        from maintenance_app.services.period_lifecycle import sweep_expired
        count = sweep_expired()
        click.echo(f"Deactivated {count} expired period(s).")

    @app.cli.command("repair-references")
    def repair_references_cmd():
        """Remove assignments that point at deleted catalog items."""
        from maintenance_app.services.assignment_ledger import repair_broken_references
        result = repair_broken_references()
        click.echo(
            f"Removed {result['records_removed']} assignment(s) "
            f"across {result['periods_touched']} period(s)."
        )

    @app.cli.command("run-scheduler")
    def run_scheduler_cmd():
        """Run the interval job loop in the foreground."""
        from maintenance_app.services.scheduler_service import SchedulerService
        SchedulerService.start()
        click.echo("Scheduler running; Ctrl+C to stop.")
        try:
            SchedulerService._thread.join()
        except KeyboardInterrupt:
            SchedulerService.stop()

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    # ── Scheduler initialization (import jobs to register them) ──────────
    importlib.import_module("maintenance_app.services.scheduled_jobs")  # registers @register_job handlers
    from maintenance_app.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED") and not app.config.get("TESTING"):
        SchedulerService.start()

    return app
