"""
App Submission Portal
Flask Application Factory.

Usage:
    from portal import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request, send_from_directory
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate

from portal.config import config
from portal.integrations.supabase_gateway import LocalStorageGateway, init_gateways
from portal.middleware.auth_context import init_auth_context
from portal.middleware.logging_config import configure_logging
from portal.middleware.rate_limiter import init_rate_limits
from portal.middleware.timing import init_request_timing
from portal.models import db

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
    default_limits=[],                     # limits are set per blueprint
    storage_uri=os.getenv("REDIS_URL") or "memory://",
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
    # Instantiated so ProductionConfig can refuse to start without its secrets
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

    # ── Identity + storage gateways ──────────────────────────────────────
    init_gateways(app)

    # ── Request timing, then caller resolution ───────────────────────────
    init_request_timing(app)
    init_auth_context(app)

    # ── Import all models so Alembic can detect them ─────────────────────
    from portal.models import profile as _profile_models         # noqa: F401
    from portal.models import client as _client_models           # noqa: F401
    from portal.models import app_form as _app_form_models       # noqa: F401
    from portal.models import notification as _notification_models  # noqa: F401
    from portal.models import audit as _audit_models             # noqa: F401
    from portal.models import scheduling as _scheduling_models   # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) ────────────────────────
    if config_name != "testing":
        with app.app_context():
            if db.engine.url.drivername.startswith("sqlite") and db.engine.url.database:
                os.makedirs(os.path.dirname(os.path.abspath(db.engine.url.database)), exist_ok=True)
            db.create_all()
            app.logger.info("db.create_all() completed successfully")

    # ── Blueprints ───────────────────────────────────────────────────────
    from portal.blueprints.admin_bp import admin_bp
    from portal.blueprints.client_bp import client_bp
    from portal.blueprints.health_bp import health_bp
    from portal.blueprints.notification_bp import notification_bp

    app.register_blueprint(admin_bp)
    app.register_blueprint(client_bp)
    app.register_blueprint(health_bp)
    app.register_blueprint(notification_bp)

    init_rate_limits(app, limiter)

    # ── Scheduled jobs ───────────────────────────────────────────────────
    from portal.services import scheduled_jobs as _scheduled_jobs  # noqa: F401  (registers jobs)
    from portal.services.scheduler_service import SchedulerService
    SchedulerService.init_app(app)

    # ── Locally stored files (development only) ──────────────────────────
    if isinstance(app.extensions["storage_gateway"], LocalStorageGateway):
        @app.route("/files/<path:path>")
        def local_file(path):
            return send_from_directory(app.extensions["storage_gateway"].base_dir, path)

    _register_cli(app)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "detail": str(e.description)}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    return app


def _register_cli(app):
    """Operational commands: ``flask --app wsgi <command>``."""

    @app.cli.command("create-admin")
    @click.option("--name", required=True)
    @click.option("--email", required=True)
    @click.password_option()
    def create_admin_cmd(name, email, password):
        """Provision the first administrator login."""
        from portal.integrations.supabase_gateway import get_identity_gateway
        from portal.services.client_service import create_admin
        profile = create_admin(name, email, password, admin=None, identity=get_identity_gateway())
        click.echo(f"Administrator {profile['email']} created ({profile['id']})")

    @app.cli.command("recalculate-progress")
    def recalculate_progress_cmd():
        """Recompute progress and status of every form."""
        from portal.services.progress import recalculate_all_forms
        result = recalculate_all_forms()
        click.echo(f"Checked {result['checked']} forms, updated {result['updated']}")

    @app.cli.command("run-job")
    @click.argument("job_name")
    @click.option("--force", is_flag=True, help="Run even when the job is disabled.")
    def run_job_cmd(job_name, force):
        """Run one scheduled job now."""
        from portal.services.scheduler_service import SchedulerService
        result = SchedulerService.run_job(job_name, force=force)
        click.echo(f"{result['job_name']}: {result['status']} {result.get('result') or result.get('error') or ''}")
        if result["status"] in ("error", "failed"):
            raise SystemExit(1)

    @app.cli.command("watch-images")
    @click.option("--interval", type=float, default=None,
                  help="Seconds between checks (default IMAGE_POLL_INTERVAL_SECONDS).")
    @click.option("--max-checks", type=int, default=None)
    def watch_images_cmd(interval, max_checks):
        """Keep every form's image upload state in step with its uploads."""
        from portal.models.app_form import AppForm
        from portal.services.change_detection import IntervalPoll, detect_image_changes

        def _snapshot():
            detect_image_changes()
            state = {f.id: bool(f.images_uploaded) for f in AppForm.query.filter_by(image_source="custom")}
            db.session.remove()
            return state

        def _report(change):
            flipped = sorted(k for k, v in change.current.items() if change.previous.get(k) != v)
            click.echo(f"Image upload state changed: {', '.join(flipped)}")

        poll = IntervalPoll(_snapshot, interval or app.config["IMAGE_POLL_INTERVAL_SECONDS"])
        try:
            poll.run(_report, max_checks=max_checks)
        except KeyboardInterrupt:
            click.echo("Stopped")
