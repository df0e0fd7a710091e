"""
Work Permit Tracker
Flask Application Factory.

Usage:
    from permit_tracker import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask, abort, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy.exc import SQLAlchemyError

from permit_tracker.config import config
from permit_tracker.models import db
from permit_tracker.middleware.logging_config import configure_logging
from permit_tracker.middleware.rate_limiter import init_rate_limits
from permit_tracker.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # limits are applied per blueprint
)


def _seed_sequences(app) -> None:
    """Create the permit / worker id counters if they do not exist yet."""
    from permit_tracker.models.sequence import ensure_sequence

    ensure_sequence("permit", int(app.config["PERMIT_ID_START"]))
    ensure_sequence("worker", int(app.config["WORKER_ID_START"]))
    db.session.commit()


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

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Request guards (input length + Content-Type) ─────────────────────
    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    @app.before_request
    def _guard_request():
        if request.method in ("POST", "PUT", "PATCH") and request.path.startswith("/api/"):
            ct = request.content_type or ""
            if request.data and "json" not in ct:
                abort(415, description="Content-Type must be application/json")

    # ── Import all models so Alembic can detect them ─────────────────────
    from permit_tracker.models import audit as _audit_models        # noqa: F401
    from permit_tracker.models import permit as _permit_models      # noqa: F401
    from permit_tracker.models import sequence as _sequence_models  # noqa: F401
    from permit_tracker.models import worker as _worker_models      # noqa: F401

    # ── Auto-create tables (CREATE IF NOT EXISTS) and id counters ────────
    if config_name == "development" or app.config.get("TESTING"):
        os.makedirs(app.instance_path, exist_ok=True)
        with app.app_context():
            try:
                db.create_all()
                _seed_sequences(app)
                app.logger.info("db.create_all() completed successfully")
            except SQLAlchemyError as e:
                db.session.rollback()
                app.logger.warning("db.create_all() failed: %s", e)

    # ── Blueprints ───────────────────────────────────────────────────────
    from permit_tracker.blueprints.export_bp import export_bp
    from permit_tracker.blueprints.health_bp import health_bp
    from permit_tracker.blueprints.permit_bp import permit_bp
    from permit_tracker.blueprints.worker_bp import worker_bp

    app.register_blueprint(permit_bp)
    app.register_blueprint(worker_bp)
    app.register_blueprint(export_bp)
    app.register_blueprint(health_bp)

    init_rate_limits(app, limiter)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("seed-sequences")
    def seed_sequences_cmd():
        """Create the permit and worker id counters after `flask db upgrade`."""
        _seed_sequences(app)
        logger.info("Id sequences ready.")

    # ── Health check (detailed version at /health/live) ──────────────────
    @app.route("/api/v1/health")
    def health():
        return {"status": "ok", "app": "Work Permit Tracker"}

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"success": False, "error": "NotFound", "message": "Not found",
                "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"success": False, "error": "MethodNotAllowed", "message": "Method not allowed"}, 405

    @app.errorhandler(415)
    def unsupported_media_type(e):
        return {"success": False, "error": "UnsupportedMediaType", "message": e.description}, 415

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"success": False, "error": "InternalError", "message": "Internal server error"}, 500

    return app
