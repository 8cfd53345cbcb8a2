import os

from flask import Flask, jsonify
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from escrowdesk.config import Config
from escrowdesk.errors import EngineError
from escrowdesk.extensions import cors, db, login_manager, migrate


def _check_production(app: Flask) -> None:
    secret = (app.config.get("SECRET_KEY") or "").strip()
    if not secret or secret == "dev-secret" or len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
    if not (os.getenv("DATABASE_URL") or "").strip() and not (os.getenv("SQLALCHEMY_DATABASE_URI") or "").strip():
        raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(EngineError)
    def _engine_error(exc: EngineError):
        return jsonify(exc.to_dict()), exc.http_status

    @app.errorhandler(HTTPException)
    def _http_error(exc: HTTPException):
        return jsonify({"ok": False, "error": (exc.name or "error").lower().replace(" ", "_"), "message": exc.description}), exc.code

    @app.errorhandler(Exception)
    def _unexpected(exc: Exception):
        app.logger.exception("unhandled error")
        db.session.rollback()
        return jsonify({"ok": False, "error": "internal_error", "message": "Internal server error"}), 500


def create_app(overrides: dict | None = None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    env = app.config["ENV"]
    if env in ("prod", "production"):
        _check_production(app)

    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # Ensure instance dir exists for SQLite paths
    os.makedirs(Config.INSTANCE_DIR, exist_ok=True)

    # CORS configuration
    cors_origins = (app.config.get("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db, directory=os.path.join(Config.BACKEND_DIR, "migrations"))
    login_manager.init_app(app)

    from escrowdesk import auth  # noqa: F401  (registers the Flask-Login loaders)
    from escrowdesk.segments.segment_disputes_admin import disputes_admin_bp
    from escrowdesk.segments.segment_jobs_admin import jobs_admin_bp
    from escrowdesk.segments.segment_orders_api import orders_bp
    from escrowdesk.segments.segment_risk import risk_bp
    from escrowdesk.segments.segment_wallets import wallets_bp

    app.register_blueprint(orders_bp)
    app.register_blueprint(disputes_admin_bp)
    app.register_blueprint(risk_bp)
    app.register_blueprint(wallets_bp)
    app.register_blueprint(jobs_admin_bp)

    _register_error_handlers(app)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except Exception:
            app.logger.exception("health check database probe failed")
            db_state = "fail"
        return jsonify({
            "ok": True,
            "service": "escrowdesk-backend",
            "env": env,
            "db": db_state,
        })

    # -------------------------
    # Escrow sweep: run small tick on requests (throttled)
    # -------------------------
    if app.config.get("ESCROW_SWEEP_ON_REQUEST"):
        from escrowdesk.jobs.escrow_runner import tick as _escrow_tick

        @app.before_request
        def _escrow_sweep_before_request():
            try:
                _escrow_tick()
            except Exception:
                app.logger.exception("escrow sweep tick failed")
                db.session.rollback()

    return app
