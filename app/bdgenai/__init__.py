import logging
import os
from datetime import timedelta

from flask import Flask, g, request, session
from dotenv import load_dotenv

from app.bdgenai.config import load_config
from app.bdgenai.db import init_db, teardown_db_session
from app.bdgenai.errors import error_response, register_error_handlers
from app.bdgenai.kv import init_kv
from app.bdgenai.oauth import init_oauth
from app.bdgenai.routes import bp as routes_bp
from app.bdgenai.auth import bp as auth_bp, load_current_user
from app.bdgenai.modules.courses.api import bp as courses_bp
from app.bdgenai.modules.checkout.api import bp as checkout_bp
from app.bdgenai.modules.posts.api import bp as posts_bp
from app.bdgenai.modules.profile.api import bp as profile_bp
from app.bdgenai.modules.calendar.api import bp as calendar_bp
from app.bdgenai.modules.dashboard.api import bp as dashboard_bp
from app.bdgenai.modules.search.api import bp as search_bp
from app.bdgenai.modules.exams.api import bp as exams_bp
from app.bdgenai.modules.debug.api import bp as debug_bp

_UNTRACKED_PREFIXES = ("/static/", "/storage/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.bdgenai.security import ensure_csrf_token, is_csrf_exempt, validate_csrf

    def _load_user_wrapper():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    # Runs before the CSRF guard so request_id is set for its log lines.
    app.before_request(_load_user_wrapper)

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if is_csrf_exempt(request.endpoint):
                return None
            if not validate_csrf(request):
                app.logger.warning("CSRF rejected: %s %s request_id=%s", request.method, request.path, getattr(g, "request_id", None))
                return error_response(400, "CSRF token missing or invalid.")

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    init_kv(app)
    init_oauth(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Integration config checks (log loudly, do not block boot)
    backend = app.config.get("STORAGE_BACKEND")
    if backend == "s3":
        missing = [k for k in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY") if not app.config.get(k)]
        if missing:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing))
    elif backend == "cloudinary":
        missing = [k for k in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET") if not app.config.get(k)]
        if missing:
            app.logger.error("STORAGE CONFIG ERROR: Missing required Cloudinary env vars: %s", ", ".join(missing))
    if env in ("prod", "production"):
        for key in ("STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "RESEND_API_KEY"):
            if not app.config.get(key):
                app.logger.warning("Integration not configured: %s is empty", key)

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(courses_bp, url_prefix="/api")
    app.register_blueprint(checkout_bp, url_prefix="/api")
    app.register_blueprint(posts_bp, url_prefix="/api")
    app.register_blueprint(profile_bp, url_prefix="/api")
    app.register_blueprint(calendar_bp, url_prefix="/api")
    app.register_blueprint(dashboard_bp, url_prefix="/api")
    app.register_blueprint(search_bp, url_prefix="/api")
    app.register_blueprint(exams_bp, url_prefix="/api")
    app.register_blueprint(debug_bp, url_prefix="/api/debug")

    app.teardown_appcontext(teardown_db_session)
    register_error_handlers(app)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
