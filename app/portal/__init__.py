import logging
import os
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv

from app.portal.config import load_config
from app.portal.models import Base  # noqa: F401  (registers every table before blueprints import models)
from app.portal.db import db_session, init_db, teardown_db_session
from app.portal.errors import NotFoundOverride
from app.portal.mailer import mailer_from_config
from app.portal.routes import bp as routes_bp
from app.portal.auth import bp as auth_bp, load_current_user
from app.portal.admin import bp as admin_bp
from app.portal.modules.otp_login.service import SLOT_MODES
from app.portal.modules.reports.admin import bp as reports_bp
from app.portal.modules.stream_access.service import check_request_access
from app.portal.rbac import current_principal
from app.portal.repositories import ContentRepository, IdentityRepository

logger = logging.getLogger(__name__)

_UNTRACKED_PREFIXES = ("/static/", "/health", "/healthz")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    from app.portal.security import ensure_csrf_token, needs_csrf_check, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.portal.rbac import user_has_permission

        def has_perm(key: str) -> bool:
            return user_has_permission(getattr(g, "current_user", None), key)

        return {"has_perm": has_perm, "current_user": getattr(g, "current_user", None)}

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        ensure_csrf_token()
        session.permanent = True
        if needs_csrf_check(request) and not validate_csrf(request):
            return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
    if app.config["OTP_SLOT_MODE"] not in SLOT_MODES:
        raise RuntimeError(f"OTP_SLOT_MODE must be one of: {', '.join(SLOT_MODES)}")
    if app.config["OTP_SLOT_MODE"] == "global":
        app.logger.warning(
            "OTP_SLOT_MODE=global: one pending login code is shared by all users; "
            "concurrent logins overwrite each other. Set OTP_SLOT_MODE=per_attempt to isolate them."
        )

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    app.extensions["mailer"] = mailer_from_config(app.config)
    if app.config["MAIL_BACKEND"] == "smtp" and not app.config.get("SMTP_SERVER"):
        app.logger.error("MAIL CONFIG ERROR: MAIL_BACKEND=smtp but SMTP_SERVER is not set; mail will fail.")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(reports_bp)

    def _load_user_wrapper():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            g.current_user = None
            return None
        return load_current_user()

    def _stream_access_guard():
        if request.path.startswith(_UNTRACKED_PREFIXES):
            return None
        s = db_session()
        check_request_access(request.path, current_principal(), IdentityRepository(s), ContentRepository(s))
        return None

    # Order matters: the access guard needs g.current_user.
    app.before_request(_load_user_wrapper)
    app.before_request(_stream_access_guard)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(NotFoundOverride)
    def _err_not_found_override(e: NotFoundOverride):
        app.logger.warning(
            "Access narrowed to 404: path=%s reason=%s user_id=%s request_id=%s",
            e.path,
            e.reason,
            getattr(getattr(g, "current_user", None), "id", None),
            getattr(g, "request_id", None),
        )
        return render_template("errors/404.html"), 404

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return render_template("errors/500.html"), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        return render_template("errors/403.html", missing_permission=missing), 403

    logger.info("create_app() complete; app ready to serve")

    return app
