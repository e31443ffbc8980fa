from __future__ import annotations

import uuid

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.portal.audit import LOGOUT, record_event, record_login, record_login_failure
from app.portal.db import db_session
from app.portal.errors import DuplicateEmail, LoginError, ValidationError
from app.portal.mailer import get_mailer
from app.portal.models import User
from app.portal.modules.otp_login.service import LoginFormState, LoginPhase, service_from_config
from app.portal.modules.signup.service import FIELD_LABELS, notify_signup, register_student
from app.portal.repositories import CategoryRepository

bp = Blueprint("auth", __name__)

LOGIN_FORM_KEY = "login_form"


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    user_id = session.get("user_id")
    if not user_id:
        g.current_user = None
        return

    try:
        s = db_session()
        user = s.get(User, int(user_id))
        if not user or not user.is_active:
            session.pop("user_id", None)
            g.current_user = None
            return
        g.current_user = user
    except Exception as e:
        current_app.logger.error("load_current_user DB error (clearing session): %s", e)
        session.pop("user_id", None)
        g.current_user = None


def _login_form_state() -> LoginFormState:
    return LoginFormState.from_dict(session.get(LOGIN_FORM_KEY))


def _safe_next(nxt: str) -> str | None:
    # Only allow local paths to avoid open redirects.
    if nxt.startswith("/") and not nxt.startswith("//"):
        return nxt
    return None


# ---------- Login (two phases) ----------
@bp.get("/login")
def login_get():
    if request.args.get("restart"):
        s = db_session()
        service_from_config(s, get_mailer(), current_app.config).discard(_login_form_state())
        s.commit()
        session.pop(LOGIN_FORM_KEY, None)
        return redirect(url_for("auth.login_get"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", form_state=_login_form_state(), next=nxt)


@bp.post("/login")
def login_post():
    form_state = _login_form_state()
    nxt = (request.form.get("next") or "").strip()
    s = db_session()
    service = service_from_config(s, get_mailer(), current_app.config)

    if form_state.phase == LoginPhase.AWAITING_CREDENTIALS:
        username = (request.form.get("username") or "").strip()
        email = (request.form.get("email") or "").strip()
        if not username or not email:
            flash("Full Name and Email are required.", "danger")
            return redirect(url_for("auth.login_get", next=nxt or None))
        try:
            issued = service.issue_code(username, email, previous=form_state)
        except LoginError as e:
            current_app.logger.info("OTP request rejected (%s) request_id=%s", type(e).__name__, g.request_id)
            flash(e.user_message, "danger")
            return redirect(url_for("auth.login_get", next=nxt or None))
        s.commit()
        session[LOGIN_FORM_KEY] = issued.form_state.to_dict()
        flash("An OTP has been sent to your email address.", "info")
        if not issued.delivered:
            flash("There was a problem sending the OTP email.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    otp = (request.form.get("otp") or "").strip()
    password = request.form.get("password") or ""
    if not otp or not password:
        flash("OTP and Password are required.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))
    try:
        user = service.verify_and_authenticate(form_state, otp, password)
    except LoginError as e:
        record_login_failure(s, form_state.username, e)
        s.commit()
        flash(e.user_message, "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    session.pop(LOGIN_FORM_KEY, None)
    session["user_id"] = user.id
    record_login(s, user)
    s.commit()
    flash("You have been successfully logged in.", "success")
    return redirect(_safe_next(nxt) or url_for("routes.index"))


@bp.get("/logout")
def logout():
    s = db_session()
    user = getattr(g, "current_user", None)
    if user:
        record_event(s, actor=user, action=LOGOUT, entity_type="User", entity_id=str(user.id))
        s.commit()
    session.pop("user_id", None)
    session.pop(LOGIN_FORM_KEY, None)
    return redirect(url_for("routes.index"))


# ---------- Signup ----------
def _render_signup(values: dict | None = None, errors: dict | None = None, status: int = 200):
    streams = CategoryRepository(db_session()).list_all()
    return (
        render_template(
            "auth/signup.html",
            streams=streams,
            values=values or {},
            errors=errors or {},
            labels=FIELD_LABELS,
        ),
        status,
    )


@bp.get("/signup")
def signup_get():
    return _render_signup()


@bp.post("/signup")
def signup_post():
    payload = {key: request.form.get(key) for key in FIELD_LABELS}
    s = db_session()
    try:
        user = register_student(s, payload)
    except ValidationError as e:
        values = {k: v for k, v in payload.items() if k != "password"}
        return _render_signup(values, e.errors)
    except DuplicateEmail as e:
        flash(str(e), "danger")
        values = {k: v for k, v in payload.items() if k != "password"}
        return _render_signup(values)

    s.commit()
    current_app.logger.info("Student registered user_id=%s student_id=%s", user.id, user.student_id)
    undelivered = notify_signup(s, user, get_mailer(), operator_email=current_app.config["OPERATOR_EMAIL"])
    flash("Your registration has been submitted successfully.", "success")
    if undelivered:
        flash("Some notification emails could not be sent.", "warning")
    return redirect(url_for("auth.login_get"))
