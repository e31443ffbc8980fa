import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return token


def needs_csrf_check(req: Request) -> bool:
    return req.method in UNSAFE_METHODS


def validate_csrf(req: Request) -> bool:
    """Form field or X-CSRF-Token header must match the session token."""
    token = req.headers.get("X-CSRF-Token") or req.form.get(CSRF_SESSION_KEY)
    expected = session.get(CSRF_SESSION_KEY)
    if not token or not expected:
        return False
    return secrets.compare_digest(str(token), str(expected))
