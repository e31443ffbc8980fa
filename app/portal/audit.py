import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.portal.models import AuditEvent, User

LOGIN = "auth.login"
LOGIN_FAILED = "auth.login_failed"
LOGOUT = "auth.logout"
SIGNUP = "user.signup"


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditEvent:
    """
    Append an audit event. Request id and client IP are filled in when called
    inside a request (scripts and tests may call it without one).
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=getattr(g, "request_id", None) if in_request else None,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def record_login(s: Session, user: User) -> AuditEvent:
    # These rows are the login history the activity report counts.
    return record_event(s, actor=user, action=LOGIN, entity_type="User", entity_id=str(user.id))


def record_login_failure(s: Session, username: str | None, error: Exception) -> AuditEvent:
    return record_event(
        s,
        actor=None,
        action=LOGIN_FAILED,
        entity_type="User",
        entity_id=username,
        reason=type(error).__name__,
    )
