from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, select

from app.portal.audit import LOGIN
from app.portal.models import AuditEvent, Role, User, UserRole
from app.portal.modules.catalog.models import Stream
from app.portal.rbac import STUDENT_ROLE

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


TOP_ACTIVE_LIMIT = 5


@dataclass(frozen=True)
class InactiveStudent:
    uid: int
    name: str
    stream: str  # "N/A" when the user has no stream

    def label(self) -> str:
        return f"{self.uid} - {self.name} - {self.stream}"


@dataclass(frozen=True)
class ActiveStudent:
    uid: int
    name: str
    login_count: int

    def label(self) -> str:
        return f"{self.name} - {self.login_count} logins"


def month_window(year: int, month: int) -> tuple[datetime, datetime]:
    """First and last second of a calendar month. Raises ValueError on a bad month."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be 1-12 (got {month})")
    last_day = calendar.monthrange(year, month)[1]
    start = datetime.combine(date(year, month, 1), time(0, 0, 0))
    end = datetime.combine(date(year, month, last_day), time(23, 59, 59))
    return start, end


def inactive_students(s: "Session", year: int, month: int) -> tuple[list[InactiveStudent], int]:
    """
    Blocked accounts created in the given month.

    Returns (rows with a name, total matched rows); the total counts every match.
    """
    start, end = month_window(year, month)
    q = (
        select(User.id, User.name, Stream.name)
        .outerjoin(Stream, User.stream_id == Stream.id)
        .where(User.is_active.is_(False))
        .where(User.created_at.between(start, end))
        .order_by(User.id)
    )
    rows = s.execute(q).all()
    items = [
        InactiveStudent(uid=uid, name=name, stream=stream_name or "N/A")
        for uid, name, stream_name in rows
        if uid and name
    ]
    return items, len(rows)


def top_active_students(s: "Session", limit: int = TOP_ACTIVE_LIMIT) -> list[ActiveStudent]:
    """Users with the most recorded logins; only students are listed."""
    login_count = func.count(AuditEvent.id).label("login_count")
    q = (
        select(AuditEvent.actor_user_id, login_count)
        .where(AuditEvent.action == LOGIN)
        .where(AuditEvent.actor_user_id.isnot(None))
        .group_by(AuditEvent.actor_user_id)
        .order_by(login_count.desc(), AuditEvent.actor_user_id)
        .limit(limit)
    )
    counts = s.execute(q).all()
    out: list[ActiveStudent] = []
    for uid, count in counts:
        user = s.get(User, uid)
        if user is not None and user.has_role(STUDENT_ROLE):
            out.append(ActiveStudent(uid=user.id, name=user.name, login_count=int(count)))
    return out


def list_students(
    s: "Session",
    *,
    stream: str | None = None,
    joining_year: str | None = None,
    passing_year: str | None = None,
    name: str | None = None,
) -> list[dict[str, Any]]:
    """Students as JSON-ready dicts. Empty filters are ignored."""
    q = (
        select(User, Stream.name)
        .join(UserRole, UserRole.user_id == User.id)
        .join(Role, Role.id == UserRole.role_id)
        .outerjoin(Stream, User.stream_id == Stream.id)
        .where(Role.key == STUDENT_ROLE)
    )
    if stream:
        q = q.where(Stream.name == stream)
    for column, raw in ((User.joining_year, joining_year), (User.passing_year, passing_year)):
        if not raw:
            continue
        value = _int_or_none(raw)
        if value is None:
            # A non-numeric year matches nobody.
            return []
        q = q.where(column == value)
    if name:
        q = q.where(User.name.contains(name, autoescape=True))
    q = q.order_by(User.id)

    students: list[dict[str, Any]] = []
    for user, stream_name in s.execute(q).all():
        students.append(
            {
                "uid": user.id,
                "name": user.name,
                "email": user.email,
                "created": user.created_at.strftime("%Y-%m-%d"),
                "stream": stream_name,
                "joining_year": user.joining_year,
                "passing_year": user.passing_year,
                "student_id": user.student_id,
            }
        )
    return students


def _int_or_none(raw: str) -> int | None:
    try:
        return int(raw.strip())
    except ValueError:
        return None
