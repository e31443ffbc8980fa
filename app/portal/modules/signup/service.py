from __future__ import annotations

import logging
import secrets
import time
from typing import TYPE_CHECKING

from werkzeug.security import generate_password_hash

from app.portal.audit import SIGNUP, record_event
from app.portal.errors import DuplicateEmail, NotificationDeliveryFailed, ValidationError
from app.portal.models import User
from app.portal.rbac import STUDENT_ROLE
from app.portal.repositories import CategoryRepository, IdentityRepository

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.mailer import Mailer

logger = logging.getLogger(__name__)

MOBILE_NUMBER_LENGTH = 10
JOINING_YEAR_RANGE = (2020, 2024)
PASSING_YEAR_RANGE = (2024, 2028)
MAX_COURSE_YEARS = 4

FIELD_LABELS = {
    "full_name": "Full Name",
    "email": "Email Address",
    "password": "Password",
    "mobile_number": "Mobile Number",
    "stream": "Stream",
    "joining_year": "Joining Year",
    "passing_year": "Passing Year",
}


def _parse_int(raw) -> int | None:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        return None


def validate_signup_payload(payload: dict, streams: CategoryRepository) -> dict[str, str]:
    """Validate a signup submission. Returns {field: message}; empty means valid."""
    errors: dict[str, str] = {}
    for key, label in FIELD_LABELS.items():
        value = payload.get(key)
        if value is None or not str(value).strip():
            errors[key] = f"{label} is required."
    if errors:
        return errors

    if len(str(payload["mobile_number"]).strip()) != MOBILE_NUMBER_LENGTH:
        errors["mobile_number"] = f"Mobile Number must be exactly {MOBILE_NUMBER_LENGTH} digits."

    stream_id = _parse_int(payload["stream"])
    if stream_id is None or streams.get(stream_id) is None:
        errors["stream"] = "Select a valid Stream."

    joining_year = _parse_int(payload["joining_year"])
    passing_year = _parse_int(payload["passing_year"])
    lo, hi = JOINING_YEAR_RANGE
    if joining_year is None or not lo <= joining_year <= hi:
        errors["joining_year"] = f"Joining Year must be between {lo} and {hi}."
    lo, hi = PASSING_YEAR_RANGE
    if passing_year is None or not lo <= passing_year <= hi:
        errors["passing_year"] = f"Passing Year must be between {lo} and {hi}."
    elif joining_year is not None and passing_year > joining_year + MAX_COURSE_YEARS:
        errors["passing_year"] = f"Passing Year must be within {MAX_COURSE_YEARS} years of Joining Year."
    return errors


def generate_student_id() -> str:
    # 8 hex digits of epoch seconds + 5 random hex digits, e.g. "student_6650c1f2a3b9d"
    return f"student_{int(time.time()):08x}{secrets.token_hex(3)[:5]}"


def _profile_lines(user: User, stream_name: str | None) -> str:
    return (
        f"Email: {user.email}, "
        f"Mobile Number: {user.mobile_number}, "
        f"Stream: {stream_name or user.stream_id}, "
        f"Joining Year: {user.joining_year}, "
        f"Passing Year: {user.passing_year}"
    )


def register_student(s: "Session", payload: dict) -> User:
    """
    Validate a submission and create the student account (flushed, not committed).

    Raises ValidationError or DuplicateEmail. Mail goes out separately through
    notify_signup once the caller has committed.
    """
    identities = IdentityRepository(s)

    errors = validate_signup_payload(payload, CategoryRepository(s))
    if errors:
        raise ValidationError(errors)

    email = str(payload["email"]).strip()
    if identities.find_by_email(email) is not None:
        raise DuplicateEmail(email)

    student_id = generate_student_id()
    while s.query(User.id).filter(User.student_id == student_id).first() is not None:
        student_id = generate_student_id()

    user = identities.add(
        User(
            name=str(payload["full_name"]).strip(),
            email=email,
            password_hash=generate_password_hash(str(payload["password"])),
            is_active=True,
            mobile_number=str(payload["mobile_number"]).strip(),
            stream_id=int(payload["stream"]),
            joining_year=int(payload["joining_year"]),
            passing_year=int(payload["passing_year"]),
            student_id=student_id,
        )
    )
    identities.assign_role(user, STUDENT_ROLE)

    record_event(
        s,
        actor=user,
        action=SIGNUP,
        entity_type="User",
        entity_id=str(user.id),
        metadata={"student_id": student_id, "stream_id": user.stream_id},
    )
    s.flush()
    return user


def notify_signup(s: "Session", user: User, mailer: "Mailer", *, operator_email: str) -> list[str]:
    """Welcome the student and tell the operator. Returns the addresses that could not be reached."""
    stream_name = CategoryRepository(s).name_of(user.stream_id)
    profile = _profile_lines(user, stream_name)
    messages = [
        (
            user.email,
            "Welcome to the Student Portal",
            f"Dear {user.name}, your student ID is {user.student_id}. "
            f"Your registration details are as follows: {profile}.",
            "student_notification",
        ),
        (
            operator_email,
            "New Student Registration",
            f"New student registered with details: Full Name: {user.name}, {profile}.",
            "admin_notification",
        ),
    ]
    undelivered: list[str] = []
    for to_addr, subject, body, kind in messages:
        try:
            mailer.send(to_addr, subject, body, kind=kind)
        except NotificationDeliveryFailed as e:
            logger.warning("Signup mail not delivered kind=%s user_id=%s: %s", kind, user.id, e.reason)
            undelivered.append(to_addr)
    return undelivered
