from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Any

from werkzeug.security import check_password_hash

from app.portal.errors import EmailMismatch, InvalidOtp, InvalidPassword, NotificationDeliveryFailed, UnknownUser
from app.portal.repositories import IdentityRepository
from app.portal.state import KeyValueState

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.portal.mailer import Mailer
    from app.portal.models import User

logger = logging.getLogger(__name__)

OTP_STATE_KEY = "otp_verification_code"
OTP_MIN = 100000
OTP_MAX = 999999

SLOT_GLOBAL = "global"
SLOT_PER_ATTEMPT = "per_attempt"
SLOT_MODES = (SLOT_GLOBAL, SLOT_PER_ATTEMPT)

OTP_SUBJECT = "Your OTP for Login"


class LoginPhase(str, Enum):
    AWAITING_CREDENTIALS = "awaiting_credentials"
    AWAITING_OTP_AND_PASSWORD = "awaiting_otp_and_password"


@dataclass(frozen=True)
class LoginFormState:
    """
    Client-held half of a pending login (kept in the signed session cookie).
    """

    otp_sent: bool = False
    username: str = ""
    email: str = ""
    attempt_id: str | None = None

    @property
    def phase(self) -> LoginPhase:
        if self.otp_sent:
            return LoginPhase.AWAITING_OTP_AND_PASSWORD
        return LoginPhase.AWAITING_CREDENTIALS

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "LoginFormState":
        raw = raw or {}
        return cls(
            otp_sent=bool(raw.get("otp_sent")),
            username=str(raw.get("username") or ""),
            email=str(raw.get("email") or ""),
            attempt_id=raw.get("attempt_id") or None,
        )


@dataclass(frozen=True)
class OtpIssued:
    form_state: LoginFormState
    delivered: bool


def generate_otp() -> int:
    return OTP_MIN + secrets.randbelow(OTP_MAX - OTP_MIN + 1)


def _as_number(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if not n.is_finite():
        return None
    return n


def otp_matches(entered: Any, stored: Any) -> bool:
    """Numeric comparison: "123456", " 123456" and 123456 are the same code."""
    a = _as_number(entered)
    b = _as_number(stored)
    if a is None or b is None:
        return False
    return a == b


class OtpLoginService:
    def __init__(
        self,
        s: "Session",
        mailer: "Mailer",
        *,
        slot_mode: str = SLOT_GLOBAL,
        ttl_seconds: int = 600,
        now: Callable[[], datetime] = datetime.utcnow,
    ):
        if slot_mode not in SLOT_MODES:
            raise ValueError(f"Unknown OTP slot mode {slot_mode!r}; expected one of {', '.join(SLOT_MODES)}")
        self.s = s
        self.identities = IdentityRepository(s)
        self.state = KeyValueState(s)
        self.mailer = mailer
        self.slot_mode = slot_mode
        self.ttl_seconds = ttl_seconds
        self.now = now

    # ---------- Phase 1 ----------
    def issue_code(self, username: str, email: str, previous: LoginFormState | None = None) -> OtpIssued:
        """
        Check username/email, store a fresh code and mail it.

        `previous` is the form state of an earlier attempt from the same browser;
        its stored code is dropped so abandoned attempts do not pile up.

        A mail failure does not stop the flow: the caller gets delivered=False and
        the form still moves on to the OTP + password step.
        """
        matches = self.identities.find_by_name(username)
        if len(matches) != 1:
            raise UnknownUser()
        user = matches[0]
        if user.email != email:
            raise EmailMismatch()

        if previous is not None:
            self.discard(previous)
        self.purge_expired()
        code = generate_otp()
        attempt_id = self._store_code(code)

        delivered = True
        try:
            self.mailer.send(email, OTP_SUBJECT, f"Your OTP for login is: {code}", kind="otp_verification")
        except NotificationDeliveryFailed as e:
            logger.warning("OTP mail not delivered (user_id=%s): %s", user.id, e.reason)
            delivered = False

        form_state = LoginFormState(otp_sent=True, username=username, email=email, attempt_id=attempt_id)
        return OtpIssued(form_state=form_state, delivered=delivered)

    def _slot_key(self, attempt_id: str | None) -> str:
        if self.slot_mode == SLOT_PER_ATTEMPT:
            return f"{OTP_STATE_KEY}:{attempt_id}"
        return OTP_STATE_KEY

    def _store_code(self, code: int) -> str | None:
        if self.slot_mode == SLOT_GLOBAL:
            self.state.set(OTP_STATE_KEY, code)
            return None
        attempt_id = secrets.token_urlsafe(16)
        expires_at = self.now() + timedelta(seconds=self.ttl_seconds)
        self.state.set(self._slot_key(attempt_id), {"otp": code, "expires_at": expires_at.isoformat()})
        return attempt_id

    def stored_code(self, form_state: LoginFormState) -> Any:
        """The live code for this login attempt, or None."""
        if self.slot_mode == SLOT_GLOBAL:
            return self.state.get(OTP_STATE_KEY)
        if not form_state.attempt_id:
            return None
        key = self._slot_key(form_state.attempt_id)
        entry = self.state.get(key)
        if not entry:
            return None
        if datetime.fromisoformat(entry["expires_at"]) <= self.now():
            self.state.delete(key)
            return None
        return entry.get("otp")

    def purge_expired(self) -> int:
        """Delete per-attempt codes past their expiry. Returns how many were removed."""
        if self.slot_mode != SLOT_PER_ATTEMPT:
            return 0
        now = self.now()
        removed = 0
        for key in self.state.keys_with_prefix(f"{OTP_STATE_KEY}:"):
            entry = self.state.get(key)
            if not entry or datetime.fromisoformat(entry["expires_at"]) <= now:
                self.state.delete(key)
                removed += 1
        if removed:
            logger.debug("Purged %s expired login codes", removed)
        return removed

    def discard(self, form_state: LoginFormState) -> None:
        """Drop the stored code of an abandoned attempt. The shared global slot is left alone."""
        if self.slot_mode == SLOT_PER_ATTEMPT and form_state.attempt_id:
            self.state.delete(self._slot_key(form_state.attempt_id))

    # ---------- Phase 2 ----------
    def verify_and_authenticate(self, form_state: LoginFormState, otp: Any, password: str) -> "User":
        """
        Check the code, then the password. Returns the authenticated user.

        A wrong password leaves the code in place so the password can be retried.
        """
        if not otp_matches(otp, self.stored_code(form_state)):
            raise InvalidOtp()

        user = self.authenticate(form_state.username, password)
        if user is None:
            raise InvalidPassword()

        self.discard(form_state)
        return user

    def authenticate(self, username: str, password: str) -> "User | None":
        matches = self.identities.find_by_name(username)
        if len(matches) != 1:
            return None
        user = matches[0]
        if not user.is_active or not check_password_hash(user.password_hash, password):
            return None
        return user


def service_from_config(s: "Session", mailer: "Mailer", config: dict) -> OtpLoginService:
    return OtpLoginService(
        s,
        mailer,
        slot_mode=(config.get("OTP_SLOT_MODE") or SLOT_GLOBAL).strip().lower(),
        ttl_seconds=int(config.get("OTP_TTL_SECONDS") or 600),
    )
