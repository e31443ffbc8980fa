"""
Error kinds raised by the portal flows.

All of them are per-request and recoverable; route handlers turn them into
flash messages (or, for NotFoundOverride, the generic 404 page).
"""
from __future__ import annotations


class PortalError(Exception):
    pass


class ValidationError(PortalError):
    """Field-level input errors, keyed by form field name."""

    def __init__(self, errors: dict[str, str]):
        super().__init__("; ".join(errors.values()))
        self.errors = errors


class LoginError(PortalError):
    field: str | None = None
    message = "Login failed."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)

    @property
    def user_message(self) -> str:
        return str(self)


class UnknownUser(LoginError):
    field = "username"
    message = "Invalid username."


class EmailMismatch(LoginError):
    field = "email"
    message = "Email does not match."


class InvalidOtp(LoginError):
    field = "otp"
    message = "Invalid OTP."


class InvalidPassword(LoginError):
    field = "password"
    message = "Invalid password."


class DuplicateEmail(PortalError):
    def __init__(self, email: str):
        super().__init__(f"A user with the email {email} already exists.")
        self.email = email


class NotificationDeliveryFailed(PortalError):
    def __init__(self, to_addr: str, reason: str):
        super().__init__(f"Could not deliver mail to {to_addr}: {reason}")
        self.to_addr = to_addr
        self.reason = reason


class NotFoundOverride(PortalError):
    """Access denied, answered as if the page did not exist."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason
