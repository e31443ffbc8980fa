from __future__ import annotations

import logging
import smtplib
from dataclasses import dataclass, field
from email.mime.text import MIMEText

from flask import current_app

from app.portal.errors import NotificationDeliveryFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMessage:
    to_addr: str
    subject: str
    body: str
    kind: str  # e.g. "otp_verification", "student_notification"


class Mailer:
    def send(self, to_addr: str, subject: str, body: str, *, kind: str) -> None:
        """Deliver one plain-text message. Raises NotificationDeliveryFailed."""
        raise NotImplementedError


@dataclass
class LogMailer(Mailer):
    """
    Development backend: logs the message and keeps it in an in-memory outbox.
    """

    outbox: list[OutgoingMessage] = field(default_factory=list)

    def send(self, to_addr: str, subject: str, body: str, *, kind: str) -> None:
        self.outbox.append(OutgoingMessage(to_addr=to_addr, subject=subject, body=body, kind=kind))
        logger.info("Mail (log backend) kind=%s to=%s subject=%s", kind, to_addr, subject)


@dataclass(frozen=True)
class SmtpMailer(Mailer):
    server: str
    port: int
    username: str
    password: str
    use_tls: bool
    from_addr: str

    def send(self, to_addr: str, subject: str, body: str, *, kind: str) -> None:
        if not self.server:
            raise NotificationDeliveryFailed(to_addr, "SMTP_SERVER is not configured")
        msg = MIMEText(body, "plain")
        msg["Subject"] = subject
        msg["From"] = self.from_addr
        msg["To"] = to_addr
        try:
            with smtplib.SMTP(self.server, self.port, timeout=30) as s:
                if self.use_tls:
                    s.starttls()
                if self.username:
                    s.login(self.username, self.password)
                s.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryFailed(to_addr, str(e)) from e
        logger.info("Mail sent kind=%s to=%s", kind, to_addr)


def mailer_from_config(config: dict) -> Mailer:
    backend = (config.get("MAIL_BACKEND") or "log").strip().lower()
    if backend == "smtp":
        return SmtpMailer(
            server=(config.get("SMTP_SERVER") or "").strip(),
            port=int(config.get("SMTP_PORT") or 587),
            username=(config.get("SMTP_USERNAME") or "").strip(),
            password=config.get("SMTP_PASSWORD") or "",
            use_tls=bool(config.get("SMTP_USE_TLS")),
            from_addr=(config.get("MAIL_FROM") or "").strip(),
        )
    # default log
    return LogMailer()


def get_mailer() -> Mailer:
    return current_app.extensions["mailer"]
