"""
auth/notifier.py -- Outbound delivery of one-time passcodes.

SmtpNotifier sends a plain-text email through smtplib. Failures are
classified here: a socket timeout becomes OperationTimeout, anything else
the SMTP conversation or the network raises becomes DeliveryFailed.
OtpManager turns either into OtpDispatchFailed for the caller.

LogNotifier writes the code to the log instead of sending it. It exists for
local development without an SMTP relay; api/main.py refuses to select it
outside DEBUG mode.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import TYPE_CHECKING

from auth.errors import DeliveryFailed, OperationTimeout

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("credcore.notifier")

_SUBJECT = "Your verification code"


def _render_body(code: str, ttl_minutes: int) -> str:
    return (
        f"Your verification code is {code}.\n\n"
        f"It expires in {ttl_minutes} minutes and can be used once.\n"
        "If you did not request this code, you can ignore this email.\n"
    )


class SmtpNotifier:
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
        sender: str = "no-reply@localhost",
        ttl_minutes: int = 5,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout
        self.sender = sender
        self.ttl_minutes = ttl_minutes

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpNotifier:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            timeout=settings.smtp_timeout_seconds,
            sender=settings.email_from,
            ttl_minutes=max(1, settings.otp_ttl_seconds // 60),
        )

    def build_message(self, email: str, code: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = _SUBJECT
        msg["From"] = self.sender
        msg["To"] = email
        msg.set_content(_render_body(code, self.ttl_minutes))
        return msg

    def send_otp_email(self, email: str, code: str) -> None:
        msg = self.build_message(email, code)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.username and self.password:
                    server.login(self.username, self.password)
                server.send_message(msg)
        except TimeoutError as exc:
            logger.warning("SMTP delivery to %s:%d timed out after %.1fs", self.host, self.port, self.timeout)
            raise OperationTimeout() from exc
        except (smtplib.SMTPException, OSError) as exc:
            logger.warning("SMTP delivery to %s:%d failed: %s", self.host, self.port, exc.__class__.__name__)
            raise DeliveryFailed() from exc


class LogNotifier:
    """Development sink: logs the code instead of emailing it."""

    def send_otp_email(self, email: str, code: str) -> None:
        logger.warning("DEV ONLY -- OTP for %s: %s", email, code)
