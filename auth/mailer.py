"""
auth/mailer.py -- Outbound email for OTP delivery.

SmtpNotifier sends a plain-text message through the configured relay with
STARTTLS and an optional login. The connection is opened per message; OTP
mail is rare enough that pooling is not worth the reconnect handling.

Every transport failure (refused connection, auth failure, timeout, relay
rejection) surfaces as DeliveryError. Success means the relay accepted the
message, not that it reached the inbox.

Anything with a send(recipient, subject, body) method can stand in for the
notifier; tests use a recorder that keeps the messages in memory.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from auth.errors import DeliveryError
from core.config import Settings, get_settings

logger = logging.getLogger("otpgate.mailer")


class Notifier(Protocol):
    def send(self, recipient: str, subject: str, body: str) -> None: ...


class SmtpNotifier:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _build(self, recipient: str, subject: str, body: str) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = f"{self._settings.mail_from_name} <{self._settings.sender_address}>"
        msg["To"] = recipient
        msg.set_content(body)
        return msg

    def send(self, recipient: str, subject: str, body: str) -> None:
        s = self._settings
        msg = self._build(recipient, subject, body)
        try:
            with smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout_seconds) as smtp:
                if s.smtp_starttls:
                    smtp.starttls(context=ssl.create_default_context())
                if s.smtp_user and s.smtp_password:
                    smtp.login(s.smtp_user, s.smtp_password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            # socket.timeout is an OSError subclass, so a slow relay lands here too.
            logger.error("OTP mail to %s failed: %s", recipient, exc)
            raise DeliveryError() from exc
        logger.info("OTP mail accepted by relay for %s", recipient)
