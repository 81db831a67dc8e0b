"""
auth/mailer.py -- Outbound email for OTP delivery.

Mail is a best-effort notification, not the source of truth: the OTP engine
writes the code to the store first and only then calls send(). A transport
failure is the caller's to log; it never rolls back the stored code.

SmtpMailer is the production transport (stdlib smtplib, STARTTLS by default).
LogMailer is the development fallback when SMTP_HOST is unset -- it writes
the message to the log, code included, so it must never run in production.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

logger = logging.getLogger("tokengate.mail")


class Mailer(Protocol):
    def send(self, to: str, subject: str, body: str) -> None: ...


class SmtpMailer:
    """Send plain-text mail through an SMTP relay."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        sender: str = "no-reply@localhost",
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> None:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = to
        message["Subject"] = subject
        message.set_content(body)

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(message)
        logger.info("Mail sent to %s (%s)", to, subject)


class LogMailer:
    """Development mailer: logs instead of sending."""

    def send(self, to: str, subject: str, body: str) -> None:
        logger.warning("SMTP not configured -- mail to %s\nSubject: %s\n\n%s", to, subject, body)
