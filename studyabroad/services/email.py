"""
Outbound email over SMTP.

The standard library SMTP client is blocking, so each send runs in a worker
thread and never stalls the event loop.
"""

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol

from structlog import get_logger

from studyabroad.config import Settings
from studyabroad.exceptions import EmailDeliveryError

logger = get_logger(__name__)


@dataclass(frozen=True)
class OutgoingEmail:
    to: str
    subject: str
    text: str
    html: str | None = None


class EmailSender(Protocol):
    """Anything that can deliver an OutgoingEmail or raise EmailDeliveryError."""

    async def send(self, email: OutgoingEmail) -> None: ...


class SMTPEmailSender:
    """EmailSender backed by an SMTP relay (STARTTLS when enabled)."""

    def __init__(self, settings: Settings) -> None:
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_username
        self.password = settings.smtp_password
        self.use_tls = settings.smtp_use_tls
        self.timeout = settings.smtp_timeout_seconds
        self.sender = settings.email_from

    def _build_message(self, email: OutgoingEmail) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email.to
        message["Subject"] = email.subject
        message.set_content(email.text)
        if email.html:
            message.add_alternative(email.html, subtype="html")
        return message

    def _send_blocking(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls()
            if self.username:
                client.login(self.username, self.password)
            client.send_message(message)

    async def send(self, email: OutgoingEmail) -> None:
        message = self._build_message(email)
        try:
            await asyncio.to_thread(self._send_blocking, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "email_send_failed",
                recipient=email.to,
                subject=email.subject,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise EmailDeliveryError(email.to, str(exc)) from exc

        logger.info("email_sent", recipient=email.to, subject=email.subject)
