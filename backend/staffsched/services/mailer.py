"""Mail transports used by the notification dispatcher.

A transport accepts rendered messages and reports success or failure per
recipient. ``send_batch`` never lets one recipient's failure affect another;
it only raises when the transport itself is unusable (for example missing
credentials).
"""

from __future__ import annotations

import logging
import smtplib
import socket
import time
import uuid
from dataclasses import dataclass, field
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from typing import Dict, List, Optional, Protocol

from ..core.config import Settings
from ..core.errors import DispatchError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutgoingMessage:
    to: str
    subject: str
    html_body: str
    text_body: str
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class DeliveryResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class Mailer(Protocol):
    def send(self, message: OutgoingMessage) -> DeliveryResult: ...

    def send_batch(self, messages: List[OutgoingMessage]) -> List[DeliveryResult]: ...


class SmtpMailer:
    """SMTP transport with STARTTLS, basic auth and retry on transient errors."""

    def __init__(
        self,
        server: str,
        port: int = 587,
        username: Optional[str] = None,
        password: Optional[str] = None,
        from_email: str = "noreply@example.com",
        from_name: str = "Task Management System",
        timeout: int = 30,
        max_retries: int = 3,
        backoff_seconds: float = 1.5,
    ):
        self.server, self.port = server, port
        self.username, self.password = username, password
        self.from_email, self.from_name = from_email, from_name
        self.timeout, self.max_retries, self.backoff_seconds = timeout, max_retries, backoff_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> "SmtpMailer":
        return cls(
            server=settings.SMTP_SERVER,
            port=settings.SMTP_PORT,
            username=settings.SMTP_USERNAME,
            password=settings.SMTP_PASSWORD,
            from_email=settings.MAIL_SENDER,
            from_name=settings.MAIL_SENDER_NAME,
            timeout=settings.SMTP_TIMEOUT,
            max_retries=settings.SMTP_MAX_RETRIES,
        )

    def _open_and_auth(self) -> smtplib.SMTP:
        if not (self.username and self.password):
            raise DispatchError("SMTP requires SMTP_USERNAME and SMTP_PASSWORD.")
        client = smtplib.SMTP(self.server, self.port, timeout=self.timeout)
        client.ehlo()
        client.starttls()
        client.ehlo()
        client.login(self.username, self.password)
        return client

    def _retryable(self, exc: Exception) -> bool:
        if isinstance(exc, (smtplib.SMTPServerDisconnected, smtplib.SMTPConnectError, socket.timeout, ConnectionError)):
            return True
        if isinstance(exc, smtplib.SMTPResponseException):
            code = getattr(exc, "smtp_code", 0) or 0
            return 400 <= code < 500
        return False

    def _build(self, message: OutgoingMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["From"] = formataddr((self.from_name, self.from_email))
        msg["To"] = message.to
        msg["Reply-To"] = self.from_email
        msg["Subject"] = message.subject
        msg["Message-ID"] = make_msgid(domain=self.from_email.split("@")[-1])
        msg["X-Mailer"] = "StaffScheduler/SMTP"
        for key, value in message.headers.items():
            msg[key] = str(value)
        msg.set_content(message.text_body)
        msg.add_alternative(message.html_body, subtype="html")
        return msg

    def send(self, message: OutgoingMessage) -> DeliveryResult:
        msg = self._build(message)
        attempt = 0
        while True:
            try:
                with self._open_and_auth() as client:
                    client.sendmail(self.from_email, [message.to], msg.as_string())
                logger.info("mail sent", extra={"recipient": message.to, "attempt": attempt + 1})
                return DeliveryResult(success=True, message_id=msg["Message-ID"])
            except (smtplib.SMTPException, OSError) as exc:
                if self._retryable(exc) and attempt < self.max_retries - 1:
                    attempt += 1
                    time.sleep(self.backoff_seconds * attempt)
                    continue
                logger.warning(
                    "mail delivery failed",
                    extra={"recipient": message.to, "attempt": attempt + 1, "error": str(exc)},
                )
                return DeliveryResult(success=False, error=str(exc))

    def send_batch(self, messages: List[OutgoingMessage]) -> List[DeliveryResult]:
        return [self.send(message) for message in messages]


class LogMailer:
    """Development transport: logs each message and reports it delivered."""

    def __init__(self, from_email: str = "noreply@example.com") -> None:
        self.from_email = from_email
        self.outbox: List[OutgoingMessage] = []

    def send(self, message: OutgoingMessage) -> DeliveryResult:
        self.outbox.append(message)
        message_id = f"<{uuid.uuid4().hex}@{self.from_email.split('@')[-1]}>"
        logger.info(
            "mail logged (no SMTP transport configured)",
            extra={"recipient": message.to, "subject": message.subject},
        )
        return DeliveryResult(success=True, message_id=message_id)

    def send_batch(self, messages: List[OutgoingMessage]) -> List[DeliveryResult]:
        return [self.send(message) for message in messages]


def build_mailer(settings: Settings) -> Mailer:
    if settings.smtp_configured:
        return SmtpMailer.from_settings(settings)
    return LogMailer(from_email=settings.MAIL_SENDER)
