"""SMTP email adapter."""

import asyncio
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid

import structlog

from reminder_service.adapters.base import OutboundMessage
from reminder_service.core.exceptions import SendFailure
from reminder_service.services.outcomes import SendOutcome

logger = structlog.get_logger(__name__)


def _decode(value: bytes | str) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def outcome_for_smtp_error(exc: Exception) -> SendOutcome:
    """Translate smtplib/socket exceptions into a SendOutcome."""
    if isinstance(exc, smtplib.SMTPRecipientsRefused):
        refused = list(exc.recipients.values())
        if refused:
            code, reply = refused[0]
            return SendOutcome.failed(
                status_code=int(code),
                error_code="EENVELOPE",
                error_text=f"recipient refused: {_decode(reply)}",
            )
        return SendOutcome.failed(error_code="EENVELOPE", error_text="No recipients defined")
    if isinstance(exc, smtplib.SMTPResponseException):
        return SendOutcome.failed(
            status_code=int(exc.smtp_code),
            error_code=type(exc).__name__,
            error_text=_decode(exc.smtp_error),
        )
    if isinstance(exc, smtplib.SMTPServerDisconnected):
        return SendOutcome.failed(error_code="ECONNRESET", error_text=str(exc))
    return SendOutcome.from_exception(exc)


class SmtpEmailAdapter:
    """Sends email through an SMTP relay; the blocking client runs in a thread."""

    def __init__(
        self,
        host: str,
        port: int,
        from_email: str,
        username: str | None = None,
        password: str | None = None,
        use_tls: bool = False,
        timeout: float = 30.0,
    ):
        """Initialize adapter with relay settings."""
        self.host = host
        self.port = port
        self.from_email = from_email
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(self, message: OutboundMessage) -> EmailMessage:
        """Build a MIME message with a fresh Message-ID."""
        email = EmailMessage()
        email["From"] = self.from_email
        email["To"] = message.to
        email["Subject"] = message.subject or ""
        email["Message-ID"] = make_msgid(domain=self.from_email.rpartition("@")[2] or None)
        email.set_content(message.text)
        if message.html:
            email.add_alternative(message.html, subtype="html")
        return email

    def _deliver(self, email: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
            if self.use_tls:
                server.starttls(context=ssl.create_default_context())
            if self.username:
                server.login(self.username, self.password or "")
            server.send_message(email)

    async def send(self, message: OutboundMessage) -> str:
        """
        Send one email.

        Returns:
            The Message-ID header, used as the provider message id

        Raises:
            SendFailure: If the relay refused the message or the connection failed
        """
        email = self.build_message(message)
        try:
            await asyncio.to_thread(self._deliver, email)
        except (smtplib.SMTPException, OSError) as exc:
            outcome = outcome_for_smtp_error(exc)
            logger.warning(
                "smtp_send_failed",
                host=self.host,
                status_code=outcome.status_code,
                error_code=outcome.error_code,
            )
            raise SendFailure(outcome) from exc

        return str(email["Message-ID"])
