"""Outbound channel adapters.

Adapters expose ``async send(message) -> provider_message_id`` and raise
``SendFailure`` with a ``SendOutcome`` describing what went wrong.
"""

from typing import Protocol

from reminder_service.adapters.base import OutboundMessage
from reminder_service.adapters.email import SmtpEmailAdapter
from reminder_service.adapters.sms import StubSmsAdapter, TwilioSmsAdapter
from reminder_service.config import Settings
from reminder_service.schemas.notifications import Channel


class ChannelAdapter(Protocol):
    """Capability the delivery worker depends on."""

    async def send(self, message: OutboundMessage) -> str: ...


def build_adapters(settings: Settings) -> dict[Channel, ChannelAdapter]:
    """Create one adapter per channel from settings."""
    email = SmtpEmailAdapter(
        host=settings.smtp_host,
        port=settings.smtp_port,
        from_email=settings.from_email,
        username=settings.smtp_user,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.smtp_timeout_seconds,
    )

    sms: ChannelAdapter
    if settings.sms_provider == "twilio":
        sms = TwilioSmsAdapter.from_settings(settings)
    else:
        sms = StubSmsAdapter()

    return {Channel.EMAIL: email, Channel.SMS: sms}


__all__ = [
    "ChannelAdapter",
    "OutboundMessage",
    "SmtpEmailAdapter",
    "StubSmsAdapter",
    "TwilioSmsAdapter",
    "build_adapters",
]
