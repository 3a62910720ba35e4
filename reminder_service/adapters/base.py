"""Message type shared by the channel adapters."""

from dataclasses import dataclass


@dataclass(frozen=True)
class OutboundMessage:
    """One rendered message addressed to an email address or E.164 phone."""

    to: str
    text: str
    subject: str | None = None
    html: str | None = None
