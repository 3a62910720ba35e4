"""Send outcome and delivery result value types."""

import errno
import socket
from dataclasses import dataclass
from enum import Enum


class DeliveryClass(str, Enum):
    """Classifier verdict for one send attempt."""

    SUCCESS = "success"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class SendOutcome:
    """What a channel adapter observed for one send.

    ``permanent`` is an explicit hint from the adapter and overrides every
    other signal when set.
    """

    success: bool
    provider_message_id: str | None = None
    status_code: int | None = None
    error_code: str | None = None
    error_text: str | None = None
    permanent: bool | None = None

    @classmethod
    def sent(cls, provider_message_id: str) -> "SendOutcome":
        return cls(success=True, provider_message_id=provider_message_id)

    @classmethod
    def failed(
        cls,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        error_text: str | None = None,
        permanent: bool | None = None,
    ) -> "SendOutcome":
        return cls(
            success=False,
            status_code=status_code,
            error_code=error_code,
            error_text=error_text,
            permanent=permanent,
        )

    @classmethod
    def from_exception(cls, exc: BaseException) -> "SendOutcome":
        """Describe an unexpected adapter exception by its type and errno."""
        return cls.failed(error_code=error_code_for(exc), error_text=str(exc) or repr(exc))


def error_code_for(exc: BaseException) -> str:
    """Map low-level network exceptions onto errno-style codes."""
    if isinstance(exc, socket.gaierror):
        return "EAI_AGAIN" if exc.errno == socket.EAI_AGAIN else "ENOTFOUND"
    if isinstance(exc, TimeoutError):
        return "ETIMEDOUT"
    if isinstance(exc, OSError) and exc.errno in errno.errorcode:
        return errno.errorcode[exc.errno]
    return type(exc).__name__


@dataclass(frozen=True)
class Classification:
    """Classifier verdict plus the metadata stored on the attempt row."""

    kind: DeliveryClass
    code: str | None = None
    message: str | None = None

    def as_metadata(self) -> dict[str, str | None]:
        return {"code": self.code, "message": self.message}


class DeliveryOutcome(str, Enum):
    """How the delivery worker finished one job execution."""

    SKIPPED = "skipped"
    SENT = "sent"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class DeliveryResult:
    """Explicit result of one job execution; the queue layer decides retries."""

    outcome: DeliveryOutcome
    job_key: str
    reason: str | None = None
    attempt: int | None = None
    provider_message_id: str | None = None
    classification: Classification | None = None
    plan_transitioned: bool = False

    @property
    def should_retry(self) -> bool:
        return self.outcome == DeliveryOutcome.TRANSIENT_FAILURE

    def summary(self) -> dict[str, object]:
        """Plain dict stored as the arq job result."""
        return {
            "outcome": self.outcome.value,
            "job_key": self.job_key,
            "reason": self.reason,
            "attempt": self.attempt,
            "provider_message_id": self.provider_message_id,
            "plan_transitioned": self.plan_transitioned,
        }
