"""Custom application exceptions."""

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from reminder_service.services.outcomes import SendOutcome


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: dict[str, Any] | None = None,
    ):
        """Initialize exception with message, status code and optional details."""
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(self.message)


class UnauthorizedException(AppException):
    """Unauthorized access exception."""

    def __init__(self, message: str = "Unauthorized"):
        """Initialize with 401 status code."""
        super().__init__(message, status_code=401)


class ConflictException(AppException):
    """Conflict exception."""

    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        """Initialize with 409 status code."""
        super().__init__(message, status_code=409, details=details)


class ValidationException(AppException):
    """Validation error exception."""

    def __init__(self, message: str = "Validation error", details: dict[str, Any] | None = None):
        """Initialize with 422 status code."""
        super().__init__(message, status_code=422, details=details)


class StaleVersionError(ConflictException):
    """An event arrived with a version older than the latest one recorded."""

    def __init__(self, appointment_id: str, version: int, latest: int):
        """Initialize with the rejected and the latest known version."""
        self.appointment_id = appointment_id
        self.version = version
        self.latest = latest
        super().__init__(
            f"Version {version} of appointment {appointment_id} is older than {latest}",
            details={"code": "stale_version", "latest": latest},
        )


class DuplicateVersionError(ConflictException):
    """Another writer recorded the same appointment version first."""

    def __init__(self, appointment_id: str, version: int):
        """Initialize with the contested version."""
        self.appointment_id = appointment_id
        self.version = version
        super().__init__(
            f"Version {version} of appointment {appointment_id} was already recorded",
            details={"code": "duplicate_version"},
        )


class InvalidTemporalInput(ValidationException):
    """Start time or timezone could not be turned into valid send times."""

    def __init__(self, message: str):
        """Initialize with 422 status code."""
        super().__init__(message, details={"code": "invalid_temporal_input"})


class DeliveryError(Exception):
    """Base for delivery-side failures raised inside the workers."""


class SendFailure(DeliveryError):
    """Raised by channel adapters; carries the outcome used for classification."""

    def __init__(self, outcome: "SendOutcome"):
        self.outcome = outcome
        super().__init__(outcome.error_text or outcome.error_code or "send failed")


class PermanentDeliveryFailure(DeliveryError):
    """Terminal failure; the plan was canceled and the job is not retried."""

    def __init__(self, job_key: str, code: str | None):
        self.job_key = job_key
        self.code = code
        super().__init__(f"permanent delivery failure for {job_key}: {code}")


class RetryExhausted(DeliveryError):
    """The retry budget ran out while the plan was still scheduled."""

    def __init__(self, job_key: str, attempts: int):
        self.job_key = job_key
        self.attempts = attempts
        super().__init__(f"retries exhausted for {job_key} after {attempts} attempts")
