"""Time helpers shared by the planner, gateway and worker."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a stored timestamp to aware UTC.

    SQLite hands back naive datetimes; every timestamp this service writes is
    UTC, so a naive value is read as UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def iso_utc(value: datetime) -> str:
    """Seconds-precision ISO-8601 in UTC with a ``Z`` suffix."""
    return as_utc(value).replace(microsecond=0).isoformat().replace("+00:00", "Z")
