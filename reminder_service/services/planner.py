"""Deterministic reminder slot planning.

Each appointment gets two reminders, 24 hours and 2 hours before its start.
Targets are computed with exact durations, expressed in the patient's
timezone and pulled into the quiet-hours window:

- earlier than the window start: moved to the window start, same day
- later than the window end: moved to the window start, next day
- otherwise kept as is

A slot is ``expired`` when its clamped time is at or after the appointment
start, or already in the past. Both conditions are checked on instants.
"""

from datetime import UTC, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from reminder_service.core.clock import iso_utc, utcnow
from reminder_service.core.exceptions import InvalidTemporalInput
from reminder_service.schemas.notifications import PlannedSlot, PlanStatus, SlotKind, WindowRule

DEFAULT_QUIET_START = time(10, 0)
DEFAULT_QUIET_END = time(19, 0)

SLOT_OFFSETS: tuple[tuple[SlotKind, timedelta], ...] = (
    (SlotKind.T_MINUS_24H, timedelta(hours=24)),
    (SlotKind.T_MINUS_2H, timedelta(hours=2)),
)


def load_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name or fail with InvalidTemporalInput."""
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        # Names like "America" resolve to a tzdata directory and raise IsADirectoryError
        raise InvalidTemporalInput(f"Unknown timezone {name!r}") from exc


def _exists(local: datetime) -> bool:
    # A wall time inside a DST gap does not survive a round trip through UTC
    round_trip = local.astimezone(UTC).astimezone(local.tzinfo)
    return round_trip.replace(tzinfo=None) == local.replace(tzinfo=None)


def _at_time_of_day(local: datetime, tod: time) -> datetime:
    return local.replace(hour=tod.hour, minute=tod.minute, second=0, microsecond=0)


def clamp_to_window(
    local: datetime,
    quiet_start: time = DEFAULT_QUIET_START,
    quiet_end: time = DEFAULT_QUIET_END,
) -> tuple[datetime, WindowRule]:
    """Pull a patient-local datetime into the quiet-hours window."""
    window_start = _at_time_of_day(local, quiet_start)
    window_end = _at_time_of_day(local, quiet_end)

    # Aware datetimes sharing a tzinfo compare by wall clock; compare instants
    instant = local.astimezone(UTC)
    if instant < window_start.astimezone(UTC):
        return window_start, WindowRule.BEFORE_WINDOW
    if instant > window_end.astimezone(UTC):
        # Wall-clock day arithmetic: 10:00 stays 10:00 across a DST change
        return window_start + timedelta(days=1), WindowRule.AFTER_WINDOW
    return local, WindowRule.WITHIN_WINDOW


def plan_slots(
    start_at: datetime,
    patient_tz: str,
    *,
    quiet_start: time = DEFAULT_QUIET_START,
    quiet_end: time = DEFAULT_QUIET_END,
    now: datetime | None = None,
) -> list[PlannedSlot]:
    """
    Compute both reminder slots for an appointment.

    Args:
        start_at: Timezone-aware appointment start
        patient_tz: IANA timezone of the patient
        quiet_start: Local time-of-day the send window opens
        quiet_end: Local time-of-day the send window closes
        now: Current instant, defaults to the wall clock

    Returns:
        The far-horizon and near-horizon slots, in that order

    Raises:
        InvalidTemporalInput: If the start or a clamped time is not a valid
            instant in the patient's timezone
    """
    if start_at.tzinfo is None or start_at.utcoffset() is None:
        raise InvalidTemporalInput(f"startAt {start_at.isoformat()} has no UTC offset")

    tz = load_timezone(patient_tz)
    current = (now or utcnow()).astimezone(UTC)
    start_utc = start_at.astimezone(UTC)

    slots: list[PlannedSlot] = []
    for slot_kind, offset in SLOT_OFFSETS:
        target_local = (start_utc - offset).astimezone(tz)
        clamped, rule = clamp_to_window(target_local, quiet_start, quiet_end)

        if not _exists(clamped):
            raise InvalidTemporalInput(
                f"{slot_kind.value}: local time {clamped.replace(tzinfo=None).isoformat()} "
                f"does not exist in {patient_tz}"
            )

        clamped_utc = clamped.astimezone(UTC)
        expired_by_start = clamped_utc >= start_utc
        expired_by_now = clamped_utc <= current
        status = (
            PlanStatus.EXPIRED if expired_by_start or expired_by_now else PlanStatus.SCHEDULED
        )

        planned_local = clamped.replace(microsecond=0)
        planned_utc = clamped_utc.replace(microsecond=0)
        slots.append(
            PlannedSlot(
                slot_kind=slot_kind,
                planned_local=planned_local,
                planned_local_iso=planned_local.isoformat(),
                planned_utc=planned_utc,
                planned_utc_iso=iso_utc(planned_utc),
                status=status,
                window_rule=rule,
            )
        )

    return slots
