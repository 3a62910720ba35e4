"""Tests for job key derivation and dispatch."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from reminder_service.core.queue import ArqJobQueue, RetryPolicy
from reminder_service.schemas.notifications import Channel, Recipient, ReminderJob, SlotKind
from reminder_service.services.dispatcher import (
    Dispatcher,
    job_key_for,
    priority_for,
    queue_for_channel,
)

NOW = datetime(2030, 6, 10, 12, 0, tzinfo=UTC)


def _job(
    slot_kind: SlotKind = SlotKind.T_MINUS_2H,
    planned_utc: datetime | None = None,
    channel: Channel = Channel.EMAIL,
) -> ReminderJob:
    return ReminderJob(
        job_key=job_key_for("apt-1", slot_kind, 4),
        appointment_id="apt-1",
        slot_kind=slot_kind,
        version=4,
        clinic_id="clinic-1",
        channel=channel,
        recipient=Recipient(email="patient@example.com", phone_e164="+4915112345678"),
        patient_tz="Europe/Berlin",
        planned_local="2030-06-10T16:00:00+02:00",
        planned_utc=planned_utc or NOW + timedelta(hours=2),
    )


def test_job_key_format() -> None:
    assert job_key_for("apt-1", SlotKind.T_MINUS_24H, 7) == "reminder:apt-1:T_MINUS_24H:7"


def test_near_horizon_has_higher_priority() -> None:
    assert priority_for(SlotKind.T_MINUS_2H) == 5
    assert priority_for(SlotKind.T_MINUS_24H) == 10


def test_queue_per_channel() -> None:
    assert queue_for_channel(Channel.EMAIL) == "deliver_email"
    assert queue_for_channel(Channel.SMS) == "deliver_sms"


def test_defer_includes_delay_and_priority_tiebreak() -> None:
    dispatcher = Dispatcher(MagicMock(), clock=lambda: NOW)
    planned = NOW + timedelta(hours=2)

    near = dispatcher.defer_for(_job(SlotKind.T_MINUS_2H, planned))
    far = dispatcher.defer_for(_job(SlotKind.T_MINUS_24H, planned))

    assert near == timedelta(hours=2, milliseconds=5)
    assert far == timedelta(hours=2, milliseconds=10)
    assert near < far


def test_past_planned_time_is_not_negative() -> None:
    dispatcher = Dispatcher(MagicMock(), clock=lambda: NOW)

    defer = dispatcher.defer_for(_job(planned_utc=NOW - timedelta(minutes=3)))

    assert defer == timedelta(milliseconds=5)


@pytest.mark.asyncio
async def test_dispatch_twice_creates_one_job(job_queue) -> None:
    dispatcher = Dispatcher(job_queue, clock=lambda: NOW)
    job = _job(channel=Channel.SMS)

    assert await dispatcher.dispatch(job) is True
    assert await dispatcher.dispatch(job) is False

    assert list(job_queue.jobs) == ["reminder:apt-1:T_MINUS_2H:4"]
    queued = job_queue.jobs["reminder:apt-1:T_MINUS_2H:4"]
    assert queued["queue_name"] == "deliver_sms"
    assert queued["payload"]["jobKey"] == "reminder:apt-1:T_MINUS_2H:4"
    assert queued["payload"]["recipient"]["phoneE164"] == "+4915112345678"
    assert queued["payload"]["plannedUTC"].startswith("2030-06-10T14:00:00")


@pytest.mark.asyncio
async def test_arq_queue_passes_job_id_and_reports_duplicates() -> None:
    pool = MagicMock()
    pool.enqueue_job = AsyncMock(side_effect=[MagicMock(), None])
    queue = ArqJobQueue(pool)

    first = await queue.submit(
        queue_name="deliver_email",
        job_id="reminder:apt-1:T_MINUS_2H:4",
        payload={"jobKey": "reminder:apt-1:T_MINUS_2H:4"},
        defer_by=timedelta(seconds=30),
    )
    second = await queue.submit(
        queue_name="deliver_email",
        job_id="reminder:apt-1:T_MINUS_2H:4",
        payload={"jobKey": "reminder:apt-1:T_MINUS_2H:4"},
        defer_by=timedelta(seconds=30),
    )

    assert (first, second) == (True, False)
    pool.enqueue_job.assert_awaited_with(
        "deliver_reminder",
        {"jobKey": "reminder:apt-1:T_MINUS_2H:4"},
        _job_id="reminder:apt-1:T_MINUS_2H:4",
        _queue_name="deliver_email",
        _defer_by=timedelta(seconds=30),
    )


def test_retry_policy_backoff_doubles() -> None:
    policy = RetryPolicy(max_attempts=6, base_delay_seconds=60)

    assert [policy.backoff_for(n).total_seconds() for n in range(1, 6)] == [
        60,
        120,
        240,
        480,
        960,
    ]
    assert policy.has_tries_left(5)
    assert not policy.has_tries_left(6)
