"""Tests for the delivery worker state machine."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import pytest
from prometheus_client import CollectorRegistry
from sqlalchemy import select

from reminder_service.core.exceptions import SendFailure
from reminder_service.core.metrics import ReminderMetrics
from reminder_service.models import delivery_attempts
from reminder_service.schemas.appointments import AppointmentEvent
from reminder_service.schemas.notifications import (
    Channel,
    PlannedSlot,
    PlanStatus,
    Recipient,
    ReminderJob,
    SlotKind,
    WindowRule,
)
from reminder_service.services.delivery import DeliveryWorker
from reminder_service.services.dispatcher import job_key_for
from reminder_service.services.outcomes import DeliveryClass, DeliveryOutcome, SendOutcome
from reminder_service.services.plan_store import PlanStoreGateway

NOW = datetime(2030, 6, 12, 11, 0, tzinfo=UTC)
JOB_KEY = job_key_for("apt-1", SlotKind.T_MINUS_2H, 1)


class FakeAdapter:
    """Channel adapter double that records sends and replays scripted results."""

    def __init__(self, result=None, on_send=None):
        self.result = result if result is not None else "provider-1"
        self.on_send = on_send
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        if self.on_send is not None:
            await self.on_send()
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result


def _job(channel: Channel = Channel.EMAIL, **recipient) -> ReminderJob:
    return ReminderJob(
        job_key=JOB_KEY,
        appointment_id="apt-1",
        slot_kind=SlotKind.T_MINUS_2H,
        version=1,
        clinic_id="clinic-1",
        channel=channel,
        recipient=Recipient(**(recipient or {"email": "patient@example.com"})),
        patient_tz="Europe/Berlin",
        planned_local="2030-06-12T13:00:00+02:00",
        planned_utc=NOW,
    )


async def _seed_plan(session_factory, planned_utc: datetime = NOW) -> None:
    async with session_factory() as session:
        gateway = PlanStoreGateway(session)
        async with gateway.unit_of_work():
            await gateway.replace_plan(
                "apt-1",
                PlannedSlot(
                    slot_kind=SlotKind.T_MINUS_2H,
                    planned_local=planned_utc,
                    planned_local_iso=planned_utc.isoformat(),
                    planned_utc=planned_utc,
                    planned_utc_iso=planned_utc.isoformat(),
                    status=PlanStatus.SCHEDULED,
                    window_rule=WindowRule.WITHIN_WINDOW,
                ),
                version=1,
                job_key=JOB_KEY,
            )


async def _plan_status(session_factory) -> PlanStatus:
    async with session_factory() as session:
        plan = await PlanStoreGateway(session).get_plan(JOB_KEY)
    return plan.status


async def _attempts(session_factory) -> list:
    async with session_factory() as session:
        result = await session.execute(
            select(delivery_attempts)
            .where(delivery_attempts.c.job_key == JOB_KEY)
            .order_by(delivery_attempts.c.attempt)
        )
        return list(result.fetchall())


def _worker(session_factory, adapter, **kwargs) -> DeliveryWorker:
    return DeliveryWorker(
        session_factory,
        {Channel.EMAIL: adapter, Channel.SMS: adapter},
        metrics=ReminderMetrics(CollectorRegistry()),
        clock=lambda: NOW,
        **kwargs,
    )


@pytest.mark.asyncio
async def test_successful_send_marks_plan_sent(session_factory) -> None:
    await _seed_plan(session_factory)
    adapter = FakeAdapter("<msg-1@example.com>")
    worker = _worker(session_factory, adapter)

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.SENT
    assert result.attempt == 1
    assert result.plan_transitioned
    assert await _plan_status(session_factory) == PlanStatus.SENT
    attempts = await _attempts(session_factory)
    assert [row.status for row in attempts] == ["success"]
    assert attempts[0].provider_message_id == "<msg-1@example.com>"
    assert adapter.sent[0].to == "patient@example.com"
    assert adapter.sent[0].subject == "Appointment reminder (in ~2 hours)"


@pytest.mark.asyncio
async def test_552_cancels_plan_without_retry(session_factory) -> None:
    await _seed_plan(session_factory)
    failure = SendFailure(SendOutcome.failed(status_code=552, error_text="mailbox full"))
    worker = _worker(session_factory, FakeAdapter(failure))

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.PERMANENT_FAILURE
    assert result.classification.kind == DeliveryClass.PERMANENT
    assert not result.should_retry
    assert await _plan_status(session_factory) == PlanStatus.CANCELED
    attempts = await _attempts(session_factory)
    assert len(attempts) == 1
    assert attempts[0].status == "permanent_fail"
    assert attempts[0].classification == {"code": "smtp_552", "message": "mailbox full"}


@pytest.mark.asyncio
async def test_transient_failure_keeps_plan_scheduled(session_factory) -> None:
    await _seed_plan(session_factory)
    failure = SendFailure(SendOutcome.failed(error_code="ETIMEDOUT", error_text="timed out"))
    worker = _worker(session_factory, FakeAdapter(failure))

    first = await worker.process(_job(), now=NOW)
    second = await worker.process(_job(), now=NOW)

    assert first.should_retry
    assert (first.attempt, second.attempt) == (1, 2)
    assert await _plan_status(session_factory) == PlanStatus.SCHEDULED
    assert [row.status for row in await _attempts(session_factory)] == [
        "transient_fail",
        "transient_fail",
    ]


@pytest.mark.asyncio
async def test_canceled_plan_is_skipped(session_factory, make_event) -> None:
    """A cancellation that lands after dispatch stops the send."""
    await _seed_plan(session_factory)
    async with session_factory() as session:
        gateway = PlanStoreGateway(session)
        async with gateway.unit_of_work():
            await gateway.apply_cancellation(
                "apt-1",
                2,
                AppointmentEvent.model_validate(
                    make_event(type="appointment.canceled", version=2)
                ),
            )
    adapter = FakeAdapter()
    worker = _worker(session_factory, adapter)

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.SKIPPED
    assert result.reason == "not_scheduled"
    assert adapter.sent == []
    assert await _plan_status(session_factory) == PlanStatus.CANCELED
    assert await _attempts(session_factory) == []


@pytest.mark.asyncio
async def test_missing_plan_is_skipped(session_factory) -> None:
    adapter = FakeAdapter()

    result = await _worker(session_factory, adapter).process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.SKIPPED
    assert result.reason == "plan_missing"
    assert adapter.sent == []


@pytest.mark.asyncio
async def test_early_fire_is_skipped_without_state_change(session_factory) -> None:
    await _seed_plan(session_factory, planned_utc=NOW + timedelta(minutes=6))
    adapter = FakeAdapter()
    worker = _worker(session_factory, adapter)

    result = await worker.process(_job(), now=NOW)

    assert result.reason == "fired_early"
    assert adapter.sent == []
    assert await _plan_status(session_factory) == PlanStatus.SCHEDULED
    assert await _attempts(session_factory) == []


@pytest.mark.asyncio
async def test_send_within_tolerance_goes_out(session_factory) -> None:
    await _seed_plan(session_factory, planned_utc=NOW + timedelta(minutes=4))

    result = await _worker(session_factory, FakeAdapter()).process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.SENT


@pytest.mark.asyncio
async def test_missing_contact_is_permanent_before_send(session_factory) -> None:
    await _seed_plan(session_factory)
    adapter = FakeAdapter()
    job = _job(Channel.SMS, email="patient@example.com")

    result = await _worker(session_factory, adapter).process(job, now=NOW)

    assert result.outcome == DeliveryOutcome.PERMANENT_FAILURE
    assert result.classification.code == "adapter_permanent"
    assert adapter.sent == []
    assert await _plan_status(session_factory) == PlanStatus.CANCELED


@pytest.mark.asyncio
async def test_unexpected_adapter_error_is_classified(session_factory) -> None:
    await _seed_plan(session_factory)
    worker = _worker(session_factory, FakeAdapter(ConnectionResetError(104, "reset by peer")))

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.TRANSIENT_FAILURE
    assert result.classification.code == "ECONNRESET"


@pytest.mark.asyncio
async def test_dev_override_forces_permanent_failure(session_factory) -> None:
    await _seed_plan(session_factory)
    adapter = FakeAdapter()
    worker = _worker(
        session_factory, adapter, force_permanent=frozenset({"patient@example.com"})
    )

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.PERMANENT_FAILURE
    assert result.classification.code == "dev_forced"
    assert adapter.sent == []


@pytest.mark.asyncio
async def test_dev_override_forces_transient_failure(session_factory) -> None:
    await _seed_plan(session_factory)
    worker = _worker(
        session_factory, FakeAdapter(), force_transient=frozenset({"+4915112345678"})
    )

    result = await worker.process(_job(Channel.SMS, phone_e164="+4915112345678"), now=NOW)

    assert result.outcome == DeliveryOutcome.TRANSIENT_FAILURE
    assert await _plan_status(session_factory) == PlanStatus.SCHEDULED


@pytest.mark.asyncio
async def test_late_success_after_cancellation_still_records_attempt(
    session_factory,
) -> None:
    await _seed_plan(session_factory)

    async def cancel_during_send() -> None:
        async with session_factory() as session:
            gateway = PlanStoreGateway(session)
            async with gateway.unit_of_work():
                await gateway.transition(JOB_KEY, {PlanStatus.SCHEDULED}, PlanStatus.CANCELED)

    worker = _worker(session_factory, FakeAdapter(on_send=cancel_during_send))

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.SENT
    assert not result.plan_transitioned
    assert await _plan_status(session_factory) == PlanStatus.CANCELED
    assert [row.status for row in await _attempts(session_factory)] == ["success"]


@pytest.mark.asyncio
async def test_finalize_exhausted_cancels_scheduled_plan(session_factory) -> None:
    await _seed_plan(session_factory)
    worker = _worker(session_factory, FakeAdapter())

    assert await worker.finalize_exhausted(JOB_KEY) is True
    assert await worker.finalize_exhausted(JOB_KEY) is False
    assert await _plan_status(session_factory) == PlanStatus.CANCELED


@pytest.mark.asyncio
async def test_metrics_are_recorded(session_factory) -> None:
    await _seed_plan(session_factory)
    worker = _worker(session_factory, FakeAdapter())

    await worker.process(_job(), now=NOW)
    await worker.process(_job(), now=NOW)

    registry = worker.metrics.registry
    labels = {"channel": "email", "outcome": "sent"}
    assert registry.get_sample_value("reminder_jobs_processed_total", labels) == 1
    skipped = {"channel": "email", "reason": "not_scheduled"}
    assert registry.get_sample_value("reminder_jobs_skipped_total", skipped) == 1


@pytest.mark.asyncio
async def test_attempt_number_conflict_is_retried(session_factory) -> None:
    await _seed_plan(session_factory)
    failure = SendFailure(SendOutcome.failed(error_code="ETIMEDOUT", error_text="timed out"))
    worker = _worker(session_factory, FakeAdapter(failure))
    await worker.process(_job(), now=NOW)

    real_next = PlanStoreGateway.next_attempt_number
    reads = []

    async def stale_first_read(self, job_key):
        reads.append(job_key)
        if len(reads) == 1:
            # An overlapping redelivery read its number before attempt 1 was written
            return 1
        return await real_next(self, job_key)

    with patch.object(PlanStoreGateway, "next_attempt_number", stale_first_read):
        result = await worker.process(_job(), now=NOW)

    assert result.attempt == 2
    assert len(reads) == 2
    assert [row.attempt for row in await _attempts(session_factory)] == [1, 2]


@pytest.mark.asyncio
async def test_hung_send_times_out_as_transient(session_factory) -> None:
    await _seed_plan(session_factory)

    async def hang() -> None:
        await asyncio.sleep(5)

    worker = _worker(session_factory, FakeAdapter(on_send=hang), send_timeout=0.05)

    result = await worker.process(_job(), now=NOW)

    assert result.outcome == DeliveryOutcome.TRANSIENT_FAILURE
    assert result.classification.code == "ETIMEDOUT"
    assert await _plan_status(session_factory) == PlanStatus.SCHEDULED
    assert [row.status for row in await _attempts(session_factory)] == ["transient_fail"]
