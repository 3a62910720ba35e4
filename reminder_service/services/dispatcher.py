"""Job key derivation and reminder dispatch."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from reminder_service.core.clock import as_utc, utcnow
from reminder_service.core.queue import JobQueue
from reminder_service.schemas.notifications import Channel, ReminderJob, SlotKind

logger = structlog.get_logger(__name__)

# Lower is served first
NEAR_HORIZON_PRIORITY = 5
FAR_HORIZON_PRIORITY = 10

CHANNEL_QUEUES = {
    Channel.EMAIL: "deliver_email",
    Channel.SMS: "deliver_sms",
}


def job_key_for(appointment_id: str, slot_kind: SlotKind, version: int) -> str:
    """Deterministic job key; also used as the queue job id."""
    return f"reminder:{appointment_id}:{slot_kind.value}:{version}"


def priority_for(slot_kind: SlotKind) -> int:
    if slot_kind == SlotKind.T_MINUS_2H:
        return NEAR_HORIZON_PRIORITY
    return FAR_HORIZON_PRIORITY


def queue_for_channel(channel: Channel) -> str:
    return CHANNEL_QUEUES[channel]


def delay_until(planned_utc: datetime, now: datetime) -> timedelta:
    """Time left until the planned instant, never negative."""
    return max(timedelta(0), as_utc(planned_utc) - as_utc(now))


class Dispatcher:
    """Submits scheduled reminders to the per-channel queues."""

    def __init__(self, queue: JobQueue, clock: Callable[[], datetime] = utcnow):
        self.queue = queue
        self.clock = clock

    def defer_for(self, job: ReminderJob, now: datetime | None = None) -> timedelta:
        """
        Deferral for a job: the delay plus a priority tiebreak in milliseconds.

        arq has no job priority, so near-horizon reminders are ordered ahead of
        far-horizon reminders due at the same instant by deferring them less.
        """
        delay = delay_until(job.planned_utc, now or self.clock())
        return delay + timedelta(milliseconds=priority_for(job.slot_kind))

    async def dispatch(self, job: ReminderJob) -> bool:
        """
        Enqueue one reminder job.

        Returns:
            True if a new job was queued, False if the job key was already known
        """
        queue_name = queue_for_channel(job.channel)
        defer_by = self.defer_for(job)
        queued = await self.queue.submit(
            queue_name=queue_name,
            job_id=job.job_key,
            payload=job.to_payload(),
            defer_by=defer_by,
        )

        if queued:
            logger.info(
                "reminder_dispatched",
                job_key=job.job_key,
                queue=queue_name,
                priority=priority_for(job.slot_kind),
                defer_seconds=round(defer_by.total_seconds(), 3),
            )
        else:
            logger.info("reminder_already_dispatched", job_key=job.job_key, queue=queue_name)
        return queued
