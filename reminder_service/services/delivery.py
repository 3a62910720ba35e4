"""Delivery worker: guard, send, classify, record, transition."""

import asyncio
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reminder_service.adapters import ChannelAdapter
from reminder_service.adapters.base import OutboundMessage
from reminder_service.config import Settings
from reminder_service.core.clock import utcnow
from reminder_service.core.exceptions import SendFailure
from reminder_service.core.metrics import ReminderMetrics
from reminder_service.schemas.notifications import (
    AttemptStatus,
    Channel,
    PlanStatus,
    ReminderJob,
)
from reminder_service.services.classifier import classify
from reminder_service.services.outcomes import (
    Classification,
    DeliveryClass,
    DeliveryOutcome,
    DeliveryResult,
    SendOutcome,
)
from reminder_service.services.plan_store import PlanStoreGateway
from reminder_service.services.templates import render_reminder_email, render_reminder_sms

logger = structlog.get_logger(__name__)

ATTEMPT_STATUS = {
    DeliveryClass.SUCCESS: AttemptStatus.SUCCESS,
    DeliveryClass.TRANSIENT: AttemptStatus.TRANSIENT_FAIL,
    DeliveryClass.PERMANENT: AttemptStatus.PERMANENT_FAIL,
}

RESULT_OUTCOME = {
    DeliveryClass.SUCCESS: DeliveryOutcome.SENT,
    DeliveryClass.TRANSIENT: DeliveryOutcome.TRANSIENT_FAILURE,
    DeliveryClass.PERMANENT: DeliveryOutcome.PERMANENT_FAILURE,
}

# Re-reads of the next attempt number before giving up on a write conflict
ATTEMPT_NUMBER_RETRIES = 3

# Plan status each verdict moves a scheduled plan to; transient leaves it alone
TARGET_STATUS = {
    DeliveryClass.SUCCESS: PlanStatus.SENT,
    DeliveryClass.PERMANENT: PlanStatus.CANCELED,
}


def recipient_for(job: ReminderJob) -> str | None:
    """Contact address for the job's channel, if the payload carries one."""
    if job.channel == Channel.EMAIL:
        return job.recipient.email
    return job.recipient.phone_e164


def build_message(job: ReminderJob, to: str) -> OutboundMessage:
    if job.channel == Channel.EMAIL:
        rendered = render_reminder_email(job)
        return OutboundMessage(
            to=to, text=rendered.text, subject=rendered.subject, html=rendered.html
        )
    return OutboundMessage(to=to, text=render_reminder_sms(job))


class DeliveryWorker:
    """
    Executes one reminder job against the plan store and a channel adapter.

    The guard session is closed before the adapter is called and a fresh
    session records the outcome, so no connection is held across the send.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: Mapping[Channel, ChannelAdapter],
        *,
        metrics: ReminderMetrics | None = None,
        early_fire_tolerance: timedelta = timedelta(minutes=5),
        send_timeout: float = 60.0,
        force_permanent: frozenset[str] = frozenset(),
        force_transient: frozenset[str] = frozenset(),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.adapters = adapters
        self.metrics = metrics or ReminderMetrics()
        self.early_fire_tolerance = early_fire_tolerance
        self.send_timeout = send_timeout
        self.force_permanent = force_permanent
        self.force_transient = force_transient
        self.clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        adapters: Mapping[Channel, ChannelAdapter],
        metrics: ReminderMetrics | None = None,
    ) -> "DeliveryWorker":
        return cls(
            session_factory,
            adapters,
            metrics=metrics,
            early_fire_tolerance=timedelta(seconds=settings.early_fire_tolerance_seconds),
            send_timeout=settings.delivery_send_timeout_seconds,
            force_permanent=settings.dev_force_permanent_recipients,
            force_transient=settings.dev_force_transient_recipients,
        )

    async def process(self, job: ReminderJob, *, now: datetime | None = None) -> DeliveryResult:
        """
        Run the guards, send once, and persist the attempt.

        Args:
            job: Job payload from the queue
            now: Evaluation instant for the early-fire guard

        Returns:
            DeliveryResult describing what happened; retry decisions are left
            to the caller
        """
        now = now or self.clock()
        log = logger.bind(job_key=job.job_key, channel=job.channel.value)

        async with self.session_factory() as session:
            plan = await PlanStoreGateway(session).get_plan(job.job_key)

        if plan is None:
            return self._skip(job, "plan_missing", log)
        if plan.status != PlanStatus.SCHEDULED:
            log.info("delivery_skipped_status", status=plan.status.value)
            return self._skip(job, "not_scheduled", log)
        if now + self.early_fire_tolerance < plan.planned_utc:
            return self._skip(job, "fired_early", log)

        started_at = self.clock()
        classification, provider_message_id = await self._attempt(job)
        finished_at = self.clock()

        attempt, transitioned = await self._record(
            job,
            classification,
            provider_message_id=provider_message_id,
            started_at=started_at,
            finished_at=finished_at,
        )

        outcome = RESULT_OUTCOME[classification.kind]
        self.metrics.observe_send(
            job.channel.value,
            outcome.value,
            (finished_at - started_at).total_seconds(),
        )
        log_event = {
            DeliveryOutcome.SENT: "delivery_sent",
            DeliveryOutcome.TRANSIENT_FAILURE: "delivery_transient_failure",
            DeliveryOutcome.PERMANENT_FAILURE: "delivery_permanent_failure",
        }[outcome]
        log_method = log.info if outcome == DeliveryOutcome.SENT else log.warning
        log_method(
            log_event,
            attempt=attempt,
            code=classification.code,
            provider_message_id=provider_message_id,
            plan_transitioned=transitioned,
        )

        return DeliveryResult(
            outcome=outcome,
            job_key=job.job_key,
            attempt=attempt,
            provider_message_id=provider_message_id,
            classification=classification,
            plan_transitioned=transitioned,
        )

    async def finalize_exhausted(self, job_key: str) -> bool:
        """Cancel a still-scheduled plan after the final transient attempt."""
        async with self.session_factory() as session:
            gateway = PlanStoreGateway(session)
            async with gateway.unit_of_work():
                canceled = await gateway.transition(
                    job_key, {PlanStatus.SCHEDULED}, PlanStatus.CANCELED
                )
        logger.warning("retries_exhausted", job_key=job_key, plan_canceled=canceled)
        return canceled

    def _skip(self, job: ReminderJob, reason: str, log: structlog.BoundLogger) -> DeliveryResult:
        log.info("delivery_skipped", reason=reason)
        self.metrics.observe_skip(job.channel.value, reason)
        return DeliveryResult(outcome=DeliveryOutcome.SKIPPED, job_key=job.job_key, reason=reason)

    def _forced(self, recipient: str) -> Classification | None:
        # Development overrides let a recipient simulate failures without a provider
        if recipient in self.force_permanent:
            return Classification(DeliveryClass.PERMANENT, "dev_forced", "forced permanent")
        if recipient in self.force_transient:
            return Classification(DeliveryClass.TRANSIENT, "dev_forced", "forced transient")
        return None

    async def _attempt(self, job: ReminderJob) -> tuple[Classification, str | None]:
        recipient = recipient_for(job)
        if not recipient:
            field = "email" if job.channel == Channel.EMAIL else "phoneE164"
            outcome = SendOutcome.failed(
                error_text=f"missing recipient.{field}",
                permanent=True,
            )
            return classify(outcome), None

        forced = self._forced(recipient)
        if forced is not None:
            return forced, None

        adapter = self.adapters[job.channel]
        try:
            provider_message_id = await asyncio.wait_for(
                adapter.send(build_message(job, recipient)), timeout=self.send_timeout
            )
        except SendFailure as exc:
            return classify(exc.outcome), None
        except TimeoutError as exc:
            logger.warning(
                "adapter_send_timeout", job_key=job.job_key, timeout_seconds=self.send_timeout
            )
            return classify(SendOutcome.from_exception(exc)), None
        except Exception as exc:
            logger.warning(
                "adapter_unexpected_error",
                job_key=job.job_key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return classify(SendOutcome.from_exception(exc)), None

        return classify(SendOutcome.sent(provider_message_id)), provider_message_id

    async def _record(
        self,
        job: ReminderJob,
        classification: Classification,
        *,
        provider_message_id: str | None,
        started_at: datetime,
        finished_at: datetime,
    ) -> tuple[int, bool]:
        # Overlapping redeliveries can race for the same attempt number; the
        # unique (job_key, attempt) constraint rejects the loser, which re-reads
        conflicts = 0
        while True:
            try:
                async with self.session_factory() as session:
                    gateway = PlanStoreGateway(session)
                    async with gateway.unit_of_work():
                        attempt = await gateway.record_attempt(
                            job_key=job.job_key,
                            channel=job.channel,
                            started_at=started_at,
                            finished_at=finished_at,
                            status=ATTEMPT_STATUS[classification.kind],
                            provider_message_id=provider_message_id,
                            classification=(
                                None
                                if classification.kind == DeliveryClass.SUCCESS
                                else classification.as_metadata()
                            ),
                        )
                        transitioned = False
                        target = TARGET_STATUS.get(classification.kind)
                        if target is not None:
                            transitioned = await gateway.transition(
                                job.job_key, {PlanStatus.SCHEDULED}, target
                            )
                return attempt, transitioned
            except IntegrityError:
                conflicts += 1
                if conflicts >= ATTEMPT_NUMBER_RETRIES:
                    raise
                logger.info(
                    "attempt_number_conflict", job_key=job.job_key, conflicts=conflicts
                )
