"""Appointment event intake: admit, plan, persist, then dispatch."""

from collections.abc import Callable
from datetime import datetime, time

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_service.core.clock import utcnow
from reminder_service.core.exceptions import (
    DuplicateVersionError,
    InvalidTemporalInput,
    StaleVersionError,
)
from reminder_service.schemas.appointments import (
    AppointmentEvent,
    EventAcceptedResponse,
    EventNoOpResponse,
    EventType,
)
from reminder_service.schemas.notifications import (
    PlannedSlot,
    PlanStatus,
    Recipient,
    ReminderJob,
    Trace,
)
from reminder_service.services.dispatcher import Dispatcher, job_key_for
from reminder_service.services.plan_store import Admission, PlanStoreGateway
from reminder_service.services.planner import DEFAULT_QUIET_END, DEFAULT_QUIET_START, plan_slots

logger = structlog.get_logger(__name__)


def build_job(
    event: AppointmentEvent,
    slot: PlannedSlot,
    request_id: str | None = None,
) -> ReminderJob:
    """Queue payload for one scheduled slot of an event."""
    return ReminderJob(
        job_key=job_key_for(event.appointment_id, slot.slot_kind, event.version),
        appointment_id=event.appointment_id,
        slot_kind=slot.slot_kind,
        version=event.version,
        clinic_id=event.clinic_id,
        channel=event.patient.channel_preference,
        recipient=Recipient(email=event.patient.email, phone_e164=event.patient.phone_e164),
        patient_tz=event.patient.tz,
        planned_local=slot.planned_local_iso,
        planned_utc=slot.planned_utc,
        trace=Trace(request_id=request_id) if request_id else None,
    )


class IntakeService:
    """Service for processing inbound appointment events."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: Dispatcher,
        *,
        quiet_start: time = DEFAULT_QUIET_START,
        quiet_end: time = DEFAULT_QUIET_END,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize service with database session and dispatcher."""
        self.gateway = PlanStoreGateway(db)
        self.dispatcher = dispatcher
        self.quiet_start = quiet_start
        self.quiet_end = quiet_end
        self.clock = clock

    async def handle_event(
        self,
        event: AppointmentEvent,
        request_id: str | None = None,
    ) -> EventAcceptedResponse | EventNoOpResponse:
        """
        Process one appointment event.

        Args:
            event: Validated event
            request_id: Request id carried into the job payloads

        Returns:
            Accepted response (with the plan preview for create/update) or a
            no-op response for a duplicate version

        Raises:
            StaleVersionError: If a newer version is already recorded
            InvalidTemporalInput: If the start time cannot be planned
        """
        log = logger.bind(appointment_id=event.appointment_id, version=event.version)

        if event.type == EventType.CANCELED:
            async with self.gateway.unit_of_work():
                await self._lock_and_check_version(event)
                canceled = await self.gateway.apply_cancellation(
                    event.appointment_id, event.version, event
                )
            log.info("appointment_canceled", plans_canceled=canceled)
            return EventAcceptedResponse(
                appointment_id=event.appointment_id,
                version=event.version,
                type=event.type,
            )

        try:
            async with self.gateway.unit_of_work():
                await self._lock_and_check_version(event)
                admission = await self.gateway.admit_event(
                    event.appointment_id, event.version, event
                )
                if admission.status == Admission.STALE:
                    raise StaleVersionError(
                        event.appointment_id, event.version, admission.latest_version or 0
                    )
                if admission.status == Admission.DUPLICATE:
                    log.info("duplicate_version_ignored")
                    return EventNoOpResponse()

                slots = self._plan(event, log)
                for slot in slots:
                    superseded = await self.gateway.replace_plan(
                        event.appointment_id,
                        slot,
                        version=event.version,
                        job_key=job_key_for(event.appointment_id, slot.slot_kind, event.version),
                    )
                    log.info(
                        "plan_replaced",
                        slot_kind=slot.slot_kind.value,
                        status=slot.status.value,
                        window_rule=slot.window_rule.value,
                        planned_utc=slot.planned_utc_iso,
                        superseded=superseded,
                    )
        except DuplicateVersionError:
            log.info("duplicate_version_race")
            return EventNoOpResponse()

        # Dispatch only after the plans are committed
        for slot in slots:
            if slot.status == PlanStatus.SCHEDULED:
                await self.dispatcher.dispatch(build_job(event, slot, request_id))

        return EventAcceptedResponse(
            appointment_id=event.appointment_id,
            version=event.version,
            type=event.type,
            plan=[slot.preview() for slot in slots],
        )

    async def _lock_and_check_version(self, event: AppointmentEvent) -> None:
        await self.gateway.lock_appointment(event.appointment_id)
        latest = await self.gateway.latest_version(event.appointment_id)
        if latest is not None and latest > event.version:
            raise StaleVersionError(event.appointment_id, event.version, latest)

    def _plan(self, event: AppointmentEvent, log: structlog.BoundLogger) -> list[PlannedSlot]:
        try:
            return plan_slots(
                event.start_at,
                event.patient.tz,
                quiet_start=self.quiet_start,
                quiet_end=self.quiet_end,
                now=self.clock(),
            )
        except InvalidTemporalInput as exc:
            log.warning("invalid_temporal_input", error=exc.message, tz=event.patient.tz)
            raise
