"""Persistence gateway for appointment shadows, schedule plans and attempts."""

from collections.abc import AsyncIterator, Collection
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import and_, func, insert, select, text, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reminder_service.core.clock import as_utc, utcnow
from reminder_service.core.exceptions import DuplicateVersionError
from reminder_service.models.appointments import appointment_shadows
from reminder_service.models.notifications import delivery_attempts, schedule_plans
from reminder_service.schemas.appointments import AppointmentEvent, ShadowStatus
from reminder_service.schemas.notifications import (
    AttemptStatus,
    Channel,
    PlannedSlot,
    PlanStatus,
    SlotKind,
)


class Admission(str, Enum):
    """Result of admitting an event version."""

    ADMITTED = "admitted"
    STALE = "stale"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class AdmissionResult:
    status: Admission
    latest_version: int | None = None


@dataclass(frozen=True)
class PlanRecord:
    """Schedule plan row as seen by the delivery worker."""

    job_key: str
    appointment_id: str
    slot_kind: SlotKind
    version: int
    status: PlanStatus
    planned_utc: datetime
    planned_local_iso: str

    @classmethod
    def from_row(cls, row: Row[Any]) -> "PlanRecord":
        return cls(
            job_key=row.job_key,
            appointment_id=row.appointment_id,
            slot_kind=SlotKind(row.slot_kind),
            version=row.version,
            status=PlanStatus(row.status),
            planned_utc=as_utc(row.planned_utc),
            planned_local_iso=row.planned_local_iso,
        )


def shadow_values(event: AppointmentEvent, status: ShadowStatus) -> dict[str, Any]:
    """Column values for a shadow row built from an inbound event."""
    return {
        "appointment_id": event.appointment_id,
        "version": event.version,
        "clinic_id": event.clinic_id,
        "patient_id": event.patient.id,
        "patient_tz": event.patient.tz,
        "channel_preference": event.patient.channel_preference.value,
        "patient_email": event.patient.email,
        "patient_phone_e164": event.patient.phone_e164,
        "start_at_utc": as_utc(event.start_at),
        "status": status.value,
    }


class PlanStoreGateway:
    """Version-gated access to the reminder tables.

    Methods only execute statements; the caller owns the transaction, usually
    through ``unit_of_work()``.
    """

    def __init__(self, db: AsyncSession):
        """Initialize gateway with database session."""
        self.db = db

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["PlanStoreGateway"]:
        """Commit on success, roll back on any error."""
        try:
            yield self
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

    async def lock_appointment(self, appointment_id: str) -> None:
        """Serialize event processing per appointment until the transaction ends."""
        if self.db.get_bind().dialect.name != "postgresql":
            return
        await self.db.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:key))"),
            {"key": f"appointment:{appointment_id}"},
        )

    async def latest_version(self, appointment_id: str) -> int | None:
        """Highest recorded version for an appointment, if any."""
        stmt = select(func.max(appointment_shadows.c.version)).where(
            appointment_shadows.c.appointment_id == appointment_id
        )
        result = await self.db.execute(stmt)
        return result.scalar()

    async def _shadow_exists(self, appointment_id: str, version: int) -> bool:
        stmt = select(appointment_shadows.c.id).where(
            and_(
                appointment_shadows.c.appointment_id == appointment_id,
                appointment_shadows.c.version == version,
            )
        )
        result = await self.db.execute(stmt)
        return result.first() is not None

    async def admit_event(
        self,
        appointment_id: str,
        version: int,
        payload: AppointmentEvent,
    ) -> AdmissionResult:
        """
        Record a new appointment version unless it is stale or already known.

        Args:
            appointment_id: Appointment ID
            version: Incoming version
            payload: Event carrying the shadow fields

        Returns:
            ADMITTED with the new row written, STALE with the latest version,
            or DUPLICATE when the exact version already exists

        Raises:
            DuplicateVersionError: If a concurrent writer inserted the same
                version between the check and the insert
        """
        latest = await self.latest_version(appointment_id)
        if latest is not None and latest > version:
            return AdmissionResult(Admission.STALE, latest)
        if latest == version or await self._shadow_exists(appointment_id, version):
            return AdmissionResult(Admission.DUPLICATE, latest)

        try:
            await self.db.execute(
                insert(appointment_shadows).values(**shadow_values(payload, ShadowStatus.ACTIVE))
            )
        except IntegrityError as exc:
            # Lost a race on (appointment_id, version); the caller's unit of work rolls back
            raise DuplicateVersionError(appointment_id, version) from exc

        return AdmissionResult(Admission.ADMITTED, version)

    async def apply_cancellation(
        self,
        appointment_id: str,
        version: int,
        payload: AppointmentEvent,
    ) -> int:
        """
        Upsert a canceled shadow for the version and cancel every scheduled plan.

        Returns:
            Number of plans moved to canceled
        """
        existing = await self._shadow_exists(appointment_id, version)
        if existing:
            await self.db.execute(
                update(appointment_shadows)
                .where(
                    and_(
                        appointment_shadows.c.appointment_id == appointment_id,
                        appointment_shadows.c.version == version,
                    )
                )
                .values(status=ShadowStatus.CANCELED.value)
            )
        else:
            await self.db.execute(
                insert(appointment_shadows).values(
                    **shadow_values(payload, ShadowStatus.CANCELED)
                )
            )

        result = await self.db.execute(
            update(schedule_plans)
            .where(
                and_(
                    schedule_plans.c.appointment_id == appointment_id,
                    schedule_plans.c.status == PlanStatus.SCHEDULED.value,
                )
            )
            .values(status=PlanStatus.CANCELED.value, updated_at=utcnow())
        )
        return result.rowcount or 0

    async def replace_plan(
        self,
        appointment_id: str,
        slot: PlannedSlot,
        *,
        version: int,
        job_key: str,
    ) -> int:
        """
        Cancel the active plan for the slot, then insert the new plan.

        Returns:
            Number of superseded plans canceled (0 or 1)
        """
        superseded = await self.db.execute(
            update(schedule_plans)
            .where(
                and_(
                    schedule_plans.c.appointment_id == appointment_id,
                    schedule_plans.c.slot_kind == slot.slot_kind.value,
                    schedule_plans.c.status == PlanStatus.SCHEDULED.value,
                )
            )
            .values(status=PlanStatus.CANCELED.value, updated_at=utcnow())
        )

        await self.db.execute(
            insert(schedule_plans).values(
                appointment_id=appointment_id,
                slot_kind=slot.slot_kind.value,
                version=version,
                planned_local_at=as_utc(slot.planned_local),
                planned_local_iso=slot.planned_local_iso,
                planned_utc=slot.planned_utc,
                window_rule=slot.window_rule.value,
                status=slot.status.value,
                job_key=job_key,
            )
        )
        return superseded.rowcount or 0

    async def transition(
        self,
        job_key: str,
        from_allowed: Collection[PlanStatus],
        to_status: PlanStatus,
    ) -> bool:
        """
        Move a plan to ``to_status`` if its current status is allowed.

        Returns:
            True if the row changed, False if the transition was skipped
        """
        result = await self.db.execute(
            update(schedule_plans)
            .where(
                and_(
                    schedule_plans.c.job_key == job_key,
                    schedule_plans.c.status.in_([status.value for status in from_allowed]),
                )
            )
            .values(status=to_status.value, updated_at=utcnow())
        )
        return bool(result.rowcount)

    async def get_plan(self, job_key: str) -> PlanRecord | None:
        """Plan for a job key, or None if it does not exist."""
        result = await self.db.execute(
            select(schedule_plans).where(schedule_plans.c.job_key == job_key)
        )
        row = result.fetchone()
        return PlanRecord.from_row(row) if row else None

    async def next_attempt_number(self, job_key: str) -> int:
        """1-based attempt number for the next attempt of a job key."""
        result = await self.db.execute(
            select(func.max(delivery_attempts.c.attempt)).where(
                delivery_attempts.c.job_key == job_key
            )
        )
        return (result.scalar() or 0) + 1

    async def record_attempt(
        self,
        *,
        job_key: str,
        channel: Channel,
        started_at: datetime,
        finished_at: datetime,
        status: AttemptStatus,
        provider_message_id: str | None,
        classification: dict[str, Any] | None,
    ) -> int:
        """Append a delivery attempt row and return its attempt number."""
        attempt = await self.next_attempt_number(job_key)
        latency_ms = max(0, int((finished_at - started_at).total_seconds() * 1000))
        await self.db.execute(
            insert(delivery_attempts).values(
                job_key=job_key,
                channel=channel.value,
                attempt=attempt,
                started_at=started_at,
                finished_at=finished_at,
                status=status.value,
                provider_message_id=provider_message_id or "",
                latency_ms=latency_ms,
                classification=classification,
            )
        )
        return attempt

    async def list_upcoming(
        self,
        *,
        now: datetime,
        horizon: datetime,
        clinic_id: str | None = None,
        patient_id: str | None = None,
        limit: int = 50,
    ) -> list[Row[Any]]:
        """Scheduled plans due in (now, horizon], joined to the latest shadow."""
        latest = (
            select(
                appointment_shadows.c.appointment_id,
                func.max(appointment_shadows.c.version).label("version"),
            )
            .group_by(appointment_shadows.c.appointment_id)
            .subquery()
        )

        conditions = [
            schedule_plans.c.status == PlanStatus.SCHEDULED.value,
            schedule_plans.c.planned_utc > now,
            schedule_plans.c.planned_utc <= horizon,
        ]
        if clinic_id:
            conditions.append(appointment_shadows.c.clinic_id == clinic_id)
        if patient_id:
            conditions.append(appointment_shadows.c.patient_id == patient_id)

        stmt = (
            select(
                schedule_plans.c.appointment_id,
                schedule_plans.c.slot_kind,
                schedule_plans.c.planned_local_iso,
                schedule_plans.c.planned_utc,
                schedule_plans.c.window_rule,
                schedule_plans.c.status,
                appointment_shadows.c.clinic_id,
                appointment_shadows.c.patient_id,
                appointment_shadows.c.version,
            )
            .select_from(
                schedule_plans.join(
                    latest, latest.c.appointment_id == schedule_plans.c.appointment_id
                ).join(
                    appointment_shadows,
                    and_(
                        appointment_shadows.c.appointment_id == latest.c.appointment_id,
                        appointment_shadows.c.version == latest.c.version,
                    ),
                )
            )
            .where(and_(*conditions))
            .order_by(schedule_plans.c.planned_utc.asc(), schedule_plans.c.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.fetchall())
