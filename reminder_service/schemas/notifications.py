"""Reminder plan, job payload and upcoming-list schemas."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SlotKind(str, Enum):
    """Reminder slot enumeration."""

    T_MINUS_24H = "T_MINUS_24H"  # far horizon
    T_MINUS_2H = "T_MINUS_2H"  # near horizon


class Channel(str, Enum):
    """Delivery channel enumeration."""

    EMAIL = "email"
    SMS = "sms"


class PlanStatus(str, Enum):
    """Schedule plan status enumeration."""

    SCHEDULED = "scheduled"
    EXPIRED = "expired"
    SENT = "sent"
    CANCELED = "canceled"


class WindowRule(str, Enum):
    """Which quiet-hours clamping branch produced the planned time."""

    WITHIN_WINDOW = "within_window"
    BEFORE_WINDOW = "before_window_clamped_same_day"
    AFTER_WINDOW = "after_window_clamped_next_day"


class AttemptStatus(str, Enum):
    """Delivery attempt status enumeration."""

    SUCCESS = "success"
    TRANSIENT_FAIL = "transient_fail"
    PERMANENT_FAIL = "permanent_fail"


class PlannedSlot(BaseModel):
    """One planned reminder produced by the slot planner."""

    model_config = ConfigDict(frozen=True)

    slot_kind: SlotKind
    planned_local: datetime
    planned_local_iso: str
    planned_utc: datetime
    planned_utc_iso: str
    status: PlanStatus
    window_rule: WindowRule

    def preview(self) -> "PlanPreviewItem":
        """Render the slot the way the events endpoint reports it."""
        return PlanPreviewItem(
            slot_kind=self.slot_kind,
            planned_local=self.planned_local_iso,
            planned_utc=self.planned_utc_iso,
            status=self.status,
            window_rule=self.window_rule,
        )


class PlanPreviewItem(BaseModel):
    """Plan preview entry returned to the event producer."""

    model_config = ConfigDict(populate_by_name=True)

    slot_kind: SlotKind = Field(..., alias="slotKind")
    planned_local: str = Field(..., alias="plannedLocal")
    planned_utc: str = Field(..., alias="plannedUTC")
    status: PlanStatus
    window_rule: WindowRule = Field(..., alias="windowRule")


class Recipient(BaseModel):
    """Contact details copied into the job payload."""

    model_config = ConfigDict(populate_by_name=True)

    email: str | None = None
    phone_e164: str | None = Field(None, alias="phoneE164")


class Trace(BaseModel):
    """Tracing context carried from ingress to the worker."""

    model_config = ConfigDict(populate_by_name=True)

    request_id: str | None = Field(None, alias="requestId")


class ReminderJob(BaseModel):
    """Payload stored on the job queue for one reminder delivery."""

    model_config = ConfigDict(populate_by_name=True)

    job_key: str = Field(..., alias="jobKey")
    appointment_id: str = Field(..., alias="appointmentId")
    slot_kind: SlotKind = Field(..., alias="slotKind")
    version: int
    clinic_id: str = Field(..., alias="clinicId")
    channel: Channel
    recipient: Recipient
    patient_tz: str = Field(..., alias="patientTZ")
    planned_local: str = Field(..., alias="plannedLocal")
    planned_utc: datetime = Field(..., alias="plannedUTC")
    trace: Trace | None = None

    def to_payload(self) -> dict:
        """JSON-compatible payload using the wire field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class UpcomingItem(BaseModel):
    """Scheduled reminder enriched with the latest appointment shadow."""

    model_config = ConfigDict(populate_by_name=True)

    appointment_id: str = Field(..., alias="appointmentId")
    slot_kind: SlotKind = Field(..., alias="slotKind")
    planned_local: str = Field(..., alias="plannedLocal")
    planned_utc: datetime = Field(..., alias="plannedUTC")
    window_rule: WindowRule = Field(..., alias="windowRule")
    status: PlanStatus
    clinic_id: str | None = Field(None, alias="clinicId")
    patient_id: str | None = Field(None, alias="patientId")
    version: int | None = None


class UpcomingResponse(BaseModel):
    """Schema for the upcoming reminders list."""

    model_config = ConfigDict(populate_by_name=True)

    items: list[UpcomingItem]
    next_cursor: str | None = Field(None, alias="nextCursor")
