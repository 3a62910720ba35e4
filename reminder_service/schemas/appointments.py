"""Appointment event schemas for request/response validation."""

import re
from enum import Enum
from typing import Any, Literal

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, field_validator, model_validator

from reminder_service.schemas.notifications import Channel, PlanPreviewItem

_COMPACT_OFFSET = re.compile(r"([+-]\d{2})(\d{2})$")


class EventType(str, Enum):
    """Appointment lifecycle event types."""

    CREATED = "appointment.created"
    UPDATED = "appointment.updated"
    CANCELED = "appointment.canceled"


class ShadowStatus(str, Enum):
    """Appointment shadow status enumeration."""

    ACTIVE = "active"
    CANCELED = "canceled"


class PatientPayload(BaseModel):
    """Patient block of an inbound event."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=128)
    tz: str = Field(..., min_length=1, max_length=64)
    channel_preference: Channel = Field(..., alias="channelPreference")
    email: str | None = Field(None, max_length=320)
    phone_e164: str | None = Field(None, alias="phoneE164", pattern=r"^\+[1-9]\d{6,14}$")

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        """Minimal shape check; the SMTP server has the final word."""
        if v is not None and (v.count("@") != 1 or v.startswith("@") or v.endswith("@")):
            raise ValueError("email must look like local@domain")
        return v

    @model_validator(mode="after")
    def validate_contact_for_channel(self) -> "PatientPayload":
        """The preferred channel needs its contact field."""
        if self.channel_preference == Channel.EMAIL and not self.email:
            raise ValueError("email required for channelPreference=email")
        if self.channel_preference == Channel.SMS and not self.phone_e164:
            raise ValueError("phoneE164 required for channelPreference=sms")
        return self


class AppointmentEvent(BaseModel):
    """Inbound appointment event."""

    model_config = ConfigDict(populate_by_name=True)

    type: EventType
    appointment_id: str = Field(..., alias="appointmentId", min_length=1, max_length=128)
    version: int = Field(..., ge=0)
    clinic_id: str = Field(..., alias="clinicId", min_length=1, max_length=128)
    patient: PatientPayload
    start_at: AwareDatetime = Field(..., alias="startAt")
    metadata: dict[str, Any] | None = None

    @field_validator("start_at", mode="before")
    @classmethod
    def normalize_offset(cls, v: Any) -> Any:
        """Normalize compact offsets like +0200 to +02:00."""
        if isinstance(v, str):
            return _COMPACT_OFFSET.sub(r"\1:\2", v.strip())
        return v


class EventAcceptedResponse(BaseModel):
    """Response for an accepted event."""

    model_config = ConfigDict(populate_by_name=True)

    status: Literal["accepted"] = "accepted"
    appointment_id: str = Field(..., alias="appointmentId")
    version: int
    type: EventType
    plan: list[PlanPreviewItem] | None = None


class EventNoOpResponse(BaseModel):
    """Response for an event that changed nothing."""

    status: Literal["no-op"] = "no-op"
    reason: str = "duplicate_version"
