"""Appointment shadow table model using SQLAlchemy Core."""

from sqlalchemy import (
    CheckConstraint,
    Column,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
    func,
)

from reminder_service.models.base import IdType, Timestamp, metadata

# One row per (appointment, version); the highest version is the current one
appointment_shadows = Table(
    "appointment_shadows",
    metadata,
    Column("id", IdType, primary_key=True, autoincrement=True),
    Column("appointment_id", String(128), nullable=False),
    Column("version", Integer, nullable=False),
    Column("clinic_id", String(128), nullable=False),
    Column("patient_id", String(128), nullable=False),
    Column("patient_tz", String(64), nullable=False),
    Column("channel_preference", String(10), nullable=False),
    # Contact
    Column("patient_email", Text, nullable=True),
    Column("patient_phone_e164", String(20), nullable=True),
    Column("start_at_utc", Timestamp, nullable=False),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("created_at", Timestamp, nullable=False, server_default=func.now()),
    # Constraints
    UniqueConstraint("appointment_id", "version", name="uq_appointment_shadows_version"),
    CheckConstraint("version >= 0", name="appointment_shadows_version_check"),
    CheckConstraint(
        "status IN ('active', 'canceled')",
        name="appointment_shadows_status_check",
    ),
    CheckConstraint(
        "channel_preference IN ('email', 'sms')",
        name="appointment_shadows_channel_check",
    ),
    Index("idx_appointment_shadows_clinic", "clinic_id"),
    Index("idx_appointment_shadows_patient", "patient_id"),
)
