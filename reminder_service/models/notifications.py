"""Reminder plan and delivery attempt models."""

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
    text,
)

from reminder_service.models.base import IdType, JSONType, Timestamp, metadata

schedule_plans = Table(
    "schedule_plans",
    metadata,
    Column("id", IdType, primary_key=True, autoincrement=True),
    Column("appointment_id", String(128), nullable=False),
    Column("slot_kind", String(20), nullable=False),
    Column("version", Integer, nullable=False),
    Column("planned_local_at", Timestamp, nullable=False),
    Column("planned_local_iso", String(40), nullable=False),
    Column("planned_utc", Timestamp, nullable=False),
    Column("window_rule", String(64), nullable=False),
    Column("status", String(20), nullable=False, server_default="scheduled"),
    Column("job_key", String(255), nullable=False, unique=True),
    Column("created_at", Timestamp, nullable=False, server_default=func.now()),
    Column("updated_at", Timestamp, nullable=False, server_default=func.now()),
    CheckConstraint(
        "slot_kind IN ('T_MINUS_24H', 'T_MINUS_2H')",
        name="schedule_plans_slot_kind_check",
    ),
    CheckConstraint(
        "status IN ('scheduled', 'expired', 'sent', 'canceled')",
        name="schedule_plans_status_check",
    ),
    Index("idx_schedule_plans_appointment", "appointment_id"),
    Index("idx_schedule_plans_status_planned", "status", "planned_utc"),
    # At most one active plan per (appointment, slot)
    Index(
        "uq_schedule_plans_active_slot",
        "appointment_id",
        "slot_kind",
        unique=True,
        postgresql_where=text("status = 'scheduled'"),
        sqlite_where=text("status = 'scheduled'"),
    ),
)

delivery_attempts = Table(
    "delivery_attempts",
    metadata,
    Column("id", IdType, primary_key=True, autoincrement=True),
    Column("job_key", String(255), nullable=False),
    Column("channel", String(10), nullable=False),
    Column("attempt", Integer, nullable=False),
    Column("started_at", Timestamp, nullable=False),
    Column("finished_at", Timestamp, nullable=False),
    Column("status", String(20), nullable=False),
    Column("provider_message_id", Text, nullable=False, server_default=""),
    Column("latency_ms", Integer, nullable=False),
    Column("classification", JSONType, nullable=True),
    CheckConstraint(
        "status IN ('success', 'transient_fail', 'permanent_fail')",
        name="delivery_attempts_status_check",
    ),
    CheckConstraint("attempt >= 1", name="delivery_attempts_attempt_check"),
    UniqueConstraint("job_key", "attempt", name="uq_delivery_attempts_job_attempt"),
)
