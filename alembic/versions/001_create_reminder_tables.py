"""Create appointment shadow, schedule plan and delivery attempt tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        "appointment_shadows",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("appointment_id", sa.String(length=128), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("clinic_id", sa.String(length=128), nullable=False),
        sa.Column("patient_id", sa.String(length=128), nullable=False),
        sa.Column("patient_tz", sa.String(length=64), nullable=False),
        sa.Column("channel_preference", sa.String(length=10), nullable=False),
        sa.Column("patient_email", sa.Text(), nullable=True),
        sa.Column("patient_phone_e164", sa.String(length=20), nullable=True),
        sa.Column("start_at_utc", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="active", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("appointment_id", "version", name="uq_appointment_shadows_version"),
        sa.CheckConstraint("version >= 0", name="appointment_shadows_version_check"),
        sa.CheckConstraint(
            "status IN ('active', 'canceled')",
            name="appointment_shadows_status_check",
        ),
        sa.CheckConstraint(
            "channel_preference IN ('email', 'sms')",
            name="appointment_shadows_channel_check",
        ),
    )
    op.create_index("idx_appointment_shadows_clinic", "appointment_shadows", ["clinic_id"])
    op.create_index("idx_appointment_shadows_patient", "appointment_shadows", ["patient_id"])

    op.create_table(
        "schedule_plans",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("appointment_id", sa.String(length=128), nullable=False),
        sa.Column("slot_kind", sa.String(length=20), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("planned_local_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("planned_local_iso", sa.String(length=40), nullable=False),
        sa.Column("planned_utc", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("window_rule", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="scheduled", nullable=False),
        sa.Column("job_key", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("job_key"),
        sa.CheckConstraint(
            "slot_kind IN ('T_MINUS_24H', 'T_MINUS_2H')",
            name="schedule_plans_slot_kind_check",
        ),
        sa.CheckConstraint(
            "status IN ('scheduled', 'expired', 'sent', 'canceled')",
            name="schedule_plans_status_check",
        ),
    )
    op.create_index("idx_schedule_plans_appointment", "schedule_plans", ["appointment_id"])
    op.create_index(
        "idx_schedule_plans_status_planned", "schedule_plans", ["status", "planned_utc"]
    )
    op.create_index(
        "uq_schedule_plans_active_slot",
        "schedule_plans",
        ["appointment_id", "slot_kind"],
        unique=True,
        postgresql_where=sa.text("status = 'scheduled'"),
    )

    op.create_table(
        "delivery_attempts",
        sa.Column("id", sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column("job_key", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=10), nullable=False),
        sa.Column("attempt", sa.Integer(), nullable=False),
        sa.Column("started_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("finished_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("provider_message_id", sa.Text(), server_default="", nullable=False),
        sa.Column("latency_ms", sa.Integer(), nullable=False),
        sa.Column("classification", postgresql.JSONB(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "status IN ('success', 'transient_fail', 'permanent_fail')",
            name="delivery_attempts_status_check",
        ),
        sa.CheckConstraint("attempt >= 1", name="delivery_attempts_attempt_check"),
        sa.UniqueConstraint("job_key", "attempt", name="uq_delivery_attempts_job_attempt"),
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_table("delivery_attempts")

    op.drop_index("uq_schedule_plans_active_slot", table_name="schedule_plans")
    op.drop_index("idx_schedule_plans_status_planned", table_name="schedule_plans")
    op.drop_index("idx_schedule_plans_appointment", table_name="schedule_plans")
    op.drop_table("schedule_plans")

    op.drop_index("idx_appointment_shadows_patient", table_name="appointment_shadows")
    op.drop_index("idx_appointment_shadows_clinic", table_name="appointment_shadows")
    op.drop_table("appointment_shadows")
