"""initial scheduling schema

Revision ID: 0001
Revises:
Create Date: 2025-03-01 00:00:00
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "doctor_schedule_profiles",
        sa.Column("doctor_id", sa.Uuid(), primary_key=True),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("slot_grain_minutes", sa.Integer(), nullable=False),
        sa.Column("lead_time_minutes", sa.Integer(), nullable=False),
        sa.Column("horizon_days", sa.Integer(), nullable=False),
        sa.Column("default_duration_minutes", sa.Integer(), nullable=False),
        sa.Column("pending_timeout_minutes", sa.Integer(), nullable=False),
        sa.Column("cancel_cutoff_minutes", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("slot_grain_minutes > 0", name="ck_profile_grain_positive"),
        sa.CheckConstraint(
            "default_duration_minutes % slot_grain_minutes = 0", name="ck_profile_duration_grain"
        ),
        sa.CheckConstraint("horizon_days >= 1", name="ck_profile_horizon"),
        sa.CheckConstraint("lead_time_minutes >= 0", name="ck_profile_lead_time"),
    )

    op.create_table(
        "weekly_availability",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "doctor_id",
            sa.Uuid(),
            sa.ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("weekday", sa.SmallInteger(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_weekly_weekday"),
        sa.CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_weekly_bounds"),
        sa.CheckConstraint("start_minute < end_minute", name="ck_weekly_time_order"),
        sa.UniqueConstraint("doctor_id", "weekday", "start_minute", name="uq_weekly_doctor_day_start"),
    )
    op.create_index("ix_weekly_doctor_day", "weekly_availability", ["doctor_id", "weekday"])

    op.create_table(
        "unavailability_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "doctor_id",
            sa.Uuid(),
            sa.ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("override_date", sa.Date(), nullable=False),
        sa.Column("blocked", sa.JSON(), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("doctor_id", "override_date", name="uq_override_doctor_date"),
    )
    op.create_index(
        "ix_override_doctor_date", "unavailability_overrides", ["doctor_id", "override_date"]
    )

    op.create_table(
        "appointments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "doctor_id",
            sa.Uuid(),
            sa.ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("patient_id", sa.Uuid(), nullable=False),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.Column("mode", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("payment_captured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pending_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("metadata", sa.JSON(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("start_minute < end_minute", name="ck_appt_time_order"),
        sa.CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_appt_bounds"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'no_show', 'cancelled')",
            name="ck_appt_status_valid",
        ),
        sa.CheckConstraint("mode IN ('in_person', 'video', 'phone')", name="ck_appt_mode_valid"),
    )
    op.create_index(
        "ix_appt_doctor_date_status", "appointments", ["doctor_id", "appointment_date", "status"]
    )
    op.create_index("ix_appt_patient_date", "appointments", ["patient_id", "appointment_date"])
    op.create_index("ix_appt_status_pending_expiry", "appointments", ["status", "pending_expires_at"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("target_table", sa.String(64), nullable=False),
        sa.Column("target_id", sa.Uuid(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_audit_target", "audit_logs", ["target_table", "target_id"])


def downgrade() -> None:
    op.drop_index("ix_audit_target", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_appt_status_pending_expiry", table_name="appointments")
    op.drop_index("ix_appt_patient_date", table_name="appointments")
    op.drop_index("ix_appt_doctor_date_status", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("ix_override_doctor_date", table_name="unavailability_overrides")
    op.drop_table("unavailability_overrides")
    op.drop_index("ix_weekly_doctor_day", table_name="weekly_availability")
    op.drop_table("weekly_availability")
    op.drop_table("doctor_schedule_profiles")
