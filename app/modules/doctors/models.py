# app/modules/doctors/models.py
from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    SmallInteger,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, ReprMixin, TimestampMixin


class DoctorScheduleProfile(TimestampMixin, ReprMixin, Base):
    """
    A doctor's scheduling parameters. One row per doctor; the doctor
    identity itself lives in the profile service.
    """

    __tablename__ = "doctor_schedule_profiles"

    doctor_id: Mapped[uuid.UUID] = mapped_column(primary_key=True)

    # IANA name, e.g. "Europe/Amsterdam"
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)

    slot_grain_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    lead_time_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    horizon_days: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    default_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    pending_timeout_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    cancel_cutoff_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=120)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("slot_grain_minutes > 0", name="ck_profile_grain_positive"),
        CheckConstraint(
            "default_duration_minutes % slot_grain_minutes = 0",
            name="ck_profile_duration_grain",
        ),
        CheckConstraint("horizon_days >= 1", name="ck_profile_horizon"),
        CheckConstraint("lead_time_minutes >= 0", name="ck_profile_lead_time"),
    )


class WeeklyAvailabilityInterval(ReprMixin, Base):
    """
    One interval of the recurring weekly template. The template is always
    replaced as a whole.
    """

    __tablename__ = "weekly_availability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="CASCADE"),
        nullable=False,
    )

    # 0 = Monday ... 6 = Sunday
    weekday: Mapped[int] = mapped_column(SmallInteger, nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)

    __table_args__ = (
        CheckConstraint("weekday BETWEEN 0 AND 6", name="ck_weekly_weekday"),
        CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_weekly_bounds"),
        CheckConstraint("start_minute < end_minute", name="ck_weekly_time_order"),
        UniqueConstraint("doctor_id", "weekday", "start_minute", name="uq_weekly_doctor_day_start"),
        Index("ix_weekly_doctor_day", "doctor_id", "weekday"),
    )


class UnavailabilityOverrideRecord(TimestampMixin, ReprMixin, Base):
    """
    One-off blackout for a (doctor, date). `blocked` holds [start, end)
    minute pairs.
    """

    __tablename__ = "unavailability_overrides"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="CASCADE"),
        nullable=False,
    )
    override_date: Mapped[date] = mapped_column(Date, nullable=False)
    blocked: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        UniqueConstraint("doctor_id", "override_date", name="uq_override_doctor_date"),
        Index("ix_override_doctor_date", "doctor_id", "override_date"),
    )
