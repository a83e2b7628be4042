# app/modules/appointments/models.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, ReprMixin, TimestampMixin, UUIDPKMixin
from app.modules.scheduling.timemodel import Interval


class ApptStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


ACTIVE_STATUSES = frozenset({ApptStatus.PENDING, ApptStatus.CONFIRMED})
TERMINAL_STATUSES = frozenset({ApptStatus.COMPLETED, ApptStatus.NO_SHOW, ApptStatus.CANCELLED})


class ApptMode(str, PyEnum):
    IN_PERSON = "in_person"
    VIDEO = "video"
    PHONE = "phone"


class Appointment(UUIDPKMixin, TimestampMixin, ReprMixin, Base):
    """
    A single booking. Date and minutes are clinic-local wall clock;
    end_minute may be 1440 (24:00).
    """

    __tablename__ = "appointments"

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("doctor_schedule_profiles.doctor_id", ondelete="RESTRICT"),
        nullable=False,
    )
    # Opaque to the scheduling core
    patient_id: Mapped[uuid.UUID] = mapped_column(nullable=False)

    appointment_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)

    mode: Mapped[str] = mapped_column(String(16), nullable=False, default=ApptMode.IN_PERSON.value)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApptStatus.PENDING.value,
        server_default=ApptStatus.PENDING.value,
    )

    cancellation_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    payment_captured_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    pending_expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Explicit extension map ("metadata" is reserved on declarative classes)
    meta: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("start_minute < end_minute", name="ck_appt_time_order"),
        CheckConstraint("start_minute >= 0 AND end_minute <= 1440", name="ck_appt_bounds"),
        CheckConstraint(
            "status IN ('pending', 'confirmed', 'completed', 'no_show', 'cancelled')",
            name="ck_appt_status_valid",
        ),
        CheckConstraint("mode IN ('in_person', 'video', 'phone')", name="ck_appt_mode_valid"),
        Index("ix_appt_doctor_date_status", "doctor_id", "appointment_date", "status"),
        Index("ix_appt_patient_date", "patient_id", "appointment_date"),
        Index("ix_appt_status_pending_expiry", "status", "pending_expires_at"),
    )

    @property
    def interval(self) -> Interval:
        return Interval(self.start_minute, self.end_minute)

    @property
    def status_enum(self) -> ApptStatus:
        return ApptStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status_enum in ACTIVE_STATUSES
