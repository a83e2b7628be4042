# app/modules/appointments/schemas.py
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.modules.appointments.models import Appointment, ApptMode
from app.modules.scheduling.timemodel import format_time


class AppointmentCreateRequest(BaseModel):
    """
    Payload to create appointment.
    - patient_id will be taken from current_user (role patient), not allowed to be sent by client.
    - times are clinic-local "HH:MM"; end is exclusive and may be "24:00".
    """
    doctor_id: UUID
    appointment_date: str = Field(..., examples=["2025-03-10"])
    start_time: str = Field(..., examples=["10:00"])
    end_time: str = Field(..., examples=["10:30"])
    mode: ApptMode = ApptMode.IN_PERSON
    reason: str = Field("", max_length=2000)


class AppointmentRescheduleRequest(BaseModel):
    appointment_date: str
    start_time: str
    end_time: str


class AppointmentCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=255)


class AppointmentStatusRequest(BaseModel):
    """
    confirmed comes from the payment collaborator (or admin);
    completed / no_show from the doctor.
    """
    status: Literal["confirmed", "completed", "no_show"]


class AppointmentNotesRequest(BaseModel):
    notes: str = Field(..., max_length=10000)


class AppointmentPublic(BaseModel):
    """
    DTO returns a detailed appointment.
    """
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    start_time: str
    end_time: str
    mode: str
    reason: str
    notes: Optional[str] = None
    status: str
    cancellation_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    payment_captured_at: Optional[datetime] = None
    pending_expires_at: Optional[datetime] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    version: int
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_model(cls, appt: Appointment) -> "AppointmentPublic":
        return cls(
            id=appt.id,
            patient_id=appt.patient_id,
            doctor_id=appt.doctor_id,
            appointment_date=appt.appointment_date,
            start_time=format_time(appt.start_minute),
            end_time=format_time(appt.end_minute),
            mode=appt.mode,
            reason=appt.reason,
            notes=appt.notes,
            status=appt.status,
            cancellation_reason=appt.cancellation_reason,
            cancelled_at=appt.cancelled_at,
            payment_captured_at=appt.payment_captured_at,
            pending_expires_at=appt.pending_expires_at,
            metadata=appt.meta or {},
            version=appt.version,
            created_at=appt.created_at,
            updated_at=appt.updated_at,
        )


class AppointmentListItem(BaseModel):
    """
    Used for lists
    """
    id: UUID
    patient_id: UUID
    doctor_id: UUID
    appointment_date: date
    start_time: str
    end_time: str
    mode: str
    status: str
    created_at: datetime

    class Config:
        from_attributes = True

    @classmethod
    def from_model(cls, appt: Appointment) -> "AppointmentListItem":
        return cls(
            id=appt.id,
            patient_id=appt.patient_id,
            doctor_id=appt.doctor_id,
            appointment_date=appt.appointment_date,
            start_time=format_time(appt.start_minute),
            end_time=format_time(appt.end_minute),
            mode=appt.mode,
            status=appt.status,
            created_at=appt.created_at,
        )


class AppointmentListPage(BaseModel):
    """
    Page the appointments list (with pagination).
    """
    items: List[AppointmentListItem]
    total: int
    limit: int
    offset: int
    has_next: bool


class DaySlots(BaseModel):
    day: date
    free: List[str]
    slots: List[str]


class SlotListing(BaseModel):
    """Advisory calendar view; admission re-verifies under lock."""
    doctor_id: UUID
    timezone: str
    slot_grain_minutes: int
    duration_minutes: int
    days: List[DaySlots]
