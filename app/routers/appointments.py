# app/routers/appointments.py
from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.container import SchedulingCore
from app.core.permission import ensure_appointment_access, require_roles
from app.dependencies import Principal, get_core, get_current_user
from app.modules.appointments.schemas import (
    AppointmentCancelRequest,
    AppointmentCreateRequest,
    AppointmentListItem,
    AppointmentListPage,
    AppointmentNotesRequest,
    AppointmentPublic,
    AppointmentRescheduleRequest,
    AppointmentStatusRequest,
    DaySlots,
    SlotListing,
)
from app.modules.scheduling.slots import format_slots

router = APIRouter(tags=["appointments"])


# Implement /appointments (POST)
@router.post(
    "/appointments",
    response_model=AppointmentPublic,
    status_code=status.HTTP_201_CREATED,
    summary="Book an appointment (admission under the doctor's lock)",
)
async def appointments_create(
    payload: AppointmentCreateRequest,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(require_roles("patient")),
):
    appt = await core.appointments.create(
        doctor_id=payload.doctor_id,
        patient_id=current_user.id,
        day=payload.appointment_date,
        start=payload.start_time,
        end=payload.end_time,
        mode=payload.mode,
        reason=payload.reason,
    )
    return AppointmentPublic.from_model(appt)


# Implement /appointments/my (GET)
@router.get(
    "/appointments/my",
    response_model=AppointmentListPage,
    summary="Retrieve current user's appointments",
)
async def appointments_my(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    status_filter: Optional[List[str]] = Query(None, alias="status"),
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(get_current_user),
):
    """
    - patient => appointments where user is patient
    - doctor => appointments where user is doctor
    - admin => all
    """
    kwargs = dict(statuses=status_filter, limit=limit, offset=offset)
    if current_user.role == "patient":
        rows, total = await core.appointments.list_for_patient(current_user.id, **kwargs)
    elif current_user.role == "doctor":
        rows, total = await core.appointments.list_for_doctor(current_user.id, **kwargs)
    else:
        rows, total = await core.appointments.list_page(**kwargs)

    return AppointmentListPage(
        items=[AppointmentListItem.from_model(a) for a in rows],
        total=total,
        limit=limit,
        offset=offset,
        has_next=offset + limit < total,
    )


# Implement /appointments/slots/available (GET)
@router.get(
    "/appointments/slots/available",
    response_model=SlotListing,
    summary="Free intervals and bookable slots per date (advisory)",
)
async def appointments_available_slots(
    doctor_id: UUID,
    date_from: str = Query(..., examples=["2025-03-10"]),
    date_to: Optional[str] = Query(None),
    duration: Optional[int] = Query(None, gt=0, le=1440),
    core: SchedulingCore = Depends(get_core),
    _: Principal = Depends(get_current_user),
):
    view = await core.appointments.list_slots(doctor_id, date_from, date_to or date_from, duration)
    return SlotListing(
        doctor_id=doctor_id,
        timezone=view.profile.timezone,
        slot_grain_minutes=view.profile.slot_grain_minutes,
        duration_minutes=view.duration_minutes,
        days=[
            DaySlots(day=day, free=format_slots(free), slots=format_slots(view.slots.get(day, [])))
            for day, free in sorted(view.free.items())
        ],
    )


# Implement /appointments/{id} (GET)
@router.get(
    "/appointments/{appointment_id}",
    response_model=AppointmentPublic,
)
async def appointments_get(
    appointment_id: UUID,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(get_current_user),
):
    appt = await core.appointments.get(appointment_id)
    ensure_appointment_access(current_user, appt)
    return AppointmentPublic.from_model(appt)


# Implement /appointments/{id}/reschedule (PUT)
@router.put(
    "/appointments/{appointment_id}/reschedule",
    response_model=AppointmentPublic,
    summary="Move an appointment; status resets to pending",
)
async def appointments_reschedule(
    appointment_id: UUID,
    payload: AppointmentRescheduleRequest,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(get_current_user),
):
    ensure_appointment_access(current_user, await core.appointments.get(appointment_id))
    appt = await core.appointments.reschedule(
        appointment_id,
        payload.appointment_date,
        payload.start_time,
        payload.end_time,
    )
    return AppointmentPublic.from_model(appt)


# Implement /appointments/{id}/cancel (PUT)
@router.put(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentPublic,
    summary="Cancel an appointment",
)
async def appointments_cancel(
    appointment_id: UUID,
    payload: Optional[AppointmentCancelRequest] = None,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(get_current_user),
):
    ensure_appointment_access(current_user, await core.appointments.get(appointment_id))
    appt = await core.appointments.cancel(
        appointment_id,
        payload.reason if payload else None,
        cancelled_by=current_user.role,
    )
    return AppointmentPublic.from_model(appt)


# Implement /appointments/{id}/status (PUT)
@router.put(
    "/appointments/{appointment_id}/status",
    response_model=AppointmentPublic,
    summary="Drive the lifecycle: confirmed (payment), completed / no_show (doctor)",
)
async def appointments_status(
    appointment_id: UUID,
    payload: AppointmentStatusRequest,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(require_roles("doctor", "admin")),
):
    appt = await core.appointments.get(appointment_id)
    ensure_appointment_access(current_user, appt)

    if payload.status == "confirmed":
        # Payment capture is reported by the payment service with an admin token
        if current_user.role != "admin":
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="forbidden_role",
            )
        appt = await core.lifecycle.on_payment_captured(appointment_id)
    elif payload.status == "completed":
        appt = await core.lifecycle.on_doctor_mark_complete(appointment_id)
    else:
        appt = await core.lifecycle.on_doctor_mark_no_show(appointment_id)
    return AppointmentPublic.from_model(appt)


# Implement /appointments/{id}/notes (PUT)
@router.put(
    "/appointments/{appointment_id}/notes",
    response_model=AppointmentPublic,
)
async def appointments_notes(
    appointment_id: UUID,
    payload: AppointmentNotesRequest,
    core: SchedulingCore = Depends(get_core),
    current_user: Principal = Depends(require_roles("doctor", "admin")),
):
    ensure_appointment_access(current_user, await core.appointments.get(appointment_id))
    appt = await core.appointments.update_notes(appointment_id, payload.notes)
    return AppointmentPublic.from_model(appt)
