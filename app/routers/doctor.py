# app/routers/doctor.py
from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from app.container import SchedulingCore
from app.core.permission import require_roles
from app.dependencies import Principal, get_core
from app.modules.doctors.schemas import (
    ScheduleProfilePublic,
    ScheduleProfileUpsert,
    UnavailabilityIn,
    UnavailabilityPublic,
    WeeklyAvailabilityPublic,
    WeeklyAvailabilityUpdate,
)

router = APIRouter(prefix="/doctors", tags=["doctor-schedule"])


def _own_doctor_id(user: Principal, doctor_id: Optional[UUID]) -> UUID:
    """
    Doctors manage their own schedule; admins must name the doctor.
    """
    if user.role == "doctor":
        if doctor_id is not None and doctor_id != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="cannot_edit_other_doctor_schedule",
            )
        return user.id
    if doctor_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="doctor_id_required",
        )
    return doctor_id


# Schedule profile
@router.get("/schedule-profile", response_model=ScheduleProfilePublic)
async def get_schedule_profile(
    doctor_id: UUID,
    core: SchedulingCore = Depends(get_core),
):
    return ScheduleProfilePublic.from_profile(await core.doctors.get_profile(doctor_id))


@router.put("/schedule-profile", response_model=ScheduleProfilePublic)
async def put_schedule_profile(
    payload: ScheduleProfileUpsert,
    doctor_id: Optional[UUID] = None,
    core: SchedulingCore = Depends(get_core),
    user: Principal = Depends(require_roles("doctor", "admin")),
):
    profile = await core.doctors.upsert_profile(
        _own_doctor_id(user, doctor_id), **payload.model_dump(exclude_none=True)
    )
    return ScheduleProfilePublic.from_profile(profile)


# Weekly availability
@router.get("/availability", response_model=WeeklyAvailabilityPublic)
async def get_availability(
    doctor_id: UUID,
    core: SchedulingCore = Depends(get_core),
):
    return WeeklyAvailabilityPublic.from_weekly(await core.doctors.get_weekly(doctor_id))


@router.put("/availability", response_model=WeeklyAvailabilityPublic)
async def put_availability(
    payload: WeeklyAvailabilityUpdate,
    doctor_id: Optional[UUID] = None,
    core: SchedulingCore = Depends(get_core),
    user: Principal = Depends(require_roles("doctor", "admin")),
):
    weekly = await core.doctors.replace_weekly(
        _own_doctor_id(user, doctor_id),
        [(entry.day, [(s.start_time, s.end_time) for s in entry.slots]) for entry in payload.availability],
    )
    return WeeklyAvailabilityPublic.from_weekly(weekly)


# Unavailability overrides
@router.get("/unavailability", response_model=List[UnavailabilityPublic])
async def get_unavailability(
    doctor_id: UUID,
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None),
    core: SchedulingCore = Depends(get_core),
):
    overrides = await core.doctors.list_overrides(doctor_id, date_from, date_to)
    return [UnavailabilityPublic.from_override(o) for o in overrides]


@router.post(
    "/unavailability",
    response_model=UnavailabilityPublic,
    status_code=status.HTTP_201_CREATED,
)
async def add_unavailability(
    payload: UnavailabilityIn,
    doctor_id: Optional[UUID] = None,
    core: SchedulingCore = Depends(get_core),
    user: Principal = Depends(require_roles("doctor", "admin")),
):
    override = await core.doctors.upsert_override(
        _own_doctor_id(user, doctor_id),
        payload.date,
        [(s.start_time, s.end_time) for s in payload.slots],
        payload.reason,
    )
    return UnavailabilityPublic.from_override(override)


@router.delete("/unavailability", status_code=status.HTTP_204_NO_CONTENT)
async def remove_unavailability(
    date: str = Query(..., examples=["2025-03-11"]),
    doctor_id: Optional[UUID] = None,
    core: SchedulingCore = Depends(get_core),
    user: Principal = Depends(require_roles("doctor", "admin")),
):
    await core.doctors.remove_override(_own_doctor_id(user, doctor_id), date)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
