# app/modules/doctors/schemas.py
from __future__ import annotations

from datetime import date
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.modules.scheduling.ports import ScheduleProfile, UnavailabilityOverride, WeeklyAvailability
from app.modules.scheduling.timemodel import Weekday


class ScheduleProfileUpsert(BaseModel):
    """
    Omitted fields keep their current value (or the configured default for
    a new profile).
    """
    timezone: Optional[str] = Field(None, examples=["Europe/Amsterdam"])
    slot_grain_minutes: Optional[int] = Field(None, gt=0, le=1440)
    lead_time_minutes: Optional[int] = Field(None, ge=0)
    horizon_days: Optional[int] = Field(None, ge=1, le=3650)
    default_duration_minutes: Optional[int] = Field(None, gt=0, le=1440)
    pending_timeout_minutes: Optional[int] = Field(None, gt=0)
    cancel_cutoff_minutes: Optional[int] = Field(None, ge=0)
    is_active: Optional[bool] = None


class ScheduleProfilePublic(BaseModel):
    doctor_id: UUID
    timezone: str
    slot_grain_minutes: int
    lead_time_minutes: int
    horizon_days: int
    default_duration_minutes: int
    pending_timeout_minutes: int
    cancel_cutoff_minutes: int
    is_active: bool

    class Config:
        from_attributes = True

    @classmethod
    def from_profile(cls, profile: ScheduleProfile) -> "ScheduleProfilePublic":
        return cls.model_validate(profile)


class SlotIn(BaseModel):
    start_time: str = Field(..., examples=["09:00"])
    end_time: str = Field(..., examples=["12:00"])


class WeeklyDayIn(BaseModel):
    day: int | str = Field(..., description="monday..sunday in any casing, or 0 (Monday) to 6")
    slots: List[SlotIn] = Field(default_factory=list)


class WeeklyAvailabilityUpdate(BaseModel):
    """Full replacement of the weekly template."""
    availability: List[WeeklyDayIn]


class WeeklyDayOut(BaseModel):
    day: str
    slots: List[str]


class WeeklyAvailabilityPublic(BaseModel):
    doctor_id: UUID
    availability: List[WeeklyDayOut]

    @classmethod
    def from_weekly(cls, weekly: WeeklyAvailability) -> "WeeklyAvailabilityPublic":
        return cls(
            doctor_id=weekly.doctor_id,
            availability=[
                WeeklyDayOut(day=Weekday(d).label, slots=[str(iv) for iv in weekly.days[d]])
                for d in sorted(weekly.days)
                if weekly.days[d]
            ],
        )


class UnavailabilityIn(BaseModel):
    """Replaces any override already stored for the date. "00:00"-"24:00" blocks the whole day."""
    date: str = Field(..., examples=["2025-03-11"])
    slots: List[SlotIn] = Field(..., min_length=1)
    reason: Optional[str] = Field(None, max_length=255)


class UnavailabilityPublic(BaseModel):
    doctor_id: UUID
    day: date
    blocked: List[str]
    reason: Optional[str] = None

    @classmethod
    def from_override(cls, override: UnavailabilityOverride) -> "UnavailabilityPublic":
        return cls(
            doctor_id=override.doctor_id,
            day=override.date,
            blocked=[str(iv) for iv in override.intervals],
            reason=override.reason,
        )
