# app/modules/scheduling/ports.py
"""Collaborator interfaces consumed by the scheduling core."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from app.modules.scheduling.timemodel import Interval, Weekday


@dataclass(frozen=True)
class ScheduleProfile:
    doctor_id: uuid.UUID
    timezone: str
    slot_grain_minutes: int = 30
    lead_time_minutes: int = 0
    horizon_days: int = 90
    default_duration_minutes: int = 30
    pending_timeout_minutes: int = 30
    cancel_cutoff_minutes: int = 120
    is_active: bool = True


@dataclass(frozen=True)
class WeeklyAvailability:
    """Recurring template: weekday -> sorted, non-overlapping intervals."""

    doctor_id: uuid.UUID
    days: Dict[Weekday, List[Interval]] = field(default_factory=dict)

    def for_day(self, day: Weekday) -> List[Interval]:
        return list(self.days.get(day, []))


@dataclass(frozen=True)
class UnavailabilityOverride:
    doctor_id: uuid.UUID
    date: date
    intervals: List[Interval]
    reason: Optional[str] = None


@dataclass(frozen=True)
class DateRange:
    """Inclusive [date_from, date_to]."""

    date_from: date
    date_to: date

    @classmethod
    def single(cls, day: date) -> "DateRange":
        return cls(day, day)


class ScheduleStore(Protocol):
    async def get_profile(self, doctor_id: uuid.UUID) -> Optional[ScheduleProfile]: ...

    async def get_weekly(self, doctor_id: uuid.UUID) -> WeeklyAvailability: ...

    async def get_overrides(
        self, doctor_id: uuid.UUID, date_range: DateRange
    ) -> List[UnavailabilityOverride]: ...


class AppointmentStore(Protocol):
    async def list_for_doctor(
        self,
        doctor_id: uuid.UUID,
        date_range: DateRange,
        statuses: Sequence[str],
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> List[Any]: ...

    async def create(self, appt: Any) -> Any: ...

    async def update(
        self,
        appointment_id: uuid.UUID,
        mutation: Callable[[Any], None],
        *,
        expected_version: Optional[int] = None,
        check_overlap: bool = False,
    ) -> Any: ...

    async def get(self, appointment_id: uuid.UUID) -> Optional[Any]: ...

    async def list_page(
        self,
        *,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Any], int]: ...

    async def list_expired_pending(self, now: datetime, limit: int = 500) -> List[Any]: ...


class SerializerHandle(Protocol):
    key: str


class Serializer(Protocol):
    async def acquire(self, key: str, timeout: float) -> SerializerHandle: ...

    def release(self, handle: SerializerHandle) -> None: ...


class Clock(Protocol):
    def now_in_tz(self, tz: str) -> datetime: ...
