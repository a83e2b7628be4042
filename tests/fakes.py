"""In-memory stores for resolver and slot tests that do not need a database."""
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo
from typing import Dict, List, Optional

from app.modules.scheduling.ports import (
    DateRange,
    ScheduleProfile,
    UnavailabilityOverride,
    WeeklyAvailability,
)
from app.modules.scheduling.timemodel import Interval, Weekday, parse_interval, resolve_tz

# Monday 2025-03-10 09:00 in the clinic
TODAY_0900 = datetime(2025, 3, 10, 9, 0, tzinfo=ZoneInfo("Europe/Amsterdam"))


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def now_in_tz(self, tz: str) -> datetime:
        return self.instant.astimezone(resolve_tz(tz))

    def advance(self, **kwargs) -> None:
        self.instant = self.instant + timedelta(**kwargs)


@dataclass
class FakeAppointment:
    doctor_id: uuid.UUID
    appointment_date: date
    interval: Interval
    status: str = "pending"
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class FakeScheduleStore:
    def __init__(self, profile: ScheduleProfile):
        self.profile = profile
        self.weekly: Dict[Weekday, List[Interval]] = {}
        self.overrides: Dict[date, UnavailabilityOverride] = {}
        self.calls = 0

    def set_day(self, day: Weekday, *slots: str) -> None:
        self.weekly[day] = [parse_interval(s) for s in slots]

    def block(self, day: date, *slots: str) -> None:
        self.overrides[day] = UnavailabilityOverride(
            doctor_id=self.profile.doctor_id,
            date=day,
            intervals=[parse_interval(s) for s in slots],
        )

    async def get_profile(self, doctor_id) -> Optional[ScheduleProfile]:
        self.calls += 1
        return self.profile if doctor_id == self.profile.doctor_id else None

    async def get_weekly(self, doctor_id) -> WeeklyAvailability:
        self.calls += 1
        return WeeklyAvailability(doctor_id=doctor_id, days=dict(self.weekly))

    async def get_overrides(self, doctor_id, date_range: DateRange):
        self.calls += 1
        return [
            o for d, o in sorted(self.overrides.items())
            if date_range.date_from <= d <= date_range.date_to
        ]


class FakeAppointmentStore:
    def __init__(self):
        self.rows: List[FakeAppointment] = []

    def add(self, doctor_id, day: date, slot: str, status: str = "pending") -> FakeAppointment:
        appt = FakeAppointment(doctor_id, day, parse_interval(slot), status)
        self.rows.append(appt)
        return appt

    async def list_for_doctor(self, doctor_id, date_range, statuses, *, exclude_id=None):
        return [
            a for a in self.rows
            if a.doctor_id == doctor_id
            and date_range.date_from <= a.appointment_date <= date_range.date_to
            and a.status in statuses
            and a.id != exclude_id
        ]


@dataclass
class FakeHandle:
    key: str


class RecordingSerializer:
    """acquire/release only, no hold(); records the keys it was asked for."""

    def __init__(self):
        self.acquired: List[str] = []
        self.released: List[str] = []

    async def acquire(self, key: str, timeout: float) -> FakeHandle:
        self.acquired.append(key)
        return FakeHandle(key)

    def release(self, handle: FakeHandle) -> None:
        self.released.append(handle.key)
