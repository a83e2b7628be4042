# app/modules/scheduling/availability.py
"""
Availability Resolver.

Effective free set for a doctor and an inclusive date range:

    weekly template for the weekday
      - unavailability override for the date
      - active (pending/confirmed) appointments on the date
      - everything before now + lead time
    -> sorted, merged, half-open intervals

The result is a pure function of (weekly, overrides, appointments, now, tz,
lead time, horizon); the sort is on (start, end) so identical inputs give
identical output.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from app.core.errors import DoctorNotScheduled, InternalError, InvalidRange, OutOfHorizon
from app.core.logger import get_logger
from app.modules.scheduling.ports import (
    AppointmentStore,
    Clock,
    DateRange,
    ScheduleProfile,
    ScheduleStore,
)
from app.modules.scheduling.timemodel import (
    MINUTES_PER_DAY,
    Interval,
    clip_before,
    is_disjoint_sorted,
    iter_dates,
    normalize,
    subtract_all,
    weekday,
)

logger = get_logger("availability")

ACTIVE = ("pending", "confirmed")


@dataclass(frozen=True)
class ResolvedAvailability:
    profile: ScheduleProfile
    now: datetime
    days: Dict[date, List[Interval]] = field(default_factory=dict)

    def free_on(self, day: date) -> List[Interval]:
        return list(self.days.get(day, []))

    def containing(self, day: date, requested: Interval) -> Optional[Interval]:
        """The free interval that fully contains `requested`, if any."""
        hits = [iv for iv in self.days.get(day, []) if iv.contains(requested)]
        return hits[0] if len(hits) == 1 else None


def earliest_bookable(now_local: datetime, lead_time_minutes: int) -> Tuple[date, int]:
    """
    (date, minute) of now + lead time, rounded up to the whole minute.
    Nothing before it may be booked.
    """
    earliest = now_local + timedelta(minutes=lead_time_minutes)
    minute = earliest.hour * 60 + earliest.minute
    if earliest.second or earliest.microsecond:
        minute += 1
    day = earliest.date()
    if minute >= MINUTES_PER_DAY:
        day, minute = day + timedelta(days=1), 0
    return day, minute


class AvailabilityResolver:
    def __init__(
        self,
        schedules: ScheduleStore,
        appointments: AppointmentStore,
        clock: Clock,
        authoritative_schedules: Optional[ScheduleStore] = None,
    ):
        self.schedules = schedules
        self.authoritative_schedules = authoritative_schedules or schedules
        self.appointments = appointments
        self.clock = clock

    async def load_profile(self, doctor_id: uuid.UUID, *, authoritative: bool = False) -> ScheduleProfile:
        store = self.authoritative_schedules if authoritative else self.schedules
        profile = await store.get_profile(doctor_id)
        if profile is None or not profile.is_active:
            raise DoctorNotScheduled(f"doctor {doctor_id} has no active schedule", doctor_id=str(doctor_id))
        return profile

    async def resolve(
        self,
        doctor_id: uuid.UUID,
        date_from: date,
        date_to: date,
        *,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        authoritative: bool = False,
    ) -> ResolvedAvailability:
        """
        Per-date effective free set for [date_from, date_to].

        authoritative=True bypasses any schedule cache; admission uses it
        for the re-check under the lock.
        """
        store = self.authoritative_schedules if authoritative else self.schedules
        profile = await self.load_profile(doctor_id, authoritative=authoritative)

        if date_from > date_to:
            raise InvalidRange(f"date_from {date_from} is after date_to {date_to}")

        now_local = self.clock.now_in_tz(profile.timezone)
        today = now_local.date()
        last = today + timedelta(days=profile.horizon_days)
        if date_from < today or date_to > last:
            raise OutOfHorizon(
                f"dates must fall within [{today}, {last}]",
                date_from=str(date_from),
                date_to=str(date_to),
            )

        date_range = DateRange(date_from, date_to)
        weekly = await store.get_weekly(doctor_id)
        overrides = {o.date: o for o in await store.get_overrides(doctor_id, date_range)}
        booked = await self.appointments.list_for_doctor(
            doctor_id, date_range, ACTIVE, exclude_id=exclude_appointment_id
        )
        booked_by_day: Dict[date, List[Interval]] = {}
        for appt in booked:
            booked_by_day.setdefault(appt.appointment_date, []).append(appt.interval)

        cutoff_day, cutoff_minute = earliest_bookable(now_local, profile.lead_time_minutes)

        days: Dict[date, List[Interval]] = {}
        for d in iter_dates(date_from, date_to):
            if d < cutoff_day:
                days[d] = []
                continue

            candidates = normalize(weekly.for_day(weekday(d, profile.timezone)))
            if not candidates:
                days[d] = []
                continue

            override = overrides.get(d)
            if override is not None:
                candidates = subtract_all(candidates, override.intervals)

            taken = booked_by_day.get(d, [])
            candidates = subtract_all(candidates, taken)

            if d == cutoff_day:
                candidates = clip_before(candidates, cutoff_minute)

            free = normalize(candidates)
            self._check_invariants(doctor_id, d, free, taken)
            days[d] = free

        return ResolvedAvailability(profile=profile, now=now_local, days=days)

    @staticmethod
    def _check_invariants(
        doctor_id: uuid.UUID, day: date, free: List[Interval], taken: List[Interval]
    ) -> None:
        if not is_disjoint_sorted(free):
            raise InternalError(f"free set for {doctor_id} on {day} is not canonical")
        for iv in free:
            for booked in taken:
                if iv.overlaps(booked):
                    logger.error(
                        "Free interval %s overlaps booking %s for doctor %s on %s",
                        iv, booked, doctor_id, day,
                    )
                    raise InternalError("free_set_overlaps_booking")
