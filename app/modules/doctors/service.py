# app/modules/doctors/service.py
"""
Doctor schedule administration: profile, weekly template and
unavailability overrides. Every write drops the doctor's cached schedule.
"""
from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.core.errors import DoctorNotScheduled, InvalidRange, OverrideNotFound, ValidationError
from app.core.logger import get_logger
from app.modules.doctors.repository import SqlScheduleStore
from app.modules.scheduling.cache import CachedScheduleStore
from app.modules.scheduling.ports import (
    Clock,
    DateRange,
    ScheduleProfile,
    UnavailabilityOverride,
    WeeklyAvailability,
)
from app.modules.scheduling.timemodel import (
    Interval,
    Weekday,
    parse_date,
    parse_time,
    resolve_tz,
)

logger = get_logger("doctors")

# (start "HH:MM", end "HH:MM")
RawSlot = Tuple[str, str]


def _parse_slots(slots: Iterable[RawSlot]) -> List[Interval]:
    return [Interval(parse_time(s), parse_time(e, allow_end_of_day=True)) for s, e in slots]


def validate_day(day: Weekday | date, intervals: List[Interval]) -> List[Interval]:
    """Sorted by start, no overlaps. Touching intervals are allowed."""
    ordered = sorted(intervals)
    for prev, nxt in zip(ordered, ordered[1:]):
        if prev.overlaps(nxt):
            raise ValidationError(f"overlapping intervals on {day}: {prev} and {nxt}")
    return ordered


def sweep_outpaces(pending_timeout_minutes: int, sweep_interval_seconds: float) -> bool:
    """The sweeper must run at least twice per pending timeout."""
    return pending_timeout_minutes * 60 >= 2 * sweep_interval_seconds


def validate_profile(
    profile: ScheduleProfile, sweep_interval_seconds: Optional[float] = None
) -> ScheduleProfile:
    resolve_tz(profile.timezone)
    grain = profile.slot_grain_minutes
    if grain <= 0 or grain > 1440:
        raise ValidationError(f"slot grain must be in (0, 1440], got {grain}")
    if profile.default_duration_minutes <= 0 or profile.default_duration_minutes % grain:
        raise ValidationError(
            f"default duration {profile.default_duration_minutes} is not a positive multiple of {grain}"
        )
    if profile.horizon_days < 1:
        raise ValidationError("horizon_days must be at least 1")
    if profile.lead_time_minutes < 0 or profile.cancel_cutoff_minutes < 0:
        raise ValidationError("lead time and cancel cutoff cannot be negative")
    if profile.pending_timeout_minutes <= 0:
        raise ValidationError("pending timeout must be positive")
    if sweep_interval_seconds is not None and not sweep_outpaces(
        profile.pending_timeout_minutes, sweep_interval_seconds
    ):
        raise ValidationError(
            f"pending timeout of {profile.pending_timeout_minutes} min is shorter than two "
            f"sweeps of {sweep_interval_seconds}s"
        )
    return profile


class DoctorScheduleService:
    def __init__(
        self,
        store: SqlScheduleStore,
        clock: Clock,
        defaults: Dict[str, Any],
        cache: Optional[CachedScheduleStore] = None,
        sweep_interval_seconds: Optional[float] = None,
    ):
        self.store = store
        self.clock = clock
        self.defaults = defaults
        self.cache = cache
        self.sweep_interval_seconds = sweep_interval_seconds

    def _invalidate(self, doctor_id: uuid.UUID) -> None:
        if self.cache is not None:
            self.cache.invalidate(doctor_id)

    async def get_profile(self, doctor_id: uuid.UUID) -> ScheduleProfile:
        profile = await self.store.get_profile(doctor_id)
        if profile is None:
            raise DoctorNotScheduled(f"doctor {doctor_id} has no schedule profile")
        return profile

    async def upsert_profile(self, doctor_id: uuid.UUID, **changes: Any) -> ScheduleProfile:
        """Create or patch the profile. None values are ignored."""
        changes = {k: v for k, v in changes.items() if v is not None}
        current = await self.store.get_profile(doctor_id)
        if current is None:
            current = ScheduleProfile(doctor_id=doctor_id, **self.defaults)
        profile = validate_profile(replace(current, **changes), self.sweep_interval_seconds)
        saved = await self.store.upsert_profile(profile)
        self._invalidate(doctor_id)
        logger.info("Schedule profile saved for doctor %s", doctor_id)
        return saved

    async def get_weekly(self, doctor_id: uuid.UUID) -> WeeklyAvailability:
        await self.get_profile(doctor_id)
        return await self.store.get_weekly(doctor_id)

    async def replace_weekly(
        self, doctor_id: uuid.UUID, entries: Sequence[Tuple[str | int, Iterable[RawSlot]]]
    ) -> WeeklyAvailability:
        """
        entries: (day, [(start, end), ...]) per weekday. Days may appear once;
        a day left out has no availability.
        """
        await self.get_profile(doctor_id)
        days: Dict[Weekday, List[Interval]] = {}
        for raw_day, slots in entries:
            day = Weekday.parse(raw_day)
            if day in days:
                raise ValidationError(f"{day.label} appears more than once")
            days[day] = validate_day(day, _parse_slots(slots))

        weekly = await self.store.replace_weekly(doctor_id, days)
        self._invalidate(doctor_id)
        logger.info(
            "Weekly availability replaced for doctor %s (%d intervals)",
            doctor_id, sum(len(v) for v in days.values()),
        )
        return weekly

    async def upsert_override(
        self,
        doctor_id: uuid.UUID,
        day: str | date,
        slots: Iterable[RawSlot],
        reason: Optional[str] = None,
    ) -> UnavailabilityOverride:
        await self.get_profile(doctor_id)
        the_day = parse_date(day)
        blocked = validate_day(the_day, _parse_slots(slots))
        if not blocked:
            raise ValidationError("an override needs at least one blocked interval")
        saved = await self.store.upsert_override(
            UnavailabilityOverride(doctor_id=doctor_id, date=the_day, intervals=blocked, reason=reason)
        )
        self._invalidate(doctor_id)
        logger.info("Unavailability set for doctor %s on %s", doctor_id, the_day)
        return saved

    async def remove_override(self, doctor_id: uuid.UUID, day: str | date) -> None:
        the_day = parse_date(day)
        if not await self.store.delete_override(doctor_id, the_day):
            raise OverrideNotFound(f"no unavailability for doctor {doctor_id} on {the_day}")
        self._invalidate(doctor_id)
        logger.info("Unavailability removed for doctor %s on %s", doctor_id, the_day)

    async def list_overrides(
        self,
        doctor_id: uuid.UUID,
        date_from: Optional[str | date] = None,
        date_to: Optional[str | date] = None,
    ) -> List[UnavailabilityOverride]:
        """Defaults to the doctor's booking horizon starting today."""
        profile = await self.get_profile(doctor_id)
        today = self.clock.now_in_tz(profile.timezone).date()
        start = parse_date(date_from) if date_from else today
        end = parse_date(date_to) if date_to else today + timedelta(days=profile.horizon_days)
        if start > end:
            raise InvalidRange(f"date_from {start} is after date_to {end}")
        return await self.store.get_overrides(doctor_id, DateRange(start, end))
