# app/modules/doctors/repository.py
from __future__ import annotations

import uuid
from dataclasses import asdict
from datetime import date
from typing import Dict, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.db.guard import storage_call
from app.modules.doctors.models import (
    DoctorScheduleProfile,
    UnavailabilityOverrideRecord,
    WeeklyAvailabilityInterval,
)
from app.modules.scheduling.clock import now_utc
from app.modules.scheduling.ports import (
    Clock,
    DateRange,
    ScheduleProfile,
    UnavailabilityOverride,
    WeeklyAvailability,
)
from app.modules.scheduling.timemodel import Interval, Weekday


def _to_profile(row: DoctorScheduleProfile) -> ScheduleProfile:
    return ScheduleProfile(
        doctor_id=row.doctor_id,
        timezone=row.timezone,
        slot_grain_minutes=row.slot_grain_minutes,
        lead_time_minutes=row.lead_time_minutes,
        horizon_days=row.horizon_days,
        default_duration_minutes=row.default_duration_minutes,
        pending_timeout_minutes=row.pending_timeout_minutes,
        cancel_cutoff_minutes=row.cancel_cutoff_minutes,
        is_active=row.is_active,
    )


def _to_override(row: UnavailabilityOverrideRecord) -> UnavailabilityOverride:
    return UnavailabilityOverride(
        doctor_id=row.doctor_id,
        date=row.override_date,
        intervals=[Interval(start, end) for start, end in row.blocked],
        reason=row.reason,
    )


class SqlScheduleStore:
    """
    Authoritative ScheduleStore over the doctor schedule tables.
    Every call opens its own short session.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock,
        timeout: float = 10.0,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.timeout = timeout

    # Reads
    @storage_call
    async def get_profile(self, doctor_id: uuid.UUID) -> Optional[ScheduleProfile]:
        async with self.session_factory() as session:
            row = await session.get(DoctorScheduleProfile, doctor_id)
            return _to_profile(row) if row else None

    @storage_call
    async def get_weekly(self, doctor_id: uuid.UUID) -> WeeklyAvailability:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(WeeklyAvailabilityInterval)
                    .where(WeeklyAvailabilityInterval.doctor_id == doctor_id)
                    .order_by(
                        WeeklyAvailabilityInterval.weekday,
                        WeeklyAvailabilityInterval.start_minute,
                    )
                )
            ).scalars().all()

        days: Dict[Weekday, List[Interval]] = {}
        for r in rows:
            days.setdefault(Weekday(r.weekday), []).append(Interval(r.start_minute, r.end_minute))
        return WeeklyAvailability(doctor_id=doctor_id, days=days)

    @storage_call
    async def get_overrides(
        self, doctor_id: uuid.UUID, date_range: DateRange
    ) -> List[UnavailabilityOverride]:
        async with self.session_factory() as session:
            rows = (
                await session.execute(
                    select(UnavailabilityOverrideRecord)
                    .where(
                        UnavailabilityOverrideRecord.doctor_id == doctor_id,
                        UnavailabilityOverrideRecord.override_date >= date_range.date_from,
                        UnavailabilityOverrideRecord.override_date <= date_range.date_to,
                    )
                    .order_by(UnavailabilityOverrideRecord.override_date)
                )
            ).scalars().all()
        return [_to_override(r) for r in rows]

    # Writes (doctor administration)
    @storage_call
    async def upsert_profile(self, profile: ScheduleProfile) -> ScheduleProfile:
        now = now_utc(self.clock)
        async with self.session_factory() as session, session.begin():
            row = await session.get(DoctorScheduleProfile, profile.doctor_id, with_for_update=True)
            values = asdict(profile)
            if row is None:
                row = DoctorScheduleProfile(**values, created_at=now, updated_at=now)
                session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                row.updated_at = now
            await session.flush()
            return _to_profile(row)

    @storage_call
    async def replace_weekly(
        self, doctor_id: uuid.UUID, days: Dict[Weekday, List[Interval]]
    ) -> WeeklyAvailability:
        """Full replace; there is no partial patch of the template."""
        async with self.session_factory() as session, session.begin():
            await session.execute(
                delete(WeeklyAvailabilityInterval).where(
                    WeeklyAvailabilityInterval.doctor_id == doctor_id
                )
            )
            for day in sorted(days):
                for iv in days[day]:
                    session.add(
                        WeeklyAvailabilityInterval(
                            doctor_id=doctor_id,
                            weekday=int(day),
                            start_minute=iv.start,
                            end_minute=iv.end,
                        )
                    )
        return WeeklyAvailability(
            doctor_id=doctor_id,
            days={day: list(days[day]) for day in sorted(days) if days[day]},
        )

    @storage_call
    async def upsert_override(self, override: UnavailabilityOverride) -> UnavailabilityOverride:
        """At most one override per (doctor, date): an existing one is replaced."""
        now = now_utc(self.clock)
        blocked = [[iv.start, iv.end] for iv in override.intervals]
        async with self.session_factory() as session, session.begin():
            row = (
                await session.execute(
                    select(UnavailabilityOverrideRecord)
                    .where(
                        UnavailabilityOverrideRecord.doctor_id == override.doctor_id,
                        UnavailabilityOverrideRecord.override_date == override.date,
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if row is None:
                row = UnavailabilityOverrideRecord(
                    doctor_id=override.doctor_id,
                    override_date=override.date,
                    blocked=blocked,
                    reason=override.reason,
                    created_at=now,
                    updated_at=now,
                )
                session.add(row)
            else:
                row.blocked = blocked
                row.reason = override.reason
                row.updated_at = now
            await session.flush()
            return _to_override(row)

    @storage_call
    async def delete_override(self, doctor_id: uuid.UUID, day: date) -> bool:
        async with self.session_factory() as session, session.begin():
            res = await session.execute(
                delete(UnavailabilityOverrideRecord).where(
                    UnavailabilityOverrideRecord.doctor_id == doctor_id,
                    UnavailabilityOverrideRecord.override_date == day,
                )
            )
            return bool(res.rowcount)
