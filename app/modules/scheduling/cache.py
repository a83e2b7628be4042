# app/modules/scheduling/cache.py
"""
Read-through TTL cache in front of a ScheduleStore.

Weekly templates and overrides are read on every listing and written
rarely. Stale reads are fine on the listing path; admission re-checks
against the authoritative store under the lock, so it never reads here.
"""
from __future__ import annotations

import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from app.modules.scheduling.ports import (
    DateRange,
    ScheduleProfile,
    ScheduleStore,
    UnavailabilityOverride,
    WeeklyAvailability,
)


class CachedScheduleStore:
    def __init__(
        self,
        inner: ScheduleStore,
        ttl: float = 60.0,
        max_size: int = 1000,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.inner = inner
        self.ttl = ttl
        self.max_size = max_size
        self._monotonic = monotonic
        self._profiles: Dict[uuid.UUID, Tuple[Optional[ScheduleProfile], float]] = {}
        self._weekly: Dict[uuid.UUID, Tuple[WeeklyAvailability, float]] = {}
        self._overrides: Dict[Tuple[uuid.UUID, DateRange], Tuple[List[UnavailabilityOverride], float]] = {}

    def _fresh(self, stamp: float) -> bool:
        return self._monotonic() - stamp <= self.ttl

    def _cleanup_if_needed(self, cache: dict) -> None:
        if len(cache) <= self.max_size:
            return
        now = self._monotonic()
        for key in [k for k, (_, ts) in cache.items() if now - ts > self.ttl]:
            del cache[key]
        # Still too large: drop the oldest entries
        if len(cache) > self.max_size:
            oldest = sorted(cache.items(), key=lambda kv: kv[1][1])
            for key, _ in oldest[: len(cache) - self.max_size]:
                del cache[key]

    async def get_profile(self, doctor_id: uuid.UUID) -> Optional[ScheduleProfile]:
        hit = self._profiles.get(doctor_id)
        if hit and self._fresh(hit[1]):
            return hit[0]
        profile = await self.inner.get_profile(doctor_id)
        self._profiles[doctor_id] = (profile, self._monotonic())
        self._cleanup_if_needed(self._profiles)
        return profile

    async def get_weekly(self, doctor_id: uuid.UUID) -> WeeklyAvailability:
        hit = self._weekly.get(doctor_id)
        if hit and self._fresh(hit[1]):
            return hit[0]
        weekly = await self.inner.get_weekly(doctor_id)
        self._weekly[doctor_id] = (weekly, self._monotonic())
        self._cleanup_if_needed(self._weekly)
        return weekly

    async def get_overrides(
        self, doctor_id: uuid.UUID, date_range: DateRange
    ) -> List[UnavailabilityOverride]:
        key = (doctor_id, date_range)
        hit = self._overrides.get(key)
        if hit and self._fresh(hit[1]):
            return list(hit[0])
        overrides = await self.inner.get_overrides(doctor_id, date_range)
        self._overrides[key] = (list(overrides), self._monotonic())
        self._cleanup_if_needed(self._overrides)
        return overrides

    def invalidate(self, doctor_id: uuid.UUID) -> None:
        """Write hook: drop everything cached for the doctor."""
        self._profiles.pop(doctor_id, None)
        self._weekly.pop(doctor_id, None)
        for key in [k for k in self._overrides if k[0] == doctor_id]:
            del self._overrides[key]
