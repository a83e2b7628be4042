import uuid
from datetime import date

import pytest

from app.modules.scheduling.cache import CachedScheduleStore
from app.modules.scheduling.ports import DateRange, ScheduleProfile
from app.modules.scheduling.timemodel import Weekday

from fakes import FakeScheduleStore


class Ticker:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


def _cached(ttl=60.0, max_size=1000):
    doctor_id = uuid.uuid4()
    inner = FakeScheduleStore(ScheduleProfile(doctor_id=doctor_id, timezone="Europe/Amsterdam"))
    inner.set_day(Weekday.MONDAY, "09:00-12:00")
    ticker = Ticker()
    return doctor_id, inner, ticker, CachedScheduleStore(inner, ttl=ttl, max_size=max_size, monotonic=ticker)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reads_are_served_from_cache_within_ttl():
    doctor_id, inner, ticker, cache = _cached()
    await cache.get_profile(doctor_id)
    await cache.get_weekly(doctor_id)
    calls = inner.calls
    ticker.now = 59
    await cache.get_profile(doctor_id)
    await cache.get_weekly(doctor_id)
    assert inner.calls == calls


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entries_expire_after_ttl():
    doctor_id, inner, ticker, cache = _cached(ttl=10)
    await cache.get_weekly(doctor_id)
    inner.set_day(Weekday.MONDAY, "13:00-14:00")
    ticker.now = 11
    weekly = await cache.get_weekly(doctor_id)
    assert [str(i) for i in weekly.for_day(Weekday.MONDAY)] == ["13:00-14:00"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalidate_drops_everything_for_the_doctor():
    doctor_id, inner, _, cache = _cached()
    rng = DateRange.single(date(2025, 3, 10))
    await cache.get_weekly(doctor_id)
    assert await cache.get_overrides(doctor_id, rng) == []

    inner.block(date(2025, 3, 10), "10:00-11:00")
    inner.set_day(Weekday.MONDAY, "08:00-09:00")
    # Still stale
    assert await cache.get_overrides(doctor_id, rng) == []

    cache.invalidate(doctor_id)
    assert len(await cache.get_overrides(doctor_id, rng)) == 1
    weekly = await cache.get_weekly(doctor_id)
    assert [str(i) for i in weekly.for_day(Weekday.MONDAY)] == ["08:00-09:00"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_size_is_bounded():
    doctor_id, inner, ticker, cache = _cached(max_size=3)
    for day in range(1, 10):
        ticker.now += 1
        await cache.get_overrides(doctor_id, DateRange.single(date(2025, 3, day)))
    assert len(cache._overrides) <= 3
