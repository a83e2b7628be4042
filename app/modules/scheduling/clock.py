# app/modules/scheduling/clock.py
from __future__ import annotations

from datetime import datetime, timezone

from app.modules.scheduling.ports import Clock
from app.modules.scheduling.timemodel import resolve_tz


class SystemClock:
    """Wall clock. Tests inject a frozen clock instead."""

    def now_in_tz(self, tz: str) -> datetime:
        return datetime.now(resolve_tz(tz))


def now_utc(clock: Clock) -> datetime:
    return clock.now_in_tz("UTC").astimezone(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything we persist is UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
