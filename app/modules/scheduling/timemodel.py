# app/modules/scheduling/timemodel.py
"""
Time Model: clinic-local dates, minutes-of-day and half-open intervals.

All stored times are wall-clock local to the doctor's clinic. A time of day
is an int of minutes since 00:00 in [0, 1440]; 1440 ("24:00") is only valid
as an interval end. DST transitions are not split out of a day: they simply
shift the wall clock.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, timedelta
from enum import IntEnum
from typing import Iterable, Iterator, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.core.errors import TimeFormatError

MINUTES_PER_DAY = 1440

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

# A minute offset since local midnight
LocalTimeOfDay = int


class Weekday(IntEnum):
    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @classmethod
    def parse(cls, value: str | int) -> "Weekday":
        """Accepts 0-6 or a day name in any casing ("monday", "Monday")."""
        if isinstance(value, int):
            try:
                return cls(value)
            except ValueError as exc:
                raise TimeFormatError(f"invalid weekday: {value!r}") from exc
        try:
            return cls[value.strip().upper()]
        except KeyError as exc:
            raise TimeFormatError(f"invalid weekday: {value!r}") from exc

    @property
    def label(self) -> str:
        return self.name.lower()


def parse_time(value: str, *, allow_end_of_day: bool = False) -> LocalTimeOfDay:
    """
    Parse "HH:MM" into minutes since midnight.

    HH in [0, 23], MM in [0, 59]; "24:00" only when allow_end_of_day.
    """
    if not isinstance(value, str):
        raise TimeFormatError(f"time must be a string, got {type(value).__name__}")
    m = _TIME_RE.match(value.strip())
    if not m:
        raise TimeFormatError(f"invalid time: {value!r}")
    hh, mm = int(m.group(1)), int(m.group(2))
    if hh == 24 and mm == 0:
        if allow_end_of_day:
            return MINUTES_PER_DAY
        raise TimeFormatError("24:00 is only valid as an interval end")
    if not (0 <= hh <= 23 and 0 <= mm <= 59):
        raise TimeFormatError(f"invalid time: {value!r}")
    return hh * 60 + mm


def format_time(minutes: LocalTimeOfDay) -> str:
    if not 0 <= minutes <= MINUTES_PER_DAY:
        raise TimeFormatError(f"minute offset out of range: {minutes}")
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_date(value: str | date) -> date:
    """ISO-8601 YYYY-MM-DD."""
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value.strip())
    except (AttributeError, ValueError) as exc:
        raise TimeFormatError(f"invalid date: {value!r}") from exc


def resolve_tz(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise TimeFormatError(f"unknown timezone: {name!r}") from exc


def weekday(day: date, tz: str) -> Weekday:
    """Weekday of a clinic-local date. The timezone is validated, the date is already local."""
    resolve_tz(tz)
    return Weekday(day.weekday())


def iter_dates(date_from: date, date_to: date) -> Iterator[date]:
    d = date_from
    while d <= date_to:
        yield d
        d += timedelta(days=1)


@dataclass(frozen=True, order=True)
class Interval:
    """Half-open [start, end) over minutes of a local day."""

    start: LocalTimeOfDay
    end: LocalTimeOfDay

    def __post_init__(self):
        if not (0 <= self.start <= MINUTES_PER_DAY and 0 <= self.end <= MINUTES_PER_DAY):
            raise TimeFormatError(f"interval bounds out of range: [{self.start}, {self.end})")
        if self.start >= self.end:
            raise TimeFormatError(
                f"interval start must precede end: {format_time(self.start)}-{format_time(self.end)}"
            )

    @classmethod
    def parse(cls, start: str, end: str) -> "Interval":
        return cls(parse_time(start), parse_time(end, allow_end_of_day=True))

    @property
    def duration(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "Interval") -> bool:
        # Touching endpoints do not overlap
        return self.start < other.end and other.start < self.end

    def contains(self, other: "Interval") -> bool:
        return self.start <= other.start and other.end <= self.end

    def intersect(self, other: "Interval") -> Optional["Interval"]:
        lo, hi = max(self.start, other.start), min(self.end, other.end)
        return Interval(lo, hi) if lo < hi else None

    def subtract(self, other: "Interval") -> List["Interval"]:
        """[a,b) - [c,d) -> [a, min(b,c)) if a<c, and [max(a,d), b) if d<b."""
        if not self.overlaps(other):
            return [self]
        pieces: List[Interval] = []
        if self.start < other.start:
            pieces.append(Interval(self.start, min(self.end, other.start)))
        if other.end < self.end:
            pieces.append(Interval(max(self.start, other.end), self.end))
        return pieces

    def align(self, grain: int) -> Optional["Interval"]:
        """Shrink inward to grain boundaries; None when nothing is left."""
        if grain <= 0:
            raise TimeFormatError(f"grain must be positive, got {grain}")
        lo = -(-self.start // grain) * grain
        hi = (self.end // grain) * grain
        return Interval(lo, hi) if lo < hi else None

    def is_aligned(self, grain: int) -> bool:
        return self.start % grain == 0 and self.end % grain == 0

    def __str__(self) -> str:
        return f"{format_time(self.start)}-{format_time(self.end)}"


def parse_interval(value: str) -> Interval:
    """'HH:MM-HH:MM' with an exclusive end."""
    if not isinstance(value, str) or value.count("-") != 1:
        raise TimeFormatError(f"invalid interval: {value!r}")
    start, end = value.split("-")
    return Interval.parse(start, end)


def normalize(intervals: Iterable[Interval]) -> List[Interval]:
    """
    Canonical form: sorted by (start, end), overlapping and adjacent
    intervals merged.
    """
    merged: List[Interval] = []
    for iv in sorted(intervals):
        if merged and iv.start <= merged[-1].end:
            last = merged[-1]
            if iv.end > last.end:
                merged[-1] = Interval(last.start, iv.end)
        else:
            merged.append(iv)
    return merged


def subtract_all(candidates: Iterable[Interval], blocked: Iterable[Interval]) -> List[Interval]:
    remaining = list(candidates)
    for b in blocked:
        nxt: List[Interval] = []
        for iv in remaining:
            nxt.extend(iv.subtract(b))
        remaining = nxt
    return remaining


def clip_before(intervals: Iterable[Interval], cutoff: LocalTimeOfDay) -> List[Interval]:
    """Drop everything earlier than cutoff."""
    out: List[Interval] = []
    for iv in intervals:
        if iv.end <= cutoff:
            continue
        out.append(iv if iv.start >= cutoff else Interval(cutoff, iv.end))
    return out


def is_disjoint_sorted(intervals: List[Interval]) -> bool:
    return all(a.end <= b.start for a, b in zip(intervals, intervals[1:]))
