# app/modules/scheduling/slots.py
"""Slot Generator: project free intervals onto the slot-grain lattice."""
from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, List

from app.core.errors import ValidationError
from app.modules.scheduling.timemodel import Interval


def generate_slots(free: Iterable[Interval], grain: int, duration: int) -> List[Interval]:
    """
    For each free [a, b), emit [a, a+dur), [a+grain, a+grain+dur), ... while
    the slot end <= b. The stride is the grain, so emitted slots may overlap
    each other; admission decides which one is booked.

    Free intervals are first shrunk to grain boundaries so every emitted slot
    is admissible.
    """
    if grain <= 0 or duration <= 0:
        raise ValidationError(f"grain and duration must be positive ({grain}, {duration})")
    if duration % grain:
        raise ValidationError(f"duration {duration} is not a multiple of grain {grain}")

    slots: List[Interval] = []
    for iv in free:
        aligned = iv.align(grain)
        if aligned is None:
            continue
        start = aligned.start
        while start + duration <= aligned.end:
            slots.append(Interval(start, start + duration))
            start += grain
    return slots


def generate_slot_grid(
    free_by_day: Dict[date, List[Interval]], grain: int, duration: int
) -> Dict[date, List[Interval]]:
    return {day: generate_slots(free, grain, duration) for day, free in sorted(free_by_day.items())}


def format_slots(slots: Iterable[Interval]) -> List[str]:
    """Wire form: 'HH:MM-HH:MM', end exclusive."""
    return [str(s) for s in slots]
