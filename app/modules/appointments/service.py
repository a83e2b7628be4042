# app/modules/appointments/service.py
"""
Booking admission controller.

Admits exactly one of any set of concurrent requests that target
overlapping intervals for the same doctor:

    1. validate the request
    2. resolve availability (cached schedule) and check containment
    3. take the per-doctor serializer
    4. resolve again from the authoritative store and re-check
    5. write inside the store transaction, which locks the doctor row and
       re-reads the conflict set
    6. release, then publish the hook

Listing slots skips all of this; its answer is advisory.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.core.errors import (
    AppointmentNotFound,
    IllegalTransition,
    SlotUnavailable,
    ValidationError,
)
from app.core.logger import get_logger
from app.modules.appointments.hooks import Hook, HookBus
from app.modules.appointments.lifecycle import AppointmentLifecycle, make_event
from app.modules.appointments.models import Appointment, ApptMode, ApptStatus
from app.modules.scheduling.availability import AvailabilityResolver, ResolvedAvailability
from app.modules.scheduling.clock import now_utc
from app.modules.scheduling.ports import AppointmentStore, Clock, ScheduleProfile, Serializer
from app.modules.scheduling.serializer import doctor_key, hold
from app.modules.scheduling.slots import generate_slot_grid
from app.modules.scheduling.timemodel import (
    Interval,
    LocalTimeOfDay,
    format_time,
    parse_date,
    parse_time,
)

logger = get_logger("admission")


def _minute(value: str | int, *, end: bool = False) -> LocalTimeOfDay:
    if isinstance(value, int):
        return value
    return parse_time(value, allow_end_of_day=end)


def parse_request(day: str | date, start: str | int, end: str | int) -> Tuple[date, Interval]:
    """Syntactic validation of a (date, start, end) booking request."""
    d = parse_date(day)
    s, e = _minute(start), _minute(end, end=True)
    if s == e:
        raise ValidationError("zero-length interval", start=format_time(s))
    return d, Interval(s, e)


def check_grain(requested: Interval, profile: ScheduleProfile) -> None:
    grain = profile.slot_grain_minutes
    if not requested.is_aligned(grain):
        raise ValidationError(
            f"{requested} is not aligned to the {grain} minute grain",
            interval=str(requested),
            grain=grain,
        )
    if requested.duration < grain:
        raise ValidationError(f"{requested} is shorter than the {grain} minute grain")


def _parse_mode(mode: ApptMode | str) -> ApptMode:
    try:
        return ApptMode(mode)
    except ValueError as exc:
        raise ValidationError(f"invalid mode: {mode!r}") from exc


@dataclass
class SlotView:
    profile: ScheduleProfile
    duration_minutes: int
    free: Dict[date, List[Interval]] = field(default_factory=dict)
    slots: Dict[date, List[Interval]] = field(default_factory=dict)


class AppointmentService:
    def __init__(
        self,
        resolver: AvailabilityResolver,
        appointments: AppointmentStore,
        serializer: Serializer,
        lifecycle: AppointmentLifecycle,
        clock: Clock,
        hooks: HookBus,
        lock_timeout: float = 5.0,
    ):
        self.resolver = resolver
        self.appointments = appointments
        self.serializer = serializer
        self.lifecycle = lifecycle
        self.clock = clock
        self.hooks = hooks
        self.lock_timeout = lock_timeout

    async def _admit(
        self,
        doctor_id: uuid.UUID,
        day: date,
        requested: Interval,
        *,
        exclude_appointment_id: Optional[uuid.UUID] = None,
        authoritative: bool = False,
    ) -> ResolvedAvailability:
        resolved = await self.resolver.resolve(
            doctor_id,
            day,
            day,
            exclude_appointment_id=exclude_appointment_id,
            authoritative=authoritative,
        )
        check_grain(requested, resolved.profile)
        if resolved.containing(day, requested) is None:
            raise SlotUnavailable(
                f"{day} {requested} is not free",
                date=str(day),
                interval=str(requested),
            )
        return resolved

    # CREATE
    async def create(
        self,
        doctor_id: uuid.UUID,
        patient_id: uuid.UUID,
        day: str | date,
        start: str | int,
        end: str | int,
        mode: ApptMode | str = ApptMode.IN_PERSON,
        reason: str = "",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Appointment:
        if patient_id is None:
            raise ValidationError("patient_id is required")
        the_day, requested = parse_request(day, start, end)
        the_mode = _parse_mode(mode)

        # Advisory check on the cached schedule; fails fast without the lock
        await self._admit(doctor_id, the_day, requested)

        async with hold(self.serializer, doctor_key(doctor_id), self.lock_timeout):
            resolved = await self._admit(doctor_id, the_day, requested, authoritative=True)
            now = now_utc(self.clock)
            appt = Appointment(
                doctor_id=doctor_id,
                patient_id=patient_id,
                appointment_date=the_day,
                start_minute=requested.start,
                end_minute=requested.end,
                mode=the_mode.value,
                reason=reason or "",
                status=ApptStatus.PENDING.value,
                pending_expires_at=now + timedelta(minutes=resolved.profile.pending_timeout_minutes),
                meta=dict(metadata or {}),
                created_at=now,
                updated_at=now,
            )
            appt = await self.appointments.create(appt)

        logger.info(
            "Admitted appointment %s doctor=%s %s %s",
            appt.id, doctor_id, the_day.isoformat(), requested,
        )
        self.hooks.publish(make_event(Hook.CREATED, appt, now))
        return appt

    # RESCHEDULE
    async def reschedule(
        self,
        appointment_id: uuid.UUID,
        day: str | date,
        start: str | int,
        end: str | int,
    ) -> Appointment:
        """
        Move an active appointment. Its own current slot counts as free, the
        status resets to pending and payment is taken again.
        """
        current = await self.get(appointment_id)
        if not current.is_active:
            raise IllegalTransition(
                f"cannot reschedule a {current.status} appointment",
                current=current.status,
            )
        the_day, requested = parse_request(day, start, end)
        previous = {
            "previous_date": current.appointment_date.isoformat(),
            "previous_interval": str(current.interval),
            "previous_status": current.status,
        }

        await self._admit(current.doctor_id, the_day, requested, exclude_appointment_id=current.id)

        async with hold(self.serializer, doctor_key(current.doctor_id), self.lock_timeout):
            resolved = await self._admit(
                current.doctor_id,
                the_day,
                requested,
                exclude_appointment_id=current.id,
                authoritative=True,
            )
            now = now_utc(self.clock)
            timeout = resolved.profile.pending_timeout_minutes

            def mutate(appt: Appointment) -> None:
                if not appt.is_active:
                    raise IllegalTransition(
                        f"cannot reschedule a {appt.status} appointment",
                        current=appt.status,
                    )
                appt.appointment_date = the_day
                appt.start_minute = requested.start
                appt.end_minute = requested.end
                appt.status = ApptStatus.PENDING.value
                appt.payment_captured_at = None
                appt.pending_expires_at = now + timedelta(minutes=timeout)
                appt.updated_at = now

            appt = await self.appointments.update(
                appointment_id,
                mutate,
                expected_version=current.version,
                check_overlap=True,
            )

        logger.info(
            "Rescheduled appointment %s from %s %s to %s %s",
            appointment_id,
            previous["previous_date"], previous["previous_interval"],
            the_day.isoformat(), requested,
        )
        self.hooks.publish(make_event(Hook.RESCHEDULED, appt, now, previous))
        return appt

    # CANCEL
    async def cancel(
        self,
        appointment_id: uuid.UUID,
        reason: Optional[str] = None,
        *,
        cancelled_by: str = "patient",
    ) -> Appointment:
        return await self.lifecycle.cancel(appointment_id, reason, cancelled_by=cancelled_by)

    # READS
    async def get(self, appointment_id: uuid.UUID) -> Appointment:
        appt = await self.appointments.get(appointment_id)
        if appt is None:
            raise AppointmentNotFound(f"appointment {appointment_id} not found")
        return appt

    async def list_page(
        self,
        *,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[ApptStatus | str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Appointment], int]:
        if limit <= 0 or offset < 0:
            raise ValidationError("limit must be positive and offset non-negative")
        wanted = None
        if statuses:
            try:
                wanted = [ApptStatus(s).value for s in statuses]
            except ValueError as exc:
                raise ValidationError(f"invalid status filter: {list(statuses)!r}") from exc
        return await self.appointments.list_page(
            patient_id=patient_id,
            doctor_id=doctor_id,
            statuses=wanted,
            limit=limit,
            offset=offset,
        )

    async def list_for_patient(self, patient_id: uuid.UUID, **kwargs) -> Tuple[List[Appointment], int]:
        return await self.list_page(patient_id=patient_id, **kwargs)

    async def list_for_doctor(self, doctor_id: uuid.UUID, **kwargs) -> Tuple[List[Appointment], int]:
        return await self.list_page(doctor_id=doctor_id, **kwargs)

    # NOTES
    async def update_notes(self, appointment_id: uuid.UUID, notes: str) -> Appointment:
        now = now_utc(self.clock)

        def mutate(appt: Appointment) -> None:
            if appt.status_enum.is_terminal:
                raise IllegalTransition(
                    f"notes are read-only once the appointment is {appt.status}",
                    current=appt.status,
                )
            appt.notes = notes
            appt.updated_at = now

        return await self.appointments.update(appointment_id, mutate)

    # QUICK PATH
    async def list_slots(
        self,
        doctor_id: uuid.UUID,
        date_from: str | date,
        date_to: str | date,
        duration_minutes: Optional[int] = None,
    ) -> SlotView:
        """Free intervals and grid slots per date. Takes no lock."""
        resolved = await self.resolver.resolve(doctor_id, parse_date(date_from), parse_date(date_to))
        profile = resolved.profile
        duration = duration_minutes or profile.default_duration_minutes
        return SlotView(
            profile=profile,
            duration_minutes=duration,
            free=dict(resolved.days),
            slots=generate_slot_grid(resolved.days, profile.slot_grain_minutes, duration),
        )
