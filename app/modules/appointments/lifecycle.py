# app/modules/appointments/lifecycle.py
"""
Appointment lifecycle state machine.

    pending   -> confirmed   payment captured
    pending   -> cancelled   cancel call, or pending timeout (sweeper)
    confirmed -> completed   doctor, at or after the end time
    confirmed -> no_show     doctor, at or after the end time
    confirmed -> cancelled   cancel call before start - cancel cutoff

Terminal states (completed, no_show, cancelled) accept nothing. Reschedule
is an in-place edit done by the admission controller, not a transition.

Every transition is checked against the row as read inside the update
transaction, never against a copy loaded earlier.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, FrozenSet, Optional, Tuple

from app.core.errors import (
    AlreadyCancelled,
    AppointmentNotFound,
    DoctorNotScheduled,
    IllegalTransition,
    SchedulingError,
)
from app.core.logger import get_logger
from app.modules.appointments.hooks import AppointmentEvent, Hook, HookBus
from app.modules.appointments.models import Appointment, ApptStatus
from app.modules.scheduling.clock import as_utc, now_utc
from app.modules.scheduling.ports import (
    AppointmentStore,
    Clock,
    ScheduleProfile,
    ScheduleStore,
    Serializer,
)
from app.modules.scheduling.serializer import doctor_key, hold
from app.modules.scheduling.timemodel import resolve_tz

logger = get_logger("lifecycle")

PENDING_EXPIRED = "pending_expired"

TRANSITIONS: FrozenSet[Tuple[ApptStatus, ApptStatus]] = frozenset(
    {
        (ApptStatus.PENDING, ApptStatus.CONFIRMED),
        (ApptStatus.PENDING, ApptStatus.CANCELLED),
        (ApptStatus.CONFIRMED, ApptStatus.COMPLETED),
        (ApptStatus.CONFIRMED, ApptStatus.NO_SHOW),
        (ApptStatus.CONFIRMED, ApptStatus.CANCELLED),
    }
)

_HOOK_FOR = {
    ApptStatus.CONFIRMED: Hook.CONFIRMED,
    ApptStatus.CANCELLED: Hook.CANCELLED,
    ApptStatus.COMPLETED: Hook.COMPLETED,
    ApptStatus.NO_SHOW: Hook.NO_SHOW,
}


def check_transition(current: ApptStatus, target: ApptStatus) -> None:
    if current is ApptStatus.CANCELLED and target is ApptStatus.CANCELLED:
        raise AlreadyCancelled("appointment is already cancelled")
    if (current, target) not in TRANSITIONS:
        raise IllegalTransition(
            f"cannot move from {current.value} to {target.value}",
            current=current.value,
            target=target.value,
        )


def local_instant(day: date, minute: int, tz: str) -> datetime:
    """Clinic-local wall clock (day, minute) as an aware UTC datetime. 1440 is next midnight."""
    extra_days, minute = divmod(minute, 1440)
    local = datetime(day.year, day.month, day.day, tzinfo=resolve_tz(tz)) + timedelta(
        days=extra_days, minutes=minute
    )
    return as_utc(local)


def make_event(
    hook: Hook, appt: Appointment, occurred_at: datetime, details: Optional[Dict[str, Any]] = None
) -> AppointmentEvent:
    return AppointmentEvent(
        hook=hook,
        appointment_id=appt.id,
        doctor_id=appt.doctor_id,
        patient_id=appt.patient_id,
        date=appt.appointment_date,
        interval=str(appt.interval),
        status=appt.status,
        occurred_at=occurred_at,
        details=details or {},
    )


@dataclass
class _Outcome:
    changed: bool = False


class AppointmentLifecycle:
    def __init__(
        self,
        appointments: AppointmentStore,
        schedules: ScheduleStore,
        serializer: Serializer,
        clock: Clock,
        hooks: HookBus,
        lock_timeout: float = 5.0,
    ):
        self.appointments = appointments
        self.schedules = schedules
        self.serializer = serializer
        self.clock = clock
        self.hooks = hooks
        self.lock_timeout = lock_timeout

    async def _profile(self, doctor_id: uuid.UUID) -> ScheduleProfile:
        # Deactivated doctors still finish their existing appointments
        profile = await self.schedules.get_profile(doctor_id)
        if profile is None:
            raise DoctorNotScheduled(f"doctor {doctor_id} has no schedule")
        return profile

    async def _load(self, appointment_id: uuid.UUID) -> Appointment:
        appt = await self.appointments.get(appointment_id)
        if appt is None:
            raise AppointmentNotFound(f"appointment {appointment_id} not found")
        return appt

    def _publish(self, target: ApptStatus, appt: Appointment, now: datetime, details: Dict[str, Any]) -> None:
        self.hooks.publish(make_event(_HOOK_FOR[target], appt, now, details))

    # Payment collaborator
    async def on_payment_captured(self, appointment_id: uuid.UUID) -> Appointment:
        now = now_utc(self.clock)

        def mutate(appt: Appointment) -> None:
            check_transition(appt.status_enum, ApptStatus.CONFIRMED)
            appt.status = ApptStatus.CONFIRMED.value
            appt.payment_captured_at = now
            appt.pending_expires_at = None
            appt.updated_at = now

        appt = await self.appointments.update(appointment_id, mutate)
        logger.info("Appointment %s confirmed (payment captured)", appointment_id)
        self._publish(ApptStatus.CONFIRMED, appt, now, {})
        return appt

    # Doctor actions
    async def on_doctor_mark_complete(self, appointment_id: uuid.UUID) -> Appointment:
        return await self._finish(appointment_id, ApptStatus.COMPLETED)

    async def on_doctor_mark_no_show(self, appointment_id: uuid.UUID) -> Appointment:
        return await self._finish(appointment_id, ApptStatus.NO_SHOW)

    async def _finish(self, appointment_id: uuid.UUID, target: ApptStatus) -> Appointment:
        current = await self._load(appointment_id)
        profile = await self._profile(current.doctor_id)
        now = now_utc(self.clock)

        def mutate(appt: Appointment) -> None:
            check_transition(appt.status_enum, target)
            ends_at = local_instant(appt.appointment_date, appt.end_minute, profile.timezone)
            if now < ends_at:
                raise IllegalTransition(
                    f"appointment ends at {ends_at.isoformat()}",
                    current=appt.status,
                    target=target.value,
                )
            appt.status = target.value
            appt.updated_at = now

        appt = await self.appointments.update(appointment_id, mutate)
        logger.info("Appointment %s marked %s", appointment_id, target.value)
        self._publish(target, appt, now, {})
        return appt

    # Cancellation
    def check_cancel(self, appt: Appointment, profile: ScheduleProfile, now: datetime) -> Dict[str, Any]:
        """
        Validate a cancel of `appt` at `now` and return the refund decision
        carried on the AppointmentCancelled hook.
        """
        current = appt.status_enum
        check_transition(current, ApptStatus.CANCELLED)
        if current is ApptStatus.CONFIRMED:
            starts_at = local_instant(appt.appointment_date, appt.start_minute, profile.timezone)
            cutoff = starts_at - timedelta(minutes=profile.cancel_cutoff_minutes)
            if now >= cutoff:
                raise IllegalTransition(
                    f"confirmed appointments can only be cancelled before {cutoff.isoformat()}",
                    current=current.value,
                    target=ApptStatus.CANCELLED.value,
                )
            return {"refund_eligible": True}
        return {"hold_released": True}

    async def cancel(
        self,
        appointment_id: uuid.UUID,
        reason: Optional[str],
        *,
        cancelled_by: str = "patient",
    ) -> Appointment:
        current = await self._load(appointment_id)
        if current.status_enum is ApptStatus.CANCELLED:
            raise AlreadyCancelled("appointment is already cancelled")
        profile = await self._profile(current.doctor_id)

        decision: Dict[str, Any] = {}

        async with hold(self.serializer, doctor_key(current.doctor_id), self.lock_timeout):
            now = now_utc(self.clock)

            def mutate(appt: Appointment) -> None:
                decision.update(self.check_cancel(appt, profile, now))
                appt.status = ApptStatus.CANCELLED.value
                appt.cancellation_reason = reason
                appt.cancelled_at = now
                appt.pending_expires_at = None
                appt.updated_at = now

            appt = await self.appointments.update(appointment_id, mutate)

        decision["cancelled_by"] = cancelled_by
        logger.info("Appointment %s cancelled by %s (%s)", appointment_id, cancelled_by, reason or "-")
        self._publish(ApptStatus.CANCELLED, appt, now, decision)
        return appt

    # Pending timeout
    async def sweep_expired_pending(self, limit: int = 500) -> int:
        """
        Cancel pending appointments whose payment never arrived before
        pending_expires_at. Returns how many were cancelled. One failing row
        does not stop the sweep.
        """
        now = now_utc(self.clock)
        expired = await self.appointments.list_expired_pending(now, limit=limit)
        swept = 0
        for candidate in expired:
            try:
                if await self._expire(candidate, now):
                    swept += 1
            except SchedulingError as exc:
                logger.warning("Sweeper could not expire %s: %s", candidate.id, exc)
        if expired:
            logger.info("Sweeper cancelled %d of %d expired pending appointments", swept, len(expired))
        return swept

    async def _expire(self, candidate: Appointment, now: datetime) -> bool:
        outcome = _Outcome()

        async with hold(self.serializer, doctor_key(candidate.doctor_id), self.lock_timeout):

            def mutate(appt: Appointment) -> None:
                # Payment may have landed between the listing and the lock
                if appt.status_enum is not ApptStatus.PENDING or appt.payment_captured_at is not None:
                    return
                if appt.pending_expires_at is None or as_utc(appt.pending_expires_at) > now:
                    return
                outcome.changed = True
                appt.status = ApptStatus.CANCELLED.value
                appt.cancellation_reason = PENDING_EXPIRED
                appt.cancelled_at = now
                appt.pending_expires_at = None
                appt.updated_at = now

            appt = await self.appointments.update(candidate.id, mutate)

        if outcome.changed:
            self._publish(
                ApptStatus.CANCELLED,
                appt,
                now,
                {"hold_released": True, "cancelled_by": "system"},
            )
        return outcome.changed
