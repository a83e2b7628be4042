"""Lifecycle transitions, cancel rules, pending timeout sweeper and audit trail."""
import uuid
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import select

from app.container import build_core
from app.core.errors import AlreadyCancelled, AppointmentNotFound, IllegalTransition
from app.modules.appointments.hooks import Hook
from app.modules.appointments.lifecycle import (
    PENDING_EXPIRED,
    TRANSITIONS,
    check_transition,
    local_instant,
)
from app.modules.appointments.models import ApptStatus
from app.modules.audit.models import AuditLog

MON = date(2025, 3, 10)
TUE = date(2025, 3, 11)


@pytest.mark.unit
@pytest.mark.parametrize("current", list(ApptStatus))
@pytest.mark.parametrize("target", list(ApptStatus))
def test_transition_table(current, target):
    if (current, target) in TRANSITIONS:
        check_transition(current, target)
    elif current is ApptStatus.CANCELLED and target is ApptStatus.CANCELLED:
        with pytest.raises(AlreadyCancelled):
            check_transition(current, target)
    else:
        with pytest.raises(IllegalTransition):
            check_transition(current, target)


@pytest.mark.unit
@pytest.mark.parametrize("day, minute, expected", [
    (date(2025, 3, 10), 600, datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)),
    # Clocks go forward at 02:00 on the 30th: 03:00 local is already CEST
    (date(2025, 3, 30), 180, datetime(2025, 3, 30, 1, 0, tzinfo=timezone.utc)),
    (date(2025, 3, 30), 1440, datetime(2025, 3, 30, 22, 0, tzinfo=timezone.utc)),
    (date(2025, 10, 26), 1440, datetime(2025, 10, 26, 23, 0, tzinfo=timezone.utc)),
])
def test_local_instant(day, minute, expected):
    assert local_instant(day, minute, "Europe/Amsterdam") == expected


async def _confirmed(core, doctor, patient_id, day, start, end):
    appt = await core.appointments.create(doctor, patient_id, day, start, end)
    return await core.lifecycle.on_payment_captured(appt.id)


@pytest.mark.asyncio
async def test_payment_confirms_once(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    assert appt.pending_expires_at is not None

    confirmed = await core.lifecycle.on_payment_captured(appt.id)
    assert confirmed.status == "confirmed"
    assert confirmed.payment_captured_at is not None
    assert confirmed.pending_expires_at is None
    assert confirmed.version == appt.version + 1

    with pytest.raises(IllegalTransition):
        await core.lifecycle.on_payment_captured(appt.id)


@pytest.mark.asyncio
async def test_complete_only_after_the_end(core, doctor, patient_id, clock, recorded_events):
    appt = await _confirmed(core, doctor, patient_id, MON, "10:00", "10:30")

    with pytest.raises(IllegalTransition):
        await core.lifecycle.on_doctor_mark_complete(appt.id)

    clock.advance(minutes=90)  # 10:30, the end instant itself
    done = await core.lifecycle.on_doctor_mark_complete(appt.id)
    assert done.status == "completed"

    # Story: terminal states accept nothing
    with pytest.raises(IllegalTransition):
        await core.appointments.cancel(appt.id)
    with pytest.raises(IllegalTransition):
        await core.lifecycle.on_doctor_mark_no_show(appt.id)
    with pytest.raises(IllegalTransition):
        await core.appointments.reschedule(appt.id, TUE, "10:00", "10:30")

    await core.hooks.drain()
    assert [e.hook for e in recorded_events] == [Hook.CREATED, Hook.CONFIRMED, Hook.COMPLETED]


@pytest.mark.asyncio
async def test_no_show_needs_confirmation(core, doctor, patient_id, clock):
    appt = await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    clock.advance(hours=2)
    with pytest.raises(IllegalTransition):
        await core.lifecycle.on_doctor_mark_no_show(appt.id)


@pytest.mark.asyncio
async def test_no_show_after_the_end(core, doctor, patient_id, clock):
    appt = await _confirmed(core, doctor, patient_id, MON, "10:00", "10:30")
    clock.advance(hours=2)
    missed = await core.lifecycle.on_doctor_mark_no_show(appt.id)
    assert missed.status == "no_show"


@pytest.mark.asyncio
async def test_cancel_pending_releases_the_hold(core, doctor, patient_id, recorded_events):
    appt = await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    cancelled = await core.appointments.cancel(appt.id, "found another doctor", cancelled_by="patient")
    assert cancelled.status == "cancelled"
    assert cancelled.pending_expires_at is None

    await core.hooks.drain()
    event = recorded_events[-1]
    assert event.hook is Hook.CANCELLED
    assert event.details == {"hold_released": True, "cancelled_by": "patient"}


@pytest.mark.asyncio
async def test_cancel_confirmed_ahead_of_cutoff_is_refundable(core, doctor, patient_id, recorded_events):
    appt = await _confirmed(core, doctor, patient_id, TUE, "14:00", "14:30")
    await core.appointments.cancel(appt.id, cancelled_by="doctor")

    await core.hooks.drain()
    event = recorded_events[-1]
    assert event.hook is Hook.CANCELLED
    assert event.details["refund_eligible"] is True
    assert event.details["cancelled_by"] == "doctor"


@pytest.mark.asyncio
async def test_cancel_confirmed_inside_cutoff_is_refused(core, doctor, patient_id):
    # Starts 10:30, cutoff is 120 minutes: cancellable until 08:30, now is 09:00
    appt = await _confirmed(core, doctor, patient_id, MON, "10:30", "11:00")
    with pytest.raises(IllegalTransition):
        await core.appointments.cancel(appt.id)
    assert (await core.appointments.get(appt.id)).status == "confirmed"


@pytest.mark.asyncio
async def test_cancel_pending_inside_cutoff_is_allowed(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, MON, "10:30", "11:00")
    assert (await core.appointments.cancel(appt.id)).status == "cancelled"


@pytest.mark.asyncio
async def test_cancel_unknown_appointment(core, doctor):
    with pytest.raises(AppointmentNotFound):
        await core.appointments.cancel(uuid.uuid4())


@pytest.mark.asyncio
async def test_sweeper_expires_unpaid_holds(core, doctor, patient_id, clock, recorded_events):
    unpaid = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    paid = await _confirmed(core, doctor, patient_id, TUE, "11:00", "11:30")

    clock.advance(minutes=29)
    assert await core.lifecycle.sweep_expired_pending() == 0

    clock.advance(minutes=2)
    assert await core.lifecycle.sweep_expired_pending() == 1
    assert await core.lifecycle.sweep_expired_pending() == 0

    expired = await core.appointments.get(unpaid.id)
    assert expired.status == "cancelled"
    assert expired.cancellation_reason == PENDING_EXPIRED
    assert (await core.appointments.get(paid.id)).status == "confirmed"

    await core.hooks.drain()
    event = recorded_events[-1]
    assert event.appointment_id == unpaid.id
    assert event.details == {"hold_released": True, "cancelled_by": "system"}

    # The released slot is bookable again
    again = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    assert again.status == "pending"


@pytest.mark.asyncio
async def test_reschedule_restarts_the_pending_timeout(core, doctor, patient_id, clock):
    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    clock.advance(minutes=20)
    await core.appointments.reschedule(appt.id, TUE, "15:00", "15:30")

    clock.advance(minutes=15)
    assert await core.lifecycle.sweep_expired_pending() == 0
    clock.advance(minutes=16)
    assert await core.lifecycle.sweep_expired_pending() == 1


@pytest.mark.asyncio
async def test_rescheduled_hook_carries_the_previous_slot(core, doctor, patient_id, recorded_events):
    appt = await _confirmed(core, doctor, patient_id, TUE, "10:00", "10:30")
    moved = await core.appointments.reschedule(appt.id, TUE, "15:00", "15:30")
    assert moved.payment_captured_at is None

    await core.hooks.drain()
    event = recorded_events[-1]
    assert event.hook is Hook.RESCHEDULED
    assert event.details == {
        "previous_date": "2025-03-11",
        "previous_interval": "10:00-10:30",
        "previous_status": "confirmed",
    }


@pytest.mark.asyncio
async def test_notes_are_frozen_once_terminal(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    noted = await core.appointments.update_notes(appt.id, "allergic to penicillin")
    assert noted.notes == "allergic to penicillin"

    await core.appointments.cancel(appt.id)
    with pytest.raises(IllegalTransition):
        await core.appointments.update_notes(appt.id, "too late")


@pytest.mark.asyncio
async def test_audit_rows_follow_the_hooks(session_factory, core_settings, clock, doctor_id, patient_id):
    audited = build_core(session_factory, core_settings, clock, audit=True)
    await audited.doctors.upsert_profile(doctor_id, timezone="Europe/Amsterdam")
    await audited.doctors.replace_weekly(doctor_id, [("tuesday", [("09:00", "17:00")])])

    appt = await audited.appointments.create(doctor_id, patient_id, TUE, "10:00", "10:30")
    await audited.hooks.drain()
    await audited.appointments.cancel(appt.id, "sick")
    await audited.hooks.drain()

    async with session_factory() as session:
        rows = (
            await session.execute(select(AuditLog).where(AuditLog.target_id == appt.id))
        ).scalars().all()

    assert sorted(r.action for r in rows) == ["AppointmentCancelled", "AppointmentCreated"]
    assert all(r.target_table == "appointments" and r.user_id == patient_id for r in rows)
    cancelled = next(r for r in rows if r.action == "AppointmentCancelled")
    assert cancelled.details["details"]["hold_released"] is True
