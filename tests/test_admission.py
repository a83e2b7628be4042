"""End-to-end admission against the SQLite store (clinic in Amsterdam, today Monday 2025-03-10 09:00)."""
import asyncio
import uuid
from datetime import date

import pytest

from app.container import build_core
from app.core.errors import (
    AlreadyCancelled,
    Busy,
    DoctorNotScheduled,
    IllegalTransition,
    OutOfHorizon,
    SlotUnavailable,
    ValidationError,
)
from app.modules.appointments.hooks import Hook
from app.modules.appointments.models import Appointment
from app.modules.scheduling.clock import now_utc
from app.modules.scheduling.serializer import doctor_key, hold

from fakes import RecordingSerializer

pytestmark = pytest.mark.integration

MON = date(2025, 3, 10)
TUE = date(2025, 3, 11)
WED = date(2025, 3, 12)
THU = date(2025, 3, 13)


async def free_on(core, doctor_id, day):
    view = await core.appointments.list_slots(doctor_id, day, day)
    return [str(iv) for iv in view.free[day]]


@pytest.mark.asyncio
async def test_basic_booking_succeeds(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, "2025-03-10", "10:00", "10:30")
    assert appt.status == "pending"
    assert appt.version == 1
    assert await free_on(core, doctor, MON) == ["09:00-10:00", "10:30-12:00"]


@pytest.mark.asyncio
async def test_overlap_rejected(core, doctor, patient_id):
    await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    with pytest.raises(SlotUnavailable):
        await core.appointments.create(doctor, patient_id, MON, "10:00", "11:00")
    assert await free_on(core, doctor, MON) == ["09:00-10:00", "10:30-12:00"]


@pytest.mark.asyncio
async def test_overlap_off_grain_is_rejected_before_admission(core, doctor, patient_id):
    # Story: 10:15-10:45 overlaps the booking but is also off the 30 minute grain
    await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    with pytest.raises((SlotUnavailable, ValidationError)):
        await core.appointments.create(doctor, patient_id, MON, "10:15", "10:45")
    assert await free_on(core, doctor, MON) == ["09:00-10:00", "10:30-12:00"]


@pytest.mark.asyncio
async def test_exact_boundary_allowed(core, doctor, patient_id):
    await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30")
    appt = await core.appointments.create(doctor, patient_id, MON, "10:30", "11:00")
    assert appt.status == "pending"
    assert await free_on(core, doctor, MON) == ["09:00-10:00", "11:00-12:00"]


@pytest.mark.asyncio
async def test_override_blocks_slot(core, doctor, patient_id):
    await core.doctors.upsert_override(doctor, "2025-03-11", [("13:00", "14:00")], "team meeting")
    with pytest.raises(SlotUnavailable):
        await core.appointments.create(doctor, patient_id, TUE, "13:30", "14:00")
    appt = await core.appointments.create(doctor, patient_id, TUE, "14:00", "14:30")
    assert appt.status == "pending"


@pytest.mark.asyncio
async def test_concurrent_admission_exactly_one_winner(core, doctor, patient_id):
    results = await asyncio.gather(
        core.appointments.create(doctor, patient_id, WED, "09:00", "09:30"),
        core.appointments.create(doctor, patient_id, WED, "09:00", "09:30"),
        return_exceptions=True,
    )
    winners = [r for r in results if isinstance(r, Appointment)]
    losers = [r for r in results if isinstance(r, SlotUnavailable)]
    assert len(winners) == 1 and len(losers) == 1
    assert winners[0].status == "pending"

    rows, total = await core.appointments.list_for_doctor(doctor)
    assert total == 1


@pytest.mark.asyncio
async def test_many_concurrent_overlapping_requests(core, doctor, patient_id):
    # Story: twelve patients race for three overlapping windows; booked set stays disjoint
    requests = [("09:00", "10:00"), ("09:30", "10:30"), ("10:00", "11:00"), ("09:00", "09:30")] * 3
    results = await asyncio.gather(
        *(core.appointments.create(doctor, patient_id, WED, s, e) for s, e in requests),
        return_exceptions=True,
    )
    assert all(isinstance(r, (Appointment, SlotUnavailable)) for r in results)

    booked, _ = await core.appointments.list_for_doctor(doctor, statuses=["pending", "confirmed"])
    intervals = sorted(a.interval for a in booked)
    for a, b in zip(intervals, intervals[1:]):
        assert not a.overlaps(b)


@pytest.mark.asyncio
async def test_reschedule_and_cancellation(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, THU, "15:00", "15:30")
    assert appt.status == "pending"

    moved = await core.appointments.reschedule(appt.id, "2025-03-13", "16:00", "16:30")
    assert moved.status == "pending"
    assert str(moved.interval) == "16:00-16:30"
    assert await free_on(core, doctor, THU) == ["09:00-12:00", "13:00-16:00", "16:30-17:00"]

    cancelled = await core.appointments.cancel(appt.id, "changed my mind")
    assert cancelled.status == "cancelled"
    assert cancelled.cancellation_reason == "changed my mind"
    assert cancelled.cancelled_at is not None
    assert await free_on(core, doctor, THU) == ["09:00-12:00", "13:00-17:00"]

    with pytest.raises(AlreadyCancelled):
        await core.appointments.cancel(appt.id)
    with pytest.raises(IllegalTransition):
        await core.appointments.reschedule(appt.id, THU, "10:00", "10:30")


@pytest.mark.asyncio
async def test_reschedule_to_own_slot_is_neutral(core, doctor, patient_id, clock):
    appt = await core.appointments.create(doctor, patient_id, THU, "10:00", "10:30")
    await core.lifecycle.on_payment_captured(appt.id)
    clock.advance(minutes=5)

    same = await core.appointments.reschedule(appt.id, THU, "10:00", "10:30")
    assert same.status == "pending"
    assert same.payment_captured_at is None
    assert same.interval == appt.interval
    assert same.appointment_date == appt.appointment_date
    assert same.updated_at > appt.updated_at


@pytest.mark.asyncio
async def test_reschedule_into_doctors_own_override_fails(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    await core.doctors.upsert_override(doctor, TUE, [("15:00", "16:00")])
    with pytest.raises(SlotUnavailable):
        await core.appointments.reschedule(appt.id, TUE, "15:00", "15:30")


@pytest.mark.asyncio
async def test_reschedule_cannot_land_on_another_booking(core, doctor, patient_id):
    first = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    await core.appointments.create(doctor, patient_id, TUE, "11:00", "11:30")
    with pytest.raises(SlotUnavailable):
        await core.appointments.reschedule(first.id, TUE, "11:00", "11:30")


@pytest.mark.asyncio
async def test_create_then_cancel_restores_free_set(core, doctor, patient_id):
    before = await free_on(core, doctor, TUE)
    appt = await core.appointments.create(doctor, patient_id, TUE, "12:00", "13:00")
    await core.appointments.cancel(appt.id)
    assert await free_on(core, doctor, TUE) == before


@pytest.mark.asyncio
@pytest.mark.parametrize("start, end", [
    ("10:00", "10:00"),   # zero length
    ("10:30", "10:00"),   # reversed
    ("10:10", "10:40"),   # off grain
    ("25:00", "25:30"),   # not a time
    ("10:00", "10:15"),   # shorter than the grain
])
async def test_malformed_requests(core, doctor, patient_id, start, end):
    with pytest.raises(ValidationError):
        await core.appointments.create(doctor, patient_id, MON, start, end)


@pytest.mark.asyncio
async def test_bad_date_mode_and_horizon(core, doctor, patient_id):
    with pytest.raises(ValidationError):
        await core.appointments.create(doctor, patient_id, "10-03-2025", "10:00", "10:30")
    with pytest.raises(ValidationError):
        await core.appointments.create(doctor, patient_id, MON, "10:00", "10:30", mode="carrier_pigeon")
    with pytest.raises(OutOfHorizon):
        await core.appointments.create(doctor, patient_id, "2025-03-09", "10:00", "10:30")
    with pytest.raises(OutOfHorizon):
        await core.appointments.create(doctor, patient_id, "2025-07-01", "10:00", "10:30")


@pytest.mark.asyncio
async def test_started_slot_today_is_not_free(core, doctor, patient_id, clock):
    clock.advance(minutes=1)
    with pytest.raises(SlotUnavailable):
        await core.appointments.create(doctor, patient_id, MON, "09:00", "09:30")
    view = await core.appointments.list_slots(doctor, MON, MON)
    assert str(view.free[MON][0]) == "09:01-12:00"
    assert str(view.slots[MON][0]) == "09:30-10:00"


@pytest.mark.asyncio
async def test_unknown_doctor(core, patient_id):
    with pytest.raises(DoctorNotScheduled):
        await core.appointments.create(uuid.uuid4(), patient_id, MON, "10:00", "10:30")


@pytest.mark.asyncio
async def test_busy_when_the_doctor_lock_is_held(session_factory, clock, core_settings, doctor, patient_id):
    impatient = build_core(
        session_factory,
        core_settings.model_copy(update={"LOCK_ACQUIRE_TIMEOUT_SECONDS": 0.05}),
        clock,
    )
    async with hold(impatient.serializer, doctor_key(doctor), timeout=1):
        with pytest.raises(Busy):
            await impatient.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    await impatient.hooks.drain()


@pytest.mark.asyncio
async def test_writes_go_through_any_serializer_implementation(core, doctor, patient_id):
    # Story: a distributed lease lock only has to offer acquire/release
    recording = RecordingSerializer()
    core.appointments.serializer = recording
    core.lifecycle.serializer = recording

    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    cancelled = await core.appointments.cancel(appt.id)

    assert cancelled.status == "cancelled"
    key = doctor_key(doctor)
    assert recording.acquired == [key, key]
    assert recording.released == [key, key]


@pytest.mark.asyncio
async def test_store_rejects_overlap_without_the_serializer(core, doctor, patient_id):
    # Another process writing directly to the store still hits the in-transaction check
    await core.appointments.create(doctor, patient_id, TUE, "10:00", "11:00")
    clash = Appointment(
        doctor_id=doctor,
        patient_id=patient_id,
        appointment_date=TUE,
        start_minute=630,
        end_minute=660,
        status="pending",
        created_at=now_utc(core.clock),
        updated_at=now_utc(core.clock),
    )
    with pytest.raises(SlotUnavailable):
        await core.appointment_store.create(clash)


@pytest.mark.asyncio
async def test_stale_version_is_busy(core, doctor, patient_id):
    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30")
    await core.appointments.update_notes(appt.id, "bring lab results")
    with pytest.raises(Busy):
        await core.appointment_store.update(appt.id, lambda a: None, expected_version=appt.version)


@pytest.mark.asyncio
async def test_created_hook_is_published(core, doctor, patient_id, recorded_events):
    appt = await core.appointments.create(doctor, patient_id, TUE, "10:00", "10:30", mode="video")
    await core.hooks.drain()
    created = [e for e in recorded_events if e.hook is Hook.CREATED]
    assert len(created) == 1
    event = created[0]
    assert event.appointment_id == appt.id
    assert event.doctor_id == doctor and event.patient_id == patient_id
    assert event.interval == "10:00-10:30" and event.status == "pending"
    assert appt.mode == "video"
