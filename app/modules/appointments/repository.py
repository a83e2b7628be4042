# app/modules/appointments/repository.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.errors import AppointmentNotFound, Busy, DoctorNotScheduled, SlotUnavailable
from app.db.guard import storage_call
from app.modules.appointments.models import ACTIVE_STATUSES, Appointment, ApptStatus
from app.modules.doctors.models import DoctorScheduleProfile
from app.modules.scheduling.ports import DateRange

_ACTIVE_VALUES = tuple(s.value for s in ACTIVE_STATUSES)


def _status_value(status: ApptStatus | str) -> str:
    return status.value if isinstance(status, ApptStatus) else status


async def _lock_doctor(session: AsyncSession, doctor_id: uuid.UUID) -> None:
    """
    Row lock on the doctor's schedule profile. Every write that can change
    a doctor's booked set takes it first, so two transactions never read the
    same conflict set and both insert.
    """
    found = (
        await session.execute(
            select(DoctorScheduleProfile.doctor_id)
            .where(DoctorScheduleProfile.doctor_id == doctor_id)
            .with_for_update()
        )
    ).scalar_one_or_none()
    if found is None:
        raise DoctorNotScheduled(f"doctor {doctor_id} has no schedule")


async def _conflicts(
    session: AsyncSession,
    *,
    doctor_id: uuid.UUID,
    day: date,
    start_minute: int,
    end_minute: int,
    exclude_id: Optional[uuid.UUID] = None,
) -> List[Appointment]:
    # Half-open overlap: a.start < b.end AND b.start < a.end
    cond = [
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == day,
        Appointment.status.in_(_ACTIVE_VALUES),
        Appointment.start_minute < end_minute,
        Appointment.end_minute > start_minute,
    ]
    if exclude_id is not None:
        cond.append(Appointment.id != exclude_id)
    rows = await session.execute(select(Appointment).where(and_(*cond)))
    return list(rows.scalars().all())


class SqlAppointmentStore:
    """AppointmentStore over the appointments table. One session per call."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], timeout: float = 10.0):
        self.session_factory = session_factory
        self.timeout = timeout

    @storage_call
    async def get(self, appointment_id: uuid.UUID) -> Optional[Appointment]:
        async with self.session_factory() as session:
            return await session.get(Appointment, appointment_id)

    @storage_call
    async def list_for_doctor(
        self,
        doctor_id: uuid.UUID,
        date_range: DateRange,
        statuses: Sequence[str],
        *,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> List[Appointment]:
        cond = [
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date >= date_range.date_from,
            Appointment.appointment_date <= date_range.date_to,
            Appointment.status.in_([_status_value(s) for s in statuses]),
        ]
        if exclude_id is not None:
            cond.append(Appointment.id != exclude_id)
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Appointment)
                .where(and_(*cond))
                .order_by(Appointment.appointment_date, Appointment.start_minute, Appointment.end_minute)
            )
            return list(rows.scalars().all())

    @storage_call
    async def create(self, appt: Appointment) -> Appointment:
        """
        Insert in one transaction: lock the doctor, re-read the conflict set,
        write. Raises SlotUnavailable if an overlapping active booking exists.
        """
        async with self.session_factory() as session, session.begin():
            await _lock_doctor(session, appt.doctor_id)
            clash = await _conflicts(
                session,
                doctor_id=appt.doctor_id,
                day=appt.appointment_date,
                start_minute=appt.start_minute,
                end_minute=appt.end_minute,
            )
            if clash:
                raise SlotUnavailable("slot_already_taken", conflicting=str(clash[0].id))
            session.add(appt)
            await session.flush()
        return appt

    @storage_call
    async def update(
        self,
        appointment_id: uuid.UUID,
        mutation: Callable[[Appointment], None],
        *,
        expected_version: Optional[int] = None,
        check_overlap: bool = False,
    ) -> Appointment:
        """
        Apply `mutation` to the row inside a transaction.

        expected_version makes the write optimistic: if someone else changed
        the row since it was read, Busy is raised and nothing is written.
        check_overlap re-reads the doctor's conflict set after the mutation
        (reschedule).
        """
        async with self.session_factory() as session, session.begin():
            appt = await session.get(
                Appointment, appointment_id, with_for_update=True, populate_existing=True
            )
            if appt is None:
                raise AppointmentNotFound(f"appointment {appointment_id} not found")
            if expected_version is not None and appt.version != expected_version:
                raise Busy("concurrent_modification", appointment_id=str(appointment_id))

            if check_overlap:
                await _lock_doctor(session, appt.doctor_id)

            mutation(appt)

            if check_overlap and appt.status in _ACTIVE_VALUES:
                clash = await _conflicts(
                    session,
                    doctor_id=appt.doctor_id,
                    day=appt.appointment_date,
                    start_minute=appt.start_minute,
                    end_minute=appt.end_minute,
                    exclude_id=appt.id,
                )
                if clash:
                    raise SlotUnavailable("slot_already_taken", conflicting=str(clash[0].id))
            await session.flush()
        return appt

    @storage_call
    async def list_page(
        self,
        *,
        patient_id: Optional[uuid.UUID] = None,
        doctor_id: Optional[uuid.UUID] = None,
        statuses: Optional[Sequence[str]] = None,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Appointment], int]:
        cond = []
        if patient_id is not None:
            cond.append(Appointment.patient_id == patient_id)
        if doctor_id is not None:
            cond.append(Appointment.doctor_id == doctor_id)
        if statuses:
            cond.append(Appointment.status.in_([_status_value(s) for s in statuses]))

        async with self.session_factory() as session:
            total_stmt = select(func.count()).select_from(Appointment).where(*cond)
            total = (await session.execute(total_stmt)).scalar_one()

            stmt = (
                select(Appointment)
                .where(*cond)
                .order_by(
                    Appointment.appointment_date.desc(),
                    Appointment.start_minute.desc(),
                    Appointment.id,  # tie-breaker for stable paging
                )
                .limit(limit)
                .offset(offset)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return list(rows), total

    @storage_call
    async def list_expired_pending(self, now: datetime, limit: int = 500) -> List[Appointment]:
        """Pending appointments whose payment never arrived before pending_expires_at."""
        async with self.session_factory() as session:
            rows = await session.execute(
                select(Appointment)
                .where(
                    Appointment.status == ApptStatus.PENDING.value,
                    Appointment.payment_captured_at.is_(None),
                    Appointment.pending_expires_at.is_not(None),
                    Appointment.pending_expires_at <= now,
                )
                .order_by(Appointment.pending_expires_at)
                .limit(limit)
            )
            return list(rows.scalars().all())
