# app/modules/audit/log.py
from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.modules.appointments.hooks import AppointmentEvent
from app.modules.audit.models import AuditLog


async def write_audit_log(
    session: AsyncSession,
    user_id: Optional[uuid.UUID],
    action: str,
    target_table: str,
    target_id: Optional[uuid.UUID],
    details: Optional[Dict[str, Any]] = None,
):
    """
    Write an audit log entry.

    action:
        "AppointmentCreated"
        "AppointmentRescheduled"
        "AppointmentCancelled"
        ...
    """
    stmt = insert(AuditLog).values(
        user_id=user_id,
        action=action,
        target_table=target_table,
        target_id=target_id,
        details=details,
    )
    await session.execute(stmt)


class AuditLogSubscriber:
    """
    Hook subscriber recording every appointment event. Runs after the
    appointment transaction committed, in a session of its own.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def __call__(self, event: AppointmentEvent) -> None:
        async with self.session_factory() as session, session.begin():
            await write_audit_log(
                session,
                user_id=event.patient_id,
                action=event.hook.value,
                target_table="appointments",
                target_id=event.appointment_id,
                details=event.as_dict(),
            )
