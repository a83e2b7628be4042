# app/modules/appointments/hooks.py
"""
Outward hooks published by the appointment lifecycle.

Publishing is fire-and-forget: subscribers run as background tasks, their
failures are logged and never roll back the appointment write. Delivery
retries belong to the subscriber (notification queue, payment service).
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Set

from app.core.logger import get_logger

logger = get_logger("hooks")


class Hook(str, Enum):
    CREATED = "AppointmentCreated"
    CONFIRMED = "AppointmentConfirmed"
    RESCHEDULED = "AppointmentRescheduled"
    CANCELLED = "AppointmentCancelled"
    COMPLETED = "AppointmentCompleted"
    NO_SHOW = "AppointmentNoShow"


@dataclass(frozen=True)
class AppointmentEvent:
    hook: Hook
    appointment_id: uuid.UUID
    doctor_id: uuid.UUID
    patient_id: uuid.UUID
    date: date
    interval: str
    status: str
    occurred_at: datetime
    details: Dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "hook": self.hook.value,
            "appointmentId": str(self.appointment_id),
            "doctorId": str(self.doctor_id),
            "patientId": str(self.patient_id),
            "date": self.date.isoformat(),
            "interval": self.interval,
            "status": self.status,
            "occurredAt": self.occurred_at.isoformat(),
            **({"details": self.details} if self.details else {}),
        }


Subscriber = Callable[[AppointmentEvent], Awaitable[None]]


class HookBus:
    def __init__(self):
        self._subscribers: Dict[Hook, List[Subscriber]] = {}
        self._pending: Set[asyncio.Task] = set()

    def subscribe(self, subscriber: Subscriber, *hooks: Hook) -> None:
        """Subscribe to the given hooks, or to all of them when none are named."""
        for hook in hooks or tuple(Hook):
            self._subscribers.setdefault(hook, []).append(subscriber)

    def publish(self, event: AppointmentEvent) -> None:
        for subscriber in self._subscribers.get(event.hook, []):
            task = asyncio.get_running_loop().create_task(self._deliver(subscriber, event))
            # Keep a reference until done so the task is not garbage collected
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def _deliver(self, subscriber: Subscriber, event: AppointmentEvent) -> None:
        try:
            await subscriber(event)
        except Exception:
            logger.exception(
                "Hook subscriber %s failed for %s on %s",
                getattr(subscriber, "__qualname__", subscriber),
                event.hook.value,
                event.appointment_id,
            )

    async def drain(self) -> None:
        """Wait for in-flight deliveries (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


async def log_event(event: AppointmentEvent) -> None:
    logger.info(
        "%s appointment=%s doctor=%s %s %s status=%s",
        event.hook.value,
        event.appointment_id,
        event.doctor_id,
        event.date.isoformat(),
        event.interval,
        event.status,
    )
