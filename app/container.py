# app/container.py
"""Constructor-injected wiring of the scheduling core."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import Settings
from app.modules.appointments.hooks import HookBus, log_event
from app.modules.appointments.lifecycle import AppointmentLifecycle
from app.modules.appointments.repository import SqlAppointmentStore
from app.modules.appointments.service import AppointmentService
from app.modules.audit.log import AuditLogSubscriber
from app.modules.doctors.repository import SqlScheduleStore
from app.modules.doctors.service import DoctorScheduleService
from app.modules.scheduling.availability import AvailabilityResolver
from app.modules.scheduling.cache import CachedScheduleStore
from app.modules.scheduling.clock import SystemClock
from app.modules.scheduling.ports import Clock
from app.modules.scheduling.serializer import LocalSerializer


@dataclass
class SchedulingCore:
    clock: Clock
    schedule_store: SqlScheduleStore
    schedule_cache: CachedScheduleStore
    appointment_store: SqlAppointmentStore
    serializer: LocalSerializer
    resolver: AvailabilityResolver
    hooks: HookBus
    lifecycle: AppointmentLifecycle
    appointments: AppointmentService
    doctors: DoctorScheduleService


def profile_defaults(settings: Settings) -> dict:
    return {
        "timezone": settings.DEFAULT_TIMEZONE,
        "slot_grain_minutes": settings.DEFAULT_SLOT_GRAIN_MINUTES,
        "lead_time_minutes": settings.DEFAULT_LEAD_TIME_MINUTES,
        "horizon_days": settings.DEFAULT_HORIZON_DAYS,
        "default_duration_minutes": settings.DEFAULT_DURATION_MINUTES,
        "pending_timeout_minutes": settings.DEFAULT_PENDING_TIMEOUT_MINUTES,
        "cancel_cutoff_minutes": settings.DEFAULT_CANCEL_CUTOFF_MINUTES,
    }


def build_core(
    session_factory: async_sessionmaker[AsyncSession],
    settings: Settings,
    clock: Optional[Clock] = None,
    *,
    audit: bool = True,
) -> SchedulingCore:
    clock = clock or SystemClock()
    timeout = settings.STORAGE_TIMEOUT_SECONDS
    lock_timeout = settings.LOCK_ACQUIRE_TIMEOUT_SECONDS

    schedule_store = SqlScheduleStore(session_factory, clock, timeout=timeout)
    schedule_cache = CachedScheduleStore(schedule_store, ttl=settings.SCHEDULE_CACHE_TTL_SECONDS)
    appointment_store = SqlAppointmentStore(session_factory, timeout=timeout)
    serializer = LocalSerializer(lease_seconds=settings.LOCK_LEASE_SECONDS)

    hooks = HookBus()
    hooks.subscribe(log_event)
    if audit:
        hooks.subscribe(AuditLogSubscriber(session_factory))

    # Listings read through the cache; the under-lock re-check reads the store
    resolver = AvailabilityResolver(
        schedule_cache,
        appointment_store,
        clock,
        authoritative_schedules=schedule_store,
    )
    lifecycle = AppointmentLifecycle(
        appointment_store,
        schedule_store,
        serializer,
        clock,
        hooks,
        lock_timeout=lock_timeout,
    )
    appointments = AppointmentService(
        resolver,
        appointment_store,
        serializer,
        lifecycle,
        clock,
        hooks,
        lock_timeout=lock_timeout,
    )
    doctors = DoctorScheduleService(
        schedule_store,
        clock,
        profile_defaults(settings),
        cache=schedule_cache,
        sweep_interval_seconds=settings.SWEEP_INTERVAL_SECONDS,
    )
    return SchedulingCore(
        clock=clock,
        schedule_store=schedule_store,
        schedule_cache=schedule_cache,
        appointment_store=appointment_store,
        serializer=serializer,
        resolver=resolver,
        hooks=hooks,
        lifecycle=lifecycle,
        appointments=appointments,
        doctors=doctors,
    )
