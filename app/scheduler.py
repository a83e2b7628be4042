# app/scheduler.py
"""
APScheduler job: cancel pending appointments whose payment never arrived.

The sweep interval must stay at or below half the pending timeout so an
expired hold is released at most 1.5 timeouts after creation. Profiles are
checked against it when saved; the configured default is checked here.
"""
from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.container import SchedulingCore
from app.core.config import Settings
from app.core.errors import SchedulingError
from app.core.logger import get_logger
from app.modules.doctors.service import sweep_outpaces

logger = get_logger("scheduler")

_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
    return _scheduler


async def run_pending_sweep(core: SchedulingCore) -> int:
    try:
        return await core.lifecycle.sweep_expired_pending()
    except SchedulingError as exc:
        # Store unavailable; the next run picks the rows up again
        logger.warning("[Scheduler] Pending sweep skipped: %s", exc)
        return 0


def start_scheduler(core: SchedulingCore, settings: Settings) -> AsyncIOScheduler:
    scheduler = get_scheduler()
    interval = settings.SWEEP_INTERVAL_SECONDS
    if not sweep_outpaces(settings.DEFAULT_PENDING_TIMEOUT_MINUTES, interval):
        logger.warning(
            "[Scheduler] Sweep interval %ss exceeds half the default pending timeout (%s min)",
            interval, settings.DEFAULT_PENDING_TIMEOUT_MINUTES,
        )

    scheduler.add_job(
        run_pending_sweep,
        trigger=IntervalTrigger(seconds=interval),
        args=[core],
        id="pending_timeout_sweeper",
        name="Pending appointment timeout sweeper",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    scheduler.start()
    logger.info("[Scheduler] Started. Pending sweep every %ss.", interval)
    return scheduler


def stop_scheduler() -> None:
    scheduler = get_scheduler()
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("[Scheduler] Stopped.")
