import os

# Settings are read at import time: point the app at SQLite before anything imports it
os.environ["SQL_DSN"] = "sqlite+aiosqlite:///:memory:"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["APP_ENV"] = "test"

import uuid
import pytest

from app.container import build_core
from app.core.config import settings
from app.db.sql import build_engine, build_session_factory, init_db
from fakes import TODAY_0900, FrozenClock

WEEKLY = [
    ("Monday", [("09:00", "12:00")]),
    ("tuesday", [("09:00", "17:00")]),
    ("WEDNESDAY", [("09:00", "12:00")]),
    ("thursday", [("09:00", "12:00"), ("13:00", "17:00")]),
]


@pytest.fixture
def clock():
    return FrozenClock(TODAY_0900)


@pytest.fixture
async def engine(tmp_path):
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'scheduling.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def core_settings():
    return settings.model_copy(update={"LOCK_ACQUIRE_TIMEOUT_SECONDS": 5.0})


@pytest.fixture
async def core(session_factory, clock, core_settings):
    # Audit rows have their own test; here they would only add concurrent SQLite writers
    c = build_core(session_factory, core_settings, clock, audit=False)
    yield c
    await c.hooks.drain()


@pytest.fixture
def doctor_id():
    return uuid.uuid4()


@pytest.fixture
def patient_id():
    return uuid.uuid4()


@pytest.fixture
async def doctor(core, doctor_id):
    """A doctor in Amsterdam: grain 30, duration 30, lead 0, horizon 90."""
    await core.doctors.upsert_profile(
        doctor_id,
        timezone="Europe/Amsterdam",
        slot_grain_minutes=30,
        default_duration_minutes=30,
        lead_time_minutes=0,
        horizon_days=90,
    )
    await core.doctors.replace_weekly(doctor_id, WEEKLY)
    return doctor_id


@pytest.fixture
def recorded_events(core):
    events = []

    async def record(event):
        events.append(event)

    core.hooks.subscribe(record)
    return events
