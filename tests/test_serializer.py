import asyncio
import uuid

import pytest

from app.core.errors import Busy
from app.modules.scheduling.serializer import LocalSerializer, doctor_key, hold


@pytest.mark.unit
def test_doctor_key():
    doctor_id = uuid.UUID("12345678-1234-5678-1234-567812345678")
    assert doctor_key(doctor_id) == "doctor:12345678-1234-5678-1234-567812345678"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_acquire_release():
    serializer = LocalSerializer()
    handle = await serializer.acquire("doctor:a", timeout=1)
    assert serializer.is_held("doctor:a")
    serializer.release(handle)
    assert not serializer.is_held("doctor:a")
    # Releasing twice is a no-op
    serializer.release(handle)
    assert not serializer.is_held("doctor:a")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_acquirer_times_out_busy():
    serializer = LocalSerializer()
    async with hold(serializer, "doctor:a", timeout=1):
        with pytest.raises(Busy):
            await serializer.acquire("doctor:a", timeout=0.05)
        # Other doctors are independent
        other = await serializer.acquire("doctor:b", timeout=0.05)
        serializer.release(other)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_waiter_gets_the_lock_after_release():
    serializer = LocalSerializer()
    order = []

    async def worker(name, pause):
        async with hold(serializer, "doctor:a", timeout=1):
            order.append(f"{name}-in")
            await asyncio.sleep(pause)
            order.append(f"{name}-out")

    await asyncio.gather(worker("first", 0.05), worker("second", 0))
    # Never interleaved
    assert order in (
        ["first-in", "first-out", "second-in", "second-out"],
        ["second-in", "second-out", "first-in", "first-out"],
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_hold_releases_on_error():
    serializer = LocalSerializer()
    with pytest.raises(RuntimeError):
        async with hold(serializer, "doctor:a", timeout=1):
            raise RuntimeError("boom")
    assert not serializer.is_held("doctor:a")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_lease_overrun_is_logged(caplog):
    serializer = LocalSerializer(lease_seconds=0)
    handle = await serializer.acquire("doctor:a", timeout=1)
    await asyncio.sleep(0.01)
    with caplog.at_level("WARNING", logger="telemed.serializer"):
        serializer.release(handle)
    assert "exceeded" in caplog.text


@pytest.mark.unit
@pytest.mark.asyncio
async def test_released_keys_are_forgotten():
    serializer = LocalSerializer()
    for n in range(5):
        async with hold(serializer, f"doctor:{n}", timeout=1):
            pass
    assert serializer._locks == {}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_key_kept_while_someone_waits():
    serializer = LocalSerializer()
    first = await serializer.acquire("doctor:a", timeout=1)
    waiter = asyncio.create_task(serializer.acquire("doctor:a", timeout=1))
    await asyncio.sleep(0)

    serializer.release(first)
    assert "doctor:a" in serializer._locks
    second = await waiter
    assert serializer.is_held("doctor:a")

    serializer.release(second)
    assert "doctor:a" not in serializer._locks


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timed_out_waiter_does_not_leak_the_key():
    serializer = LocalSerializer()
    handle = await serializer.acquire("doctor:a", timeout=1)
    with pytest.raises(Busy):
        await serializer.acquire("doctor:a", timeout=0.01)
    serializer.release(handle)
    assert serializer._locks == {}
