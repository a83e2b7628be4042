# app/modules/scheduling/serializer.py
"""
Per-doctor booking serializer.

One asyncio.Lock per key ("doctor:<id>"), kept only while someone holds or
waits for it. Acquisition is bounded by a timeout and raises Busy. Each
handle carries a lease deadline; a handle whose lease ran out is reported
when released so slow admissions show up in logs. Cross-process exclusion
is provided by the row lock the appointment store takes inside its
transaction.

Callers go through hold(), which needs only acquire/release, so any
implementation of the Serializer port can stand in for LocalSerializer.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Dict

from app.core.errors import Busy
from app.core.logger import get_logger
from app.modules.scheduling.ports import Serializer, SerializerHandle

logger = get_logger("serializer")


def doctor_key(doctor_id: uuid.UUID | str) -> str:
    return f"doctor:{doctor_id}"


@asynccontextmanager
async def hold(serializer: Serializer, key: str, timeout: float) -> AsyncIterator[SerializerHandle]:
    handle = await serializer.acquire(key, timeout)
    try:
        yield handle
    finally:
        serializer.release(handle)


@dataclass
class LockHandle:
    key: str
    lease_expires_at: float
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
    released: bool = False


class LocalSerializer:
    def __init__(self, lease_seconds: float = 10.0):
        self.lease_seconds = lease_seconds
        self._locks: Dict[str, asyncio.Lock] = {}
        # holder plus waiters per key
        self._users: Dict[str, int] = {}
        self._holders: Dict[str, str] = {}

    def _enter(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        return lock

    def _leave(self, key: str) -> None:
        remaining = self._users[key] - 1
        if remaining:
            self._users[key] = remaining
        else:
            del self._users[key]
            del self._locks[key]

    async def acquire(self, key: str, timeout: float) -> LockHandle:
        lock = self._enter(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            self._leave(key)
            logger.warning("Serializer %s not acquired within %.1fs", key, timeout)
            raise Busy(f"could not acquire {key}", key=key) from exc
        except asyncio.CancelledError:
            self._leave(key)
            raise

        handle = LockHandle(key=key, lease_expires_at=time.monotonic() + self.lease_seconds)
        self._holders[key] = handle.token
        return handle

    def release(self, handle: LockHandle) -> None:
        if handle.released:
            return
        handle.released = True
        if self._holders.get(handle.key) != handle.token:
            logger.error("Release of %s by a handle that does not hold it", handle.key)
            return
        if time.monotonic() > handle.lease_expires_at:
            logger.warning("Lease on %s exceeded %.1fs", handle.key, self.lease_seconds)
        del self._holders[handle.key]
        self._locks[handle.key].release()
        self._leave(handle.key)

    def is_held(self, key: str) -> bool:
        return key in self._holders
