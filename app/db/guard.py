# app/db/guard.py
from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from app.core.errors import BackendUnavailable, Busy, SchedulingError
from app.core.logger import get_logger

logger = get_logger("storage")

T = TypeVar("T")


def storage_call(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """
    Run a store method under the store's deadline and translate storage
    failures into the core's error kinds. The session context inside `fn`
    rolls back the transaction on the way out.
    """

    @functools.wraps(fn)
    async def wrapper(self: Any, *args: Any, **kwargs: Any) -> T:
        try:
            return await asyncio.wait_for(fn(self, *args, **kwargs), timeout=self.timeout)
        except SchedulingError:
            raise
        except asyncio.TimeoutError as exc:
            logger.warning("%s exceeded storage deadline of %.1fs", fn.__qualname__, self.timeout)
            raise BackendUnavailable("storage_deadline_exceeded") from exc
        except StaleDataError as exc:
            raise Busy("concurrent_modification") from exc
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", fn.__qualname__, exc)
            raise BackendUnavailable("storage_error") from exc

    return wrapper
