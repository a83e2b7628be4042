# app/core/errors.py
from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.core.logger import get_logger

logger = get_logger("errors")


class SchedulingError(Exception):
    """
    Base class for every error the scheduling core surfaces.

    `code` is the machine readable detail returned to clients,
    `status_code` the HTTP status the adapter maps it to.
    """

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        super().__init__(message or self.code)
        self.context = context


class ValidationError(SchedulingError):
    """Malformed date, interval, or grain misalignment."""

    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"


class TimeFormatError(ValidationError):
    """A time, date or interval string could not be parsed."""

    code = "time_format_error"


class InvalidRange(ValidationError):
    code = "invalid_range"


class OutOfHorizon(SchedulingError):
    """Date outside [today, today + horizon] or in the past."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "out_of_horizon"


class SlotUnavailable(SchedulingError):
    """Requested interval is not fully contained in the effective free set."""

    status_code = status.HTTP_409_CONFLICT
    code = "slot_unavailable"


class IllegalTransition(SchedulingError):
    """Lifecycle transition not permitted from the current state."""

    status_code = status.HTTP_409_CONFLICT
    code = "illegal_transition"


class AlreadyCancelled(SchedulingError):
    """
    Cancel was already applied. Kept apart from IllegalTransition so
    clients can treat it as success.
    """

    status_code = status.HTTP_409_CONFLICT
    code = "already_cancelled"


class DoctorNotScheduled(SchedulingError):
    """No (active) schedule profile for the doctor."""

    status_code = status.HTTP_404_NOT_FOUND
    code = "doctor_not_scheduled"


class AppointmentNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "appointment_not_found"


class OverrideNotFound(SchedulingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "override_not_found"


class Busy(SchedulingError):
    """The per-doctor serializer could not be acquired in time, or a concurrent write won."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "busy"


class BackendUnavailable(SchedulingError):
    """Store I/O failure or deadline exceeded."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "backend_unavailable"


class InternalError(SchedulingError):
    """Invariant violation detected at runtime. Never auto-healed."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "internal_error"


async def scheduling_error_handler(request: Request, exc: SchedulingError) -> JSONResponse:
    if isinstance(exc, InternalError):
        logger.error("Invariant violation on %s %s: %s", request.method, request.url.path, exc)
    elif exc.status_code >= 500:
        logger.warning("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.code, "message": str(exc)},
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed payloads are the same ValidationError kind as malformed times
    return JSONResponse(
        status_code=ValidationError.status_code,
        content={"detail": ValidationError.code, "errors": jsonable_encoder(exc.errors())},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """The one place where core errors become HTTP responses."""
    app.add_exception_handler(SchedulingError, scheduling_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
