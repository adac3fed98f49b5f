# mechanic_booking/core/errors.py
"""
Booking error taxonomy.

Every failure the engine reports carries a stable ``kind`` and a human
readable ``message``. The HTTP layer renders them as
``{"success": false, "error": kind, "message": message}``.
"""
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class BookingError(Exception):
    kind = "BookingError"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"success": False, "error": self.kind, "message": self.message}


class MalformedTemporalInput(BookingError):
    """A date or time value matched none of the recognized patterns."""

    kind = "MalformedTemporalInput"
    status_code = 400


class ValidationError(BookingError):
    kind = "ValidationError"
    status_code = 400


class SlotConflict(BookingError):
    """The mechanic is already booked or blocked in the requested interval."""

    kind = "SlotConflict"
    status_code = 409

    def __init__(self, message: str, appointments_count: int = 0, blocked_count: int = 0):
        super().__init__(message)
        self.appointments_count = appointments_count
        self.blocked_count = blocked_count

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["appointmentsCount"] = self.appointments_count
        body["blockedCount"] = self.blocked_count
        return body


class NotFound(BookingError):
    kind = "NotFound"
    status_code = 404


class InvalidTransition(BookingError):
    kind = "InvalidTransition"
    status_code = 400


class PermissionDenied(BookingError):
    kind = "PermissionDenied"
    status_code = 403


class StorageFailure(BookingError):
    """Commit or query failure. The transaction has already been rolled back."""

    kind = "StorageFailure"
    status_code = 500

    def __init__(self, message: str = "Server error while saving the booking"):
        super().__init__(message)


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        logger.info("%s %s rejected (%s): %s", request.method, request.url.path, exc.kind, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"{location}: {first.get('msg')}" if location else str(first.get("msg"))
    else:
        message = "Invalid request"
    logger.info("%s %s rejected (ValidationError): %s", request.method, request.url.path, message)
    return JSONResponse(status_code=ValidationError.status_code, content=ValidationError(message).to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BookingError, booking_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
