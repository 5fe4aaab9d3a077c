"""Service error taxonomy and FastAPI exception handlers"""

from typing import Any, Callable, Coroutine, Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.responses import Response
import structlog

logger = structlog.get_logger()

ExceptionHandler = Callable[[Request, Exception], Coroutine[Any, Any, Response]]


class ServiceError(Exception):
    """Base class for errors surfaced to callers with a machine-readable code"""

    code = "SERVICE_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"detail": self.message, "code": self.code}
        if self.context:
            body.update(self.context)
        return body


class ReservationError(ServiceError):
    """A business rule rejected the operation.

    ``persist`` marks rejections whose accompanying state change must be
    committed rather than rolled back.
    """

    code = "RESERVATION_ERROR"
    status_code = status.HTTP_400_BAD_REQUEST
    persist = False

    def __init__(self, message: str, persist: Optional[bool] = None, **context: Any) -> None:
        super().__init__(message, **context)
        if persist is not None:
            self.persist = persist


class ValidationFailed(ReservationError):
    code = "VALIDATION_ERROR"


class NotFound(ReservationError):
    code = "NOT_FOUND"
    status_code = status.HTTP_404_NOT_FOUND


class Forbidden(ReservationError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN


class InvalidStatus(ReservationError):
    code = "INVALID_STATUS"


class Expired(ReservationError):
    code = "EXPIRED"
    status_code = status.HTTP_410_GONE
    persist = True


class SlotConflict(ReservationError):
    code = "CONFLICT"
    status_code = status.HTTP_409_CONFLICT
    persist = True


class PaymentAlreadyUsed(ReservationError):
    code = "PAYMENT_ALREADY_USED"
    status_code = status.HTTP_409_CONFLICT


class RefundWindowPassed(ReservationError):
    code = "REFUND_WINDOW_PASSED"


class InvalidToken(ReservationError):
    code = "INVALID_TOKEN"


class AvailabilityCheckFailed(ServiceError):
    """Conflict state unknown; confirmation must not proceed"""

    code = "AVAILABILITY_UNKNOWN"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


async def service_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = exc if isinstance(exc, ServiceError) else ServiceError(str(exc))
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


async def general_500_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "code": "INTERNAL_ERROR"},
    )


EXCEPTION_HANDLERS: dict[type[Exception], ExceptionHandler] = {
    ServiceError: service_error_handler,
    Exception: general_500_exception_handler,
}


def register_exception_handlers(app: FastAPI) -> None:
    for exception_class, handler in EXCEPTION_HANDLERS.items():
        app.add_exception_handler(exception_class, handler)
