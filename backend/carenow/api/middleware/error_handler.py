"""
Error handlers and HTTP exceptions for the booking API.

Every error leaves the service in one JSON shape:
{"error": ..., "correlation_id": ..., "details": {...}}, with details
omitted when empty. Booking-core failures map onto status codes by type.
"""
import logging
from typing import Optional, Dict, Any
from fastapi import Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from carenow.lib.logging import get_correlation_id, get_logger
from carenow.services.errors import (
    CareNowError,
    ConcurrentUpdateFailure,
    NotFoundFailure,
    PartnerConflictFailure,
    ServerFailure,
    ValidationFailure,
)

logger = get_logger(__name__)


class AppException(Exception):
    """HTTP-level failure raised by the API layer itself."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class UnauthorizedException(AppException):
    """Missing or invalid bearer token."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(AppException):
    """Caller has the wrong role, or is not a participant of the booking."""

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message=message, status_code=status.HTTP_403_FORBIDDEN)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or get_correlation_id() or "unknown"


def _error_response(
    request: Request,
    status_code: int,
    message: Any,
    details: Optional[Dict[str, Any]] = None,
    exc_info: Optional[BaseException] = None,
) -> JSONResponse:
    correlation_id = _correlation_id(request)
    logger.log(
        logging.WARNING if status_code < 500 else logging.ERROR,
        f"Request failed: {message}",
        extra={
            "correlation_id": correlation_id,
            "status_code": status_code,
            "path": request.url.path,
            "method": request.method,
            "details": details or {},
        },
        exc_info=exc_info,
    )

    content: Dict[str, Any] = {"error": message, "correlation_id": correlation_id}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content)


def status_for_failure(exc: CareNowError) -> int:
    """HTTP status for a booking-core failure; conflicts win over plain validation."""
    if isinstance(exc, (PartnerConflictFailure, ConcurrentUpdateFailure)):
        return status.HTTP_409_CONFLICT
    if isinstance(exc, ValidationFailure):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, NotFoundFailure):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ServerFailure):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.message, exc.details)


async def domain_exception_handler(request: Request, exc: CareNowError) -> JSONResponse:
    """
    Handler for booking-core failures.

    Validation failures carry every rule message under details.errors;
    not-found failures name the missing resource.
    """
    details: Dict[str, Any] = {}
    if isinstance(exc, ValidationFailure):
        details["errors"] = exc.errors
    elif isinstance(exc, NotFoundFailure):
        details = {"resource": exc.resource, "resource_id": exc.resource_id}

    return _error_response(request, status_for_failure(exc), exc.message, details)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    """Malformed request bodies and parameters, one entry per field error."""
    errors = [
        {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
        for error in exc.errors()
    ]
    return _error_response(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation error",
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request,
    exc: StarletteHTTPException,
) -> JSONResponse:
    return _error_response(request, exc.status_code, exc.detail)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500; the stack trace goes to the log only."""
    return _error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "Internal server error",
        exc_info=exc,
    )
