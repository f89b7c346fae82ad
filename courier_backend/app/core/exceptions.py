"""
Error taxonomy for the courier API.

Every domain failure is an ``AppException`` subclass carrying a stable
``error_code`` and HTTP status. Handlers registered by
``register_exception_handlers`` render all failures, including FastAPI's own
``HTTPException`` and request validation errors, as::

    {"error_code": "...", "message": "...", "details": {...}}
"""

import logging
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AppException(Exception):
    """Base class for failures that map onto a client-visible error."""

    error_code = "ERR_INTERNAL_SERVER"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "An internal server error occurred"

    def __init__(self, message: Optional[str] = None, details: Dict[str, Any] = None):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)


class ValidationFailedError(AppException):
    """Malformed or out-of-range input that passed schema parsing."""

    error_code = "ERR_VALIDATION_001"
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Validation failed"


class BadRequestError(AppException):
    """The target exists but is not in a state that allows the operation."""

    error_code = "ERR_BAD_REQUEST_001"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Bad request"


class InsufficientPermissionsError(AppException):
    error_code = "ERR_PERM_001"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Insufficient permissions"


class ResourceNotFoundError(AppException):
    """Missing or soft-deleted entity."""

    error_code = "ERR_NOT_FOUND_001"
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(message, {"resource": resource, "id": resource_id})


class ConflictError(AppException):
    """Illegal status transition or a decision that contradicts a terminal one."""

    error_code = "ERR_CONFLICT_001"
    status_code = status.HTTP_409_CONFLICT
    default_message = "Conflict with current resource state"


class PersistenceError(AppException):
    """A write kept failing after the service ran out of retries."""

    error_code = "ERR_PERSISTENCE_001"
    default_message = "Failed to persist changes"


HTTP_ERROR_CODES = {
    400: "ERR_BAD_REQUEST",
    401: "ERR_UNAUTHORIZED",
    403: "ERR_FORBIDDEN",
    404: "ERR_NOT_FOUND",
    409: "ERR_CONFLICT",
    500: "ERR_INTERNAL_SERVER",
}


def error_response(status_code: int, error_code: str, message: str, details: Dict[str, Any] = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={"error_code": error_code, "message": message, "details": details or {}},
        headers=headers,
    )


def jsonable_errors(exc: RequestValidationError):
    # ctx may carry the raw ValueError raised by a validator
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {key: str(value) for key, value in error["ctx"].items()}
        errors.append(error)
    return errors


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc.status_code, exc.error_code, exc.message, exc.details)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(
        exc.status_code,
        HTTP_ERROR_CODES.get(exc.status_code, "ERR_UNKNOWN"),
        exc.detail,
        headers=getattr(exc, "headers", None),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "ERR_VALIDATION",
        "Validation error",
        {"errors": jsonable_errors(exc)},
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "ERR_INTERNAL_SERVER",
        AppException.default_message,
    )


def register_exception_handlers(app: FastAPI):
    """Install the uniform error envelope on ``app``."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
