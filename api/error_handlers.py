"""Global exception handlers for FastAPI.

Every error leaves the API as:

    {"error": {"code": "...", "message": "...", "details": {...}}}

Typed service errors keep their status code and details. Anything else
becomes an opaque 500 whose traceback only goes to the log.
"""

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.exceptions import IntegrityViolation, SeatAlreadyAssigned, SeatpoolException

logger = logging.getLogger(__name__)

# Error codes for bare HTTPExceptions raised by FastAPI/Starlette
HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "UNPROCESSABLE_ENTITY",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def create_error_response(
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build the error envelope.

    Args:
        code: Machine-readable error code
        message: Human-readable error message
        details: Optional additional context

    Returns:
        Error response dictionary
    """
    error = {
        "code": code,
        "message": message,
    }
    if details:
        error["details"] = details
    return {"error": error}


async def seatpool_exception_handler(
    request: Request, exc: SeatpoolException
) -> JSONResponse:
    """Handle SeatpoolException and subclasses.

    Business errors are logged at warning. A double assignment or a broken
    seat counter means the allocator guarantees failed, so those are louder.
    """
    if isinstance(exc, IntegrityViolation):
        log = logger.critical
    elif isinstance(exc, SeatAlreadyAssigned):
        log = logger.error
    else:
        log = logger.warning

    log(
        "Service error: %s (code=%s, status=%d, path=%s)",
        exc.message,
        exc.error_code,
        exc.status_code,
        request.url.path,
        extra={"details": exc.details},
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            code=exc.error_code,
            message=exc.message,
            details=exc.details or None,
        ),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request body/query validation failures as 400."""
    errors = [
        {
            "field": ".".join(str(x) for x in error.get("loc", [])),
            "message": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]

    logger.info(
        "Validation error: %d field errors (path=%s)",
        len(errors),
        request.url.path,
    )

    return JSONResponse(
        status_code=400,
        content=create_error_response(
            code="VALIDATION_ERROR",
            message="Request validation failed",
            details={"errors": errors},
        ),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap framework HTTPExceptions (unknown route, wrong method...) in the envelope."""
    message = str(exc.detail) if exc.detail else "An error occurred"
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logger.log(
        level,
        "HTTP error %d: %s (path=%s)",
        exc.status_code,
        message,
        request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(
            code=HTTP_ERROR_CODES.get(exc.status_code, "ERROR"),
            message=message,
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and return a generic 500."""
    logger.error(
        "Unhandled exception: %s (path=%s)",
        exc,
        request.url.path,
        exc_info=exc,
    )

    return JSONResponse(
        status_code=500,
        content=create_error_response(
            code="INTERNAL_ERROR",
            message="An unexpected error occurred",
        ),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register all error handlers with the FastAPI app."""
    app.add_exception_handler(SeatpoolException, seatpool_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
