"""Global exception handlers for consistent error responses.

Design:
- AppError subclasses → mapped HTTP status (400, 404, 409, 503)
- Request body/path validation failures → 400 VALIDATION_ERROR
- Unexpected Exception → generic 500 (safety net, no internals leaked)
- All bodies use the envelope from ``app.core.responses``
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.errors import (
    AppError,
    ConflictAppError,
    NotFoundAppError,
    RateLimitStoreError,
    ValidationAppError,
)
from app.core.logging import get_request_id
from app.core.responses import error_json_response

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (ValidationAppError, 400),
    (NotFoundAppError, 404),
    (ConflictAppError, 409),
    (RateLimitStoreError, 503),
)


def status_for(exc: AppError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Handle domain application errors with the error envelope.

    Args:
        request: FastAPI request object.
        exc: AppError instance (or subclass).

    Returns:
        JSONResponse with the mapped status code and error details.
    """
    status_code = status_for(exc)

    logger.warning(
        "app_error_handled",
        extra={
            "error_code": exc.code,
            "error_message": exc.message,
            "status_code": status_code,
            "has_details": bool(exc.details),
            "request_id": get_request_id(),
        },
    )

    return error_json_response(status_code, exc.code, exc.message, exc.details)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures as 400 with field-level details."""
    errors = [
        {
            "field": ".".join(str(part) for part in error.get("loc", ()) if part != "body"),
            "message": error.get("msg", "Invalid value"),
        }
        for error in exc.errors()
    ]
    logger.info(
        "request_validation_failed",
        extra={"path": request.url.path, "error_count": len(errors)},
    )
    return error_json_response(
        400,
        "VALIDATION_ERROR",
        "Request validation failed",
        {"errors": errors},
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    """Wrap framework HTTP errors (404 for unknown routes, 405, ...) in the envelope."""
    code = "ENDPOINT_NOT_FOUND" if exc.status_code == 404 else f"HTTP_{exc.status_code}"
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    if exc.status_code == 404:
        message = f"API endpoint {request.method} {request.url.path} not found"
    return error_json_response(
        exc.status_code,
        code,
        message,
        headers=getattr(exc, "headers", None),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for unexpected errors (safety net).

    Logs detailed information for debugging while returning a generic
    message. No stack traces or exception text reach the client.
    """
    logger.error(
        "unhandled_exception",
        extra={
            "error_type": type(exc).__name__,
            "error_msg": str(exc),
            "request_path": request.url.path,
            "request_method": request.method,
            "request_id": get_request_id(),
        },
    )

    # Runs outside the request middleware, so the version is read from the app
    app_settings = getattr(request.app.state, "settings", None)
    return error_json_response(
        500,
        "INTERNAL_SERVER_ERROR",
        "An unexpected error occurred. Please try again later.",
        version=app_settings.app.api_version if app_settings is not None else None,
    )


def setup_exception_handlers(app) -> None:
    """Register all exception handlers with the FastAPI app.

    Args:
        app: FastAPI application instance.
    """
    app.exception_handler(AppError)(app_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(StarletteHTTPException)(http_exception_handler)
    app.exception_handler(Exception)(general_exception_handler)
