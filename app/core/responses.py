"""Response envelope helpers.

Every JSON body produced by the API shares one shape::

    {"success": bool, "data" | "error": ..., "timestamp": ISO-8601, "version": str}

Middleware short-circuits (429, 413) and exception handlers build their
bodies here so clients can rely on a stable ``error.code`` field.
"""

from __future__ import annotations

from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Mapping

from fastapi.responses import JSONResponse

from app.core.config import settings
from app.core.logging import get_request_id

_api_version_var: ContextVar[str | None] = ContextVar("api_version", default=None)


def set_api_version(version: str | None) -> None:
    """Bind the serving app's API version to the current request context."""

    _api_version_var.set(version)


def clear_api_version() -> None:
    _api_version_var.set(None)


def current_api_version() -> str:
    return _api_version_var.get() or settings.app.api_version


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def create_success_response(data: Any) -> dict[str, Any]:
    """Wrap a payload in the success envelope."""

    return {
        "success": True,
        "data": data,
        "timestamp": _timestamp(),
        "version": current_api_version(),
    }


def create_error_response(
    code: str,
    message: str,
    details: Mapping[str, Any] | None = None,
    *,
    version: str | None = None,
) -> dict[str, Any]:
    """Build the error envelope.

    Args:
        code: Stable machine-readable error code (e.g. ``RATE_LIMIT_EXCEEDED``).
        message: Human-readable message, safe to show to clients.
        details: Optional structured context. Must never carry stack traces
            or store internals.
        version: API version to report; defaults to the serving app's.

    Returns:
        JSON-serializable error envelope.
    """

    error: dict[str, Any] = {"code": code, "message": message}
    if details:
        error["details"] = dict(details)

    request_id = get_request_id()
    if request_id:
        error["request_id"] = request_id

    return {
        "success": False,
        "error": error,
        "timestamp": _timestamp(),
        "version": version or current_api_version(),
    }


def error_json_response(
    status_code: int,
    code: str,
    message: str,
    details: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
    *,
    version: str | None = None,
) -> JSONResponse:
    """Render an error envelope as a JSONResponse."""

    return JSONResponse(
        status_code=status_code,
        content=create_error_response(code, message, details, version=version),
        headers=dict(headers) if headers else None,
    )
