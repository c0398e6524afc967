"""Application-level exception types.

This module defines domain errors used across services/adapters, enabling
consistent error handling, logging, and API responses.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, NotRequired, TypedDict


class ErrorDetails(TypedDict, total=False):
    """Structured error context for observability and clients.

    Fields are optional to keep backward compatibility while encouraging
    consistent shapes across the codebase.
    """

    hint: str
    field: str
    workflow_id: str
    request_id: str
    current_state: str
    requested_state: str
    allowed: list[str]
    context: NotRequired[dict[str, Any]]


@dataclass
class AppError(Exception):
    """Base error for application/domain failures.

    Attributes:
        code: Stable, machine-readable error code.
        message: Human-readable error message.
        details: Optional structured details for debugging/observability.
    """

    code: str
    message: str
    details: ErrorDetails | None = None

    def __post_init__(self) -> None:
        # Populate Exception args so str(error) is useful in logs/tracebacks.
        super().__init__(self.message)


class ValidationAppError(AppError):
    """Raised when input/config validation fails."""


class NotFoundAppError(AppError):
    """Raised when a requested workflow or governance request does not exist."""


class ConflictAppError(AppError):
    """Raised when an operation is not valid for the target's current state."""


class RateLimitStoreError(AppError):
    """Raised by counter stores when the backing storage is unavailable.

    Never surfaced to clients: the rate limiter fails open on this error.
    """
