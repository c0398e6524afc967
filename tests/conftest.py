"""Pytest configuration and fixtures shared across all test modules.

Environment variables are set before any ``app`` import so module-level
settings are built for the testing environment.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("RATE_LIMIT_STORAGE", "memory")

from typing import Callable

import pytest
from fastapi import Request


class FakeClock:
    """Deterministic clock (UNIX seconds) shared by stores and limiters."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


def build_request(
    path: str = "/api/workflows",
    method: str = "GET",
    headers: dict[str, str] | None = None,
    client: tuple[str, int] | None = ("203.0.113.7", 51000),
    query_string: bytes = b"",
) -> Request:
    """Build a Starlette request from a bare ASGI scope."""
    raw_headers = [
        (name.lower().encode("latin-1"), value.encode("latin-1"))
        for name, value in (headers or {}).items()
    ]
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "root_path": "",
        "query_string": query_string,
        "headers": raw_headers,
        "client": client,
        "server": ("testserver", 80),
    }
    return Request(scope)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_request() -> Callable[..., Request]:
    return build_request
