"""Tests for sensitive data filtering in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from app.core.logging import (
    JsonFormatter,
    RequestIdFilter,
    SensitiveDataFilter,
    clear_request_id,
    hash_for_logging,
    set_request_id,
)


def _capture(name: str) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_sensitive_filter_redacts_credentials():
    """Ensure SensitiveDataFilter redacts API key and auth fields."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "test_event",
        extra={
            "api_key": "sk-secret-123",
            "authorization": "Bearer another-secret",
            "redis_url": "redis://:pw@cache:6379/0",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "sk-secret-123" not in output
    assert "another-secret" not in output
    assert ":pw@" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_sensitive_filter_redacts_client_fingerprints():
    """Raw client addresses and user agents never reach the log."""

    logger, stream = _capture("test_client_redaction")

    logger.warning(
        "rate_limit.exceeded",
        extra={
            "client_ip": "203.0.113.7",
            "user_agent": "Mozilla/5.0 (X11; Linux x86_64)",
            "key_hash": hash_for_logging("203.0.113.7"),
            "count": 101,
        },
    )

    payload = json.loads(stream.getvalue())

    assert payload["client_ip"] == "[REDACTED]"
    assert payload["user_agent"] == "[REDACTED]"
    assert payload["key_hash"] == hash_for_logging("203.0.113.7")
    assert payload["count"] == 101
    assert payload["level"] == "warning"


def test_sensitive_filter_allows_safe_fields():
    """Verify safe fields pass through unmodified."""

    logger, stream = _capture("test_safe_fields")

    logger.info(
        "safe_event",
        extra={
            "route": "/api/workflows",
            "status": 200,
            "duration_ms": 150.5,
        },
    )

    output = stream.getvalue()

    assert "/api/workflows" in output
    assert "200" in output
    assert "[REDACTED]" not in output


def test_sensitive_filter_redacts_nested_dicts():
    """Ensure nested sensitive fields are redacted."""

    logger, stream = _capture("test_nested")

    logger.info(
        "nested_event",
        extra={
            "headers": {
                "x-api-key": "secret-key",
                "accept": "application/json",
            },
            "safe_data": {
                "count": 5,
                "type": "test",
            },
        },
    )

    output = stream.getvalue()

    assert "secret-key" not in output
    assert "[REDACTED]" in output
    assert "application/json" in output
    assert "test" in output


def test_request_id_is_stamped_from_context():
    logger, stream = _capture("test_request_id")

    set_request_id("req-123")
    try:
        logger.info("with_id")
    finally:
        clear_request_id()
    logger.info("without_id")

    first, second = (json.loads(line) for line in stream.getvalue().splitlines())
    assert first["request_id"] == "req-123"
    assert "request_id" not in second


def test_hash_for_logging_is_short_and_stable():
    digest = hash_for_logging("10.0.0.1:12345")

    assert len(digest) == 16
    assert digest == hash_for_logging("10.0.0.1:12345")
    assert digest != hash_for_logging("10.0.0.2:12345")
    assert "10.0.0.1" not in digest
    assert len(hash_for_logging("x", length=8)) == 8
