from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.app_factory import create_app


@pytest.fixture
def client() -> TestClient:
    return TestClient(create_app())


def test_preserves_incoming_request_id_header(client: TestClient):
    incoming_id = "test-request-id-123"
    resp = client.get("/api/health", headers={"X-Request-ID": incoming_id})

    assert resp.status_code == 200
    assert resp.headers.get("X-Request-ID") == incoming_id


def test_generates_request_id_when_missing(client: TestClient):
    resp = client.get("/api/health")

    assert resp.status_code == 200
    generated = resp.headers.get("X-Request-ID")
    assert generated
    assert isinstance(generated, str)
    assert len(generated) > 0

    duration = resp.headers.get("X-Request-Duration-ms")
    assert duration is not None


def test_request_id_reaches_error_body(client: TestClient):
    resp = client.get("/api/workflows/missing", headers={"X-Request-ID": "trace-me"})

    assert resp.status_code == 404
    assert resp.headers.get("X-Request-ID") == "trace-me"
    assert resp.json()["error"]["request_id"] == "trace-me"
