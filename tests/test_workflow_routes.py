"""Tests for workflow, agent output, governance and audit endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.adapters.rate_limit.in_memory import InMemoryRateLimitStore
from app.core.app_factory import create_app

DECISION = {
    "decision": "approve",
    "rationale": "Rollback verified in staging",
    "approver": {"id": "u-7", "role": "sre-lead"},
}

AGENT_OUTPUT = {
    "agentName": "metrics-agent",
    "skillsUsed": ["anomaly-detection"],
    "findings": {
        "summary": "Latency spike on checkout",
        "evidence": ["p99 > 2s"],
        "correlations": [],
        "recommendations": ["roll back deploy 42"],
    },
    "confidenceLevel": 0.8,
}


@pytest.fixture
def client(clock) -> TestClient:
    app = create_app(rate_limit_store=InMemoryRateLimitStore(clock=clock), clock=clock)
    return TestClient(app)


@pytest.fixture
def workflow_id(client: TestClient) -> str:
    response = client.post("/api/workflows", json={"title": "Checkout outage", "severity": "high"})
    assert response.status_code == 201
    return response.json()["data"]["workflowId"]


class TestWorkflows:
    def test_create_returns_envelope(self, client: TestClient) -> None:
        response = client.post("/api/workflows", json={"title": "DB failover"})

        body = response.json()
        assert response.status_code == 201
        assert body["success"] is True
        assert body["data"]["currentState"] == "IDLE"
        assert body["data"]["title"] == "DB failover"
        assert body["version"] == "1.0.0"

    def test_create_without_body(self, client: TestClient) -> None:
        response = client.post("/api/workflows")

        assert response.status_code == 201
        assert response.json()["data"]["title"] is None

    def test_list_and_get(self, client: TestClient, workflow_id: str) -> None:
        listing = client.get("/api/workflows").json()["data"]
        single = client.get(f"/api/workflows/{workflow_id}").json()["data"]

        assert listing["count"] == 1
        assert listing["workflows"][0]["workflowId"] == workflow_id
        assert single["severity"] == "high"

    def test_unknown_workflow_is_404(self, client: TestClient) -> None:
        response = client.get("/api/workflows/does-not-exist")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "WORKFLOW_NOT_FOUND"

    def test_invalid_severity_is_400(self, client: TestClient) -> None:
        response = client.post("/api/workflows", json={"severity": "catastrophic"})

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_state_transition(self, client: TestClient, workflow_id: str) -> None:
        response = client.put(f"/api/workflows/{workflow_id}/state", json={"state": "ANALYZING"})
        state = client.get(f"/api/workflows/{workflow_id}/state").json()["data"]

        assert response.status_code == 200
        assert state["currentState"] == "ANALYZING"

    def test_terminated_workflow_rejects_changes(self, client: TestClient, workflow_id: str) -> None:
        terminated = client.post(f"/api/workflows/{workflow_id}/terminate", json={"reason": "duplicate"})
        conflict = client.put(f"/api/workflows/{workflow_id}/state", json={"state": "ANALYZING"})

        assert terminated.json()["data"]["currentState"] == "TERMINATED"
        assert terminated.json()["data"]["terminationReason"] == "duplicate"
        assert conflict.status_code == 409
        assert conflict.json()["error"]["code"] == "WORKFLOW_TERMINAL"


class TestAgentOutputs:
    def test_add_and_list(self, client: TestClient, workflow_id: str) -> None:
        created = client.post(f"/api/workflows/{workflow_id}/agent-outputs", json=AGENT_OUTPUT)
        listing = client.get(f"/api/workflows/{workflow_id}/agent-outputs").json()["data"]

        assert created.status_code == 201
        assert created.json()["data"]["totalOutputs"] == 1
        assert created.json()["data"]["agentOutput"]["timestamp"] is not None
        assert listing["count"] == 1
        assert listing["agentOutputs"][0]["agentName"] == "metrics-agent"

    def test_confidence_out_of_range(self, client: TestClient, workflow_id: str) -> None:
        payload = {**AGENT_OUTPUT, "confidenceLevel": 1.5}

        response = client.post(f"/api/workflows/{workflow_id}/agent-outputs", json=payload)

        assert response.status_code == 400


class TestGovernance:
    def test_decision_recorded(self, client: TestClient, workflow_id: str) -> None:
        response = client.post(f"/api/workflows/{workflow_id}/governance-decision", json=DECISION)

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["decision"]["decision"] == "approve"
        assert data["decision"]["approver"]["role"] == "sre-lead"

    def test_request_path_variant(self, client: TestClient, workflow_id: str) -> None:
        payload = {**DECISION, "decision": "block"}

        response = client.post(f"/api/governance/requests/{workflow_id}/decision", json=payload)

        assert response.status_code == 200
        assert response.json()["data"]["decision"]["decision"] == "block"

    def test_restrictions_required(self, client: TestClient, workflow_id: str) -> None:
        payload = {**DECISION, "decision": "approve_with_restrictions"}

        response = client.post(f"/api/workflows/{workflow_id}/governance-decision", json=payload)

        assert response.status_code == 400
        assert response.json()["error"]["details"]["field"] == "restrictions"

    def test_short_rationale_rejected(self, client: TestClient, workflow_id: str) -> None:
        payload = {**DECISION, "rationale": "ok"}

        response = client.post(f"/api/workflows/{workflow_id}/governance-decision", json=payload)

        assert response.status_code == 400


class TestAudit:
    def test_audit_trail_records_each_change(self, client: TestClient, workflow_id: str) -> None:
        client.put(f"/api/workflows/{workflow_id}/state", json={"state": "ANALYZING"})
        client.post(f"/api/workflows/{workflow_id}/agent-outputs", json=AGENT_OUTPUT)
        client.post(f"/api/workflows/{workflow_id}/governance-decision", json=DECISION)

        trail = client.get(f"/api/workflows/{workflow_id}/audit-trail").json()["data"]

        assert [e["eventType"] for e in trail["events"]] == [
            "workflow_created",
            "state_transition",
            "agent_output",
            "governance_decision",
        ]
        assert trail["count"] == 4

    def test_export(self, client: TestClient, workflow_id: str) -> None:
        client.post(f"/api/workflows/{workflow_id}/agent-outputs", json=AGENT_OUTPUT)

        full = client.post(f"/api/workflows/{workflow_id}/export-audit").json()["data"]
        slim = client.post(
            f"/api/workflows/{workflow_id}/export-audit",
            json={"includeAgentOutputs": False},
        ).json()["data"]

        assert full["format"] == "json"
        assert full["eventCount"] == 2
        assert len(full["workflow"]["agentOutputs"]) == 1
        assert "agentOutputs" not in slim["workflow"]


class TestSystem:
    def test_health(self, client: TestClient) -> None:
        data = client.get("/api/health").json()["data"]

        assert data["status"] == "healthy"
        assert data["security"]["rateLimitingActive"] is True

    def test_version(self, client: TestClient) -> None:
        data = client.get("/api/version").json()["data"]

        assert data["version"] == "1.0.0"
        assert "rate-limiting" in data["features"]

    def test_unknown_endpoint(self, client: TestClient) -> None:
        response = client.get("/api/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "ENDPOINT_NOT_FOUND"
