"""FastAPI dependencies resolving services owned by the application.

Services live on ``app.state`` (created by the app factory), not in module
globals, so every test app gets its own isolated instances.
"""

from __future__ import annotations

from fastapi import Request

from app.core.request_size import RequestSizeMonitor
from app.services.governance_service import GovernanceService
from app.services.workflow_store import WorkflowStore


def get_workflow_store(request: Request) -> WorkflowStore:
    return request.app.state.workflow_store


def get_governance_service(request: Request) -> GovernanceService:
    return request.app.state.governance_service


def get_size_monitor(request: Request) -> RequestSizeMonitor:
    return request.app.state.size_monitor
