"""Workflow, agent output and audit endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Body, Depends, status

from app.api.dependencies import get_workflow_store
from app.core.responses import create_success_response
from app.schemas.workflow import (
    AgentOutput,
    CreateWorkflowRequest,
    ExportAuditRequest,
    StateTransitionRequest,
    TerminateWorkflowRequest,
)
from app.services.workflow_store import WorkflowStore

router = APIRouter(prefix="/workflows", tags=["Workflows"])

Store = Annotated[WorkflowStore, Depends(get_workflow_store)]


@router.get("")
async def list_workflows(store: Store) -> dict:
    workflows = await store.get_all_workflows()
    return create_success_response(
        {
            "workflows": [w.model_dump(by_alias=True, mode="json") for w in workflows],
            "count": len(workflows),
        }
    )


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_workflow(
    store: Store,
    payload: Annotated[CreateWorkflowRequest | None, Body()] = None,
) -> dict:
    """Create a workflow in the IDLE state.

    Rate limited by the workflow creation preset; body capped at 2KB.
    """
    payload = payload or CreateWorkflowRequest()
    workflow = await store.create_workflow(title=payload.title, severity=payload.severity)
    return create_success_response(workflow.model_dump(by_alias=True, mode="json"))


@router.get("/{workflow_id}")
async def get_workflow(workflow_id: str, store: Store) -> dict:
    workflow = await store.get_workflow(workflow_id)
    return create_success_response(workflow.model_dump(by_alias=True, mode="json"))


@router.get("/{workflow_id}/state")
async def get_workflow_state(workflow_id: str, store: Store) -> dict:
    workflow = await store.get_workflow(workflow_id)
    return create_success_response(
        {
            "workflowId": workflow.workflow_id,
            "currentState": workflow.current_state.value,
            "updatedAt": workflow.updated_at.isoformat(),
        }
    )


@router.put("/{workflow_id}/state")
async def update_workflow_state(
    workflow_id: str,
    payload: StateTransitionRequest,
    store: Store,
) -> dict:
    workflow = await store.transition_to(workflow_id, payload.state)
    return create_success_response(workflow.model_dump(by_alias=True, mode="json"))


@router.post("/{workflow_id}/terminate")
async def terminate_workflow(
    workflow_id: str,
    payload: TerminateWorkflowRequest,
    store: Store,
) -> dict:
    workflow = await store.terminate_workflow(workflow_id, payload.reason)
    return create_success_response(workflow.model_dump(by_alias=True, mode="json"))


@router.get("/{workflow_id}/agent-outputs")
async def list_agent_outputs(workflow_id: str, store: Store) -> dict:
    workflow = await store.get_workflow(workflow_id)
    return create_success_response(
        {
            "workflowId": workflow_id,
            "agentOutputs": [
                o.model_dump(by_alias=True, mode="json") for o in workflow.agent_outputs
            ],
            "count": len(workflow.agent_outputs),
        }
    )


@router.post("/{workflow_id}/agent-outputs", status_code=status.HTTP_201_CREATED)
async def add_agent_output(workflow_id: str, payload: AgentOutput, store: Store) -> dict:
    workflow = await store.add_agent_output(workflow_id, payload)
    return create_success_response(
        {
            "workflowId": workflow_id,
            "agentOutput": workflow.agent_outputs[-1].model_dump(by_alias=True, mode="json"),
            "totalOutputs": len(workflow.agent_outputs),
        }
    )


@router.get("/{workflow_id}/audit-trail")
async def get_audit_trail(workflow_id: str, store: Store) -> dict:
    events = await store.get_audit_chain(workflow_id)
    return create_success_response(
        {
            "workflowId": workflow_id,
            "events": [e.model_dump(by_alias=True, mode="json") for e in events],
            "count": len(events),
        }
    )


@router.post("/{workflow_id}/export-audit")
async def export_audit(
    workflow_id: str,
    store: Store,
    payload: Annotated[ExportAuditRequest | None, Body()] = None,
) -> dict:
    """Export the workflow snapshot and audit events.

    Rate limited by the audit export preset (20 per hour by default).
    """
    payload = payload or ExportAuditRequest()
    artifacts = await store.export_audit_artifacts(
        workflow_id,
        include_agent_outputs=payload.include_agent_outputs,
    )
    return create_success_response({"format": payload.format, **artifacts})
