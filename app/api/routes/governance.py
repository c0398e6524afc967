"""Governance decision endpoints.

Both paths are rate limited by the governance preset (50 per minute by
default) and capped at 10KB per request.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import get_governance_service
from app.core.responses import create_success_response
from app.schemas.workflow import GovernanceDecisionRequest
from app.services.governance_service import GovernanceService

router = APIRouter(tags=["Governance"])

Governance = Annotated[GovernanceService, Depends(get_governance_service)]


async def _submit(request_id: str, payload: GovernanceDecisionRequest, service: GovernanceService) -> dict:
    workflow = await service.process_governance_decision(
        request_id,
        payload.decision,
        payload.rationale,
        payload.approver,
        payload.restrictions,
    )
    decision = workflow.governance_decision
    return create_success_response(
        {
            "workflowId": workflow.workflow_id,
            "decision": decision.model_dump(by_alias=True, mode="json") if decision else None,
        }
    )


@router.post("/workflows/{workflow_id}/governance-decision")
async def submit_workflow_decision(
    workflow_id: str,
    payload: GovernanceDecisionRequest,
    service: Governance,
) -> dict:
    return await _submit(workflow_id, payload, service)


@router.post("/governance/requests/{request_id}/decision")
async def submit_request_decision(
    request_id: str,
    payload: GovernanceDecisionRequest,
    service: Governance,
) -> dict:
    return await _submit(request_id, payload, service)
