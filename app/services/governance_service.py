"""Governance gate: records human decisions on proposed remediation.

Approval policy itself is decided elsewhere; this service only checks that
a decision is well-formed and hands it to the workflow store.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from app.core.errors import ValidationAppError
from app.schemas.workflow import (
    Approver,
    GovernanceDecision,
    GovernanceDecisionType,
    Workflow,
)
from app.services.workflow_store import WorkflowStore

logger = logging.getLogger(__name__)


class GovernanceService:
    def __init__(self, store: WorkflowStore) -> None:
        self._store = store

    async def process_governance_decision(
        self,
        request_id: str,
        decision: GovernanceDecisionType,
        rationale: str,
        approver: Approver,
        restrictions: Sequence[str] = (),
    ) -> Workflow:
        """Record a governance decision for the workflow behind ``request_id``.

        Raises:
            ValidationAppError: ``approve_with_restrictions`` without restrictions.
            NotFoundAppError: Unknown workflow.
            ConflictAppError: Workflow already in a terminal state.
        """
        if decision == "approve_with_restrictions" and not restrictions:
            raise ValidationAppError(
                code="VALIDATION_ERROR",
                message="approve_with_restrictions requires at least one restriction",
                details={"field": "restrictions"},
            )

        record = GovernanceDecision(
            decision=decision,
            rationale=rationale.strip(),
            approver=approver,
            restrictions=[r.strip() for r in restrictions if r.strip()],
            timestamp=datetime.now(timezone.utc),
        )
        workflow = await self._store.record_governance_decision(request_id, record)
        logger.info(
            "governance.decision_recorded",
            extra={"workflow_id": request_id, "decision": decision, "approver_role": approver.role},
        )
        return workflow
