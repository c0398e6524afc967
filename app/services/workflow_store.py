"""In-memory workflow store.

Holds workflows and their audit events for the lifetime of the process.
It enforces only what the API needs to stay consistent: workflows must
exist, and terminal workflows (RESOLVED, TERMINATED) accept no changes.
Lifecycle rules beyond that belong to the orchestrator, not this store.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from app.core.errors import ConflictAppError, NotFoundAppError
from app.schemas.workflow import (
    TERMINAL_STATES,
    AgentOutput,
    AuditEvent,
    GovernanceDecision,
    Workflow,
    WorkflowState,
)

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowStore:
    """Thread-safe, in-memory workflow and audit event storage."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._workflows: dict[str, Workflow] = {}
        self._audit: dict[str, list[AuditEvent]] = {}

    def _require(self, workflow_id: str) -> Workflow:
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise NotFoundAppError(
                code="WORKFLOW_NOT_FOUND",
                message=f"Workflow {workflow_id} not found",
                details={"workflow_id": workflow_id},
            )
        return workflow

    def _require_mutable(self, workflow_id: str) -> Workflow:
        workflow = self._require(workflow_id)
        if workflow.current_state in TERMINAL_STATES:
            raise ConflictAppError(
                code="WORKFLOW_TERMINAL",
                message=f"Workflow {workflow_id} is {workflow.current_state.value} and cannot change",
                details={
                    "workflow_id": workflow_id,
                    "current_state": workflow.current_state.value,
                },
            )
        return workflow

    def _append_event(
        self,
        workflow_id: str,
        event_type: str,
        actor: str,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent:
        event = AuditEvent(
            event_id=str(uuid.uuid4()),
            workflow_id=workflow_id,
            event_type=event_type,
            timestamp=_now(),
            actor=actor,
            details=details or {},
        )
        self._audit.setdefault(workflow_id, []).append(event)
        return event

    async def create_workflow(
        self,
        *,
        title: str | None = None,
        severity: str | None = None,
    ) -> Workflow:
        now = _now()
        workflow = Workflow(
            workflow_id=str(uuid.uuid4()),
            current_state=WorkflowState.IDLE,
            title=title,
            severity=severity,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._workflows[workflow.workflow_id] = workflow
            self._append_event(
                workflow.workflow_id,
                "workflow_created",
                "orchestrator",
                {"state": WorkflowState.IDLE.value},
            )
        logger.info("workflow.created", extra={"workflow_id": workflow.workflow_id})
        return workflow

    async def get_workflow(self, workflow_id: str) -> Workflow:
        with self._lock:
            return self._require(workflow_id)

    async def get_all_workflows(self) -> list[Workflow]:
        with self._lock:
            return sorted(self._workflows.values(), key=lambda w: w.created_at, reverse=True)

    async def transition_to(self, workflow_id: str, state: WorkflowState) -> Workflow:
        with self._lock:
            workflow = self._require_mutable(workflow_id)
            previous = workflow.current_state
            updated = workflow.model_copy(update={"current_state": state, "updated_at": _now()})
            self._workflows[workflow_id] = updated
            self._append_event(
                workflow_id,
                "state_transition",
                "human",
                {"from": previous.value, "to": state.value},
            )
        logger.info(
            "workflow.transitioned",
            extra={"workflow_id": workflow_id, "from_state": previous.value, "to_state": state.value},
        )
        return updated

    async def terminate_workflow(self, workflow_id: str, reason: str) -> Workflow:
        with self._lock:
            workflow = self._require_mutable(workflow_id)
            updated = workflow.model_copy(
                update={
                    "current_state": WorkflowState.TERMINATED,
                    "termination_reason": reason,
                    "updated_at": _now(),
                }
            )
            self._workflows[workflow_id] = updated
            self._append_event(workflow_id, "workflow_terminated", "human", {"reason": reason})
        return updated

    async def add_agent_output(self, workflow_id: str, output: AgentOutput) -> Workflow:
        if output.timestamp is None:
            output = output.model_copy(update={"timestamp": _now()})
        with self._lock:
            workflow = self._require_mutable(workflow_id)
            updated = workflow.model_copy(
                update={
                    "agent_outputs": [*workflow.agent_outputs, output],
                    "updated_at": _now(),
                }
            )
            self._workflows[workflow_id] = updated
            self._append_event(
                workflow_id,
                "agent_output",
                output.agent_name,
                {"confidence_level": output.confidence_level},
            )
        return updated

    async def record_governance_decision(
        self,
        workflow_id: str,
        decision: GovernanceDecision,
    ) -> Workflow:
        with self._lock:
            workflow = self._require_mutable(workflow_id)
            updated = workflow.model_copy(
                update={"governance_decision": decision, "updated_at": _now()}
            )
            self._workflows[workflow_id] = updated
            self._append_event(
                workflow_id,
                "governance_decision",
                decision.approver.id,
                {"decision": decision.decision, "restrictions": list(decision.restrictions)},
            )
        return updated

    async def get_audit_chain(self, workflow_id: str) -> list[AuditEvent]:
        with self._lock:
            self._require(workflow_id)
            return list(self._audit.get(workflow_id, []))

    async def export_audit_artifacts(
        self,
        workflow_id: str,
        *,
        include_agent_outputs: bool = True,
    ) -> dict[str, Any]:
        """Snapshot of a workflow and its audit events, ready for JSON export."""
        with self._lock:
            workflow = self._require(workflow_id)
            events = list(self._audit.get(workflow_id, []))

        exclude = None if include_agent_outputs else {"agent_outputs"}
        return {
            "workflow": workflow.model_dump(by_alias=True, mode="json", exclude=exclude),
            "auditEvents": [e.model_dump(by_alias=True, mode="json") for e in events],
            "eventCount": len(events),
            "exportedAt": _now().isoformat(),
        }
