"""Pydantic schemas for workflows, agent outputs, audit events and governance.

Wire format is camelCase (``agentName``, ``confidenceLevel``); Python code
uses snake_case. Both spellings are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serializing to camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WorkflowState(str, Enum):
    IDLE = "IDLE"
    INCIDENT_INGESTED = "INCIDENT_INGESTED"
    ANALYZING = "ANALYZING"
    RCA_COMPLETE = "RCA_COMPLETE"
    GOVERNANCE_PENDING = "GOVERNANCE_PENDING"
    ACTION_PROPOSED = "ACTION_PROPOSED"
    VERIFIED = "VERIFIED"
    RESOLVED = "RESOLVED"
    TERMINATED = "TERMINATED"


TERMINAL_STATES = frozenset({WorkflowState.RESOLVED, WorkflowState.TERMINATED})

GovernanceDecisionType = Literal["approve", "approve_with_restrictions", "block"]


class AgentFindings(CamelModel):
    summary: str = Field(..., min_length=1, max_length=2000)
    evidence: List[str] = Field(default_factory=list)
    correlations: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class AgentOutput(CamelModel):
    """Analysis result reported by one agent."""

    agent_name: str = Field(..., min_length=1, max_length=100)
    skills_used: List[str] = Field(default_factory=list)
    findings: AgentFindings
    confidence_level: float = Field(..., ge=0.0, le=1.0)
    timestamp: datetime | None = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class Approver(CamelModel):
    id: str = Field(..., min_length=1, max_length=100)
    role: str = Field(..., min_length=1, max_length=100)


class GovernanceDecision(CamelModel):
    decision: GovernanceDecisionType
    rationale: str
    approver: Approver
    restrictions: List[str] = Field(default_factory=list)
    timestamp: datetime


class AuditEvent(CamelModel):
    event_id: str
    workflow_id: str
    event_type: str
    timestamp: datetime
    actor: str
    details: Dict[str, Any] = Field(default_factory=dict)


class Workflow(CamelModel):
    workflow_id: str
    current_state: WorkflowState
    title: str | None = None
    severity: str | None = None
    created_at: datetime
    updated_at: datetime
    agent_outputs: List[AgentOutput] = Field(default_factory=list)
    governance_decision: GovernanceDecision | None = None
    termination_reason: str | None = None


class CreateWorkflowRequest(CamelModel):
    title: str | None = Field(None, max_length=200)
    severity: Literal["low", "medium", "high", "critical"] | None = None


class StateTransitionRequest(CamelModel):
    state: WorkflowState


class TerminateWorkflowRequest(CamelModel):
    reason: str = Field(..., min_length=1, max_length=500)


class ExportAuditRequest(CamelModel):
    format: Literal["json"] = "json"
    include_agent_outputs: bool = True


class GovernanceDecisionRequest(CamelModel):
    decision: GovernanceDecisionType
    rationale: str = Field(..., min_length=10, max_length=1000)
    approver: Approver
    restrictions: List[str] = Field(default_factory=list, max_length=20)
