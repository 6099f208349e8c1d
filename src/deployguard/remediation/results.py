"""Result and record types for remediation runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Dict, List, Optional

from deployguard.remediation.contracts import ActionType, RunStatus, StepError, StepStatus


class RemediationAuditEventType(StrEnum):
    PLANNED = "PLANNED"
    STEP_STARTED = "STEP_STARTED"
    STEP_FINISHED = "STEP_FINISHED"
    STATUS_UPDATED = "STATUS_UPDATED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SkipReason(StrEnum):
    LAWBOOK_DENIED = "LAWBOOK_DENIED"
    EVIDENCE_MISSING = "EVIDENCE_MISSING"


@dataclass
class PlannedStep:
    step_id: str
    action_type: ActionType
    resolved_inputs: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlannedRun:
    """Deterministic plan: identical playbook, incident and inputs give an identical plan."""

    playbook_id: str
    playbook_version: str
    lawbook_version: str
    inputs_hash: str
    steps: List[PlannedStep] = field(default_factory=list)


@dataclass
class RemediationRun:
    id: str
    run_key: str
    incident_id: str
    playbook_id: str
    playbook_version: str
    status: RunStatus
    lawbook_version: str
    inputs_hash: str
    planned: Optional[PlannedRun] = None
    result: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass
class RemediationStep:
    id: str
    run_id: str
    step_id: str
    action_type: ActionType
    status: StepStatus
    idempotency_key: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    output: Optional[Dict[str, Any]] = None
    error: Optional[StepError] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


@dataclass
class RemediationAuditEvent:
    run_id: str
    incident_id: str
    event_type: RemediationAuditEventType
    lawbook_version: str
    payload: Dict[str, Any] = field(default_factory=dict)
    payload_hash: str = ""
    created_at: Optional[datetime] = None


@dataclass
class RunResult:
    """What execute_playbook hands back to the caller."""

    run_id: str
    status: RunStatus
    skip_reason: Optional[SkipReason] = None
    message: Optional[str] = None
    planned: Optional[PlannedRun] = None
    steps: List[RemediationStep] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.status == RunStatus.SUCCEEDED

    @property
    def failed_step(self) -> Optional[RemediationStep]:
        return next((s for s in self.steps if s.status == StepStatus.FAILED), None)


def summarize_steps(steps: List[RemediationStep]) -> Dict[str, int]:
    """Counts recorded on the final run status and audit events."""
    return {
        "total_steps": len(steps),
        "success_count": sum(1 for s in steps if s.status == StepStatus.SUCCEEDED),
        "failed_count": sum(1 for s in steps if s.status == StepStatus.FAILED),
    }
