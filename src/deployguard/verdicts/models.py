"""
Verdict domain models.

Immutable records of failure classification decisions, the policy
snapshots they were evaluated against, and their audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any, Mapping


class ErrorClass(StrEnum):
    """Failure classes the classifier can emit."""

    ACM_DNS_VALIDATION_PENDING = "ACM_DNS_VALIDATION_PENDING"
    ROUTE53_DELEGATION_PENDING = "ROUTE53_DELEGATION_PENDING"
    CFN_IN_PROGRESS_LOCK = "CFN_IN_PROGRESS_LOCK"
    CFN_ROLLBACK_LOCK = "CFN_ROLLBACK_LOCK"
    MISSING_SECRET = "MISSING_SECRET"
    MISSING_ENV_VAR = "MISSING_ENV_VAR"
    DEPRECATED_CDK_API = "DEPRECATED_CDK_API"
    UNIT_MISMATCH = "UNIT_MISMATCH"
    UNKNOWN = "UNKNOWN"


class ProposedAction(StrEnum):
    WAIT_AND_RETRY = "WAIT_AND_RETRY"
    OPEN_ISSUE = "OPEN_ISSUE"
    HUMAN_REQUIRED = "HUMAN_REQUIRED"


class VerdictType(StrEnum):
    """Detailed verdict outcome (7 values)."""

    APPROVED = "APPROVED"
    WARNING = "WARNING"
    REJECTED = "REJECTED"
    ESCALATED = "ESCALATED"
    BLOCKED = "BLOCKED"
    DEFERRED = "DEFERRED"
    PENDING = "PENDING"


class SimpleVerdict(StrEnum):
    """Operational reduction of VerdictType (4 values)."""

    GREEN = "GREEN"
    RED = "RED"
    HOLD = "HOLD"
    RETRY = "RETRY"


class SimpleAction(StrEnum):
    ADVANCE = "ADVANCE"
    ABORT = "ABORT"
    FREEZE = "FREEZE"
    RETRY_OPERATION = "RETRY_OPERATION"


class AuditEventType(StrEnum):
    CREATED = "created"
    REVIEWED = "reviewed"
    OVERRIDDEN = "overridden"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class FailureSignal:
    """A raw infrastructure failure signal, e.g. a CloudFormation stack event."""

    resource_type: str
    logical_id: str
    status_reason: str
    timestamp: str
    resource_status: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailureSignal:
        """Build from either snake_case or camelCase keys."""
        return cls(
            resource_type=data.get("resource_type") or data.get("resourceType") or "",
            logical_id=data.get("logical_id") or data.get("logicalId") or "",
            status_reason=data.get("status_reason") or data.get("statusReason") or "",
            timestamp=str(data.get("timestamp") or ""),
            resource_status=data.get("resource_status") or data.get("resourceStatus"),
        )

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "resource_type": self.resource_type,
            "logical_id": self.logical_id,
            "status_reason": self.status_reason,
            "timestamp": self.timestamp,
        }
        if self.resource_status is not None:
            data["resource_status"] = self.resource_status
        return data


@dataclass(frozen=True)
class ClassificationResult:
    """Classifier output for a batch of signals."""

    error_class: str
    confidence: float
    fingerprint: str
    service: str
    tokens: tuple[str, ...] = ()


@dataclass(frozen=True)
class ConfidenceNormalization:
    scale: str = "0-100"
    formula: str = "round_half_up(raw * 100)"
    deterministic: bool = True


@dataclass(frozen=True)
class PolicyRules:
    """Body of a policy snapshot. Both maps are read-only views."""

    classification_rules: tuple[Mapping[str, Any], ...]
    playbooks: Mapping[str, ProposedAction]
    confidence_normalization: ConfidenceNormalization = field(
        default_factory=ConfidenceNormalization
    )

    def action_for(self, error_class: str) -> ProposedAction | None:
        return self.playbooks.get(error_class)


@dataclass(frozen=True)
class PolicySnapshot:
    """Immutable, versioned policy every verdict references."""

    id: str
    version: str
    policies: PolicyRules
    created_at: datetime


@dataclass(frozen=True)
class Verdict:
    """Record of an automated decision about a detected failure."""

    id: str
    execution_id: str
    policy_snapshot_id: str
    fingerprint_id: str
    error_class: str
    service: str
    confidence_score: int
    proposed_action: ProposedAction
    verdict_type: VerdictType
    tokens: tuple[str, ...]
    signals: tuple[FailureSignal, ...]
    created_at: datetime
    playbook_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Verdict:
        """Rebuild a stored verdict (YAML/JSON export). Enum values are validated."""
        created_at = data.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return cls(
            id=str(data["id"]),
            execution_id=str(data.get("execution_id", "")),
            policy_snapshot_id=str(data.get("policy_snapshot_id", "")),
            fingerprint_id=str(data.get("fingerprint_id", "")),
            error_class=str(data["error_class"]),
            service=str(data.get("service", "")),
            confidence_score=int(data["confidence_score"]),
            proposed_action=ProposedAction(data["proposed_action"]),
            verdict_type=VerdictType(data["verdict_type"]),
            tokens=tuple(data.get("tokens") or ()),
            signals=tuple(FailureSignal.from_dict(s) for s in data.get("signals") or ()),
            created_at=created_at,
            playbook_id=data.get("playbook_id"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass
class VerdictAuditEntry:
    """Append-only audit event for a verdict."""

    id: str
    verdict_id: str
    event_type: AuditEventType
    created_at: datetime
    event_data: dict[str, Any] | None = None
    created_by: str | None = None


@dataclass
class VerdictWithPolicy:
    verdict: Verdict
    policy: PolicySnapshot


@dataclass
class VerdictStatistics:
    """Aggregates for one (error_class, service) pair."""

    error_class: str
    service: str
    total_count: int
    avg_confidence: float
    min_confidence: int
    max_confidence: int
    most_common_action: ProposedAction
    affected_executions: int


@dataclass
class VerdictQuery:
    """Filter set for VerdictStore.query_verdicts."""

    execution_id: str | None = None
    error_class: str | None = None
    service: str | None = None
    min_confidence: int | None = None
    max_confidence: int | None = None
    proposed_action: ProposedAction | None = None
    verdict_type: VerdictType | None = None
    limit: int | None = None
    offset: int = 0

    def matches(self, verdict: Verdict) -> bool:
        if self.execution_id is not None and verdict.execution_id != self.execution_id:
            return False
        if self.error_class is not None and verdict.error_class != self.error_class:
            return False
        if self.service is not None and verdict.service != self.service:
            return False
        if self.min_confidence is not None and verdict.confidence_score < self.min_confidence:
            return False
        if self.max_confidence is not None and verdict.confidence_score > self.max_confidence:
            return False
        if self.proposed_action is not None and verdict.proposed_action != self.proposed_action:
            return False
        if self.verdict_type is not None and verdict.verdict_type != self.verdict_type:
            return False
        return True
