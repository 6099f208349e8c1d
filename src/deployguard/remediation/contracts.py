"""
Remediation playbook contracts.

Types shared by the executor and the playbooks, plus the deterministic
helpers used for run keys and evidence gating.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Sequence

from deployguard.core.errors import ConfigurationError, EvidenceError, ValidationError

if TYPE_CHECKING:
    from deployguard.remediation.lawbook import Lawbook


class RunStatus(StrEnum):
    PLANNED = "PLANNED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


# Steps share the run lifecycle values.
StepStatus = RunStatus


class ActionType(StrEnum):
    RESTART_SERVICE = "RESTART_SERVICE"
    ROLLBACK_DEPLOY = "ROLLBACK_DEPLOY"
    SCALE_UP = "SCALE_UP"
    SCALE_DOWN = "SCALE_DOWN"
    DRAIN_TASKS = "DRAIN_TASKS"
    NOTIFY_SLACK = "NOTIFY_SLACK"
    CREATE_ISSUE = "CREATE_ISSUE"
    RUN_VERIFICATION = "RUN_VERIFICATION"
    DISPATCH_WORKFLOW = "DISPATCH_WORKFLOW"
    POLL_WORKFLOW = "POLL_WORKFLOW"
    INGEST_ARTIFACTS = "INGEST_ARTIFACTS"
    SNAPSHOT_SERVICE_STATE = "SNAPSHOT_SERVICE_STATE"
    FORCE_NEW_DEPLOYMENT = "FORCE_NEW_DEPLOYMENT"
    POLL_SERVICE_HEALTH = "POLL_SERVICE_HEALTH"
    UPDATE_INCIDENT_STATUS = "UPDATE_INCIDENT_STATUS"


class EvidenceKind(StrEnum):
    RUNNER = "runner"
    ECS = "ecs"
    ALB = "alb"
    HTTP = "http"
    VERIFICATION = "verification"
    DEPLOY_STATUS = "deploy_status"
    LOG_POINTER = "log_pointer"
    GITHUB_RUN = "github_run"


@dataclass(frozen=True)
class EvidencePredicate:
    """Declares that a playbook needs evidence of ``kind`` carrying ``required_fields``.

    Field paths are dotted, rooted at the evidence entry (``ref.cluster``).
    """

    kind: EvidenceKind
    required_fields: tuple[str, ...] = ()


@dataclass
class Evidence:
    kind: str
    ref: dict[str, Any] = field(default_factory=dict)
    sha256: str | None = None
    incident_id: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Evidence:
        return cls(
            kind=str(data["kind"]),
            ref=dict(data.get("ref") or {}),
            sha256=data.get("sha256"),
            incident_id=data.get("incident_id"),
        )


@dataclass
class StepError:
    code: str
    message: str
    details: str | None = None


@dataclass
class StepResult:
    success: bool
    output: dict[str, Any] | None = None
    error: StepError | None = None

    @classmethod
    def ok(cls, output: dict[str, Any] | None = None) -> StepResult:
        return cls(success=True, output=output)

    @classmethod
    def fail(cls, code: str, message: str, details: Any = None) -> StepResult:
        if details is not None and not isinstance(details, str):
            details = stable_stringify(details)
        return cls(success=False, error=StepError(code=code, message=message, details=details))


@dataclass
class StepContext:
    """Everything a step may read. Steps never mutate it."""

    incident_id: str
    incident_key: str
    run_id: str
    lawbook_version: str
    evidence: list[Evidence]
    inputs: dict[str, Any] = field(default_factory=dict)
    lawbook: Lawbook | None = None


@dataclass(frozen=True)
class StepDefinition:
    step_id: str
    action_type: ActionType
    description: str

    @property
    def output_key(self) -> str:
        """Key under which this step's output is handed to later steps."""
        return f"{self.step_id.replace('-', '_')}_output"


@dataclass(frozen=True)
class PostVerifyConfig:
    type: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PlaybookDefinition:
    id: str
    version: str
    title: str
    applicable_categories: tuple[str, ...]
    required_evidence: tuple[EvidencePredicate, ...]
    steps: tuple[StepDefinition, ...]
    post_verify: PostVerifyConfig | None = None

    def __post_init__(self) -> None:
        if not self.id:
            raise ConfigurationError("Playbook id must not be empty")
        if not self.steps:
            raise ConfigurationError(
                f"Playbook {self.id} must declare at least one step",
                details={"playbook_id": self.id},
            )
        step_ids = [s.step_id for s in self.steps]
        if len(set(step_ids)) != len(step_ids):
            raise ConfigurationError(
                f"Playbook {self.id} declares duplicate step ids",
                details={"playbook_id": self.id},
            )

    def get_step(self, step_id: str) -> StepDefinition | None:
        return next((s for s in self.steps if s.step_id == step_id), None)


@dataclass
class EvidenceCheck:
    satisfied: bool
    missing: list[EvidencePredicate] = field(default_factory=list)


def _to_jsonable(value: Any, seen: set[int]) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        if id(value) in seen:
            raise ValidationError("Cannot stringify cyclic structure")
        seen.add(id(value))
        out = {str(k): _to_jsonable(v, seen) for k, v in sorted(value.items(), key=lambda kv: str(kv[0]))}
        seen.discard(id(value))
        return out
    if isinstance(value, (list, tuple)):
        if id(value) in seen:
            raise ValidationError("Cannot stringify cyclic structure")
        seen.add(id(value))
        out_list = [_to_jsonable(v, seen) for v in value]
        seen.discard(id(value))
        return out_list
    raise ValidationError(f"Cannot stringify value of type {type(value).__name__}")


def stable_stringify(value: Any) -> str:
    """Deterministic compact JSON: object keys sorted recursively, array order kept."""
    return json.dumps(
        _to_jsonable(value, set()),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )


def compute_inputs_hash(inputs: dict[str, Any]) -> str:
    return hashlib.sha256(stable_stringify(inputs).encode("utf-8")).hexdigest()


def compute_run_key(incident_key: str, playbook_id: str, inputs_hash: str) -> str:
    return f"{incident_key}:{playbook_id}:{inputs_hash}"


def get_field(evidence: Evidence, path: str) -> Any:
    """Resolve a dotted path such as ``ref.cluster`` against an evidence entry."""
    parts = path.split(".")
    current: Any = {"kind": evidence.kind, "ref": evidence.ref, "sha256": evidence.sha256}
    for part in parts:
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return None
    return current


def check_evidence_predicate(predicate: EvidencePredicate, evidence: Sequence[Evidence]) -> bool:
    matching = [e for e in evidence if e.kind == predicate.kind]
    if not matching:
        return False
    if not predicate.required_fields:
        return True
    return any(
        all(get_field(e, path) is not None for path in predicate.required_fields)
        for e in matching
    )


def check_all_evidence_predicates(
    predicates: Sequence[EvidencePredicate],
    evidence: Sequence[Evidence],
) -> EvidenceCheck:
    missing = [p for p in predicates if not check_evidence_predicate(p, evidence)]
    return EvidenceCheck(satisfied=not missing, missing=missing)


def check_any_evidence_predicate(
    predicates: Sequence[EvidencePredicate],
    evidence: Sequence[Evidence],
) -> EvidenceCheck:
    """Satisfied when at least one predicate holds. An empty predicate list is satisfied."""
    if not predicates:
        return EvidenceCheck(satisfied=True)
    result = check_all_evidence_predicates(predicates, evidence)
    return EvidenceCheck(
        satisfied=len(result.missing) < len(predicates),
        missing=result.missing,
    )


def ensure_evidence_list(evidence: Any) -> list[Evidence]:
    if not isinstance(evidence, (list, tuple)):
        raise EvidenceError(
            "Step context evidence must be a list",
            details={"type": type(evidence).__name__},
        )
    return list(evidence)


def select_evidence(evidence: Sequence[Evidence], kinds: Sequence[str]) -> Evidence | None:
    """First evidence entry, in array order, whose kind is in ``kinds``."""
    evidence = ensure_evidence_list(evidence)
    return next((e for e in evidence if e.kind in kinds), None)
