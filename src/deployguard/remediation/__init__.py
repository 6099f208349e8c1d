"""Remediation package: lawbook-gated playbook execution."""

from deployguard.remediation.adapters import RemediationPool
from deployguard.remediation.contracts import (
    ActionType,
    Evidence,
    EvidenceKind,
    EvidencePredicate,
    PlaybookDefinition,
    RunStatus,
    StepContext,
    StepDefinition,
    StepResult,
    StepStatus,
)
from deployguard.remediation.environment import DeployEnvironment, normalize_environment
from deployguard.remediation.executor import RemediationExecutor
from deployguard.remediation.incidents import Incident, IncidentStatus, InMemoryIncidentStore
from deployguard.remediation.lawbook import Lawbook
from deployguard.remediation.registry import PlaybookRegistry, default_registry
from deployguard.remediation.results import RunResult, SkipReason
from deployguard.remediation.store import InMemoryRemediationStore, RemediationStore

__all__ = [
    "ActionType",
    "DeployEnvironment",
    "Evidence",
    "EvidenceKind",
    "EvidencePredicate",
    "Incident",
    "IncidentStatus",
    "InMemoryIncidentStore",
    "InMemoryRemediationStore",
    "Lawbook",
    "PlaybookDefinition",
    "PlaybookRegistry",
    "RemediationExecutor",
    "RemediationPool",
    "RemediationStore",
    "RunResult",
    "RunStatus",
    "SkipReason",
    "StepContext",
    "StepDefinition",
    "StepResult",
    "StepStatus",
    "default_registry",
    "normalize_environment",
]
