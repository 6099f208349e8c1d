"""Verdict engine: classification, policy evaluation, reduction and gating."""

from deployguard.verdicts.consistency import audit_verdict, calculate_consistency_metrics
from deployguard.verdicts.engine import (
    generate_verdict,
    normalize_confidence_score,
    validate_determinism,
)
from deployguard.verdicts.gate import (
    DeploymentGateResult,
    check_deployment_gate,
    get_deployment_status,
    is_deployment_allowed,
    validate_deployment_gate,
)
from deployguard.verdicts.models import (
    ErrorClass,
    FailureSignal,
    PolicySnapshot,
    ProposedAction,
    SimpleAction,
    SimpleVerdict,
    Verdict,
    VerdictType,
)
from deployguard.verdicts.simple import (
    get_action_for_verdict_type,
    get_simple_action,
    to_simple_verdict,
)

__all__ = [
    "DeploymentGateResult",
    "ErrorClass",
    "FailureSignal",
    "PolicySnapshot",
    "ProposedAction",
    "SimpleAction",
    "SimpleVerdict",
    "Verdict",
    "VerdictType",
    "audit_verdict",
    "calculate_consistency_metrics",
    "check_deployment_gate",
    "generate_verdict",
    "get_action_for_verdict_type",
    "get_deployment_status",
    "get_simple_action",
    "is_deployment_allowed",
    "normalize_confidence_score",
    "to_simple_verdict",
    "validate_deployment_gate",
    "validate_determinism",
]
