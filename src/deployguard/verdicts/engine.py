"""
Verdict generation.

Pure functions: identical signals evaluated against the same policy always
produce the same fingerprint, error class, confidence and action. Only the
verdict id and created_at differ between calls.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Sequence

import structlog

from deployguard.core.errors import (
    InvalidConfidenceError,
    UnknownErrorClassError,
    ValidationError,
)
from deployguard.verdicts.classifier import Classifier, RuleBasedClassifier
from deployguard.verdicts.models import (
    ErrorClass,
    FailureSignal,
    PolicySnapshot,
    ProposedAction,
    Verdict,
    VerdictType,
)
from deployguard.verdicts.policy import REFERENCE_POLICY

logger = structlog.get_logger()

ESCALATION_THRESHOLD = 60

# Explicit lock contexts hold rather than reject or defer.
LOCK_ERROR_CLASSES = frozenset({ErrorClass.CFN_IN_PROGRESS_LOCK, ErrorClass.CFN_ROLLBACK_LOCK})

# OPEN_ISSUE classes that do not endanger the deploy itself.
LOW_SEVERITY_ERROR_CLASSES = frozenset({ErrorClass.DEPRECATED_CDK_API})

_ACTION_VERDICT_TYPES = {
    ProposedAction.WAIT_AND_RETRY: VerdictType.DEFERRED,
    ProposedAction.OPEN_ISSUE: VerdictType.REJECTED,
    ProposedAction.HUMAN_REQUIRED: VerdictType.ESCALATED,
}

_default_classifier = RuleBasedClassifier()


def normalize_confidence_score(raw: Any) -> int:
    """Map a raw confidence in [0, 1] to an integer in [0, 100], rounding half up.

    The decimal representation of ``raw`` is used so that 0.855 maps to 86
    even though its binary float product is 85.49999...
    """
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or math.isnan(raw):
        raise InvalidConfidenceError(
            f"Invalid confidence: {raw!r}. Must be between 0 and 1.",
            details={"raw_confidence": repr(raw)},
        )
    if raw < 0 or raw > 1:
        raise InvalidConfidenceError(
            f"Invalid confidence: {raw}. Must be between 0 and 1.",
            details={"raw_confidence": raw},
        )
    scaled = Decimal(str(raw)) * 100
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def derive_verdict_type(
    error_class: str,
    proposed_action: ProposedAction,
    confidence_score: int,
) -> VerdictType:
    """Fixed mapping from (error class, action, confidence) to a verdict type."""
    if confidence_score < ESCALATION_THRESHOLD:
        return VerdictType.ESCALATED
    if error_class in LOCK_ERROR_CLASSES:
        return VerdictType.BLOCKED
    if error_class in LOW_SEVERITY_ERROR_CLASSES and proposed_action is ProposedAction.OPEN_ISSUE:
        return VerdictType.WARNING
    return _ACTION_VERDICT_TYPES[proposed_action]


def generate_verdict(
    execution_id: str,
    policy_snapshot_id: str,
    signals: Sequence[FailureSignal],
    policy: PolicySnapshot | None = None,
    classifier: Classifier | None = None,
    playbook_id: str | None = None,
) -> Verdict:
    """Classify signals and evaluate them against a policy snapshot."""
    policy = policy or REFERENCE_POLICY
    classifier = classifier or _default_classifier

    if policy.id != policy_snapshot_id:
        raise ValidationError(
            "policy_snapshot_id does not match the supplied policy",
            details={"policy_snapshot_id": policy_snapshot_id, "policy_id": policy.id},
        )
    if not signals:
        raise ValidationError("Cannot generate a verdict without signals")

    classification = classifier.classify(signals)

    proposed_action = policy.policies.action_for(classification.error_class)
    if proposed_action is None:
        raise UnknownErrorClassError(
            f"Error class {classification.error_class} not defined in policy {policy.id}",
            details={"error_class": str(classification.error_class), "policy_id": policy.id},
        )

    confidence_score = normalize_confidence_score(classification.confidence)
    verdict_type = derive_verdict_type(
        classification.error_class, proposed_action, confidence_score
    )
    tokens = tuple(classifier.extract_tokens(signals))

    verdict = Verdict(
        id=str(uuid.uuid4()),
        execution_id=execution_id,
        policy_snapshot_id=policy.id,
        fingerprint_id=classification.fingerprint,
        error_class=str(classification.error_class),
        service=classification.service,
        confidence_score=confidence_score,
        proposed_action=proposed_action,
        verdict_type=verdict_type,
        tokens=tokens,
        signals=tuple(signals),
        created_at=datetime.now(timezone.utc),
        playbook_id=playbook_id,
    )

    logger.info(
        "verdict_generated",
        verdict_id=verdict.id,
        execution_id=execution_id,
        error_class=verdict.error_class,
        confidence_score=confidence_score,
        proposed_action=str(proposed_action),
        verdict_type=str(verdict_type),
    )
    return verdict


def validate_determinism(
    signals_a: Sequence[FailureSignal],
    signals_b: Sequence[FailureSignal],
) -> dict[str, Any]:
    """Compare the decision fields of two verdicts generated from the reference policy."""
    a = generate_verdict("determinism-check-a", REFERENCE_POLICY.id, signals_a, REFERENCE_POLICY)
    b = generate_verdict("determinism-check-b", REFERENCE_POLICY.id, signals_b, REFERENCE_POLICY)

    differences = [
        name
        for name in ("fingerprint_id", "error_class", "confidence_score", "proposed_action")
        if getattr(a, name) != getattr(b, name)
    ]
    return {"deterministic": not differences, "differences": differences}
