"""Cross-verdict consistency scoring and per-verdict policy compliance audit."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Sequence

from deployguard.verdicts.models import PolicySnapshot, ProposedAction, Verdict


@dataclass
class ErrorClassMetrics:
    count: int
    avg_confidence: float


@dataclass
class ConsistencyMetrics:
    total: int
    avg_confidence: float
    consistency_score: int
    by_error_class: dict[str, ErrorClassMetrics] = field(default_factory=dict)


@dataclass
class AuditResult:
    compliant: bool
    issues: list[str]
    policy_version: str


def _mean(total: int, count: int) -> float:
    if count == 0:
        return 0.0
    return float((Decimal(total) / Decimal(count)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def calculate_consistency_metrics(verdicts: Sequence[Verdict]) -> ConsistencyMetrics:
    """Group verdicts by fingerprint and score how often each group agrees with itself.

    A group is consistent when every member carries the same error class and
    confidence score. An empty population scores 100.
    """
    groups: dict[str, list[Verdict]] = defaultdict(list)
    class_sums: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    confidence_sum = 0

    for verdict in verdicts:
        groups[verdict.fingerprint_id].append(verdict)
        bucket = class_sums[verdict.error_class]
        bucket[0] += verdict.confidence_score
        bucket[1] += 1
        confidence_sum += verdict.confidence_score

    consistent = sum(
        1
        for members in groups.values()
        if len({(v.error_class, v.confidence_score) for v in members}) == 1
    )

    if groups:
        score = int(
            (Decimal(100 * consistent) / Decimal(len(groups))).quantize(
                Decimal("1"), rounding=ROUND_HALF_UP
            )
        )
    else:
        score = 100

    return ConsistencyMetrics(
        total=len(verdicts),
        avg_confidence=_mean(confidence_sum, len(verdicts)),
        consistency_score=score,
        by_error_class={
            error_class: ErrorClassMetrics(count=count, avg_confidence=_mean(total, count))
            for error_class, (total, count) in sorted(class_sums.items())
        },
    )


def audit_verdict(verdict: Verdict, policy: PolicySnapshot) -> AuditResult:
    """Check a verdict against the snapshot it claims to have been evaluated with."""
    issues: list[str] = []

    if verdict.policy_snapshot_id != policy.id:
        issues.append("Verdict policy_snapshot_id does not match provided policy")

    if not 0 <= verdict.confidence_score <= 100:
        issues.append(f"Invalid confidence_score: {verdict.confidence_score}. Must be 0-100.")

    if verdict.error_class not in policy.policies.playbooks:
        issues.append(f"Error class {verdict.error_class} not defined in policy")

    if verdict.proposed_action not in set(ProposedAction):
        issues.append(f"Invalid proposed_action: {verdict.proposed_action}")

    if not verdict.signals:
        issues.append("Verdict has no signals")

    return AuditResult(compliant=not issues, issues=issues, policy_version=policy.version)
