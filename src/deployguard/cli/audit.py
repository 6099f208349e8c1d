"""Consistency audit command."""

from __future__ import annotations

from deployguard.cli.ux import header, print_key_value, print_table, success, warning
from deployguard.config.loader import load_policy, load_verdicts
from deployguard.core.errors import ExitCode
from deployguard.verdicts.consistency import audit_verdict, calculate_consistency_metrics


def audit_command(verdicts_file: str, policy_file: str | None = None) -> int:
    """
    Print consistency metrics for a set of verdicts and audit each one
    against the policy snapshot.

    Exit codes: 0 = all compliant, 1 = at least one non-compliant verdict
    """
    verdicts = load_verdicts(verdicts_file)
    policy = load_policy(policy_file)
    metrics = calculate_consistency_metrics(verdicts)

    header("Verdict Consistency Audit")
    print_key_value(
        {
            "Verdicts": str(metrics.total),
            "Average confidence": f"{metrics.avg_confidence:.2f}",
            "Consistency score": str(metrics.consistency_score),
            "Policy": f"{policy.id} {policy.version}",
        }
    )
    if metrics.by_error_class:
        print_table(
            "By error class",
            ["Error class", "Count", "Avg confidence"],
            [
                [name, str(m.count), f"{m.avg_confidence:.2f}"]
                for name, m in sorted(metrics.by_error_class.items())
            ],
        )

    non_compliant = 0
    for verdict in verdicts:
        result = audit_verdict(verdict, policy)
        if not result.compliant:
            non_compliant += 1
            warning(f"{verdict.id}: {'; '.join(result.issues)}")

    if non_compliant:
        return ExitCode.WARNING
    success(f"All {len(verdicts)} verdicts comply with policy {policy.version}")
    return ExitCode.SUCCESS
