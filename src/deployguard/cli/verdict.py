"""
Verdict command.

Classifies a file of failure signals against a policy snapshot and prints
the resulting verdict together with its reduced form.
"""

from __future__ import annotations

import json
import uuid

from deployguard.cli.ux import console, header, print_key_value, print_table
from deployguard.config.loader import load_policy, load_signals
from deployguard.verdicts.engine import generate_verdict
from deployguard.verdicts.models import Verdict
from deployguard.verdicts.simple import get_action_for_verdict_type, to_simple_verdict


def verdict_to_dict(verdict: Verdict) -> dict:
    simple = to_simple_verdict(verdict.verdict_type)
    return {
        "id": verdict.id,
        "execution_id": verdict.execution_id,
        "policy_snapshot_id": verdict.policy_snapshot_id,
        "fingerprint_id": verdict.fingerprint_id,
        "error_class": verdict.error_class,
        "service": verdict.service,
        "confidence_score": verdict.confidence_score,
        "proposed_action": str(verdict.proposed_action),
        "verdict_type": str(verdict.verdict_type),
        "simple_verdict": str(simple),
        "simple_action": str(get_action_for_verdict_type(verdict.verdict_type)),
        "tokens": list(verdict.tokens),
        "signals": [s.to_dict() for s in verdict.signals],
        "created_at": verdict.created_at.isoformat(),
    }


def verdict_command(
    signals_file: str,
    policy_file: str | None = None,
    execution_id: str | None = None,
    output_format: str = "text",
) -> int:
    """Exit codes: 0 = verdict produced. Errors propagate to the error handler."""
    policy = load_policy(policy_file)
    signals = load_signals(signals_file)
    verdict = generate_verdict(
        execution_id=execution_id or str(uuid.uuid4()),
        policy_snapshot_id=policy.id,
        signals=signals,
        policy=policy,
    )

    data = verdict_to_dict(verdict)
    if output_format == "json":
        console.print_json(json.dumps(data))
        return 0

    header(f"Verdict: {verdict.error_class}")
    print_key_value(
        {
            "Verdict": f"{data['verdict_type']} → {data['simple_verdict']} ({data['simple_action']})",
            "Proposed action": data["proposed_action"],
            "Confidence": str(verdict.confidence_score),
            "Service": verdict.service,
            "Fingerprint": verdict.fingerprint_id,
            "Policy": f"{policy.id} {policy.version}",
        }
    )
    print_table(
        "Signals",
        ["Resource type", "Logical id", "Reason"],
        [[s.resource_type, s.logical_id, s.status_reason] for s in verdict.signals],
    )
    return 0
