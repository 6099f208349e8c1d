"""
Deployment gate command.

Accepts either a verdict name (GREEN, REJECTED, ...) or a signals file,
and exits 0 when the release may proceed, 2 when it is blocked.
"""

from __future__ import annotations

from pathlib import Path

from deployguard.cli.ux import console, error, success
from deployguard.config.loader import load_policy, load_signals
from deployguard.core.errors import ExitCode
from deployguard.verdicts.engine import generate_verdict
from deployguard.verdicts.gate import check_deployment_gate, get_deployment_status
from deployguard.verdicts.models import SimpleVerdict, VerdictType


def _is_verdict_name(value: str) -> bool:
    return value in SimpleVerdict.__members__ or value in VerdictType.__members__


def gate_command(target: str, policy_file: str | None = None, execution_id: str = "gate-check") -> int:
    """
    Check whether a deployment may proceed.

    Exit codes: 0 = Allowed, 2 = Blocked
    """
    if _is_verdict_name(target) and not Path(target).exists():
        gate_input = target
    else:
        policy = load_policy(policy_file)
        gate_input = generate_verdict(execution_id, policy.id, load_signals(target), policy)

    result = check_deployment_gate(gate_input)
    status = get_deployment_status(gate_input)
    if result.allowed:
        success(status)
        return ExitCode.SUCCESS

    error(status)
    if result.original_verdict_type is not None:
        console.print(f"[muted]Original verdict type: {result.original_verdict_type}[/muted]")
    return ExitCode.BLOCKED
