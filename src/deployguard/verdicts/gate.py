"""
Deployment gate.

The single authority on whether a release may proceed. The decision is
made solely from the reduced verdict: GREEN advances, everything else
blocks. Health checks and diffs never reach this module directly; they
only influence the verdict upstream.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Union

import structlog

from deployguard.core.errors import DeploymentBlockedError, UnmappedVerdictError
from deployguard.verdicts.models import SimpleAction, SimpleVerdict, Verdict, VerdictType
from deployguard.verdicts.simple import get_simple_action, to_simple_verdict

logger = structlog.get_logger()

GateInput = Union[SimpleVerdict, VerdictType, Verdict, str]

BLOCK_RATIONALE: Mapping[SimpleVerdict, str] = MappingProxyType(
    {
        SimpleVerdict.RED: "critical failure detected",
        SimpleVerdict.HOLD: "human review required",
        SimpleVerdict.RETRY: "transient condition, retry later",
    }
)


@dataclass(frozen=True)
class DeploymentGateResult:
    """Result of a deployment gate check."""

    allowed: bool
    verdict: SimpleVerdict
    action: SimpleAction
    reason: str
    original_verdict_type: VerdictType | None = None

    @property
    def is_blocked(self) -> bool:
        return not self.allowed

    @property
    def rationale(self) -> str | None:
        return BLOCK_RATIONALE.get(self.verdict)


def _normalize(gate_input: GateInput) -> tuple[SimpleVerdict, VerdictType | None]:
    if isinstance(gate_input, Verdict):
        return to_simple_verdict(gate_input.verdict_type), gate_input.verdict_type
    if isinstance(gate_input, SimpleVerdict):
        return gate_input, None
    if isinstance(gate_input, VerdictType):
        return to_simple_verdict(gate_input), gate_input
    if isinstance(gate_input, str):
        if gate_input in SimpleVerdict.__members__:
            return SimpleVerdict(gate_input), None
        if gate_input in VerdictType.__members__:
            verdict_type = VerdictType(gate_input)
            return to_simple_verdict(verdict_type), verdict_type
    raise UnmappedVerdictError(f"Cannot evaluate deployment gate for {gate_input!r}")


def check_deployment_gate(gate_input: GateInput) -> DeploymentGateResult:
    """Reduce the input to a SimpleVerdict and decide whether deployment may proceed."""
    verdict, original = _normalize(gate_input)
    action = get_simple_action(verdict)
    allowed = verdict is SimpleVerdict.GREEN

    if allowed:
        reason = f"Deployment allowed: verdict {verdict} (action {action})"
    else:
        reason = (
            f"Deployment BLOCKED: verdict {verdict} (action {action}) - "
            f"{BLOCK_RATIONALE[verdict]}"
        )

    logger.info(
        "deployment_gate_checked",
        allowed=allowed,
        verdict=str(verdict),
        action=str(action),
        original_verdict_type=str(original) if original else None,
    )

    return DeploymentGateResult(
        allowed=allowed,
        verdict=verdict,
        action=action,
        reason=reason,
        original_verdict_type=original,
    )


def validate_deployment_gate(gate_input: GateInput) -> DeploymentGateResult:
    """Raise DeploymentBlockedError unless the gate allows deployment."""
    result = check_deployment_gate(gate_input)
    if not result.allowed:
        raise DeploymentBlockedError(
            f"Deployment gate check failed: {result.reason}",
            gate_result=result,
            details={"verdict": str(result.verdict), "action": str(result.action)},
        )
    return result


def is_deployment_allowed(gate_input: GateInput) -> bool:
    return check_deployment_gate(gate_input).allowed


def get_deployment_status(gate_input: GateInput) -> str:
    """Human-readable one-line status for release tooling."""
    result = check_deployment_gate(gate_input)
    icon = "✅" if result.allowed else "❌"
    return f"{icon} {result.reason}"
