"""Shared plumbing for playbook step implementations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping

from deployguard.remediation.adapters import RemediationPool
from deployguard.remediation.contracts import PlaybookDefinition, StepContext, StepResult

StepExecutor = Callable[[RemediationPool, StepContext], Awaitable[StepResult]]
IdempotencyKeyFn = Callable[[StepContext], str]


@dataclass(frozen=True)
class Playbook:
    """A definition plus the callables that implement and key each of its steps."""

    definition: PlaybookDefinition
    executors: Mapping[str, StepExecutor] = field(default_factory=dict)
    idempotency_keys: Mapping[str, IdempotencyKeyFn] = field(default_factory=dict)

    @property
    def id(self) -> str:
        return self.definition.id


def ref_value(ref: Mapping[str, Any], *names: str) -> Any:
    """First non-empty value among alternative field names (camelCase or snake_case)."""
    for name in names:
        value = ref.get(name)
        if value not in (None, ""):
            return value
    return None


def step_output(context: StepContext, key: str) -> dict[str, Any] | None:
    value = context.inputs.get(key)
    return value if isinstance(value, dict) else None


def lawbook_denied(context: StepContext, flag: str, action: str) -> StepResult | None:
    """Deny-by-default check for a mutating step. Returns the failure result, or None if allowed."""
    if context.lawbook is None or not context.lawbook.is_enabled(flag):
        return StepResult.fail(
            "LAWBOOK_DENIED",
            f"Lawbook does not enable {action} ({flag})",
            {"flag": flag, "lawbookVersion": context.lawbook_version},
        )
    return None


async def repo_allowed(pool: RemediationPool, context: StepContext, owner: str, repo: str) -> bool:
    """Ask the injected access policy, falling back to the lawbook allowlist. Neither means no."""
    if pool.repo_access is not None:
        return bool(await pool.repo_access.is_repo_allowed(owner, repo))
    if context.lawbook is not None:
        return context.lawbook.is_repo_allowed(owner, repo)
    return False
