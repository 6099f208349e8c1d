"""Policy snapshots: the error class to action map every verdict is evaluated against."""

from __future__ import annotations

from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Mapping

from deployguard.core.errors import ConfigurationError
from deployguard.verdicts.models import (
    ConfidenceNormalization,
    ErrorClass,
    PolicyRules,
    PolicySnapshot,
    ProposedAction,
)

DEFAULT_ACTION_MAP: Mapping[str, ProposedAction] = MappingProxyType(
    {
        ErrorClass.ACM_DNS_VALIDATION_PENDING: ProposedAction.WAIT_AND_RETRY,
        ErrorClass.ROUTE53_DELEGATION_PENDING: ProposedAction.HUMAN_REQUIRED,
        ErrorClass.CFN_IN_PROGRESS_LOCK: ProposedAction.WAIT_AND_RETRY,
        ErrorClass.CFN_ROLLBACK_LOCK: ProposedAction.OPEN_ISSUE,
        ErrorClass.MISSING_SECRET: ProposedAction.OPEN_ISSUE,
        ErrorClass.MISSING_ENV_VAR: ProposedAction.OPEN_ISSUE,
        ErrorClass.DEPRECATED_CDK_API: ProposedAction.OPEN_ISSUE,
        ErrorClass.UNIT_MISMATCH: ProposedAction.OPEN_ISSUE,
        ErrorClass.UNKNOWN: ProposedAction.OPEN_ISSUE,
    }
)

DEFAULT_POLICY_ID = "default-policy"
DEFAULT_POLICY_VERSION = "v1.0.0"


def build_policy_snapshot(
    snapshot_id: str,
    version: str,
    playbooks: Mapping[str, ProposedAction | str],
    classification_rules: list[dict[str, Any]] | None = None,
    created_at: datetime | None = None,
) -> PolicySnapshot:
    """Create an immutable snapshot. Action names are validated eagerly."""
    actions: dict[str, ProposedAction] = {}
    for error_class, action in playbooks.items():
        try:
            actions[str(error_class)] = ProposedAction(action)
        except ValueError as e:
            raise ConfigurationError(
                f"Policy maps {error_class} to unknown action {action!r}",
                details={"policy_id": snapshot_id},
            ) from e

    return PolicySnapshot(
        id=snapshot_id,
        version=version,
        policies=PolicyRules(
            classification_rules=tuple(MappingProxyType(dict(rule)) for rule in classification_rules or ()),
            playbooks=MappingProxyType(actions),
            confidence_normalization=ConfidenceNormalization(),
        ),
        created_at=created_at or datetime.now(timezone.utc),
    )


# Reference policy used when no snapshot is supplied, and by validate_determinism.
REFERENCE_POLICY = build_policy_snapshot(
    DEFAULT_POLICY_ID,
    DEFAULT_POLICY_VERSION,
    DEFAULT_ACTION_MAP,
    created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
)


def policy_from_dict(data: dict[str, Any]) -> PolicySnapshot:
    """Parse a snapshot from its serialized form (YAML/JSON/DB row)."""
    try:
        policies = data["policies"]
        playbooks = policies["playbooks"]
    except (KeyError, TypeError) as e:
        raise ConfigurationError("Policy snapshot is missing policies.playbooks") from e

    created_at = data.get("created_at")
    if isinstance(created_at, str):
        created_at = datetime.fromisoformat(created_at)

    return build_policy_snapshot(
        snapshot_id=str(data.get("id") or DEFAULT_POLICY_ID),
        version=str(data.get("version") or DEFAULT_POLICY_VERSION),
        playbooks=playbooks,
        classification_rules=list(policies.get("classification_rules") or []),
        created_at=created_at,
    )


def policy_to_dict(policy: PolicySnapshot) -> dict[str, Any]:
    norm = policy.policies.confidence_normalization
    return {
        "id": policy.id,
        "version": policy.version,
        "policies": {
            "classification_rules": [dict(rule) for rule in policy.policies.classification_rules],
            "playbooks": {k: str(v) for k, v in policy.policies.playbooks.items()},
            "confidence_normalization": {
                "scale": norm.scale,
                "formula": norm.formula,
                "deterministic": norm.deterministic,
            },
        },
        "created_at": policy.created_at.isoformat(),
    }
