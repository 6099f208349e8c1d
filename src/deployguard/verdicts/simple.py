"""
Simple verdict reduction.

VerdictType (7) -> SimpleVerdict (4) -> SimpleAction (4). Both tables are
total; a new VerdictType must be added here in the same change that adds it
to the enum, otherwise validate_simple_verdict_mapping fails at import.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from deployguard.core.errors import UnmappedVerdictError
from deployguard.verdicts.models import SimpleAction, SimpleVerdict, VerdictType

VERDICT_TYPE_TO_SIMPLE: Mapping[VerdictType, SimpleVerdict] = MappingProxyType(
    {
        VerdictType.APPROVED: SimpleVerdict.GREEN,
        VerdictType.WARNING: SimpleVerdict.GREEN,
        VerdictType.REJECTED: SimpleVerdict.RED,
        VerdictType.ESCALATED: SimpleVerdict.HOLD,
        VerdictType.BLOCKED: SimpleVerdict.HOLD,
        VerdictType.DEFERRED: SimpleVerdict.RETRY,
        VerdictType.PENDING: SimpleVerdict.RETRY,
    }
)

SIMPLE_VERDICT_TO_ACTION: Mapping[SimpleVerdict, SimpleAction] = MappingProxyType(
    {
        SimpleVerdict.GREEN: SimpleAction.ADVANCE,
        SimpleVerdict.RED: SimpleAction.ABORT,
        SimpleVerdict.HOLD: SimpleAction.FREEZE,
        SimpleVerdict.RETRY: SimpleAction.RETRY_OPERATION,
    }
)


def to_simple_verdict(verdict_type: VerdictType) -> SimpleVerdict:
    try:
        return VERDICT_TYPE_TO_SIMPLE[VerdictType(verdict_type)]
    except (KeyError, ValueError) as e:
        raise UnmappedVerdictError(
            f"No SimpleVerdict mapping for verdict type {verdict_type!r}"
        ) from e


def get_simple_action(simple_verdict: SimpleVerdict) -> SimpleAction:
    try:
        return SIMPLE_VERDICT_TO_ACTION[SimpleVerdict(simple_verdict)]
    except (KeyError, ValueError) as e:
        raise UnmappedVerdictError(
            f"No SimpleAction mapping for simple verdict {simple_verdict!r}"
        ) from e


def get_action_for_verdict_type(verdict_type: VerdictType) -> SimpleAction:
    return get_simple_action(to_simple_verdict(verdict_type))


def validate_simple_verdict_mapping() -> None:
    """Raise UnmappedVerdictError unless both tables are total and the action table is 1:1."""
    missing_types = [vt for vt in VerdictType if vt not in VERDICT_TYPE_TO_SIMPLE]
    if missing_types:
        raise UnmappedVerdictError(f"VerdictType values without mapping: {missing_types}")

    missing_simple = [sv for sv in SimpleVerdict if sv not in SIMPLE_VERDICT_TO_ACTION]
    if missing_simple:
        raise UnmappedVerdictError(f"SimpleVerdict values without action: {missing_simple}")

    actions = list(SIMPLE_VERDICT_TO_ACTION.values())
    if len(set(actions)) != len(actions) or set(actions) != set(SimpleAction):
        raise UnmappedVerdictError("SimpleVerdict -> SimpleAction mapping is not a bijection")


validate_simple_verdict_mapping()
