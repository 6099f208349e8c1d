"""
Verdict and policy store interfaces.

The verdict engine never persists anything itself; callers inject a store.
InMemoryVerdictStore is a complete implementation used by tests and by
embedders that do not need a database.
"""

from __future__ import annotations

import uuid
from collections import Counter, defaultdict
from datetime import datetime, timezone
from typing import Any, Protocol, runtime_checkable

from deployguard.config.settings import get_settings
from deployguard.verdicts.models import (
    AuditEventType,
    PolicySnapshot,
    Verdict,
    VerdictAuditEntry,
    VerdictQuery,
    VerdictStatistics,
    VerdictWithPolicy,
)


@runtime_checkable
class PolicyStore(Protocol):
    async def store_policy_snapshot(self, policy: PolicySnapshot) -> None: ...

    async def get_policy_snapshot(self, snapshot_id: str) -> PolicySnapshot | None: ...

    async def get_latest_policy_snapshot(self) -> PolicySnapshot | None: ...


@runtime_checkable
class VerdictStore(Protocol):
    async def store_verdict(self, verdict: Verdict) -> None: ...

    async def get_verdict(self, verdict_id: str) -> Verdict | None: ...

    async def get_verdicts_by_execution(self, execution_id: str) -> list[Verdict]: ...

    async def query_verdicts(self, query: VerdictQuery) -> list[Verdict]: ...

    async def get_verdict_with_policy(self, verdict_id: str) -> VerdictWithPolicy | None: ...

    async def get_verdict_statistics(self) -> list[VerdictStatistics]: ...

    async def log_verdict_audit(
        self,
        verdict_id: str,
        event_type: AuditEventType,
        event_data: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> VerdictAuditEntry: ...

    async def get_verdict_audit_log(self, verdict_id: str) -> list[VerdictAuditEntry]: ...


def effective_limit(limit: int | None) -> int:
    """Apply the default page size and clamp to the configured maximum."""
    settings = get_settings()
    if limit is None or limit <= 0:
        return settings.default_query_limit
    return min(limit, settings.max_query_limit)


def compute_statistics(verdicts: list[Verdict]) -> list[VerdictStatistics]:
    grouped: dict[tuple[str, str], list[Verdict]] = defaultdict(list)
    for verdict in verdicts:
        grouped[(verdict.error_class, verdict.service)].append(verdict)

    stats = []
    for (error_class, service), members in sorted(grouped.items()):
        scores = [v.confidence_score for v in members]
        # Counter.most_common keeps first-seen order for ties
        action, _ = Counter(v.proposed_action for v in members).most_common(1)[0]
        stats.append(
            VerdictStatistics(
                error_class=error_class,
                service=service,
                total_count=len(members),
                avg_confidence=round(sum(scores) / len(scores), 2),
                min_confidence=min(scores),
                max_confidence=max(scores),
                most_common_action=action,
                affected_executions=len({v.execution_id for v in members}),
            )
        )
    stats.sort(key=lambda s: s.total_count, reverse=True)
    return stats


class InMemoryVerdictStore:
    """Insert-only in-memory store implementing PolicyStore and VerdictStore."""

    def __init__(self) -> None:
        self._policies: dict[str, PolicySnapshot] = {}
        self._verdicts: dict[str, Verdict] = {}
        self._audit: list[VerdictAuditEntry] = []

    async def store_policy_snapshot(self, policy: PolicySnapshot) -> None:
        if policy.id in self._policies:
            raise ValueError(f"Policy snapshot {policy.id} already exists and is immutable")
        self._policies[policy.id] = policy

    async def get_policy_snapshot(self, snapshot_id: str) -> PolicySnapshot | None:
        return self._policies.get(snapshot_id)

    async def get_latest_policy_snapshot(self) -> PolicySnapshot | None:
        if not self._policies:
            return None
        return max(self._policies.values(), key=lambda p: p.created_at)

    async def store_verdict(self, verdict: Verdict) -> None:
        if verdict.id in self._verdicts:
            raise ValueError(f"Verdict {verdict.id} already exists")
        self._verdicts[verdict.id] = verdict

    async def get_verdict(self, verdict_id: str) -> Verdict | None:
        return self._verdicts.get(verdict_id)

    async def get_verdicts_by_execution(self, execution_id: str) -> list[Verdict]:
        return sorted(
            (v for v in self._verdicts.values() if v.execution_id == execution_id),
            key=lambda v: v.created_at,
            reverse=True,
        )

    async def query_verdicts(self, query: VerdictQuery) -> list[Verdict]:
        matches = sorted(
            (v for v in self._verdicts.values() if query.matches(v)),
            key=lambda v: v.created_at,
            reverse=True,
        )
        limit = effective_limit(query.limit)
        return matches[query.offset : query.offset + limit]

    async def get_verdict_with_policy(self, verdict_id: str) -> VerdictWithPolicy | None:
        verdict = self._verdicts.get(verdict_id)
        if verdict is None:
            return None
        policy = self._policies.get(verdict.policy_snapshot_id)
        if policy is None:
            return None
        return VerdictWithPolicy(verdict=verdict, policy=policy)

    async def get_verdict_statistics(self) -> list[VerdictStatistics]:
        return compute_statistics(list(self._verdicts.values()))

    async def log_verdict_audit(
        self,
        verdict_id: str,
        event_type: AuditEventType,
        event_data: dict[str, Any] | None = None,
        created_by: str | None = None,
    ) -> VerdictAuditEntry:
        entry = VerdictAuditEntry(
            id=str(uuid.uuid4()),
            verdict_id=verdict_id,
            event_type=AuditEventType(event_type),
            created_at=datetime.now(timezone.utc),
            event_data=event_data,
            created_by=created_by,
        )
        self._audit.append(entry)
        return entry

    async def get_verdict_audit_log(self, verdict_id: str) -> list[VerdictAuditEntry]:
        return [e for e in self._audit if e.verdict_id == verdict_id]
