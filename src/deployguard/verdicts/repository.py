"""
Verdict repository.

SQLAlchemy implementation of PolicyStore and VerdictStore. Policy
snapshots, verdicts and audit entries are insert-only (no update/delete).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from deployguard.db.models import PolicySnapshotModel, VerdictAuditLogModel, VerdictModel
from deployguard.verdicts.models import (
    AuditEventType,
    FailureSignal,
    PolicySnapshot,
    ProposedAction,
    Verdict,
    VerdictAuditEntry,
    VerdictQuery,
    VerdictStatistics,
    VerdictType,
    VerdictWithPolicy,
)
from deployguard.verdicts.policy import policy_from_dict, policy_to_dict
from deployguard.verdicts.store import compute_statistics, effective_limit


class VerdictRepository:
    """Repository for verdict and policy snapshot database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def store_policy_snapshot(self, policy: PolicySnapshot) -> None:
        data = policy_to_dict(policy)
        model = PolicySnapshotModel(
            id=policy.id,
            version=policy.version,
            policies=data["policies"],
            created_at=policy.created_at,
        )
        self.session.add(model)
        await self.session.flush()

    async def get_policy_snapshot(self, snapshot_id: str) -> PolicySnapshot | None:
        model = await self.session.get(PolicySnapshotModel, snapshot_id)
        return self._policy_to_domain(model) if model else None

    async def get_latest_policy_snapshot(self) -> PolicySnapshot | None:
        result = await self.session.execute(
            select(PolicySnapshotModel).order_by(PolicySnapshotModel.created_at.desc()).limit(1)
        )
        model = result.scalars().first()
        return self._policy_to_domain(model) if model else None

    async def store_verdict(self, verdict: Verdict) -> None:
        model = VerdictModel(
            id=verdict.id,
            execution_id=verdict.execution_id,
            policy_snapshot_id=verdict.policy_snapshot_id,
            fingerprint_id=verdict.fingerprint_id,
            error_class=verdict.error_class,
            service=verdict.service,
            confidence_score=verdict.confidence_score,
            proposed_action=str(verdict.proposed_action),
            verdict_type=str(verdict.verdict_type),
            tokens=list(verdict.tokens),
            signals=[s.to_dict() for s in verdict.signals],
            playbook_id=verdict.playbook_id,
            extra_data=verdict.metadata or None,
            created_at=verdict.created_at,
        )
        self.session.add(model)
        await self.session.flush()

    async def get_verdict(self, verdict_id: str) -> Verdict | None:
        model = await self.session.get(VerdictModel, verdict_id)
        return self._verdict_to_domain(model) if model else None

    async def get_verdicts_by_execution(self, execution_id: str) -> list[Verdict]:
        result = await self.session.execute(
            select(VerdictModel)
            .where(VerdictModel.execution_id == execution_id)
            .order_by(VerdictModel.created_at.desc())
        )
        return [self._verdict_to_domain(m) for m in result.scalars().all()]

    async def query_verdicts(self, query: VerdictQuery) -> list[Verdict]:
        stmt = select(VerdictModel)
        if query.execution_id is not None:
            stmt = stmt.where(VerdictModel.execution_id == query.execution_id)
        if query.error_class is not None:
            stmt = stmt.where(VerdictModel.error_class == query.error_class)
        if query.service is not None:
            stmt = stmt.where(VerdictModel.service == query.service)
        if query.min_confidence is not None:
            stmt = stmt.where(VerdictModel.confidence_score >= query.min_confidence)
        if query.max_confidence is not None:
            stmt = stmt.where(VerdictModel.confidence_score <= query.max_confidence)
        if query.proposed_action is not None:
            stmt = stmt.where(VerdictModel.proposed_action == str(query.proposed_action))
        if query.verdict_type is not None:
            stmt = stmt.where(VerdictModel.verdict_type == str(query.verdict_type))

        stmt = (
            stmt.order_by(VerdictModel.created_at.desc())
            .limit(effective_limit(query.limit))
            .offset(query.offset)
        )
        result = await self.session.execute(stmt)
        return [self._verdict_to_domain(m) for m in result.scalars().all()]

    async def get_verdict_with_policy(self, verdict_id: str) -> VerdictWithPolicy | None:
        result = await self.session.execute(
            select(VerdictModel, PolicySnapshotModel)
            .join(PolicySnapshotModel, VerdictModel.policy_snapshot_id == PolicySnapshotModel.id)
            .where(VerdictModel.id == verdict_id)
        )
        row = result.first()
        if row is None:
            return None
        verdict_model, policy_model = row
        return VerdictWithPolicy(
            verdict=self._verdict_to_domain(verdict_model),
            policy=self._policy_to_domain(policy_model),
        )

    async def get_verdict_statistics(self) -> list[VerdictStatistics]:
        # most_common_action needs a mode per group, so aggregate in Python
        result = await self.session.execute(select(VerdictModel))
        return compute_statistics([self._verdict_to_domain(m) for m in result.scalars().all()])

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
        self.session.add(
            VerdictAuditLogModel(
                id=entry.id,
                verdict_id=entry.verdict_id,
                event_type=str(entry.event_type),
                event_data=entry.event_data,
                created_by=entry.created_by,
                created_at=entry.created_at,
            )
        )
        await self.session.flush()
        return entry

    async def get_verdict_audit_log(self, verdict_id: str) -> list[VerdictAuditEntry]:
        result = await self.session.execute(
            select(VerdictAuditLogModel)
            .where(VerdictAuditLogModel.verdict_id == verdict_id)
            .order_by(VerdictAuditLogModel.created_at.asc())
        )
        return [self._audit_to_domain(m) for m in result.scalars().all()]

    # -- Model-to-domain converters --

    @staticmethod
    def _policy_to_domain(model: PolicySnapshotModel) -> PolicySnapshot:
        return policy_from_dict(
            {
                "id": model.id,
                "version": model.version,
                "policies": model.policies,
                "created_at": model.created_at,
            }
        )

    @staticmethod
    def _verdict_to_domain(model: VerdictModel) -> Verdict:
        return Verdict(
            id=model.id,
            execution_id=model.execution_id,
            policy_snapshot_id=model.policy_snapshot_id,
            fingerprint_id=model.fingerprint_id,
            error_class=model.error_class,
            service=model.service,
            confidence_score=model.confidence_score,
            proposed_action=ProposedAction(model.proposed_action),
            verdict_type=VerdictType(model.verdict_type),
            tokens=tuple(model.tokens or ()),
            signals=tuple(FailureSignal.from_dict(s) for s in model.signals or ()),
            created_at=model.created_at,
            playbook_id=model.playbook_id,
            metadata=model.extra_data or {},
        )

    @staticmethod
    def _audit_to_domain(model: VerdictAuditLogModel) -> VerdictAuditEntry:
        return VerdictAuditEntry(
            id=model.id,
            verdict_id=model.verdict_id,
            event_type=AuditEventType(model.event_type),
            created_at=model.created_at,
            event_data=model.event_data,
            created_by=model.created_by,
        )
