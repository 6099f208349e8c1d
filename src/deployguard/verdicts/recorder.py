"""
Verdict audit recorder.

Persists verdicts and their audit trail. Every store call is wrapped for
fail-open behaviour: a storage error is logged via structlog and None is
returned, so a broken audit database never blocks verdict generation or
the deployment gate.
"""

from __future__ import annotations

from typing import Any

import structlog

from deployguard.verdicts.models import AuditEventType, Verdict, VerdictAuditEntry
from deployguard.verdicts.store import VerdictStore

logger = structlog.get_logger()


class VerdictAuditRecorder:
    """Records verdicts and audit events with fail-open semantics."""

    def __init__(self, store: VerdictStore) -> None:
        self.store = store

    async def record_verdict(
        self,
        verdict: Verdict,
        created_by: str | None = None,
    ) -> VerdictAuditEntry | None:
        """Store a verdict and append its ``created`` audit entry.

        Returns None on storage error (fail open).
        """
        try:
            await self.store.store_verdict(verdict)
            entry = await self.store.log_verdict_audit(
                verdict.id,
                AuditEventType.CREATED,
                event_data={
                    "error_class": verdict.error_class,
                    "confidence_score": verdict.confidence_score,
                    "proposed_action": str(verdict.proposed_action),
                    "verdict_type": str(verdict.verdict_type),
                    "policy_snapshot_id": verdict.policy_snapshot_id,
                },
                created_by=created_by,
            )

            logger.info(
                "verdict_recorded",
                verdict_id=verdict.id,
                execution_id=verdict.execution_id,
                verdict_type=str(verdict.verdict_type),
            )
            return entry

        except Exception:
            logger.warning(
                "verdict_audit_record_failed",
                verdict_id=verdict.id,
                action="created",
                exc_info=True,
            )
            return None

    async def record_review(
        self,
        verdict_id: str,
        reviewer: str,
        notes: str | None = None,
    ) -> VerdictAuditEntry | None:
        return await self._append(
            verdict_id,
            AuditEventType.REVIEWED,
            {"notes": notes} if notes else None,
            reviewer,
        )

    async def record_override(
        self,
        verdict_id: str,
        approved_by: str,
        reason: str,
        override_action: str | None = None,
    ) -> VerdictAuditEntry | None:
        """Record a human override. The verdict itself is never modified."""
        event_data: dict[str, Any] = {"reason": reason}
        if override_action:
            event_data["override_action"] = override_action
        return await self._append(verdict_id, AuditEventType.OVERRIDDEN, event_data, approved_by)

    async def record_archive(self, verdict_id: str, archived_by: str) -> VerdictAuditEntry | None:
        return await self._append(verdict_id, AuditEventType.ARCHIVED, None, archived_by)

    async def _append(
        self,
        verdict_id: str,
        event_type: AuditEventType,
        event_data: dict[str, Any] | None,
        created_by: str | None,
    ) -> VerdictAuditEntry | None:
        try:
            entry = await self.store.log_verdict_audit(
                verdict_id, event_type, event_data=event_data, created_by=created_by
            )
            logger.info(
                "verdict_audit_recorded",
                verdict_id=verdict_id,
                event_type=str(event_type),
                created_by=created_by,
            )
            return entry
        except Exception:
            logger.warning(
                "verdict_audit_record_failed",
                verdict_id=verdict_id,
                action=str(event_type),
                exc_info=True,
            )
            return None
