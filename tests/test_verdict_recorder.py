"""Tests for the fail-open verdict audit recorder."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from deployguard.verdicts.models import AuditEventType, ProposedAction, Verdict, VerdictType
from deployguard.verdicts.recorder import VerdictAuditRecorder
from deployguard.verdicts.store import InMemoryVerdictStore, VerdictStore

# -- Fixtures --


@pytest.fixture
def verdict():
    return Verdict(
        id="v-1",
        execution_id="exec-1",
        policy_snapshot_id="default-policy",
        fingerprint_id="fp-1",
        error_class="MISSING_SECRET",
        service="SecretsManager",
        confidence_score=85,
        proposed_action=ProposedAction.OPEN_ISSUE,
        verdict_type=VerdictType.REJECTED,
        tokens=(),
        signals=(),
        created_at=datetime(2026, 3, 14, tzinfo=timezone.utc),
    )


@pytest.fixture
def store():
    return InMemoryVerdictStore()


@pytest.fixture
def failing_store():
    """Store whose every call raises."""
    store = MagicMock(spec=VerdictStore)
    store.store_verdict = AsyncMock(side_effect=RuntimeError("db down"))
    store.log_verdict_audit = AsyncMock(side_effect=RuntimeError("db down"))
    return store


# -- Recording --


class TestRecordVerdict:
    async def test_stores_and_logs_created(self, store, verdict):
        recorder = VerdictAuditRecorder(store)

        entry = await recorder.record_verdict(verdict, created_by="pipeline")

        assert entry.event_type == AuditEventType.CREATED
        assert entry.event_data["verdict_type"] == "REJECTED"
        assert entry.created_by == "pipeline"
        assert await store.get_verdict("v-1") is verdict

    async def test_fail_open(self, failing_store, verdict):
        recorder = VerdictAuditRecorder(failing_store)

        assert await recorder.record_verdict(verdict) is None


class TestHumanEvents:
    async def test_review_override_archive(self, store, verdict):
        recorder = VerdictAuditRecorder(store)
        await recorder.record_verdict(verdict)

        await recorder.record_review("v-1", "alice", notes="looks right")
        await recorder.record_override("v-1", "bob", "known flake", override_action="ADVANCE")
        await recorder.record_archive("v-1", "carol")

        log = await store.get_verdict_audit_log("v-1")
        assert [e.event_type for e in log] == [
            AuditEventType.CREATED,
            AuditEventType.REVIEWED,
            AuditEventType.OVERRIDDEN,
            AuditEventType.ARCHIVED,
        ]
        assert log[2].event_data == {"reason": "known flake", "override_action": "ADVANCE"}
        assert log[3].event_data is None

    async def test_override_never_modifies_verdict(self, store, verdict):
        recorder = VerdictAuditRecorder(store)
        await recorder.record_verdict(verdict)

        await recorder.record_override("v-1", "bob", "ship it")

        assert (await store.get_verdict("v-1")).verdict_type == VerdictType.REJECTED

    async def test_review_without_notes(self, store):
        entry = await VerdictAuditRecorder(store).record_review("v-9", "alice")

        assert entry.event_data is None

    async def test_fail_open(self, failing_store):
        recorder = VerdictAuditRecorder(failing_store)

        assert await recorder.record_review("v-1", "alice") is None
        assert await recorder.record_override("v-1", "bob", "reason") is None
        assert await recorder.record_archive("v-1", "carol") is None
