"""Tests for the in-memory verdict store."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest
from deployguard.verdicts.models import (
    AuditEventType,
    ProposedAction,
    Verdict,
    VerdictQuery,
    VerdictType,
)
from deployguard.verdicts.policy import REFERENCE_POLICY, build_policy_snapshot
from deployguard.verdicts.store import InMemoryVerdictStore, effective_limit

BASE_TIME = datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc)


def _verdict(verdict_id, minutes=0, **overrides):
    verdict = Verdict(
        id=verdict_id,
        execution_id="exec-1",
        policy_snapshot_id=REFERENCE_POLICY.id,
        fingerprint_id="fp-1",
        error_class="MISSING_SECRET",
        service="SecretsManager",
        confidence_score=85,
        proposed_action=ProposedAction.OPEN_ISSUE,
        verdict_type=VerdictType.REJECTED,
        tokens=(),
        signals=(),
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    return replace(verdict, **overrides)


@pytest.fixture
def store():
    return InMemoryVerdictStore()


class TestPolicies:
    async def test_store_and_get(self, store):
        await store.store_policy_snapshot(REFERENCE_POLICY)

        assert await store.get_policy_snapshot(REFERENCE_POLICY.id) is REFERENCE_POLICY
        assert await store.get_policy_snapshot("missing") is None

    async def test_snapshots_are_immutable(self, store):
        await store.store_policy_snapshot(REFERENCE_POLICY)

        with pytest.raises(ValueError):
            await store.store_policy_snapshot(REFERENCE_POLICY)

    async def test_latest(self, store):
        assert await store.get_latest_policy_snapshot() is None

        newer = build_policy_snapshot(
            "policy-2", "v2", {"UNKNOWN": "OPEN_ISSUE"}, created_at=BASE_TIME
        )
        await store.store_policy_snapshot(REFERENCE_POLICY)
        await store.store_policy_snapshot(newer)

        assert (await store.get_latest_policy_snapshot()).id == "policy-2"


class TestVerdicts:
    async def test_duplicate_id_rejected(self, store):
        await store.store_verdict(_verdict("v-1"))

        with pytest.raises(ValueError):
            await store.store_verdict(_verdict("v-1"))

    async def test_by_execution_newest_first(self, store):
        await store.store_verdict(_verdict("v-1", minutes=0))
        await store.store_verdict(_verdict("v-2", minutes=5))
        await store.store_verdict(_verdict("v-3", execution_id="exec-2"))

        verdicts = await store.get_verdicts_by_execution("exec-1")

        assert [v.id for v in verdicts] == ["v-2", "v-1"]

    async def test_query_filters(self, store):
        await store.store_verdict(_verdict("v-1", confidence_score=90))
        await store.store_verdict(_verdict("v-2", confidence_score=50, error_class="UNKNOWN"))
        await store.store_verdict(_verdict("v-3", verdict_type=VerdictType.ESCALATED))

        high = await store.query_verdicts(VerdictQuery(min_confidence=80))
        unknown = await store.query_verdicts(VerdictQuery(error_class="UNKNOWN"))
        escalated = await store.query_verdicts(VerdictQuery(verdict_type=VerdictType.ESCALATED))

        assert {v.id for v in high} == {"v-1", "v-3"}
        assert [v.id for v in unknown] == ["v-2"]
        assert [v.id for v in escalated] == ["v-3"]

    async def test_query_pagination(self, store):
        for i in range(5):
            await store.store_verdict(_verdict(f"v-{i}", minutes=i))

        page = await store.query_verdicts(VerdictQuery(limit=2, offset=1))

        assert [v.id for v in page] == ["v-3", "v-2"]

    async def test_verdict_with_policy(self, store):
        await store.store_policy_snapshot(REFERENCE_POLICY)
        await store.store_verdict(_verdict("v-1"))
        await store.store_verdict(_verdict("v-2", policy_snapshot_id="gone"))

        joined = await store.get_verdict_with_policy("v-1")

        assert joined.policy is REFERENCE_POLICY
        assert await store.get_verdict_with_policy("v-2") is None
        assert await store.get_verdict_with_policy("nope") is None

    async def test_statistics(self, store):
        await store.store_verdict(_verdict("v-1", confidence_score=80))
        await store.store_verdict(_verdict("v-2", confidence_score=90, execution_id="exec-2"))
        await store.store_verdict(_verdict("v-3", error_class="UNKNOWN", service="Lambda"))

        stats = await store.get_verdict_statistics()

        assert stats[0].error_class == "MISSING_SECRET"
        assert stats[0].total_count == 2
        assert stats[0].avg_confidence == 85.0
        assert stats[0].min_confidence == 80
        assert stats[0].max_confidence == 90
        assert stats[0].most_common_action == ProposedAction.OPEN_ISSUE
        assert stats[0].affected_executions == 2


class TestAuditLog:
    async def test_entries_in_order(self, store):
        await store.log_verdict_audit("v-1", AuditEventType.CREATED)
        await store.log_verdict_audit("v-1", AuditEventType.REVIEWED, {"notes": "ok"}, "alice")
        await store.log_verdict_audit("v-2", AuditEventType.ARCHIVED)

        log = await store.get_verdict_audit_log("v-1")

        assert [e.event_type for e in log] == [AuditEventType.CREATED, AuditEventType.REVIEWED]
        assert log[1].created_by == "alice"


class TestEffectiveLimit:
    def test_defaults_and_clamps(self, monkeypatch):
        monkeypatch.setenv("DEPLOYGUARD_MAX_QUERY_LIMIT", "100")

        assert effective_limit(None) == 50
        assert effective_limit(0) == 50
        assert effective_limit(10) == 10
        assert effective_limit(5000) == 100
