"""Tests for the safe-retry-runner playbook steps."""

import asyncio
import hashlib
import json
from unittest.mock import AsyncMock

import pytest
from deployguard.core.errors import EvidenceError
from deployguard.remediation.adapters import (
    RemediationPool,
    WorkflowDispatch,
    WorkflowIngest,
    WorkflowRunStatus,
)
from deployguard.remediation.contracts import Evidence, EvidenceKind, StepContext, stable_stringify
from deployguard.remediation.lawbook import Lawbook
from deployguard.remediation.playbooks.safe_retry_runner import (
    SAFE_RETRY_RUNNER,
    compute_dispatch_idempotency_key,
    compute_ingest_idempotency_key,
    compute_poll_idempotency_key,
    execute_dispatch_runner,
    execute_ingest_runner,
    execute_poll_runner,
)

SUMMARY_HASH = hashlib.sha256(stable_stringify({"tests": 120}).encode("utf-8")).hexdigest()


def _runner_evidence(**ref):
    base = {
        "owner": "acme",
        "repo": "platform",
        "workflowIdOrFile": "ci.yml",
        "headSha": "0f3c2a1",
        "ref": "main",
    }
    base.update(ref)
    return Evidence(kind=EvidenceKind.RUNNER, ref={k: v for k, v in base.items() if v is not None})


def _context(lawbook, evidence=None, **inputs):
    return StepContext(
        incident_id="inc-1",
        incident_key="deploy:prod:web",
        run_id="run-1",
        lawbook_version=lawbook.version if lawbook else "none",
        evidence=[_runner_evidence()] if evidence is None else evidence,
        inputs=inputs,
        lawbook=lawbook,
    )


@pytest.fixture
def runner():
    adapter = AsyncMock()
    adapter.dispatch_workflow.return_value = WorkflowDispatch(
        new_run_id=4242, run_url="https://github.com/acme/platform/actions/runs/4242"
    )
    adapter.poll_run.return_value = WorkflowRunStatus(run_id=4242, status="completed", conclusion="success")
    adapter.ingest_run.return_value = WorkflowIngest(run_id=4242, artifacts_count=2, summary={"tests": 120})
    return adapter


@pytest.fixture
def pool(incident_store, runner):
    return RemediationPool(incidents=incident_store, runner=runner)


class TestDispatchRunner:
    """Tests for dispatch-runner."""

    async def test_dispatches_pinned_to_head_sha(self, pool, runner, permissive_lawbook):
        result = await execute_dispatch_runner(pool, _context(permissive_lawbook))

        assert result.success is True
        assert result.output["new_run_id"] == 4242
        assert result.output["ref"] == "0f3c2a1"
        request = runner.dispatch_workflow.call_args.args[0]
        assert request.ref == "0f3c2a1"
        assert request.correlation_id == "deploy:prod:web:retry:run-1"

    async def test_falls_back_to_explicit_ref(self, pool, runner, permissive_lawbook):
        context = _context(permissive_lawbook, evidence=[_runner_evidence(headSha=None)])

        result = await execute_dispatch_runner(pool, context)

        assert result.output["ref"] == "main"

    async def test_github_run_evidence_accepted(self, pool, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.GITHUB_RUN, ref=_runner_evidence().ref)]

        result = await execute_dispatch_runner(pool, _context(permissive_lawbook, evidence=evidence))

        assert result.success is True

    async def test_no_runner_evidence(self, pool, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ECS, ref={"cluster": "c"})]

        result = await execute_dispatch_runner(pool, _context(permissive_lawbook, evidence=evidence))

        assert result.error.code == "EVIDENCE_MISSING"

    async def test_missing_parameters(self, pool, permissive_lawbook):
        context = _context(permissive_lawbook, evidence=[_runner_evidence(workflowIdOrFile=None)])

        result = await execute_dispatch_runner(pool, context)

        assert result.error.code == "INVALID_EVIDENCE"

    async def test_refuses_floating_branch(self, pool, runner, permissive_lawbook):
        context = _context(permissive_lawbook, evidence=[_runner_evidence(headSha=None, ref=None)])

        result = await execute_dispatch_runner(pool, context)

        assert result.error.code == "DETERMINISM_REQUIRED"
        runner.dispatch_workflow.assert_not_called()

    async def test_lawbook_flag_required(self, pool, runner):
        result = await execute_dispatch_runner(pool, _context(Lawbook(version="strict")))

        assert result.error.code == "LAWBOOK_DENIED"
        runner.dispatch_workflow.assert_not_called()

    async def test_missing_lawbook_denies(self, pool):
        result = await execute_dispatch_runner(pool, _context(None))

        assert result.error.code == "LAWBOOK_DENIED"

    async def test_repo_not_allowlisted(self, pool, runner, permissive_lawbook):
        context = _context(permissive_lawbook, evidence=[_runner_evidence(repo="secret-infra")])

        result = await execute_dispatch_runner(pool, context)

        assert result.error.code == "REPO_NOT_ALLOWED"
        runner.dispatch_workflow.assert_not_called()

    async def test_injected_repo_policy_wins(self, incident_store, runner, permissive_lawbook):
        repo_access = AsyncMock()
        repo_access.is_repo_allowed.return_value = False
        pool = RemediationPool(incidents=incident_store, runner=runner, repo_access=repo_access)

        result = await execute_dispatch_runner(pool, _context(permissive_lawbook))

        assert result.error.code == "REPO_NOT_ALLOWED"
        repo_access.is_repo_allowed.assert_awaited_once_with("acme", "platform")

    async def test_adapter_error(self, pool, runner, permissive_lawbook):
        runner.dispatch_workflow.side_effect = RuntimeError("403 Forbidden")

        result = await execute_dispatch_runner(pool, _context(permissive_lawbook))

        assert result.error.code == "DISPATCH_FAILED"
        assert "403 Forbidden" in result.error.message


class TestPollRunner:
    """Tests for poll-runner."""

    def _dispatched(self, lawbook, **inputs):
        return _context(
            lawbook,
            dispatch_runner_output={"new_run_id": 4242, "owner": "acme", "repo": "platform"},
            poll_interval_seconds=0,
            **inputs,
        )

    async def test_returns_when_completed(self, pool, runner, permissive_lawbook):
        runner.poll_run.side_effect = [
            WorkflowRunStatus(run_id=4242, status="queued"),
            WorkflowRunStatus(run_id=4242, status="in_progress"),
            WorkflowRunStatus(run_id=4242, status="completed", conclusion="success"),
        ]

        result = await execute_poll_runner(pool, self._dispatched(permissive_lawbook))

        assert result.success is True
        assert result.output["attempts"] == 3
        assert result.output["conclusion"] == "success"
        runner.poll_run.assert_awaited_with("acme", "platform", 4242)

    async def test_timeout_reports_last_status(self, pool, runner, permissive_lawbook):
        runner.poll_run.return_value = WorkflowRunStatus(run_id=4242, status="in_progress")

        result = await execute_poll_runner(pool, self._dispatched(permissive_lawbook, poll_max_attempts=3))

        assert result.error.code == "POLL_TIMEOUT"
        assert json.loads(result.error.details)["lastStatus"] == "in_progress"
        assert runner.poll_run.await_count == 3

    async def test_sleeps_between_attempts(self, pool, runner, permissive_lawbook, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr(asyncio, "sleep", sleep)
        runner.poll_run.return_value = WorkflowRunStatus(run_id=4242, status="queued")
        context = _context(
            permissive_lawbook,
            dispatch_runner_output={"new_run_id": 4242},
            poll_max_attempts=3,
            poll_interval_seconds=7,
        )

        await execute_poll_runner(pool, context)

        assert sleep.await_count == 2
        sleep.assert_awaited_with(7.0)

    async def test_missing_run_id(self, pool, permissive_lawbook):
        result = await execute_poll_runner(pool, _context(permissive_lawbook))

        assert result.error.code == "MISSING_RUN_ID"

    async def test_poll_error(self, pool, runner, permissive_lawbook):
        runner.poll_run.side_effect = RuntimeError("rate limited")

        result = await execute_poll_runner(pool, self._dispatched(permissive_lawbook))

        assert result.error.code == "POLL_FAILED"


class TestIngestRunner:
    async def test_ingests(self, pool, runner, permissive_lawbook):
        context = _context(
            permissive_lawbook,
            poll_runner_output={"run_id": 4242, "conclusion": "success", "owner": "acme", "repo": "platform"},
        )

        result = await execute_ingest_runner(pool, context)

        assert result.output == {
            "run_id": 4242,
            "conclusion": "success",
            "artifacts_count": 2,
            "summary": {"tests": 120},
            "summary_hash": SUMMARY_HASH,
        }

    async def test_records_github_run_evidence(self, pool, incident_store, permissive_lawbook):
        context = _context(
            permissive_lawbook,
            poll_runner_output={"run_id": 4242, "conclusion": "failure", "owner": "acme", "repo": "platform"},
        )

        await execute_ingest_runner(pool, context)

        recorded = incident_store.evidence["inc-1"][-1]
        assert recorded.kind == EvidenceKind.GITHUB_RUN
        assert recorded.incident_id == "inc-1"
        assert recorded.sha256 == SUMMARY_HASH
        assert recorded.ref == {
            "run_id": 4242,
            "owner": "acme",
            "repo": "platform",
            "conclusion": "failure",
            "artifacts_count": 2,
            "summary_hash": SUMMARY_HASH,
            "playbook_run_id": "run-1",
        }

    async def test_evidence_store_error(self, runner, permissive_lawbook):
        incidents = AsyncMock()
        incidents.add_evidence.side_effect = RuntimeError("evidence table locked")
        pool = RemediationPool(incidents=incidents, runner=runner)
        context = _context(permissive_lawbook, poll_runner_output={"run_id": 4242})

        result = await execute_ingest_runner(pool, context)

        assert result.error.code == "INGEST_FAILED"
        assert "evidence table locked" in result.error.message

    async def test_output_is_redacted(self, pool, runner, permissive_lawbook):
        runner.ingest_run.return_value = WorkflowIngest(
            run_id=4242, artifacts_count=1, summary={"github_token": "ghs_abc"}
        )
        context = _context(permissive_lawbook, poll_runner_output={"run_id": 4242})

        result = await execute_ingest_runner(pool, context)

        assert result.output["summary"]["github_token"] == "********"

    async def test_missing_run_id(self, pool, permissive_lawbook):
        result = await execute_ingest_runner(pool, _context(permissive_lawbook))

        assert result.error.code == "MISSING_RUN_ID"

    async def test_ingest_error(self, pool, runner, incident_store, permissive_lawbook):
        runner.ingest_run.side_effect = RuntimeError("artifact expired")
        context = _context(permissive_lawbook, poll_runner_output={"run_id": 4242})

        result = await execute_ingest_runner(pool, context)

        assert result.error.code == "INGEST_FAILED"
        assert incident_store.evidence.get("inc-1", []) == []


class TestEvidenceNotAList:
    """A malformed evidence container is raised, never turned into a step failure."""

    def _context(self, lawbook, **inputs):
        return StepContext(
            incident_id="inc-1",
            incident_key="deploy:prod:web",
            run_id="run-1",
            lawbook_version=lawbook.version,
            evidence=None,
            inputs=inputs,
            lawbook=lawbook,
        )

    async def test_dispatch_raises(self, pool, runner, permissive_lawbook):
        with pytest.raises(EvidenceError, match="must be a list"):
            await execute_dispatch_runner(pool, self._context(permissive_lawbook))

        runner.dispatch_workflow.assert_not_called()

    async def test_poll_raises(self, pool, permissive_lawbook):
        context = self._context(permissive_lawbook, dispatch_runner_output={"new_run_id": 4242})

        with pytest.raises(EvidenceError):
            await execute_poll_runner(pool, context)

    async def test_ingest_raises(self, pool, permissive_lawbook):
        context = self._context(permissive_lawbook, poll_runner_output={"run_id": 4242})

        with pytest.raises(EvidenceError):
            await execute_ingest_runner(pool, context)


class TestIdempotencyKeys:
    def test_dispatch_key_stable(self, permissive_lawbook):
        a = compute_dispatch_idempotency_key(_context(permissive_lawbook))
        b = compute_dispatch_idempotency_key(_context(permissive_lawbook))

        assert a == b
        assert a.startswith("dispatch:deploy:prod:web:")

    def test_poll_and_ingest_keys(self, permissive_lawbook):
        context = _context(
            permissive_lawbook,
            dispatch_runner_output={"new_run_id": 4242},
            poll_runner_output={"run_id": 4242},
        )

        assert compute_poll_idempotency_key(context) == "poll:deploy:prod:web:4242"
        assert compute_ingest_idempotency_key(context) == "ingest:deploy:prod:web:4242"
        assert compute_poll_idempotency_key(_context(permissive_lawbook)) == "poll:deploy:prod:web:unknown"

    def test_every_step_has_executor_and_key(self):
        step_ids = {s.step_id for s in SAFE_RETRY_RUNNER.definition.steps}

        assert set(SAFE_RETRY_RUNNER.executors) == step_ids
        assert set(SAFE_RETRY_RUNNER.idempotency_keys) == step_ids
