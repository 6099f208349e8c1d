"""Tests for the service-health-reset playbook steps."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from deployguard.core.errors import EvidenceError, InvalidEnvironmentError
from deployguard.remediation.adapters import (
    EcsServiceInfo,
    ForcedDeployment,
    RemediationPool,
    StabilityObservation,
    VerificationReport,
)
from deployguard.remediation.contracts import Evidence, EvidenceKind, StepContext
from deployguard.remediation.incidents import IncidentStatus
from deployguard.remediation.lawbook import Lawbook
from deployguard.remediation.playbooks.service_health_reset import (
    SERVICE_HEALTH_RESET,
    compute_apply_reset_idempotency_key,
    execute_apply_reset,
    execute_post_verification,
    execute_snapshot_state,
    execute_update_status,
    execute_wait_observe,
)

ECS_EVIDENCE = Evidence(
    kind=EvidenceKind.ECS, ref={"cluster": "prod-cluster", "service": "web", "env": "prod"}
)


def _context(lawbook, evidence=(ECS_EVIDENCE,), **inputs):
    return StepContext(
        incident_id="inc-1",
        incident_key="deploy:prod:web",
        run_id="run-1",
        lawbook_version=lawbook.version if lawbook else "none",
        evidence=list(evidence),
        inputs=inputs,
        lawbook=lawbook,
    )


def _snapshot(env="production"):
    return {"cluster": "prod-cluster", "service": "web", "env": env}


@pytest.fixture
def ecs():
    adapter = AsyncMock()
    adapter.describe_service.return_value = EcsServiceInfo(
        service_arn="arn:aws:ecs:us-east-1:123456789012:service/prod-cluster/web",
        desired_count=3,
        running_count=1,
        task_definition="web:42",
    )
    adapter.force_new_deployment.return_value = ForcedDeployment(
        service_arn="arn:aws:ecs:us-east-1:123456789012:service/prod-cluster/web",
        deployment_id="ecs-svc/123",
    )
    adapter.poll_service_stability.return_value = StabilityObservation(
        stable=True, final_state={"running_count": 3}
    )
    return adapter


@pytest.fixture
def verifier():
    adapter = AsyncMock()
    adapter.run_verification.return_value = VerificationReport(
        passed=True, env="production", playbook_run_id="verify-1", report={"checks": 12}
    )
    return adapter


@pytest.fixture
def pool(incident_store, ecs, verifier):
    return RemediationPool(incidents=incident_store, ecs=ecs, verifier=verifier)


class TestSnapshotState:
    """Tests for snapshot-state."""

    async def test_ecs_evidence(self, pool, ecs, permissive_lawbook, fixed_clock):
        result = await execute_snapshot_state(pool, _context(permissive_lawbook))

        assert result.success is True
        assert result.output["env"] == "production"
        assert result.output["running_count"] == 1
        assert result.output["snapshot_at"] == fixed_clock.now.isoformat()
        ecs.describe_service.assert_awaited_once_with("prod-cluster", "web")

    async def test_alb_evidence_resolved_through_lawbook(self, pool, ecs, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ALB, ref={"targetGroup": "tg-web", "environment": "production"})]

        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence))

        assert (result.output["cluster"], result.output["service"]) == ("prod-cluster", "web")

    async def test_alb_without_mapping(self, pool, ecs, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ALB, ref={"targetGroup": "tg-api", "env": "production"})]

        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence))

        assert result.error.code == "MAPPING_REQUIRED"
        assert result.error.message == (
            "No lawbook mapping found for ALB target group tg-api in environment production"
        )
        ecs.describe_service.assert_not_called()

    async def test_alb_without_target_group(self, pool, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ALB, ref={"env": "production"})]

        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence))

        assert result.error.code == "EVIDENCE_INSUFFICIENT"

    async def test_environment_required(self, pool, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ECS, ref={"cluster": "prod-cluster", "service": "web"})]

        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence))

        assert result.error.code == "ENVIRONMENT_REQUIRED"

    async def test_invalid_environment(self, pool, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ECS, ref={"cluster": "c", "service": "s", "env": "qa"})]

        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence))

        assert result.error.code == "INVALID_ENVIRONMENT"

    async def test_no_evidence(self, pool, permissive_lawbook):
        result = await execute_snapshot_state(pool, _context(permissive_lawbook, evidence=()))

        assert result.error.code == "EVIDENCE_MISSING"

    async def test_describe_error(self, pool, ecs, permissive_lawbook):
        ecs.describe_service.side_effect = RuntimeError("ServiceNotFoundException")

        result = await execute_snapshot_state(pool, _context(permissive_lawbook))

        assert result.error.code == "SNAPSHOT_FAILED"


class TestApplyReset:
    """Tests for apply-reset."""

    async def test_resets_allowlisted_target(self, pool, ecs, permissive_lawbook):
        result = await execute_apply_reset(pool, _context(permissive_lawbook, snapshot_state_output=_snapshot()))

        assert result.success is True
        assert result.output["deployment_id"] == "ecs-svc/123"
        ecs.force_new_deployment.assert_awaited_once_with(
            "prod-cluster", "web", "production", "deploy:prod:web:health-reset"
        )

    async def test_target_not_allowlisted(self, pool, ecs, permissive_lawbook):
        snapshot = {"cluster": "prod-cluster", "service": "billing", "env": "prod"}

        result = await execute_apply_reset(pool, _context(permissive_lawbook, snapshot_state_output=snapshot))

        assert result.error.code == "TARGET_NOT_ALLOWED"
        assert result.error.message == (
            "ECS target {cluster: prod-cluster, service: billing} is not allowlisted for environment production"
        )
        ecs.force_new_deployment.assert_not_called()

    async def test_lawbook_flag_required(self, pool, ecs):
        lawbook = Lawbook(version="strict", ecs_target_allowlist={"production": [{"cluster": "prod-cluster", "service": "web"}]})

        result = await execute_apply_reset(pool, _context(lawbook, snapshot_state_output=_snapshot()))

        assert result.error.code == "LAWBOOK_DENIED"
        ecs.force_new_deployment.assert_not_called()

    async def test_missing_snapshot(self, pool, permissive_lawbook):
        result = await execute_apply_reset(pool, _context(permissive_lawbook))

        assert result.error.code == "INVALID_INPUT"

    async def test_adapter_error(self, pool, ecs, permissive_lawbook):
        ecs.force_new_deployment.side_effect = RuntimeError("throttled")

        result = await execute_apply_reset(pool, _context(permissive_lawbook, snapshot_state_output=_snapshot()))

        assert result.error.code == "RESET_FAILED"


class TestWaitObserve:
    async def test_observes(self, pool, ecs, permissive_lawbook):
        context = _context(permissive_lawbook, apply_reset_output=_snapshot(), max_wait_seconds=60)

        result = await execute_wait_observe(pool, context)

        assert result.output == {"stable": True, "final_state": {"running_count": 3}}
        ecs.poll_service_stability.assert_awaited_once_with("prod-cluster", "web", 60, 10)

    async def test_default_wait(self, pool, ecs, permissive_lawbook):
        await execute_wait_observe(pool, _context(permissive_lawbook, apply_reset_output=_snapshot()))

        assert ecs.poll_service_stability.call_args.args[2] == 300

    async def test_missing_apply_output(self, pool, permissive_lawbook):
        result = await execute_wait_observe(pool, _context(permissive_lawbook))

        assert result.error.code == "INVALID_INPUT"


class TestPostVerification:
    async def test_passed(self, pool, verifier, permissive_lawbook):
        result = await execute_post_verification(
            pool, _context(permissive_lawbook, snapshot_state_output=_snapshot())
        )

        assert result.output["status"] == "success"
        assert result.output["env"] == "production"
        assert len(result.output["report_hash"]) == 64
        verifier.run_verification.assert_awaited_once_with("production", "run-1")

    async def test_failed_check_is_reported_not_raised(self, pool, verifier, permissive_lawbook):
        verifier.run_verification.return_value = VerificationReport(
            passed=False, env="production", playbook_run_id="verify-2"
        )

        result = await execute_post_verification(
            pool, _context(permissive_lawbook, snapshot_state_output=_snapshot())
        )

        assert result.success is True
        assert result.output["status"] == "failed"

    async def test_skipped_without_env(self, pool, verifier, permissive_lawbook):
        evidence = [Evidence(kind=EvidenceKind.ECS, ref={"cluster": "c", "service": "s"})]

        result = await execute_post_verification(pool, _context(permissive_lawbook, evidence))

        assert result.output["status"] == "skipped"
        verifier.run_verification.assert_not_called()


class TestUpdateStatus:
    """Tests for update-status."""

    def _context(self, lawbook, stable=True, status="success", verified_env="production"):
        return _context(
            lawbook,
            snapshot_state_output=_snapshot(),
            wait_observe_output={"stable": stable},
            post_verification_output={"status": status, "env": verified_env},
        )

    async def test_mitigated(self, pool, incident_store, permissive_lawbook):
        result = await execute_update_status(pool, self._context(permissive_lawbook))

        assert result.output["incident_status"] == "MITIGATED"
        assert result.output["remediation_successful"] is True
        assert incident_store.incidents["inc-1"].status == IncidentStatus.MITIGATED

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"stable": False},
            {"status": "failed"},
            {"status": "skipped", "verified_env": None},
            {"verified_env": "staging"},
        ],
    )
    async def test_acked_otherwise(self, pool, incident_store, permissive_lawbook, kwargs):
        result = await execute_update_status(pool, self._context(permissive_lawbook, **kwargs))

        assert result.output["incident_status"] == "ACKED"
        assert result.output["remediation_successful"] is False
        assert incident_store.incidents["inc-1"].status == IncidentStatus.ACKED

    async def test_env_aliases_match(self, pool, permissive_lawbook):
        result = await execute_update_status(pool, self._context(permissive_lawbook, verified_env="prod"))

        assert result.output["env_matches"] is True

    async def test_invalid_env(self, pool, permissive_lawbook):
        result = await execute_update_status(pool, self._context(permissive_lawbook, verified_env="qa"))

        assert result.error.code == "INVALID_ENV"

    async def test_store_error(self, pool, incident_store, permissive_lawbook):
        incident_store.incidents.clear()

        result = await execute_update_status(pool, self._context(permissive_lawbook))

        assert result.error.code == "STATUS_UPDATE_FAILED"


class TestResetIdempotencyKey:
    """One reset per incident, canonical environment and UTC hour."""

    def test_same_hour_same_key(self, permissive_lawbook, fixed_clock):
        first = compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot()))
        fixed_clock.now = fixed_clock.now + timedelta(minutes=20)
        second = compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot()))

        assert first == second == "deploy:prod:web:production:reset:2026-03-14-09"

    def test_next_hour_new_key(self, permissive_lawbook, fixed_clock):
        first = compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot()))
        fixed_clock.now = fixed_clock.now + timedelta(hours=1)
        second = compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot()))

        assert first != second
        assert second.endswith(":reset:2026-03-14-10")

    def test_env_aliases_share_key(self, permissive_lawbook, fixed_clock):
        prod = compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot("prod")))
        production = compute_apply_reset_idempotency_key(
            _context(permissive_lawbook, snapshot_state_output=_snapshot("production"))
        )

        assert prod == production

    def test_falls_back_to_evidence_env(self, permissive_lawbook, fixed_clock):
        key = compute_apply_reset_idempotency_key(_context(permissive_lawbook))

        assert key == "deploy:prod:web:production:reset:2026-03-14-09"

    def test_requires_canonical_env(self, permissive_lawbook, fixed_clock):
        with pytest.raises(InvalidEnvironmentError):
            compute_apply_reset_idempotency_key(_context(permissive_lawbook, snapshot_state_output=_snapshot("qa")))


def test_playbook_wiring():
    step_ids = [s.step_id for s in SERVICE_HEALTH_RESET.definition.steps]

    assert step_ids == ["snapshot-state", "apply-reset", "wait-observe", "post-verification", "update-status"]
    assert set(SERVICE_HEALTH_RESET.executors) == set(step_ids)
    assert set(SERVICE_HEALTH_RESET.idempotency_keys) == set(step_ids)


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

    async def test_snapshot_state_raises(self, pool, ecs, permissive_lawbook):
        with pytest.raises(EvidenceError, match="must be a list"):
            await execute_snapshot_state(pool, self._context(permissive_lawbook))

        ecs.describe_service.assert_not_called()

    async def test_post_verification_raises(self, pool, verifier, permissive_lawbook):
        with pytest.raises(EvidenceError):
            await execute_post_verification(pool, self._context(permissive_lawbook))

        verifier.run_verification.assert_not_called()

    def test_reset_key_raises(self, permissive_lawbook, fixed_clock):
        with pytest.raises(EvidenceError):
            compute_apply_reset_idempotency_key(self._context(permissive_lawbook))
