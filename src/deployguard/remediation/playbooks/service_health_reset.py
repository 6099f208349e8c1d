"""
SERVICE_HEALTH_RESET playbook.

Forces a fresh ECS deployment of an unhealthy service, waits for it to
settle and verifies the environment before touching incident status.

Steps:
1. snapshot-state - resolve the ECS target and record its current state
2. apply-reset - force a new deployment (lawbook flag and allowlist gated)
3. wait-observe - wait for the service to stabilize
4. post-verification - run verification against the canonical environment
5. update-status - MITIGATED only when stable, verified and on the same env
"""

from __future__ import annotations

import hashlib

import structlog

from deployguard.config.settings import get_settings
from deployguard.core.errors import EvidenceError, InvalidEnvironmentError
from deployguard.remediation.adapters import RemediationPool
from deployguard.remediation.contracts import (
    ActionType,
    EvidenceKind,
    EvidencePredicate,
    PlaybookDefinition,
    PostVerifyConfig,
    StepContext,
    StepDefinition,
    StepResult,
    select_evidence,
    stable_stringify,
)
from deployguard.remediation.environment import normalize_environment
from deployguard.remediation.incidents import IncidentStatus
from deployguard.remediation.keys import now, utc_hour_bucket
from deployguard.remediation.lawbook import ECS_FORCE_NEW_DEPLOYMENT_FLAG
from deployguard.remediation.playbooks.base import (
    Playbook,
    lawbook_denied,
    ref_value,
    step_output,
)
from deployguard.remediation.redaction import sanitize_redact

logger = structlog.get_logger()

SNAPSHOT_EVIDENCE_KINDS = (EvidenceKind.ECS, EvidenceKind.ALB)

SNAPSHOT_OUTPUT = "snapshot_state_output"
APPLY_OUTPUT = "apply_reset_output"
OBSERVE_OUTPUT = "wait_observe_output"
VERIFY_OUTPUT = "post_verification_output"


def _raw_env(context: StepContext) -> str | None:
    evidence = select_evidence(context.evidence, SNAPSHOT_EVIDENCE_KINDS)
    ref = evidence.ref if evidence else {}
    return ref_value(ref, "env", "environment") or context.inputs.get("env")


async def execute_snapshot_state(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        evidence = select_evidence(context.evidence, SNAPSHOT_EVIDENCE_KINDS)
        if evidence is None:
            return StepResult.fail("EVIDENCE_MISSING", "No ECS or ALB evidence found")

        raw_env = _raw_env(context)
        if not raw_env:
            return StepResult.fail(
                "ENVIRONMENT_REQUIRED",
                "Evidence must carry env or environment; refusing to guess the target environment",
            )
        try:
            env = normalize_environment(raw_env)
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENVIRONMENT", e.message, {"env": raw_env})

        ref = evidence.ref
        cluster = ref_value(ref, "cluster", "clusterName")
        service = ref_value(ref, "service", "serviceName")

        if evidence.kind == EvidenceKind.ALB and not (cluster and service):
            target_group = ref_value(ref, "targetGroup", "targetGroupArn", "target_group")
            if not target_group:
                return StepResult.fail(
                    "EVIDENCE_INSUFFICIENT",
                    "ALB evidence requires targetGroup or targetGroupArn",
                )
            target = context.lawbook.resolve_alb_target(target_group, env) if context.lawbook else None
            if target is None:
                return StepResult.fail(
                    "MAPPING_REQUIRED",
                    f"No lawbook mapping found for ALB target group {target_group} in environment {env}",
                    {"targetGroup": target_group, "env": str(env)},
                )
            cluster, service = target.cluster, target.service

        if not cluster or not service:
            return StepResult.fail(
                "INVALID_EVIDENCE",
                "Missing required parameters: cluster, service",
                {"cluster": cluster, "service": service},
            )

        if pool.ecs is None:
            return StepResult.fail("SNAPSHOT_FAILED", "No ECS adapter configured")

        try:
            info = await pool.ecs.describe_service(cluster, service)
        except Exception as e:
            return StepResult.fail("SNAPSHOT_FAILED", f"Failed to describe ECS service: {e}")

        return StepResult.ok(
            sanitize_redact(
                {
                    "cluster": cluster,
                    "service": service,
                    "env": str(env),
                    "service_arn": info.service_arn,
                    "desired_count": info.desired_count,
                    "running_count": info.running_count,
                    "task_definition": info.task_definition,
                    "deployments": info.deployments,
                    "snapshot_at": now().isoformat(),
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("SNAPSHOT_FAILED", str(e) or "Failed to snapshot service state")


async def execute_apply_reset(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        snapshot = step_output(context, SNAPSHOT_OUTPUT)
        if not snapshot or not snapshot.get("cluster") or not snapshot.get("service"):
            return StepResult.fail("INVALID_INPUT", "No cluster/service from snapshot step")

        cluster, service = snapshot["cluster"], snapshot["service"]
        raw_env = snapshot.get("env")
        if not raw_env:
            return StepResult.fail("ENVIRONMENT_REQUIRED", "Snapshot carries no environment")
        try:
            env = normalize_environment(raw_env)
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENVIRONMENT", e.message, {"env": raw_env})

        denied = lawbook_denied(context, ECS_FORCE_NEW_DEPLOYMENT_FLAG, "ECS force new deployment")
        if denied:
            return denied

        if not context.lawbook.is_ecs_target_allowed(cluster, service, env):
            return StepResult.fail(
                "TARGET_NOT_ALLOWED",
                f"ECS target {{cluster: {cluster}, service: {service}}} "
                f"is not allowlisted for environment {env}",
                {"cluster": cluster, "service": service, "env": str(env)},
            )

        if pool.ecs is None:
            return StepResult.fail("RESET_FAILED", "No ECS adapter configured")

        try:
            deployment = await pool.ecs.force_new_deployment(
                cluster, service, str(env), f"{context.incident_key}:health-reset"
            )
        except Exception as e:
            return StepResult.fail("RESET_FAILED", f"Failed to force new deployment: {e}")

        logger.info(
            "ecs_service_reset",
            incident_key=context.incident_key,
            cluster=cluster,
            service=service,
            env=str(env),
        )
        return StepResult.ok(
            sanitize_redact(
                {
                    "cluster": cluster,
                    "service": service,
                    "env": str(env),
                    "service_arn": deployment.service_arn,
                    "deployment_id": deployment.deployment_id,
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("RESET_FAILED", str(e) or "Failed to reset service")


async def execute_wait_observe(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        applied = step_output(context, APPLY_OUTPUT)
        if not applied or not applied.get("cluster") or not applied.get("service"):
            return StepResult.fail("INVALID_INPUT", "No cluster/service from apply-reset step")

        settings = get_settings()
        max_wait = int(context.inputs.get("max_wait_seconds", settings.stability_max_wait_seconds))

        if pool.ecs is None:
            return StepResult.fail("OBSERVE_FAILED", "No ECS adapter configured")

        try:
            observation = await pool.ecs.poll_service_stability(
                applied["cluster"],
                applied["service"],
                max_wait,
                settings.stability_check_interval_seconds,
            )
        except Exception as e:
            return StepResult.fail("OBSERVE_FAILED", f"Failed to observe service stability: {e}")

        return StepResult.ok(
            sanitize_redact({"stable": observation.stable, "final_state": observation.final_state})
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("OBSERVE_FAILED", str(e) or "Failed to observe service")


async def execute_post_verification(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        snapshot = step_output(context, SNAPSHOT_OUTPUT) or {}
        raw_env = snapshot.get("env") or _raw_env(context)
        if not raw_env:
            return StepResult.ok({"status": "skipped", "message": "No environment to verify against"})

        env = normalize_environment(raw_env)
        if pool.verifier is None:
            return StepResult.fail("VERIFICATION_FAILED", "No verification adapter configured")

        try:
            report = await pool.verifier.run_verification(str(env), context.run_id)
        except Exception as e:
            return StepResult.fail("VERIFICATION_FAILED", f"Failed to run verification: {e}")

        report_hash = hashlib.sha256(stable_stringify(report.report).encode("utf-8")).hexdigest()
        return StepResult.ok(
            sanitize_redact(
                {
                    "status": "success" if report.passed else "failed",
                    "env": str(normalize_environment(report.env)),
                    "playbook_run_id": report.playbook_run_id,
                    "report_hash": report_hash,
                }
            )
        )
    except InvalidEnvironmentError as e:
        return StepResult.fail("INVALID_ENVIRONMENT", e.message)
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("VERIFICATION_FAILED", str(e) or "Failed to verify")


async def execute_update_status(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        observed = step_output(context, OBSERVE_OUTPUT) or {}
        verification = step_output(context, VERIFY_OUTPUT) or {}
        snapshot = step_output(context, SNAPSHOT_OUTPUT) or {}

        stable = observed.get("stable") is True
        verified = verification.get("status") == "success"

        try:
            snapshot_env = normalize_environment(snapshot["env"]) if snapshot.get("env") else None
            verified_env = (
                normalize_environment(verification["env"]) if verification.get("env") else None
            )
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENV", e.message)

        env_matches = snapshot_env is not None and verified_env is not None and snapshot_env == verified_env
        # A skipped verification never promotes.
        successful = stable and verified and env_matches
        status = IncidentStatus.MITIGATED if successful else IncidentStatus.ACKED

        try:
            await pool.incidents.update_status(context.incident_id, status)
        except Exception as e:
            return StepResult.fail("STATUS_UPDATE_FAILED", f"Failed to update incident status: {e}")

        return StepResult.ok(
            {
                "incident_status": str(status),
                "remediation_successful": successful,
                "service_stable": stable,
                "verification_passed": verified,
                "env_matches": env_matches,
            }
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("STATUS_UPDATE_FAILED", str(e) or "Failed to update status")


def compute_snapshot_idempotency_key(context: StepContext) -> str:
    return f"{context.incident_key}:snapshot"


def compute_apply_reset_idempotency_key(context: StepContext) -> str:
    """One reset per incident, environment and UTC hour. The env must be canonical."""
    snapshot = step_output(context, SNAPSHOT_OUTPUT) or {}
    env = normalize_environment(snapshot.get("env") or _raw_env(context))
    return f"{context.incident_key}:{env}:reset:{utc_hour_bucket()}"


def compute_observe_idempotency_key(context: StepContext) -> str:
    return f"{context.incident_key}:observe"


def compute_verification_idempotency_key(context: StepContext) -> str:
    return f"{context.incident_key}:verify"


def compute_update_status_idempotency_key(context: StepContext) -> str:
    return f"{context.incident_key}:status"


SERVICE_HEALTH_RESET_DEFINITION = PlaybookDefinition(
    id="service-health-reset",
    version="1.0.0",
    title="Service Health Reset - force a fresh ECS deployment",
    applicable_categories=("ALB_TARGET_UNHEALTHY", "ECS_TASK_CRASHLOOP"),
    required_evidence=(
        EvidencePredicate(kind=EvidenceKind.ECS, required_fields=("ref.cluster", "ref.service")),
        EvidencePredicate(kind=EvidenceKind.ALB, required_fields=("ref.targetGroup",)),
    ),
    steps=(
        StepDefinition("snapshot-state", ActionType.SNAPSHOT_SERVICE_STATE, "Record current ECS service state"),
        StepDefinition("apply-reset", ActionType.FORCE_NEW_DEPLOYMENT, "Force a new ECS deployment"),
        StepDefinition("wait-observe", ActionType.POLL_SERVICE_HEALTH, "Wait for the service to stabilize"),
        StepDefinition("post-verification", ActionType.RUN_VERIFICATION, "Verify the environment"),
        StepDefinition("update-status", ActionType.UPDATE_INCIDENT_STATUS, "Update incident status"),
    ),
    post_verify=PostVerifyConfig(type="verification", params={"source": "post-verification"}),
)

SERVICE_HEALTH_RESET = Playbook(
    definition=SERVICE_HEALTH_RESET_DEFINITION,
    executors={
        "snapshot-state": execute_snapshot_state,
        "apply-reset": execute_apply_reset,
        "wait-observe": execute_wait_observe,
        "post-verification": execute_post_verification,
        "update-status": execute_update_status,
    },
    idempotency_keys={
        "snapshot-state": compute_snapshot_idempotency_key,
        "apply-reset": compute_apply_reset_idempotency_key,
        "wait-observe": compute_observe_idempotency_key,
        "post-verification": compute_verification_idempotency_key,
        "update-status": compute_update_status_idempotency_key,
    },
)
