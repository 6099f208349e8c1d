"""
REDEPLOY_LKG playbook.

Rolls an environment back to its Last Known Good deployment: the most
recent GREEN, verified deploy pinned to an immutable artifact.

Steps:
1. select-lkg - find the LKG for the canonical environment (and service)
2. dispatch-deploy - dispatch a deploy of the pinned artifact
3. post-deploy-verification - verify the redeployed environment
4. update-deploy-status - mark MITIGATED and record verification evidence
"""

from __future__ import annotations

import dataclasses
import hashlib

import structlog

from deployguard.core.errors import EvidenceError, InvalidEnvironmentError
from deployguard.remediation.adapters import DeployDispatchRequest, RemediationPool
from deployguard.remediation.contracts import (
    ActionType,
    Evidence,
    EvidenceKind,
    EvidencePredicate,
    PlaybookDefinition,
    StepContext,
    StepDefinition,
    StepResult,
    compute_inputs_hash,
    select_evidence,
    stable_stringify,
)
from deployguard.remediation.environment import normalize_environment
from deployguard.remediation.incidents import IncidentStatus
from deployguard.remediation.keys import now, utc_hour_bucket
from deployguard.remediation.lawbook import REDEPLOY_LKG_FLAG
from deployguard.remediation.playbooks.base import (
    Playbook,
    lawbook_denied,
    ref_value,
    repo_allowed,
    step_output,
)
from deployguard.remediation.redaction import sanitize_redact

logger = structlog.get_logger()

LKG_EVIDENCE_KINDS = (EvidenceKind.DEPLOY_STATUS, EvidenceKind.VERIFICATION)

SELECT_OUTPUT = "select_lkg_output"
DISPATCH_OUTPUT = "dispatch_deploy_output"
VERIFY_OUTPUT = "post_deploy_verification_output"


def _lkg_params(context: StepContext) -> tuple[str | None, str | None]:
    evidence = select_evidence(context.evidence, LKG_EVIDENCE_KINDS)
    ref = evidence.ref if evidence else {}
    env = ref_value(ref, "env", "environment") or context.inputs.get("env")
    service = ref_value(ref, "service") or context.inputs.get("service")
    return env, service


async def execute_select_lkg(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        evidence = select_evidence(context.evidence, LKG_EVIDENCE_KINDS)
        if evidence is None:
            return StepResult.fail("EVIDENCE_MISSING", "No deploy_status or verification evidence found")

        raw_env, service = _lkg_params(context)
        if not raw_env:
            return StepResult.fail(
                "INVALID_EVIDENCE",
                "Missing required parameter: env",
                {"env": raw_env, "service": service},
            )
        try:
            env = normalize_environment(raw_env)
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENVIRONMENT", f"Invalid environment value: {e.message}", {"env": raw_env})

        if pool.deploy is None:
            return StepResult.fail("LKG_QUERY_FAILED", "No deploy adapter configured")

        try:
            lkg = await pool.deploy.find_last_known_good(str(env), service)
        except Exception as e:
            return StepResult.fail("LKG_QUERY_FAILED", f"Failed to query Last Known Good: {e}")

        if lkg is None:
            suffix = f", service={service}" if service else ""
            return StepResult.fail(
                "NO_LKG_FOUND",
                f"No Last Known Good deployment found for env={env}{suffix}",
                "LKG requires: status=GREEN, verification=PASS with reportHash, and deploy metadata",
            )

        has_digest = bool(lkg.image_digest) or bool(lkg.image_digests)
        if not has_digest:
            if lkg.cfn_change_set_id:
                return StepResult.fail(
                    "DETERMINISM_REQUIRED",
                    "LKG has cfnChangeSetId but no imageDigest; a change set may reference "
                    "mutable tags and cannot guarantee the same artifact",
                    {"snapshotId": lkg.snapshot_id, "cfnChangeSetId": lkg.cfn_change_set_id},
                )
            return StepResult.fail(
                "DETERMINISM_REQUIRED",
                "LKG must be pinned to an immutable artifact pin (imageDigest); "
                "a commit hash alone does not identify the deployed artifact",
                {"snapshotId": lkg.snapshot_id, "commitHash": lkg.commit_hash},
            )

        return StepResult.ok(sanitize_redact({"lkg": dataclasses.asdict(lkg)}))
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("SELECT_LKG_ERROR", str(e) or "Failed to select LKG")


async def execute_dispatch_deploy(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        selected = step_output(context, SELECT_OUTPUT)
        lkg = selected.get("lkg") if selected else None
        if not isinstance(lkg, dict):
            return StepResult.fail("MISSING_LKG_OUTPUT", "No LKG output from previous step")

        denied = lawbook_denied(context, REDEPLOY_LKG_FLAG, "LKG redeploy")
        if denied:
            return denied

        owner = context.inputs.get("owner") or lkg.get("owner")
        repo = context.inputs.get("repo") or lkg.get("repo")
        if not owner or not repo or not await repo_allowed(pool, context, owner, repo):
            return StepResult.fail(
                "REPO_NOT_ALLOWED",
                f"Repository {owner}/{repo} is not allowed for LKG redeploy",
                {"owner": owner, "repo": repo},
            )

        env = normalize_environment(lkg["env"])
        if pool.deploy is None:
            return StepResult.fail("DISPATCH_DEPLOY_FAILED", "No deploy adapter configured")

        try:
            dispatch = await pool.deploy.dispatch_deploy(
                DeployDispatchRequest(
                    correlation_id=f"{context.incident_key}:redeploy-lkg:{context.run_id}",
                    env=str(env),
                    service=lkg.get("service"),
                    owner=owner,
                    repo=repo,
                    image_digest=lkg.get("image_digest"),
                    image_digests=list(lkg.get("image_digests") or []),
                )
            )
        except Exception as e:
            return StepResult.fail("DISPATCH_DEPLOY_FAILED", f"Failed to dispatch deploy: {e}")

        logger.info(
            "lkg_redeploy_dispatched",
            incident_key=context.incident_key,
            env=str(env),
            dispatch_id=dispatch.dispatch_id,
        )
        return StepResult.ok(
            sanitize_redact(
                {
                    "dispatch_id": dispatch.dispatch_id,
                    "env": str(env),
                    "service": lkg.get("service"),
                    "version": lkg.get("version"),
                    "image_digest": lkg.get("image_digest"),
                    "timestamp": now().isoformat(),
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("DISPATCH_DEPLOY_ERROR", str(e) or "Failed to dispatch deploy")


async def execute_post_deploy_verification(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        dispatch = step_output(context, DISPATCH_OUTPUT)
        if not dispatch:
            return StepResult.fail("MISSING_DISPATCH_OUTPUT", "No dispatch output from previous step")

        env = normalize_environment(dispatch["env"])
        if pool.verifier is None:
            return StepResult.fail("VERIFICATION_FAILED", "No verification adapter configured")

        try:
            report = await pool.verifier.run_verification(str(env), dispatch["dispatch_id"])
        except Exception as e:
            return StepResult.fail("VERIFICATION_FAILED", f"Failed to run verification: {e}")

        report_hash = hashlib.sha256(stable_stringify(report.report).encode("utf-8")).hexdigest()
        if not report.passed:
            return StepResult.fail(
                "VERIFICATION_FAILED",
                "Post-deploy verification failed for LKG redeploy",
                {"env": str(env), "dispatchId": dispatch["dispatch_id"], "reportHash": report_hash},
            )

        return StepResult.ok(
            sanitize_redact(
                {
                    "playbook_run_id": report.playbook_run_id,
                    "status": "success",
                    "report_hash": report_hash,
                    "env": str(normalize_environment(report.env)),
                    "dispatch_id": dispatch["dispatch_id"],
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("VERIFICATION_EXECUTION_ERROR", str(e) or "Failed to execute verification")


async def _incident_env(pool: RemediationPool, context: StepContext) -> str | None:
    """Canonical env taken from the incident's own stored evidence, not from step outputs."""
    evidence = await pool.incidents.get_evidence(context.incident_id)
    source = select_evidence(evidence, LKG_EVIDENCE_KINDS)
    raw = ref_value(source.ref, "env", "environment") if source else None
    return str(normalize_environment(raw)) if raw else None


async def execute_update_deploy_status(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        verification = step_output(context, VERIFY_OUTPUT)
        if not verification:
            return StepResult.fail("MISSING_VERIFICATION_OUTPUT", "No verification output from previous step")

        try:
            incident_env = await _incident_env(pool, context)
            verified_env = str(normalize_environment(verification.get("env")))
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENV", e.message)

        if incident_env is None or incident_env != verified_env:
            logger.warning(
                "lkg_env_mismatch",
                incident_key=context.incident_key,
                incident_env=incident_env,
                verified_env=verified_env,
            )
            return StepResult.ok(
                {
                    "env_mismatch": True,
                    "incident_env": incident_env,
                    "verified_env": verified_env,
                    "message": "Verification environment does not match incident environment; "
                    "not marking MITIGATED",
                }
            )

        report_hash = verification.get("report_hash")
        await pool.incidents.update_status(context.incident_id, IncidentStatus.MITIGATED)
        await pool.incidents.add_evidence(
            context.incident_id,
            [
                Evidence(
                    kind=EvidenceKind.VERIFICATION,
                    ref={
                        "playbook_run_id": verification.get("playbook_run_id"),
                        "report_hash": report_hash,
                        "env": verified_env,
                        "dispatch_id": verification.get("dispatch_id"),
                        "status": "success",
                        "redeploy_type": "LKG",
                    },
                    sha256=report_hash,
                    incident_id=context.incident_id,
                )
            ],
        )

        return StepResult.ok(
            {
                "env_mismatch": False,
                "incident_status": str(IncidentStatus.MITIGATED),
                "env": verified_env,
                "message": "LKG redeploy verified GREEN, incident marked MITIGATED",
            }
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("UPDATE_STATUS_ERROR", str(e) or "Failed to update deploy status")


def compute_select_lkg_idempotency_key(context: StepContext) -> str:
    env, service = _lkg_params(context)
    return f"select-lkg:{context.incident_key}:{compute_inputs_hash({'env': env, 'service': service})}"


def compute_dispatch_deploy_idempotency_key(context: StepContext) -> str:
    """One LKG redeploy per incident, environment and UTC hour."""
    selected = step_output(context, SELECT_OUTPUT) or {}
    lkg = selected.get("lkg") or {}
    env = normalize_environment(lkg.get("env") or _lkg_params(context)[0])
    return f"dispatch-deploy:{context.incident_key}:{env}:{utc_hour_bucket()}"


def compute_verification_idempotency_key(context: StepContext) -> str:
    dispatch = step_output(context, DISPATCH_OUTPUT) or {}
    dispatch_id = dispatch.get("dispatch_id", "unknown")
    return f"verification:{context.incident_key}:{compute_inputs_hash({'dispatch_id': dispatch_id})}"


def compute_update_status_idempotency_key(context: StepContext) -> str:
    return f"update-status:{context.incident_key}"


REDEPLOY_LKG_DEFINITION = PlaybookDefinition(
    id="redeploy-lkg",
    version="1.0.0",
    title="Redeploy Last Known Good - automated LKG rollback",
    applicable_categories=("DEPLOY_VERIFICATION_FAILED", "ALB_TARGET_UNHEALTHY", "ECS_TASK_CRASHLOOP"),
    required_evidence=(
        EvidencePredicate(kind=EvidenceKind.DEPLOY_STATUS, required_fields=("ref.env",)),
        EvidencePredicate(kind=EvidenceKind.VERIFICATION, required_fields=("ref.env",)),
    ),
    steps=(
        StepDefinition("select-lkg", ActionType.ROLLBACK_DEPLOY, "Find the Last Known Good deployment"),
        StepDefinition("dispatch-deploy", ActionType.ROLLBACK_DEPLOY, "Dispatch a deploy of the LKG artifact"),
        StepDefinition("post-deploy-verification", ActionType.RUN_VERIFICATION, "Verify the redeployed environment"),
        StepDefinition("update-deploy-status", ActionType.UPDATE_INCIDENT_STATUS, "Update incident status"),
    ),
)

REDEPLOY_LKG = Playbook(
    definition=REDEPLOY_LKG_DEFINITION,
    executors={
        "select-lkg": execute_select_lkg,
        "dispatch-deploy": execute_dispatch_deploy,
        "post-deploy-verification": execute_post_deploy_verification,
        "update-deploy-status": execute_update_deploy_status,
    },
    idempotency_keys={
        "select-lkg": compute_select_lkg_idempotency_key,
        "dispatch-deploy": compute_dispatch_deploy_idempotency_key,
        "post-deploy-verification": compute_verification_idempotency_key,
        "update-deploy-status": compute_update_status_idempotency_key,
    },
)
