"""
RERUN_POST_DEPLOY_VERIFICATION playbook.

Re-runs post-deploy verification for an environment and, when it passes
for the incident's own environment, marks the incident MITIGATED.

Steps:
1. run-verification - run verification for the evidence environment, capture the report hash
2. ingest-incident-update - mark MITIGATED and record verification evidence on a pass
"""

from __future__ import annotations

import hashlib

import structlog

from deployguard.core.errors import EvidenceError, InvalidEnvironmentError
from deployguard.remediation.adapters import RemediationPool
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
from deployguard.remediation.playbooks.base import Playbook, ref_value, step_output
from deployguard.remediation.redaction import sanitize_redact

logger = structlog.get_logger()

VERIFICATION_EVIDENCE_KINDS = (EvidenceKind.VERIFICATION, EvidenceKind.DEPLOY_STATUS)

VERIFY_OUTPUT = "run_verification_output"


def _verification_params(context: StepContext) -> tuple[str | None, str | None]:
    evidence = select_evidence(context.evidence, VERIFICATION_EVIDENCE_KINDS)
    ref = evidence.ref if evidence else {}
    env = ref_value(ref, "env", "environment") or context.inputs.get("env")
    deploy_id = ref_value(ref, "deployId", "deploy_id") or context.inputs.get("deploy_id")
    return env, deploy_id


async def execute_run_verification(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        evidence = select_evidence(context.evidence, VERIFICATION_EVIDENCE_KINDS)
        if evidence is None:
            return StepResult.fail("EVIDENCE_MISSING", "No verification or deploy_status evidence found")

        raw_env, deploy_id = _verification_params(context)
        if not raw_env:
            return StepResult.fail(
                "INVALID_EVIDENCE",
                "Missing required verification parameter: env",
                {"env": raw_env, "deployId": deploy_id},
            )
        try:
            env = normalize_environment(raw_env)
        except InvalidEnvironmentError as e:
            return StepResult.fail("INVALID_ENVIRONMENT", f"Invalid environment value: {e.message}", {"env": raw_env})

        if pool.verifier is None:
            return StepResult.fail("VERIFICATION_EXECUTION_ERROR", "No verification adapter configured")

        try:
            report = await pool.verifier.run_verification(str(env), deploy_id or context.run_id)
        except Exception as e:
            return StepResult.fail("VERIFICATION_EXECUTION_ERROR", f"Failed to run verification: {e}")

        report_hash = hashlib.sha256(stable_stringify(report.report).encode("utf-8")).hexdigest()
        if not report.passed:
            return StepResult.fail(
                "VERIFICATION_FAILED",
                "Post-deploy verification failed",
                {"env": str(env), "deployId": deploy_id, "reportHash": report_hash},
            )

        logger.info(
            "verification_rerun_passed",
            incident_key=context.incident_key,
            env=str(env),
            playbook_run_id=report.playbook_run_id,
        )
        return StepResult.ok(
            sanitize_redact(
                {
                    "playbook_run_id": report.playbook_run_id,
                    "status": "success",
                    "report_hash": report_hash,
                    "env": str(env),
                    "deploy_id": deploy_id,
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("VERIFICATION_EXECUTION_ERROR", str(e) or "Failed to execute verification")


async def execute_ingest_incident_update(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        verification = step_output(context, VERIFY_OUTPUT)
        if not verification:
            return StepResult.fail("MISSING_VERIFICATION_OUTPUT", "No verification output from previous step")

        if verification.get("status") != "success":
            return StepResult.ok(
                {
                    "message": "Verification did not pass, skipping incident update",
                    "incident_id": context.incident_id,
                    "current_status": "unchanged",
                }
            )

        incident = await pool.incidents.get_incident(context.incident_id)
        if incident is None:
            return StepResult.fail("INCIDENT_NOT_FOUND", f"Incident {context.incident_id} not found")

        try:
            verified_env = normalize_environment(verification.get("env"))
        except InvalidEnvironmentError as e:
            return StepResult.fail(
                "INVALID_VERIFICATION_ENV",
                f"Verification environment could not be normalized: {e.message}",
                {"verificationEnv": verification.get("env")},
            )

        stored = await pool.incidents.get_evidence(context.incident_id)
        source = select_evidence(stored, VERIFICATION_EVIDENCE_KINDS)
        raw_incident_env = ref_value(source.ref, "env", "environment") if source else None
        # An incident env that does not normalize skips the match check
        try:
            incident_env = normalize_environment(raw_incident_env) if raw_incident_env else None
        except InvalidEnvironmentError:
            incident_env = None

        if incident_env is not None and incident_env != verified_env:
            logger.warning(
                "verification_env_mismatch",
                incident_key=context.incident_key,
                incident_env=str(incident_env),
                verified_env=str(verified_env),
            )
            return StepResult.ok(
                {
                    "message": f"Verification passed for {verified_env} but incident is for "
                    f"{incident_env}, not marking MITIGATED",
                    "incident_id": context.incident_id,
                    "current_status": "unchanged",
                    "env_mismatch": True,
                    "incident_env": str(incident_env),
                    "verification_env": str(verified_env),
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
                        "env": str(verified_env),
                        "deploy_id": verification.get("deploy_id"),
                        "status": "success",
                    },
                    sha256=report_hash,
                    incident_id=context.incident_id,
                )
            ],
        )

        return StepResult.ok(
            {
                "message": "Incident marked as MITIGATED",
                "incident_id": context.incident_id,
                "new_status": str(IncidentStatus.MITIGATED),
                "verification_run_id": verification.get("playbook_run_id"),
                "env": str(verified_env),
            }
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("INCIDENT_UPDATE_FAILED", str(e) or "Failed to update incident")


def compute_verification_idempotency_key(context: StepContext) -> str:
    env, deploy_id = _verification_params(context)
    return f"verification:{context.incident_key}:{compute_inputs_hash({'env': env, 'deploy_id': deploy_id})}"


def compute_incident_update_idempotency_key(context: StepContext) -> str:
    return f"incident-update:{context.incident_key}"


RERUN_POST_DEPLOY_VERIFICATION_DEFINITION = PlaybookDefinition(
    id="rerun-post-deploy-verification",
    version="1.0.0",
    title="Re-run Post-Deploy Verification",
    applicable_categories=("DEPLOY_VERIFICATION_FAILED", "ALB_TARGET_UNHEALTHY"),
    required_evidence=(
        EvidencePredicate(kind=EvidenceKind.VERIFICATION, required_fields=("ref.env",)),
        EvidencePredicate(kind=EvidenceKind.DEPLOY_STATUS, required_fields=("ref.env",)),
    ),
    steps=(
        StepDefinition("run-verification", ActionType.RUN_VERIFICATION, "Run post-deploy verification"),
        StepDefinition(
            "ingest-incident-update",
            ActionType.RUN_VERIFICATION,
            "Mark the incident MITIGATED when verification passes",
        ),
    ),
)

RERUN_POST_DEPLOY_VERIFICATION = Playbook(
    definition=RERUN_POST_DEPLOY_VERIFICATION_DEFINITION,
    executors={
        "run-verification": execute_run_verification,
        "ingest-incident-update": execute_ingest_incident_update,
    },
    idempotency_keys={
        "run-verification": compute_verification_idempotency_key,
        "ingest-incident-update": compute_incident_update_idempotency_key,
    },
)
