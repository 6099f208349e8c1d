"""
SAFE_RETRY_RUNNER playbook.

Re-runs a failed CI workflow on the exact same revision, waits for it to
finish and ingests the result as evidence.

Steps:
1. dispatch-runner - re-dispatch the workflow pinned to headSha (or an explicit ref)
2. poll-runner - poll the new run, bounded attempts at a fixed interval
3. ingest-runner - collect the run's artifacts and summary and record them as
   github_run evidence on the incident
"""

from __future__ import annotations

import asyncio
import hashlib

import structlog

from deployguard.config.settings import get_settings
from deployguard.core.errors import EvidenceError
from deployguard.remediation.adapters import RemediationPool, WorkflowDispatchRequest
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
from deployguard.remediation.lawbook import RUNNER_DISPATCH_FLAG
from deployguard.remediation.playbooks.base import (
    Playbook,
    lawbook_denied,
    ref_value,
    repo_allowed,
    step_output,
)
from deployguard.remediation.redaction import sanitize_redact

logger = structlog.get_logger()

RUNNER_EVIDENCE_KINDS = (EvidenceKind.RUNNER, EvidenceKind.GITHUB_RUN)

DISPATCH_OUTPUT = "dispatch_runner_output"
POLL_OUTPUT = "poll_runner_output"


def _runner_params(context: StepContext) -> dict[str, str | None]:
    evidence = select_evidence(context.evidence, RUNNER_EVIDENCE_KINDS)
    ref = evidence.ref if evidence else {}
    return {
        "owner": ref_value(ref, "owner"),
        "repo": ref_value(ref, "repo"),
        "workflow_id_or_file": ref_value(ref, "workflowIdOrFile", "workflow_id_or_file", "workflow"),
        # headSha wins over a branch/tag ref
        "ref": ref_value(ref, "headSha", "head_sha", "ref"),
    }


async def execute_dispatch_runner(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        evidence = select_evidence(context.evidence, RUNNER_EVIDENCE_KINDS)
        if evidence is None:
            return StepResult.fail("EVIDENCE_MISSING", "No runner or github_run evidence found")

        params = _runner_params(context)
        owner, repo, workflow = params["owner"], params["repo"], params["workflow_id_or_file"]
        if not owner or not repo or not workflow:
            return StepResult.fail(
                "INVALID_EVIDENCE",
                "Missing required parameters: owner, repo, workflowIdOrFile",
                {"owner": owner, "repo": repo, "workflowIdOrFile": workflow},
            )

        git_ref = params["ref"]
        if not git_ref:
            return StepResult.fail(
                "DETERMINISM_REQUIRED",
                "Safe retry requires headSha or explicit ref; refusing to re-run a floating default branch",
                {"owner": owner, "repo": repo},
            )

        denied = lawbook_denied(context, RUNNER_DISPATCH_FLAG, "workflow dispatch")
        if denied:
            return denied

        if not await repo_allowed(pool, context, owner, repo):
            return StepResult.fail(
                "REPO_NOT_ALLOWED",
                f"Repository {owner}/{repo} is not on the dispatch allowlist",
                {"owner": owner, "repo": repo},
            )

        if pool.runner is None:
            return StepResult.fail("DISPATCH_FAILED", "No runner adapter configured")

        workflow_inputs = ref_value(evidence.ref, "inputs") or {}
        try:
            dispatch = await pool.runner.dispatch_workflow(
                WorkflowDispatchRequest(
                    correlation_id=f"{context.incident_key}:retry:{context.run_id}",
                    owner=owner,
                    repo=repo,
                    workflow_id_or_file=workflow,
                    ref=git_ref,
                    inputs=dict(workflow_inputs),
                )
            )
        except Exception as e:
            return StepResult.fail("DISPATCH_FAILED", f"Failed to dispatch workflow: {e}")

        logger.info(
            "runner_dispatched",
            incident_key=context.incident_key,
            owner=owner,
            repo=repo,
            new_run_id=dispatch.new_run_id,
        )
        return StepResult.ok(
            sanitize_redact(
                {
                    "new_run_id": dispatch.new_run_id,
                    "run_url": dispatch.run_url,
                    "owner": owner,
                    "repo": repo,
                    "workflow_id_or_file": workflow,
                    "ref": git_ref,
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("DISPATCH_FAILED", str(e) or "Failed to dispatch workflow")


async def execute_poll_runner(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        dispatch = step_output(context, DISPATCH_OUTPUT)
        run_id = dispatch.get("new_run_id") if dispatch else None
        if run_id is None:
            return StepResult.fail("MISSING_RUN_ID", "No new_run_id from dispatch step")

        params = _runner_params(context)
        owner = dispatch.get("owner") or params["owner"]
        repo = dispatch.get("repo") or params["repo"]

        settings = get_settings()
        max_attempts = int(context.inputs.get("poll_max_attempts", settings.poll_max_attempts))
        interval = float(context.inputs.get("poll_interval_seconds", settings.poll_interval_seconds))

        if pool.runner is None:
            return StepResult.fail("POLL_FAILED", "No runner adapter configured")

        last_status = None
        for attempt in range(1, max_attempts + 1):
            try:
                status = await pool.runner.poll_run(owner, repo, run_id)
            except Exception as e:
                return StepResult.fail("POLL_FAILED", f"Failed to poll workflow run: {e}")

            last_status = status.status
            if status.is_terminal:
                return StepResult.ok(
                    sanitize_redact(
                        {
                            "run_id": status.run_id,
                            "status": status.status,
                            "conclusion": status.conclusion,
                            "attempts": attempt,
                            "owner": owner,
                            "repo": repo,
                        }
                    )
                )
            if attempt < max_attempts:
                await asyncio.sleep(interval)

        return StepResult.fail(
            "POLL_TIMEOUT",
            f"Workflow run {run_id} did not complete after {max_attempts} attempts",
            {"runId": run_id, "lastStatus": last_status, "attempts": max_attempts},
        )
    except asyncio.CancelledError:
        raise
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("POLL_FAILED", str(e) or "Failed to poll workflow run")


async def execute_ingest_runner(pool: RemediationPool, context: StepContext) -> StepResult:
    try:
        poll = step_output(context, POLL_OUTPUT)
        run_id = poll.get("run_id") if poll else None
        if run_id is None:
            return StepResult.fail("MISSING_RUN_ID", "No run_id from poll step")

        params = _runner_params(context)
        owner = poll.get("owner") or params["owner"]
        repo = poll.get("repo") or params["repo"]

        if pool.runner is None:
            return StepResult.fail("INGEST_FAILED", "No runner adapter configured")

        try:
            ingest = await pool.runner.ingest_run(owner, repo, run_id)
        except Exception as e:
            return StepResult.fail("INGEST_FAILED", f"Failed to ingest workflow run: {e}")

        summary_hash = hashlib.sha256(stable_stringify(ingest.summary).encode("utf-8")).hexdigest()
        try:
            await pool.incidents.add_evidence(
                context.incident_id,
                [
                    Evidence(
                        kind=EvidenceKind.GITHUB_RUN,
                        ref={
                            "run_id": ingest.run_id,
                            "owner": owner,
                            "repo": repo,
                            "conclusion": poll.get("conclusion"),
                            "artifacts_count": ingest.artifacts_count,
                            "summary_hash": summary_hash,
                            "playbook_run_id": context.run_id,
                        },
                        sha256=summary_hash,
                        incident_id=context.incident_id,
                    )
                ],
            )
        except Exception as e:
            return StepResult.fail("INGEST_FAILED", f"Failed to record run evidence: {e}")

        return StepResult.ok(
            sanitize_redact(
                {
                    "run_id": ingest.run_id,
                    "conclusion": poll.get("conclusion"),
                    "artifacts_count": ingest.artifacts_count,
                    "summary": ingest.summary,
                    "summary_hash": summary_hash,
                }
            )
        )
    except EvidenceError:
        raise
    except Exception as e:
        return StepResult.fail("INGEST_FAILED", str(e) or "Failed to ingest workflow run")


def compute_dispatch_idempotency_key(context: StepContext) -> str:
    return f"dispatch:{context.incident_key}:{compute_inputs_hash(_runner_params(context))}"


def compute_poll_idempotency_key(context: StepContext) -> str:
    dispatch = step_output(context, DISPATCH_OUTPUT) or {}
    return f"poll:{context.incident_key}:{dispatch.get('new_run_id', 'unknown')}"


def compute_ingest_idempotency_key(context: StepContext) -> str:
    poll = step_output(context, POLL_OUTPUT) or {}
    return f"ingest:{context.incident_key}:{poll.get('run_id', 'unknown')}"


SAFE_RETRY_RUNNER_DEFINITION = PlaybookDefinition(
    id="safe-retry-runner",
    version="1.0.0",
    title="Safe Retry Runner - re-run a failed workflow on the same revision",
    applicable_categories=("RUNNER_WORKFLOW_FAILED", "CI_TRANSIENT_FAILURE"),
    required_evidence=(
        EvidencePredicate(
            kind=EvidenceKind.RUNNER,
            required_fields=("ref.owner", "ref.repo", "ref.workflowIdOrFile"),
        ),
        EvidencePredicate(kind=EvidenceKind.GITHUB_RUN),
    ),
    steps=(
        StepDefinition("dispatch-runner", ActionType.DISPATCH_WORKFLOW, "Re-dispatch the failed workflow"),
        StepDefinition("poll-runner", ActionType.POLL_WORKFLOW, "Poll the new run until it completes"),
        StepDefinition("ingest-runner", ActionType.INGEST_ARTIFACTS, "Ingest run artifacts as evidence"),
    ),
)

SAFE_RETRY_RUNNER = Playbook(
    definition=SAFE_RETRY_RUNNER_DEFINITION,
    executors={
        "dispatch-runner": execute_dispatch_runner,
        "poll-runner": execute_poll_runner,
        "ingest-runner": execute_ingest_runner,
    },
    idempotency_keys={
        "dispatch-runner": compute_dispatch_idempotency_key,
        "poll-runner": compute_poll_idempotency_key,
        "ingest-runner": compute_ingest_idempotency_key,
    },
)
