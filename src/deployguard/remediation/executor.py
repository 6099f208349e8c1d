"""
Remediation playbook executor.

Runs a playbook against an incident:
- deny by default: no lawbook, remediation switched off, a playbook/action
  the lawbook does not allow, or an incident past its run cap or still in
  cooldown gives a SKIPPED run
- evidence gating before anything is planned
- deterministic planning and run keys: the same incident, playbook and
  inputs return the existing run instead of executing again
- steps run in declared order and the first failure aborts the run
- step outputs and errors are redacted before they are stored
- every transition is written to the audit trail (fail-open)
"""

from __future__ import annotations

import math
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

import structlog

from deployguard.core.errors import EvidenceError
from deployguard.logging import bind_run_context, clear_run_context
from deployguard.remediation import keys
from deployguard.remediation.adapters import RemediationPool
from deployguard.remediation.contracts import (
    ActionType,
    Evidence,
    RunStatus,
    StepContext,
    StepDefinition,
    StepError,
    StepStatus,
    check_any_evidence_predicate,
    compute_inputs_hash,
    compute_run_key,
    ensure_evidence_list,
    stable_stringify,
)
from deployguard.remediation.incidents import Incident
from deployguard.remediation.keys import validate_idempotency_key
from deployguard.remediation.lawbook import Lawbook
from deployguard.remediation.playbooks.base import Playbook
from deployguard.remediation.redaction import redact_step_error, sanitize_redact
from deployguard.remediation.registry import PlaybookRegistry, default_registry
from deployguard.remediation.results import (
    PlannedRun,
    PlannedStep,
    RemediationAuditEvent,
    RemediationAuditEventType,
    RemediationRun,
    RemediationStep,
    RunResult,
    SkipReason,
    summarize_steps,
)
from deployguard.remediation.store import RemediationStore

logger = structlog.get_logger()

NO_LAWBOOK_VERSION = "NONE"
LKG_PLAYBOOK_ID = "redeploy-lkg"


def plan_run(playbook: Playbook, incident: Incident, inputs: Dict[str, Any], lawbook_version: str) -> PlannedRun:
    """Same playbook, incident and inputs always give the same plan."""
    return PlannedRun(
        playbook_id=playbook.id,
        playbook_version=playbook.definition.version,
        lawbook_version=lawbook_version,
        inputs_hash=compute_inputs_hash(inputs),
        steps=[
            PlannedStep(
                step_id=step.step_id,
                action_type=step.action_type,
                resolved_inputs={
                    **inputs,
                    "incident_id": incident.id,
                    "incident_key": incident.incident_key,
                },
            )
            for step in playbook.definition.steps
        ],
    )


def default_idempotency_key(step: StepDefinition, context: StepContext) -> str:
    return f"{step.action_type}:{context.incident_key}:{compute_inputs_hash(context.inputs)}"


def _evidence_step_error(error: EvidenceError) -> StepError:
    details = stable_stringify(error.details) if error.details else None
    return StepError(code="INVALID_EVIDENCE", message=error.message, details=details)


def _as_utc(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def lawbook_denial(
    playbook: Playbook,
    lawbook: Optional[Lawbook],
    incident: Optional[Incident] = None,
    evidence: Sequence[Evidence] = (),
    prior_runs: Sequence[RemediationRun] = (),
) -> Optional[str]:
    """Reason the lawbook refuses this playbook, or None when every gate allows it.

    ``prior_runs`` are the incident's earlier non-skipped runs; they feed the
    run cap and the cooldown. Category evidence kinds are only checked when
    the incident is known.
    """
    if lawbook is None:
        return "No active lawbook configuration found"
    if not lawbook.remediation_enabled:
        return "Remediation is disabled in lawbook"
    if not lawbook.allows_playbook(playbook.id):
        return f"Playbook '{playbook.id}' is not in allowed list"
    for step in playbook.definition.steps:
        if step.action_type == ActionType.ROLLBACK_DEPLOY and playbook.id != LKG_PLAYBOOK_ID:
            return f"Action type 'ROLLBACK_DEPLOY' is only allowed for {LKG_PLAYBOOK_ID} playbook"
        if not lawbook.allows_action(step.action_type):
            return f"Action {step.action_type} not allowed"

    if incident is not None:
        missing = lawbook.missing_evidence_kinds(incident.category, (e.kind for e in evidence))
        if missing:
            return f"Missing required evidence kinds: {', '.join(missing)}"

    if lawbook.max_runs_per_incident is not None and len(prior_runs) >= lawbook.max_runs_per_incident:
        return f"Maximum runs per incident ({lawbook.max_runs_per_incident}) exceeded"

    started = [_as_utc(r.created_at) for r in prior_runs if r.created_at is not None]
    if lawbook.cooldown_minutes and started:
        elapsed = (_as_utc(keys.now()) - max(started)).total_seconds() / 60
        if elapsed < lawbook.cooldown_minutes:
            remaining = math.ceil(lawbook.cooldown_minutes - elapsed)
            return f"Cooldown active. Wait {remaining} more minutes"
    return None


class RemediationExecutor:
    """Executes registered playbooks against incidents."""

    def __init__(
        self,
        pool: RemediationPool,
        store: RemediationStore,
        lawbook: Optional[Lawbook] = None,
        registry: Optional[PlaybookRegistry] = None,
    ) -> None:
        self._pool = pool
        self._store = store
        self._lawbook = lawbook
        self._registry = registry or default_registry()

    async def execute_playbook(
        self,
        incident_id: str,
        playbook: Playbook | str,
        inputs: Optional[Dict[str, Any]] = None,
    ) -> RunResult:
        if isinstance(playbook, str):
            resolved = self._registry.get(playbook)
            if resolved is None:
                raise KeyError(f"Unknown playbook: {playbook}")
            playbook = resolved

        incident = await self._pool.incidents.get_incident(incident_id)
        if incident is None:
            raise KeyError(f"Incident not found: {incident_id}")

        inputs = dict(inputs or {})
        lawbook = self._lawbook
        lawbook_version = lawbook.version if lawbook else NO_LAWBOOK_VERSION

        bind_run_context(incident_key=incident.incident_key, playbook_id=playbook.id)
        try:
            evidence = ensure_evidence_list(await self._pool.incidents.get_evidence(incident.id))

            run_key = compute_run_key(incident.incident_key, playbook.id, compute_inputs_hash(inputs))
            prior_runs = [
                r
                for r in await self._store.get_runs_for_incident(incident.id)
                if r.status != RunStatus.SKIPPED and r.run_key != run_key
            ]
            denial = lawbook_denial(playbook, lawbook, incident, evidence, prior_runs)
            if denial:
                return await self._skip(
                    playbook, incident, inputs, lawbook_version, SkipReason.LAWBOOK_DENIED, denial
                )

            check = check_any_evidence_predicate(playbook.definition.required_evidence, evidence)
            if not check.satisfied:
                return await self._skip(
                    playbook,
                    incident,
                    inputs,
                    lawbook_version,
                    SkipReason.EVIDENCE_MISSING,
                    "Required evidence not satisfied",
                    {"missing_evidence": [
                        {"kind": str(p.kind), "required_fields": list(p.required_fields)}
                        for p in check.missing
                    ]},
                )

            planned = plan_run(playbook, incident, inputs, lawbook_version)
            validate_idempotency_key(run_key)

            existing = await self._store.get_run_by_key(run_key)
            if existing is not None:
                logger.info("remediation_run_reused", run_id=existing.id, run_key=run_key)
                return RunResult(
                    run_id=existing.id,
                    status=existing.status,
                    message="Existing run returned (idempotent)",
                    planned=existing.planned or planned,
                    steps=await self._store.get_steps_for_run(existing.id),
                )

            run = await self._store.upsert_run(
                RemediationRun(
                    id="",
                    run_key=run_key,
                    incident_id=incident.id,
                    playbook_id=playbook.id,
                    playbook_version=playbook.definition.version,
                    status=RunStatus.PLANNED,
                    lawbook_version=lawbook_version,
                    inputs_hash=planned.inputs_hash,
                    planned=planned,
                )
            )
            bind_run_context(run_id=run.id)
            await self._audit(
                run,
                RemediationAuditEventType.PLANNED,
                {
                    "playbook_id": playbook.id,
                    "playbook_version": playbook.definition.version,
                    "inputs_hash": planned.inputs_hash,
                    "steps_count": len(planned.steps),
                    "steps": [{"step_id": s.step_id, "action_type": str(s.action_type)} for s in planned.steps],
                },
            )
            await self._store.update_run_status(run.id, RunStatus.RUNNING)

            started = time.monotonic()
            try:
                all_succeeded = await self._run_steps(playbook, incident, run, planned, evidence, lawbook)
            except EvidenceError as e:
                steps = await self._store.get_steps_for_run(run.id)
                summary = {**summarize_steps(steps), "error_code": "INVALID_EVIDENCE"}
                await self._store.update_run_status(run.id, RunStatus.FAILED, summary)
                await self._audit(run, RemediationAuditEventType.FAILED, {"status": str(RunStatus.FAILED), **summary})
                logger.error("remediation_run_evidence_invalid", run_id=run.id, error=e.message)
                raise
            duration_ms = int((time.monotonic() - started) * 1000)

            steps = await self._store.get_steps_for_run(run.id)
            final_status = RunStatus.SUCCEEDED if all_succeeded else RunStatus.FAILED
            summary = {**summarize_steps(steps), "duration_ms": duration_ms}
            await self._store.update_run_status(run.id, final_status, summary)
            await self._audit(run, RemediationAuditEventType.STATUS_UPDATED, {"status": str(final_status), **summary})
            await self._audit(
                run,
                RemediationAuditEventType.COMPLETED if all_succeeded else RemediationAuditEventType.FAILED,
                {"status": str(final_status), **summary},
            )

            logger.info("remediation_run_finished", run_id=run.id, status=str(final_status), **summary)
            return RunResult(run_id=run.id, status=final_status, planned=planned, steps=steps)
        finally:
            clear_run_context()

    async def _run_steps(
        self,
        playbook: Playbook,
        incident: Incident,
        run: RemediationRun,
        planned: PlannedRun,
        evidence: list,
        lawbook: Optional[Lawbook],
    ) -> bool:
        step_outputs: Dict[str, Any] = {}

        for planned_step in planned.steps:
            step_def = playbook.definition.get_step(planned_step.step_id)
            context = StepContext(
                incident_id=incident.id,
                incident_key=incident.incident_key,
                run_id=run.id,
                lawbook_version=run.lawbook_version,
                evidence=evidence,
                inputs={**planned_step.resolved_inputs, **step_outputs},
                lawbook=lawbook,
            )

            key_fn = playbook.idempotency_keys.get(step_def.step_id)
            try:
                key = key_fn(context) if key_fn else default_idempotency_key(step_def, context)
                validate_idempotency_key(key)
            except EvidenceError as e:
                step = await self._create_unkeyed_step(run, step_def, context)
                await self._finish_step(run, step, step_def, _evidence_step_error(e))
                raise
            except Exception as e:
                logger.warning("playbook_step_key_invalid", step_id=step_def.step_id, error=str(e))
                step = await self._create_unkeyed_step(run, step_def, context)
                await self._finish_step(
                    run, step, step_def, StepError(code="INVALID_IDEMPOTENCY_KEY", message=str(e))
                )
                return False

            step = await self._store.create_step(
                RemediationStep(
                    id="",
                    run_id=run.id,
                    step_id=step_def.step_id,
                    action_type=step_def.action_type,
                    status=StepStatus.PLANNED,
                    idempotency_key=key,
                    inputs=context.inputs,
                )
            )
            await self._audit(
                run,
                RemediationAuditEventType.STEP_STARTED,
                {
                    "step_id": step_def.step_id,
                    "action_type": str(step_def.action_type),
                    "idempotency_key": key,
                    "inputs_hash": compute_inputs_hash(context.inputs),
                },
            )
            await self._store.update_step(step.id, StepStatus.RUNNING)
            logger.info("playbook_step_started", step_id=step_def.step_id, idempotency_key=key)

            executor = playbook.executors[step_def.step_id]
            try:
                result = await executor(self._pool, context)
            except EvidenceError as e:
                await self._finish_step(run, step, step_def, _evidence_step_error(e))
                raise
            except Exception as e:
                logger.error("playbook_step_crashed", step_id=step_def.step_id, exc_info=True)
                await self._finish_step(run, step, step_def, StepError(code="EXECUTION_ERROR", message=str(e)))
                return False

            if not result.success:
                await self._finish_step(run, step, step_def, result.error)
                return False

            output = await self._finish_step(run, step, step_def, output=result.output)
            if output is not None:
                step_outputs[step_def.output_key] = output

        return True

    async def _create_unkeyed_step(
        self, run: RemediationRun, step_def: StepDefinition, context: StepContext
    ) -> RemediationStep:
        return await self._store.create_step(
            RemediationStep(
                id="",
                run_id=run.id,
                step_id=step_def.step_id,
                action_type=step_def.action_type,
                status=StepStatus.PLANNED,
                idempotency_key="",
                inputs=context.inputs,
            )
        )

    async def _finish_step(
        self,
        run: RemediationRun,
        step: RemediationStep,
        step_def: StepDefinition,
        error: Optional[StepError] = None,
        output: Optional[Dict[str, Any]] = None,
    ) -> Optional[Dict[str, Any]]:
        """Store the step outcome and return the stored output. Output and error are redacted first."""
        if output is not None:
            output = sanitize_redact(output)
        if error is not None:
            error = redact_step_error(error)
        if error is None:
            await self._store.update_step(step.id, StepStatus.SUCCEEDED, output=output)
            payload: Dict[str, Any] = {
                "step_id": step_def.step_id,
                "action_type": str(step_def.action_type),
                "status": str(StepStatus.SUCCEEDED),
                "output_summary": (
                    {"has_output": True, "output_hash": compute_inputs_hash(output)}
                    if output
                    else {"has_output": False}
                ),
            }
        else:
            await self._store.update_step(step.id, StepStatus.FAILED, error=error)
            payload = {
                "step_id": step_def.step_id,
                "action_type": str(step_def.action_type),
                "status": str(StepStatus.FAILED),
                "error_code": error.code,
                "error_message": error.message,
            }
        logger.info(
            "playbook_step_finished",
            step_id=step_def.step_id,
            status=payload["status"],
            error_code=payload.get("error_code"),
        )
        await self._audit(run, RemediationAuditEventType.STEP_FINISHED, payload)
        return output

    async def _skip(
        self,
        playbook: Playbook,
        incident: Incident,
        inputs: Dict[str, Any],
        lawbook_version: str,
        reason: SkipReason,
        message: str,
        extra: Optional[Dict[str, Any]] = None,
    ) -> RunResult:
        inputs_hash = compute_inputs_hash(inputs)
        run = await self._store.upsert_run(
            RemediationRun(
                id="",
                run_key=compute_run_key(incident.incident_key, playbook.id, inputs_hash),
                incident_id=incident.id,
                playbook_id=playbook.id,
                playbook_version=playbook.definition.version,
                status=RunStatus.SKIPPED,
                lawbook_version=lawbook_version,
                inputs_hash=inputs_hash,
                result={"skip_reason": str(reason), "message": message, **(extra or {})},
            )
        )
        logger.warning("remediation_run_skipped", run_id=run.id, skip_reason=str(reason), message=message)
        return RunResult(run_id=run.id, status=RunStatus.SKIPPED, skip_reason=reason, message=message)

    async def _audit(
        self,
        run: RemediationRun,
        event_type: RemediationAuditEventType,
        payload: Dict[str, Any],
    ) -> None:
        """Audit failures never break the remediation flow."""
        try:
            await self._store.append_audit_event(
                RemediationAuditEvent(
                    run_id=run.id,
                    incident_id=run.incident_id,
                    event_type=event_type,
                    lawbook_version=run.lawbook_version,
                    payload=payload,
                )
            )
        except Exception:
            logger.warning(
                "remediation_audit_event_failed",
                event_type=str(event_type),
                run_id=run.id,
                exc_info=True,
            )
