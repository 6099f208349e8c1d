"""
Remediation run store.

Runs are keyed by run_key: the same incident, playbook and inputs always
resolve to the same run. InMemoryRemediationStore backs tests and
embedders without a database.
"""

from __future__ import annotations

import hashlib
import uuid
from dataclasses import replace
from typing import Any, Protocol, runtime_checkable

from deployguard.remediation.contracts import RunStatus, StepError, StepStatus, stable_stringify
from deployguard.remediation.keys import now
from deployguard.remediation.results import (
    RemediationAuditEvent,
    RemediationRun,
    RemediationStep,
)


@runtime_checkable
class RemediationStore(Protocol):
    async def get_run_by_key(self, run_key: str) -> RemediationRun | None: ...

    async def upsert_run(self, run: RemediationRun) -> RemediationRun: ...

    async def update_run_status(
        self, run_id: str, status: RunStatus, result: dict[str, Any] | None = None
    ) -> None: ...

    async def create_step(self, step: RemediationStep) -> RemediationStep: ...

    async def update_step(
        self,
        step_id: str,
        status: StepStatus,
        output: dict[str, Any] | None = None,
        error: StepError | None = None,
    ) -> None: ...

    async def get_steps_for_run(self, run_id: str) -> list[RemediationStep]: ...

    async def get_runs_for_incident(self, incident_id: str) -> list[RemediationRun]: ...

    async def append_audit_event(self, event: RemediationAuditEvent) -> None: ...


def compute_payload_hash(payload: dict[str, Any]) -> str:
    return hashlib.sha256(stable_stringify(payload).encode("utf-8")).hexdigest()


class InMemoryRemediationStore:
    def __init__(self) -> None:
        self.runs: dict[str, RemediationRun] = {}
        self.steps: dict[str, RemediationStep] = {}
        self.audit_events: list[RemediationAuditEvent] = []

    async def get_run_by_key(self, run_key: str) -> RemediationRun | None:
        return next((r for r in self.runs.values() if r.run_key == run_key), None)

    async def upsert_run(self, run: RemediationRun) -> RemediationRun:
        """Insert, or return the run already stored under the same run_key."""
        existing = await self.get_run_by_key(run.run_key)
        if existing is not None:
            return existing
        stored = replace(run, id=run.id or str(uuid.uuid4()), created_at=now(), updated_at=now())
        self.runs[stored.id] = stored
        return stored

    async def update_run_status(
        self, run_id: str, status: RunStatus, result: dict[str, Any] | None = None
    ) -> None:
        run = self.runs[run_id]
        run.status = status
        if result is not None:
            run.result = result
        run.updated_at = now()

    async def create_step(self, step: RemediationStep) -> RemediationStep:
        stored = replace(step, id=step.id or str(uuid.uuid4()))
        self.steps[stored.id] = stored
        return stored

    async def update_step(
        self,
        step_id: str,
        status: StepStatus,
        output: dict[str, Any] | None = None,
        error: StepError | None = None,
    ) -> None:
        step = self.steps[step_id]
        step.status = status
        if status == StepStatus.RUNNING:
            step.started_at = now()
        elif status in (StepStatus.SUCCEEDED, StepStatus.FAILED):
            step.finished_at = now()
        if output is not None:
            step.output = output
        if error is not None:
            step.error = error

    async def get_steps_for_run(self, run_id: str) -> list[RemediationStep]:
        return [s for s in self.steps.values() if s.run_id == run_id]

    async def get_runs_for_incident(self, incident_id: str) -> list[RemediationRun]:
        return [r for r in self.runs.values() if r.incident_id == incident_id]

    async def append_audit_event(self, event: RemediationAuditEvent) -> None:
        self.audit_events.append(
            replace(
                event,
                payload_hash=event.payload_hash or compute_payload_hash(event.payload),
                created_at=event.created_at or now(),
            )
        )

    def events_for_run(self, run_id: str) -> list[RemediationAuditEvent]:
        return [e for e in self.audit_events if e.run_id == run_id]
