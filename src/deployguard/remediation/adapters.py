"""
Adapter interfaces for everything a playbook touches outside this package.

Adapters raise on failure; the calling step converts the exception into a
typed StepResult error. Real implementations (GitHub Actions, ECS, deploy
status database) live outside deployguard and are injected through
RemediationPool.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from deployguard.remediation.incidents import IncidentStore


@dataclass
class WorkflowDispatchRequest:
    correlation_id: str
    owner: str
    repo: str
    workflow_id_or_file: str
    ref: str
    inputs: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowDispatch:
    new_run_id: int | str
    run_url: str | None = None
    record_id: str | None = None


@dataclass
class WorkflowRunStatus:
    run_id: int | str
    status: str
    conclusion: str | None = None
    updated_at: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status == "completed"


@dataclass
class WorkflowIngest:
    run_id: int | str
    artifacts_count: int
    summary: dict[str, Any] = field(default_factory=dict)


@dataclass
class EcsServiceInfo:
    service_arn: str
    desired_count: int
    running_count: int
    task_definition: str
    deployments: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class ForcedDeployment:
    service_arn: str
    deployment_id: str


@dataclass
class StabilityObservation:
    stable: bool
    final_state: dict[str, Any] = field(default_factory=dict)


@dataclass
class LastKnownGood:
    snapshot_id: str
    env: str
    service: str | None = None
    version: str | None = None
    deploy_event_id: str | None = None
    commit_hash: str | None = None
    image_digest: str | None = None
    image_digests: list[str] = field(default_factory=list)
    cfn_change_set_id: str | None = None
    observed_at: str | None = None
    verification_run_id: str | None = None
    verification_report_hash: str | None = None
    owner: str | None = None
    repo: str | None = None


@dataclass
class DeployDispatchRequest:
    correlation_id: str
    env: str
    service: str | None
    owner: str | None
    repo: str | None
    image_digest: str | None
    image_digests: list[str] = field(default_factory=list)


@dataclass
class DeployDispatch:
    dispatch_id: str


@dataclass
class VerificationReport:
    passed: bool
    env: str
    playbook_run_id: str
    report: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class RunnerAdapter(Protocol):
    async def dispatch_workflow(self, request: WorkflowDispatchRequest) -> WorkflowDispatch: ...

    async def poll_run(self, owner: str, repo: str, run_id: int | str) -> WorkflowRunStatus: ...

    async def ingest_run(self, owner: str, repo: str, run_id: int | str) -> WorkflowIngest: ...


@runtime_checkable
class EcsAdapter(Protocol):
    async def describe_service(self, cluster: str, service: str) -> EcsServiceInfo: ...

    async def force_new_deployment(
        self, cluster: str, service: str, env: str, correlation_id: str
    ) -> ForcedDeployment: ...

    async def poll_service_stability(
        self,
        cluster: str,
        service: str,
        max_wait_seconds: int,
        check_interval_seconds: int,
    ) -> StabilityObservation: ...


@runtime_checkable
class DeployAdapter(Protocol):
    async def find_last_known_good(self, env: str, service: str | None) -> LastKnownGood | None: ...

    async def dispatch_deploy(self, request: DeployDispatchRequest) -> DeployDispatch: ...


@runtime_checkable
class VerificationAdapter(Protocol):
    async def run_verification(self, env: str, reference: str) -> VerificationReport: ...


@runtime_checkable
class RepoAccessPolicy(Protocol):
    async def is_repo_allowed(self, owner: str, repo: str) -> bool: ...


@dataclass
class RemediationPool:
    """Handle passed to every step: the incident store plus the injected adapters.

    Adapters a playbook does not use may be left as None.
    """

    incidents: IncidentStore
    runner: RunnerAdapter | None = None
    ecs: EcsAdapter | None = None
    deploy: DeployAdapter | None = None
    verifier: VerificationAdapter | None = None
    repo_access: RepoAccessPolicy | None = None
