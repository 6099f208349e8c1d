"""
Lawbook: the deny-by-default permission document for remediation.

Nothing mutating runs unless the active lawbook explicitly allows it. A
missing lawbook, a missing flag and a missing mapping all mean "no".
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field

from deployguard.remediation.contracts import ActionType

RUNNER_DISPATCH_FLAG = "runner_dispatch_enabled"
ECS_FORCE_NEW_DEPLOYMENT_FLAG = "ecs_force_new_deployment_enabled"
REDEPLOY_LKG_FLAG = "redeploy_lkg_enabled"


class EcsTarget(BaseModel):
    cluster: str = Field(..., description="ECS cluster name")
    service: str = Field(..., description="ECS service name")


class Lawbook(BaseModel):
    """Active lawbook version and its permissions."""

    version: str = Field(..., description="Lawbook version recorded on every run")
    remediation_enabled: bool = Field(False, description="Master switch; false denies every playbook")
    allowed_playbooks: List[str] = Field(default_factory=list, description="Playbook ids allowed to run")
    allowed_actions: List[ActionType] = Field(default_factory=list, description="Action types steps may perform")
    flags: Dict[str, bool] = Field(default_factory=dict, description="Feature flags for mutating steps")
    parameters: Dict[str, Any] = Field(
        default_factory=dict,
        description="Named parameters, e.g. alb_to_ecs_mapping_<env>",
    )
    ecs_target_allowlist: Dict[str, List[EcsTarget]] = Field(
        default_factory=dict,
        description="Canonical environment -> ECS targets that may be reset",
    )
    repo_allowlist: List[str] = Field(default_factory=list, description="owner/repo pairs allowed for dispatch")
    required_evidence_kinds: Dict[str, List[str]] = Field(
        default_factory=dict,
        description="Incident category -> evidence kinds that must be present before any playbook runs",
    )
    max_runs_per_incident: Optional[int] = Field(
        None, ge=0, description="Cap on non-skipped runs per incident; unset means no cap"
    )
    cooldown_minutes: Optional[float] = Field(
        None, ge=0, description="Minimum gap between runs on the same incident"
    )

    def is_enabled(self, flag: str) -> bool:
        return self.flags.get(flag) is True

    def allows_playbook(self, playbook_id: str) -> bool:
        return playbook_id in self.allowed_playbooks

    def allows_action(self, action_type: ActionType) -> bool:
        return action_type in self.allowed_actions

    def resolve_alb_target(self, target_group: str, env: str) -> EcsTarget | None:
        """Look up the ECS service behind a target group. No mapping means no answer."""
        mapping = self.parameters.get(f"alb_to_ecs_mapping_{env}")
        if not isinstance(mapping, dict):
            return None
        target = mapping.get(target_group)
        if not isinstance(target, dict) or not target.get("cluster") or not target.get("service"):
            return None
        return EcsTarget(cluster=target["cluster"], service=target["service"])

    def is_ecs_target_allowed(self, cluster: str, service: str, env: str) -> bool:
        return any(
            t.cluster == cluster and t.service == service
            for t in self.ecs_target_allowlist.get(env, [])
        )

    def is_repo_allowed(self, owner: str, repo: str) -> bool:
        return f"{owner}/{repo}".lower() in {r.lower() for r in self.repo_allowlist}

    def missing_evidence_kinds(self, category: str, present: Iterable[str]) -> List[str]:
        """Kinds required for ``category`` that ``present`` lacks, in declared order."""
        have = set(present)
        return [k for k in self.required_evidence_kinds.get(category, []) if k not in have]


def lawbook_from_dict(data: dict[str, Any]) -> Lawbook:
    return Lawbook.model_validate(data)
