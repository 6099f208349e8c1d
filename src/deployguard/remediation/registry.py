"""Playbook registry."""

from __future__ import annotations

from typing import Dict, List, Optional

from deployguard.core.errors import ConfigurationError
from deployguard.remediation.playbooks import (
    REDEPLOY_LKG,
    RERUN_POST_DEPLOY_VERIFICATION,
    SAFE_RETRY_RUNNER,
    SERVICE_HEALTH_RESET,
)
from deployguard.remediation.playbooks.base import Playbook


class PlaybookRegistry:
    """In-memory registry of playbooks keyed by id."""

    def __init__(self) -> None:
        self._playbooks: Dict[str, Playbook] = {}

    def register(self, playbook: Playbook) -> None:
        if playbook.id in self._playbooks:
            raise ConfigurationError(f"Playbook already registered: {playbook.id}")
        missing = [s.step_id for s in playbook.definition.steps if s.step_id not in playbook.executors]
        if missing:
            raise ConfigurationError(
                f"Playbook {playbook.id} has no executor for steps: {', '.join(missing)}",
                details={"playbook_id": playbook.id, "steps": missing},
            )
        self._playbooks[playbook.id] = playbook

    def get(self, playbook_id: str) -> Optional[Playbook]:
        return self._playbooks.get(playbook_id)

    def list(self) -> List[str]:
        return list(self._playbooks.keys())

    def for_category(self, category: str) -> List[Playbook]:
        """Playbooks applicable to an incident category, in registration order."""
        return [
            p for p in self._playbooks.values() if category in p.definition.applicable_categories
        ]


def register_default_playbooks(registry: PlaybookRegistry) -> PlaybookRegistry:
    for playbook in (SAFE_RETRY_RUNNER, SERVICE_HEALTH_RESET, REDEPLOY_LKG, RERUN_POST_DEPLOY_VERIFICATION):
        registry.register(playbook)
    return registry


def default_registry() -> PlaybookRegistry:
    return register_default_playbooks(PlaybookRegistry())
