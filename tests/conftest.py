"""Root test configuration."""

import logging
from datetime import datetime, timezone

import pytest
import structlog
from deployguard.config.settings import get_settings
from deployguard.remediation import keys
from deployguard.remediation.contracts import ActionType
from deployguard.remediation.incidents import Incident, InMemoryIncidentStore
from deployguard.remediation.lawbook import (
    ECS_FORCE_NEW_DEPLOYMENT_FLAG,
    REDEPLOY_LKG_FLAG,
    RUNNER_DISPATCH_FLAG,
    Lawbook,
)


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Settings are lru_cached; clear around each test so monkeypatched env vars apply."""
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fixed_clock():
    """Pin the hour-bucket clock. Tests move it by assigning ``fixed_clock.now``."""

    class _Clock:
        now = datetime(2026, 3, 14, 9, 26, 53, tzinfo=timezone.utc)

        def __call__(self):
            return self.now

    clock = _Clock()
    keys.set_clock(clock)
    yield clock
    keys.set_clock(None)


@pytest.fixture
def permissive_lawbook():
    """Lawbook that allows every canonical playbook, action and mutating flag."""
    return Lawbook(
        version="lawbook-test-1",
        remediation_enabled=True,
        allowed_playbooks=[
            "safe-retry-runner",
            "service-health-reset",
            "redeploy-lkg",
            "rerun-post-deploy-verification",
        ],
        allowed_actions=list(ActionType),
        flags={
            RUNNER_DISPATCH_FLAG: True,
            ECS_FORCE_NEW_DEPLOYMENT_FLAG: True,
            REDEPLOY_LKG_FLAG: True,
        },
        parameters={
            "alb_to_ecs_mapping_production": {
                "tg-web": {"cluster": "prod-cluster", "service": "web"},
            },
        },
        ecs_target_allowlist={
            "production": [{"cluster": "prod-cluster", "service": "web"}],
        },
        repo_allowlist=["acme/platform"],
    )


@pytest.fixture
def incident():
    return Incident(id="inc-1", incident_key="deploy:prod:web", category="ECS_TASK_CRASHLOOP")


@pytest.fixture
def incident_store(incident):
    store = InMemoryIncidentStore()
    store.add_incident(incident)
    return store
