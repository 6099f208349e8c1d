"""Canonical remediation playbooks."""

from deployguard.remediation.playbooks.base import Playbook
from deployguard.remediation.playbooks.redeploy_lkg import REDEPLOY_LKG
from deployguard.remediation.playbooks.rerun_post_deploy_verification import RERUN_POST_DEPLOY_VERIFICATION
from deployguard.remediation.playbooks.safe_retry_runner import SAFE_RETRY_RUNNER
from deployguard.remediation.playbooks.service_health_reset import SERVICE_HEALTH_RESET

__all__ = [
    "Playbook",
    "REDEPLOY_LKG",
    "RERUN_POST_DEPLOY_VERIFICATION",
    "SAFE_RETRY_RUNNER",
    "SERVICE_HEALTH_RESET",
]
