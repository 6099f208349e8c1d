"""
Lawbook, policy and document loading.

Search order for named files (lawbook, policy):
1. Explicit path (--lawbook / --policy flag, or settings)
2. .deployguard/<name>.yaml (project root)
3. ~/.deployguard/<name>.yaml (user home)

A lawbook that cannot be found loads as None, which every gate treats as
deny. A lawbook or policy file that exists but does not parse is a
configuration error, never silently replaced by defaults.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError as PydanticValidationError

from deployguard.config.settings import get_settings
from deployguard.core.errors import ConfigurationError
from deployguard.remediation.lawbook import Lawbook, lawbook_from_dict
from deployguard.verdicts.models import FailureSignal, PolicySnapshot, Verdict
from deployguard.verdicts.policy import REFERENCE_POLICY, policy_from_dict

logger = structlog.get_logger()

CONFIG_DIR = ".deployguard"


def get_config_path(name: str, explicit_path: str | Path | None = None) -> Path | None:
    """
    Find the file to use for ``name`` (e.g. "lawbook", "policy").

    Returns:
        Path to the file or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigurationError(f"File not found: {path}", details={"path": str(path)})

    cwd_config = Path.cwd() / CONFIG_DIR / f"{name}.yaml"
    if cwd_config.exists():
        return cwd_config

    home_config = Path.home() / CONFIG_DIR / f"{name}.yaml"
    if home_config.exists():
        return home_config

    return None


def load_document(path: str | Path) -> Any:
    """Parse a YAML (or JSON, which is valid YAML) file."""
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read {path}: {e}", details={"path": str(path)}) from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}", details={"path": str(path)}) from e
    logger.debug("loaded_document", path=str(path))
    return data


def load_lawbook(explicit_path: str | Path | None = None) -> Lawbook | None:
    path = get_config_path("lawbook", explicit_path or get_settings().lawbook_path)
    if path is None:
        logger.warning("lawbook_not_found")
        return None

    data = load_document(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Lawbook {path} must be a mapping", details={"path": str(path)})
    try:
        lawbook = lawbook_from_dict(data)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid lawbook {path}: {e}", details={"path": str(path)}) from e

    logger.info("loaded_lawbook", path=str(path), version=lawbook.version)
    return lawbook


def load_policy(explicit_path: str | Path | None = None) -> PolicySnapshot:
    """Load a policy snapshot, falling back to the built-in reference policy."""
    path = get_config_path("policy", explicit_path or get_settings().policy_path)
    if path is None:
        return REFERENCE_POLICY

    data = load_document(path)
    if not isinstance(data, dict):
        raise ConfigurationError(f"Policy {path} must be a mapping", details={"path": str(path)})
    policy = policy_from_dict(data)
    logger.info("loaded_policy", path=str(path), policy_id=policy.id, version=policy.version)
    return policy


def load_signals(path: str | Path) -> list[FailureSignal]:
    """Signals file: either a list of signals or a mapping with a ``signals`` list."""
    data = load_document(path)
    if isinstance(data, dict):
        data = data.get("signals")
    if not isinstance(data, list):
        raise ConfigurationError(f"{path} must contain a list of signals", details={"path": str(path)})
    return [FailureSignal.from_dict(item) for item in data]


def load_verdicts(path: str | Path) -> list[Verdict]:
    data = load_document(path)
    if isinstance(data, dict):
        data = data.get("verdicts")
    if not isinstance(data, list):
        raise ConfigurationError(f"{path} must contain a list of verdicts", details={"path": str(path)})
    try:
        return [Verdict.from_dict(item) for item in data]
    except (KeyError, ValueError, TypeError) as e:
        raise ConfigurationError(f"Invalid verdict in {path}: {e}", details={"path": str(path)}) from e
