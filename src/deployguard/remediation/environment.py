"""Deployment environment canonicalization.

Every environment string is passed through normalize_environment before it
is compared or folded into a key. Unknown values are rejected outright.
"""

from __future__ import annotations

from enum import StrEnum
from types import MappingProxyType
from typing import Any, Mapping

from deployguard.core.errors import InvalidEnvironmentError


class DeployEnvironment(StrEnum):
    PRODUCTION = "production"
    STAGING = "staging"
    DEVELOPMENT = "development"


ENVIRONMENT_ALIASES: Mapping[str, DeployEnvironment] = MappingProxyType(
    {
        "production": DeployEnvironment.PRODUCTION,
        "prod": DeployEnvironment.PRODUCTION,
        "prd": DeployEnvironment.PRODUCTION,
        "staging": DeployEnvironment.STAGING,
        "stage": DeployEnvironment.STAGING,
        "stg": DeployEnvironment.STAGING,
        "development": DeployEnvironment.DEVELOPMENT,
        "dev": DeployEnvironment.DEVELOPMENT,
    }
)


def normalize_environment(value: Any) -> DeployEnvironment:
    if not isinstance(value, str) or not value.strip():
        raise InvalidEnvironmentError(
            f"Environment must be a non-empty string, got {value!r}",
            details={"env": repr(value)},
        )
    try:
        return ENVIRONMENT_ALIASES[value.strip().lower()]
    except KeyError:
        raise InvalidEnvironmentError(
            f"Unknown environment {value!r}. Expected one of: "
            f"{', '.join(sorted(ENVIRONMENT_ALIASES))}",
            details={"env": value},
        ) from None


def is_valid_environment(value: Any) -> bool:
    try:
        normalize_environment(value)
    except InvalidEnvironmentError:
        return False
    return True
