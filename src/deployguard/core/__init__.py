"""Core primitives shared across deployguard."""

from deployguard.core.errors import (
    ConfigurationError,
    DeployGuardError,
    DeploymentBlockedError,
    EvidenceError,
    ExitCode,
    InvalidConfidenceError,
    InvalidEnvironmentError,
    ProviderError,
    UnknownErrorClassError,
    UnmappedVerdictError,
    ValidationError,
)

__all__ = [
    "ConfigurationError",
    "DeployGuardError",
    "DeploymentBlockedError",
    "EvidenceError",
    "ExitCode",
    "InvalidConfidenceError",
    "InvalidEnvironmentError",
    "ProviderError",
    "UnknownErrorClassError",
    "UnmappedVerdictError",
    "ValidationError",
]
