"""
Unified error handling for deployguard.

Exceptions carry an exit code so that CLI commands and release entry
points can map a failure straight to a process status.

Exit Codes:
- 0: Success
- 1: Warning (advisory, operation succeeded with warnings)
- 2: Blocked (deployment gate refused the release)
- 10: Configuration error
- 11: Provider error (external adapter failure)
- 12: Validation error (bad confidence, unknown error class, bad environment)
- 127: Unknown/internal error, including contract violations
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Any, Callable, TypeVar

import structlog

if TYPE_CHECKING:
    from deployguard.verdicts.gate import DeploymentGateResult

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes."""

    SUCCESS = 0
    WARNING = 1
    BLOCKED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    UNKNOWN_ERROR = 127


class DeployGuardError(Exception):
    """Base exception for deployguard errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(DeployGuardError):
    """Raised for configuration-related errors (lawbook, policy files, settings)."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(DeployGuardError):
    """Raised when an injected adapter fails outside of a step boundary."""

    exit_code = ExitCode.PROVIDER_ERROR


class ValidationError(DeployGuardError):
    """Raised for validation failures. Never retried."""

    exit_code = ExitCode.VALIDATION_ERROR


class InvalidConfidenceError(ValidationError):
    """Raw classifier confidence outside [0, 1]."""


class UnknownErrorClassError(ValidationError):
    """Error class has no entry in the policy snapshot's action map."""


class InvalidEnvironmentError(ValidationError):
    """Environment string that does not canonicalize."""


class EvidenceError(ValidationError):
    """Evidence payload is structurally unusable."""


class DeploymentBlockedError(DeployGuardError):
    """Raised by validate_deployment_gate when the reduced verdict is not GREEN."""

    exit_code = ExitCode.BLOCKED

    def __init__(
        self,
        message: str,
        gate_result: DeploymentGateResult | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.gate_result = gate_result


class UnmappedVerdictError(DeployGuardError):
    """A verdict value fell outside the reduction tables. This is a bug, not an input error."""

    exit_code = ExitCode.UNKNOWN_ERROR
    show_traceback = True


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - DeployGuardError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except DeployGuardError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: DeployGuardError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
