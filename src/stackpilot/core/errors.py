"""
Unified error handling for stackpilot.

This module provides the error taxonomy used by the planner, executor,
state store and migration runner, together with the exit codes the CLI
maps them to.

Exit Codes:
- 0: Success
- 2: Blocked (apply aborted or cancelled before finishing)
- 10: Configuration error
- 11: Provider error (external service failure)
- 12: Validation error (malformed manifest, dependency cycle)
- 13: Conflict (migration history was modified)
- 14: State store error
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    BLOCKED = 2
    CONFIG_ERROR = 10
    PROVIDER_ERROR = 11
    VALIDATION_ERROR = 12
    CONFLICT_ERROR = 13
    STATE_ERROR = 14
    UNKNOWN_ERROR = 127


class StackPilotError(Exception):
    """Base exception for stackpilot errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(StackPilotError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class ProviderError(StackPilotError):
    """Raised when an external provider operation fails.

    ``transient`` marks failures worth retrying (throttling, timeouts,
    unavailable endpoints). Permanent failures are never retried.

    ``provider_id`` is set when the failure happened after the resource
    already existed, so a retry converges it instead of creating another.
    """

    exit_code = ExitCode.PROVIDER_ERROR

    def __init__(
        self,
        message: str,
        *,
        transient: bool = False,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.transient = transient
        self.provider_id: str | None = None

    @classmethod
    def transient_error(cls, message: str, **details: Any) -> "ProviderError":
        return cls(message, transient=True, details=details)

    @classmethod
    def permanent_error(cls, message: str, **details: Any) -> "ProviderError":
        return cls(message, transient=False, details=details)


class ValidationError(StackPilotError):
    """Raised for validation failures in manifests or plan input."""

    exit_code = ExitCode.VALIDATION_ERROR


class CycleError(ValidationError):
    """Raised when resource dependencies form a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(
            f"Dependency cycle detected: {' -> '.join(cycle)}",
            details={"cycle": cycle},
        )
        self.cycle = cycle


class ConflictError(StackPilotError):
    """Raised when an applied migration no longer matches its definition."""

    exit_code = ExitCode.CONFLICT_ERROR


class StateStoreError(StackPilotError):
    """Raised when the state store cannot be read or written."""

    exit_code = ExitCode.STATE_ERROR


class BlockedError(StackPilotError):
    """Raised when an apply was aborted before every step finished."""

    exit_code = ExitCode.BLOCKED


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Usage:
        @main_with_error_handling()
        def my_command() -> int:
            return 0

    Exit codes:
        - StackPilotError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except StackPilotError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                from stackpilot.cli.ux import error as print_error

                print_error(format_error_message(e))
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130  # Standard exit code for SIGINT
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: StackPilotError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
