"""Core modules for stackpilot - error taxonomy and exit codes."""

from stackpilot.core.errors import (
    BlockedError,
    ConfigurationError,
    ConflictError,
    CycleError,
    ExitCode,
    ProviderError,
    StackPilotError,
    StateStoreError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "StackPilotError",
    "ConfigurationError",
    "ProviderError",
    "ValidationError",
    "CycleError",
    "ConflictError",
    "StateStoreError",
    "BlockedError",
    "main_with_error_handling",
    "format_error_message",
]
