# =============================================================================
# tracker_core/errors/__init__.py
# Centralized Error Handling for the Progress Tracker
# =============================================================================

from .exceptions import (
    TrackerError,
    ProgressValidationError,
    LocalPersistenceError,
    RemoteUnavailableError,
    RemoteAuthExpiredError,
    RemotePermissionDeniedError,
    ConfigurationError,
)

from .handlers import (
    handle_error,
    safe_execute,
    error_boundary,
)

__all__ = [
    # Exceptions
    "TrackerError",
    "ProgressValidationError",
    "LocalPersistenceError",
    "RemoteUnavailableError",
    "RemoteAuthExpiredError",
    "RemotePermissionDeniedError",
    "ConfigurationError",
    # Handlers
    "handle_error",
    "safe_execute",
    "error_boundary",
]
