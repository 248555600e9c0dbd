# =============================================================================
# tracker_core/errors/exceptions.py
# Exception Hierarchy for the Progress Tracker
# =============================================================================

from typing import Optional, Dict, Any


class TrackerError(Exception):
    """
    Root of every error the tracker raises on purpose.

    Subclasses pick a ``code`` and whether the failure is ``recoverable``
    (a later retry of the same operation may succeed). Extra keyword
    arguments become ``details`` when they are not None, so call sites can
    write ``LocalPersistenceError("...", path=p, operation="save")``.
    """

    code: str = "TRK_000"
    recoverable: bool = True

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        recoverable: Optional[bool] = None,
        code: Optional[str] = None,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = dict(details or {})
        self.details.update({k: v for k, v in context.items() if v is not None})
        if recoverable is not None:
            self.recoverable = recoverable

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        return f"{text} | Details: {self.details}" if self.details else text

    def to_dict(self) -> Dict[str, Any]:
        """Plain dict form, used for log records."""
        return {
            "error_type": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "recoverable": self.recoverable,
        }


# =============================================================================
# PROGRESS DATA
# =============================================================================

class ProgressValidationError(TrackerError):
    """A mutation carries a value or entity id its domain cannot store."""

    code = "DATA_001"
    recoverable = False

    def __init__(self, message: str, value: Any = None, **context: Any):
        if value is not None:
            context["value"] = repr(value)
        super().__init__(message, **context)


class LocalPersistenceError(TrackerError):
    """The on-device SQLite store could not be read or written."""

    code = "LOCAL_001"


# =============================================================================
# REMOTE STORE
# =============================================================================

class RemoteUnavailableError(TrackerError):
    """Network failure, timeout or server error; the write stays queued."""

    code = "REMOTE_001"


class RemoteAuthExpiredError(TrackerError):
    """Session expired. Writes pause until the user signs in again."""

    code = "REMOTE_002"


class RemotePermissionDeniedError(TrackerError):
    """Row-level security refused the write; retrying the same payload is pointless."""

    code = "REMOTE_003"
    recoverable = False


# =============================================================================
# CONFIGURATION
# =============================================================================

class ConfigurationError(TrackerError):
    code = "CONFIG_001"
    recoverable = False
