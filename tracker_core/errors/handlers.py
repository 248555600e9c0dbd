# =============================================================================
# tracker_core/errors/handlers.py
# Error Handling Helpers for the Progress Tracker
# =============================================================================
"""
Helpers that turn exceptions into log records.

Nothing here talks to the user directly: sync failures surface only through
the aggregate indicator, so "handling" an error means logging it once with
its code and context and carrying on.
"""

from __future__ import annotations
import functools
import traceback
from typing import Optional, Callable, TypeVar, Any

from tracker_core.logging import get_logger
from .exceptions import TrackerError

logger = get_logger(__name__)

T = TypeVar("T")


def handle_error(
    error: Exception,
    log_error: bool = True,
    user_message: Optional[str] = None,
    level: str = "error",
) -> None:
    """
    Log ``error`` with its tracker code.

    Args:
        error: The exception to report
        log_error: Set to False to skip logging entirely
        user_message: Replaces the exception text in the log line
        level: Logger method name; tracebacks are attached only at "error"
    """
    if isinstance(error, TrackerError):
        code, details = error.code, error.details
    else:
        code, details = "UNKNOWN", {"traceback": traceback.format_exc()}

    if not log_error:
        return
    log = getattr(logger, level, logger.error)
    log(
        f"[{code}] {user_message or getattr(error, 'message', None) or error}",
        extra={"details": details},
        exc_info=level == "error",
    )


def safe_execute(
    func: Callable[..., T],
    *args,
    default: Optional[T] = None,
    error_message: Optional[str] = None,
    reraise: bool = False,
    **kwargs,
) -> Optional[T]:
    """
    Call ``func(*args, **kwargs)``; log and return ``default`` if it raises.

    Used wherever the engine calls code it does not own, such as change
    subscribers and connectivity listeners, so one broken callback cannot
    stop the others from running.
    """
    try:
        return func(*args, **kwargs)
    except Exception as e:
        handle_error(e, user_message=error_message)
        if reraise:
            raise
        return default


def error_boundary(
    default_return: Any = None,
    error_message: Optional[str] = None,
    log: bool = True,
):
    """Decorator form of :func:`safe_execute` for rendering helpers."""
    def decorator(func: Callable[..., T]) -> Callable[..., Optional[T]]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Optional[T]:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if log:
                    logger.error(f"{error_message or 'Error'} in {func.__name__}: {e}", exc_info=True)
                return default_return

        return wrapper

    return decorator
