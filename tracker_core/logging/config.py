# =============================================================================
# tracker_core/logging/config.py
# Logging Setup for the Progress Tracker
# =============================================================================

import logging
import sys
import time
from pathlib import Path
from datetime import date
from typing import List, Optional, Union


LOG_FORMAT = "%(asctime)s | %(name)s | %(levelname)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_DIR = Path("logs")

# Supabase client stack; these log every HTTP request at INFO
NOISY_LOGGERS = ("urllib3", "httpx", "httpcore", "hpack", "supabase", "postgrest")


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def _build_handlers(log_to_file: bool, log_filename: Optional[str], log_dir: Optional[Path]) -> List[logging.Handler]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_to_file:
        directory = Path(log_dir) if log_dir else LOG_DIR
        directory.mkdir(parents=True, exist_ok=True)
        filename = log_filename or f"tracker_{date.today():%Y-%m-%d}.log"
        handlers.append(logging.FileHandler(directory / filename))
    return handlers


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_to_file: bool = True,
    log_filename: Optional[str] = None,
    log_dir: Optional[Path] = None,
) -> None:
    """
    Configure the root logger for the app process.

    Safe to call repeatedly; each call replaces the previous handlers.

    Args:
        level: Numeric level or a name such as "DEBUG" (unknown names fall back to INFO)
        log_to_file: Also write to ``<log_dir>/<log_filename>``
        log_filename: Defaults to tracker_YYYY-MM-DD.log
        log_dir: Defaults to ./logs
    """
    logging.basicConfig(
        level=_resolve_level(level),
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=_build_handlers(log_to_file, log_filename, log_dir),
        force=True,
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger("tracker_core").info("Logging initialized")


def get_logger(name: str) -> logging.Logger:
    """Module logger; pass ``__name__``."""
    return logging.getLogger(name)


class LogContext:
    """
    Log the start, end and duration of a block.

    Usage:
        with LogContext(logger, "Reconciling progress"):
            ...
        # "Reconciling progress... started"
        # "Reconciling progress... completed (0.12s)"

    Exceptions are logged and re-raised.
    """

    def __init__(self, logger: logging.Logger, operation: str, level: int = logging.INFO):
        self.logger = logger
        self.operation = operation
        self.level = level
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.log(self.level, f"{self.operation}... started")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.perf_counter() - self._started
        if exc_type is None:
            self.logger.log(self.level, f"{self.operation}... completed ({elapsed:.2f}s)")
        else:
            self.logger.error(f"{self.operation}... failed ({elapsed:.2f}s): {exc_val}", exc_info=True)
        return False
