"""Logging for watchbatch.

Every module logs through a child of the ``watchbatch`` logger obtained from
``get_logger("<area>")``. Nothing is printed until ``setup_logging()`` runs;
it then writes to:
- the file named by ``logging.file`` (or WATCHBATCH_LOG), or
- stderr, but only when stderr is a terminal

Verbosity 0-4 selects error, warning, info, verbose or trace. Raw watchman
traffic and per-file events are logged at TRACE.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from watchbatch.config.schema import LoggingConfig

TRACE = 5
VERBOSE = 15

logging.addLevelName(TRACE, "TRACE")
logging.addLevelName(VERBOSE, "VERBOSE")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s]: %(message)s"
DATE_FORMAT = "%H:%M:%S"

logger = logging.getLogger("watchbatch")

_initialized = False

_LEVEL_NAMES = {
    "trace": TRACE,
    "debug": logging.DEBUG,
    "verbose": VERBOSE,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# Index is the -v count
_VERBOSITY_LEVELS = (logging.ERROR, logging.WARNING, logging.INFO, VERBOSE, TRACE)


class _LowercaseLevelFormatter(logging.Formatter):
    """Formatter that emits lowercase level names."""

    def format(self, record: logging.LogRecord) -> str:
        record.levelname = record.levelname.lower()
        return super().format(record)


def resolve_level(config: LoggingConfig | None) -> int:
    """Work out the effective log level for a logging config.

    ``verbose`` (int) takes precedence over ``level`` (str). Unknown level
    names fall back to INFO; verbosity is clamped to the 0-4 range.
    """
    if config is None:
        return logging.INFO
    if config.verbose is not None:
        index = min(max(config.verbose, 0), len(_VERBOSITY_LEVELS) - 1)
        return _VERBOSITY_LEVELS[index]
    if config.level:
        return _LEVEL_NAMES.get(config.level.lower(), logging.INFO)
    return logging.INFO


def _open_handler(log_path: str | None) -> logging.Handler | None:
    """Pick the output for log records, or None to stay silent."""
    if log_path:
        try:
            return logging.FileHandler(os.path.expanduser(log_path), mode="a", encoding="utf-8")
        except OSError as e:
            if not sys.stderr.isatty():
                return None
            print(f"[watchbatch] Failed to open log file: {e}", file=sys.stderr)
            return logging.StreamHandler(sys.stderr)

    # A pipe on stderr usually belongs to the host tool's own output
    if sys.stderr.isatty():
        return logging.StreamHandler(sys.stderr)
    return None


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Install the watchbatch log handler.

    Call this once at startup. Subsequent calls are no-ops until
    reset_logging().

    Args:
        config: Optional LoggingConfig with level, verbose, and file settings.
            Without one, WATCHBATCH_LOG is read directly.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = resolve_level(config)
    logger.setLevel(level)

    log_path = config.file if config and config.file else os.environ.get("WATCHBATCH_LOG")
    handler = _open_handler(log_path)
    if handler is None:
        return
    handler.setLevel(level)
    handler.setFormatter(_LowercaseLevelFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)


def reset_logging() -> None:
    """Remove installed handlers so setup_logging() can run again."""
    global _initialized
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _initialized = False


def get_logger(name: str | None = None) -> logging.Logger:
    """Get a logger instance.

    Args:
        name: Optional name for a child logger (e.g., "aggregator", "transport").
              If None, returns the root watchbatch logger.
    """
    if name:
        return logger.getChild(name)
    return logger
