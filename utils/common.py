"""Common utilities for tailcat.

This module centralises logging setup, trace identifier management and the
process helper used by log sources.
"""

from __future__ import annotations

import datetime as dt
import logging
import os
import platform
import shlex
import subprocess
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Union

from config.constants import LoggingConstants


_TRACE_ID_DEFAULT = "-"
_TRACE_ID_VAR: ContextVar[str] = ContextVar("tailcat_trace_id", default=_TRACE_ID_DEFAULT)

# Handlers, level and run log path shared by every logger from get_logger.
_HANDLER_STATE: Dict[str, Any] = {"level": logging.INFO}


class TraceIdFilter(logging.Filter):
    """Augment log records with their active trace identifier."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id = get_trace_id()
        return True


def generate_trace_id() -> str:
    """Return a new random trace identifier."""
    return uuid.uuid4().hex


def get_trace_id() -> str:
    """Return the current trace identifier ("-" when unset)."""
    return _TRACE_ID_VAR.get()


def set_trace_id(trace_id: Optional[str]) -> Token[str]:
    """Set the active trace identifier and return the context token."""
    value = trace_id or _TRACE_ID_DEFAULT
    return _TRACE_ID_VAR.set(value)


def reset_trace_id(token: Token[str]) -> None:
    """Reset the trace identifier to the previous context."""
    _TRACE_ID_VAR.reset(token)


@contextmanager
def trace_id_scope(trace_id: Optional[str]) -> Iterator[None]:
    """Context manager that temporarily sets the trace identifier."""
    token = set_trace_id(trace_id)
    try:
        yield
    finally:
        reset_trace_id(token)


def _resolve_logs_dir() -> Path:
    """Return the directory holding the per-run diagnostic log files.

    ``TAILCAT_LOG_DIR`` wins; on Linux the XDG data directory is used,
    elsewhere a dot directory in the home folder.
    """
    override = os.environ.get("TAILCAT_LOG_DIR")
    if override:
        return Path(override).expanduser()

    if platform.system().lower() == "linux":
        data_home = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
        return Path(data_home) / LoggingConstants.LOG_DIR_NAME / "logs"
    return Path.home() / f".{LoggingConstants.LOG_DIR_NAME}_logs"


def _prune_old_logs(logs_dir: Path, keep_days: int) -> int:
    """Delete run logs older than ``keep_days``; returns the number removed."""
    cutoff = dt.datetime.now().timestamp() - keep_days * 86400
    removed = 0
    for path in logs_dir.glob(f"{LoggingConstants.LOG_FILE_PREFIX}*.log"):
        try:
            if path.stat().st_mtime < cutoff:
                path.unlink()
                removed += 1
        except OSError as exc:
            logging.getLogger("tailcat.bootstrap").debug("Could not prune %s: %s", path, exc)
    return removed


def _open_run_log() -> logging.Handler:
    logs_dir = _resolve_logs_dir()
    stamp = dt.datetime.now().strftime("%Y%m%d_%H%M%S")
    filename = f"{LoggingConstants.LOG_FILE_PREFIX}{stamp}_{os.getpid()}.log"
    try:
        logs_dir.mkdir(parents=True, exist_ok=True)
        _HANDLER_STATE["pruned"] = _prune_old_logs(logs_dir, LoggingConstants.LOG_RETENTION_DAYS)
        handler: logging.Handler = logging.FileHandler(logs_dir / filename, encoding="utf-8")
        _HANDLER_STATE["path"] = str(logs_dir / filename)
    except OSError:
        # Read-only home; keep console logging only.
        handler = logging.NullHandler()
    handler.setFormatter(
        logging.Formatter(LoggingConstants.LOG_FORMAT, datefmt=LoggingConstants.LOG_DATE_FORMAT)
    )
    return handler


def _shared_handlers() -> List[logging.Handler]:
    """File and console handlers shared by every tailcat logger of this run."""
    handlers = _HANDLER_STATE.get("handlers")
    if handlers:
        return handlers

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(LoggingConstants.CONSOLE_LOG_FORMAT))
    handlers = [_open_run_log(), console]
    for handler in handlers:
        handler.setLevel(_HANDLER_STATE["level"])
        handler.addFilter(TraceIdFilter())
    _HANDLER_STATE["handlers"] = handlers
    return handlers


def current_log_file() -> Optional[str]:
    """Path of this run's log file, or None when file logging is unavailable."""
    return _HANDLER_STATE.get("path")


def get_logger(name: str = "tailcat") -> logging.Logger:
    """Return a logger wired to the shared run handlers and trace ids."""
    logger = logging.getLogger(name)
    if not any(isinstance(item, TraceIdFilter) for item in logger.filters):
        logger.addFilter(TraceIdFilter())

    if logger.handlers:
        return logger

    first_logger = "handlers" not in _HANDLER_STATE
    for handler in _shared_handlers():
        logger.addHandler(handler)
    logger.setLevel(_HANDLER_STATE["level"])
    logger.propagate = False

    if first_logger:
        if _HANDLER_STATE.get("pruned"):
            logger.debug("Removed %s old log file(s)", _HANDLER_STATE["pruned"])
        logger.debug("Logging to %s", current_log_file())
    return logger


def set_log_level(level: Union[int, str]) -> None:
    """Apply the level to the shared handlers and every tailcat logger."""
    numeric = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level!r}")
    _HANDLER_STATE["level"] = numeric
    for handler in _HANDLER_STATE.get("handlers", []):
        handler.setLevel(numeric)
    for logger in list(logging.Logger.manager.loggerDict.values()):
        if isinstance(logger, logging.Logger) and any(
            isinstance(item, TraceIdFilter) for item in logger.filters
        ):
            logger.setLevel(numeric)


# Module-level logger for common utilities (defined after get_logger).
_LOGGER = get_logger("common")


CommandType = Union[str, Sequence[str]]


def create_cancellable_process(cmd: CommandType) -> Optional[subprocess.Popen]:
    """Spawn a line-buffered text process whose stdout can be read incrementally.

    stderr is merged into stdout. Returns None when the command cannot be
    started.
    """
    _LOGGER.debug("Creating cancellable process", extra={"command": cmd})
    if isinstance(cmd, str):
        command_list: Sequence[str] = shlex.split(cmd)
    else:
        command_list = cmd

    try:
        process = subprocess.Popen(
            command_list,
            shell=False,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
        )
        return process
    except (OSError, ValueError):
        _LOGGER.exception("Failed to create cancellable process", extra={"command": list(command_list)})
        return None


__all__ = [
    "TraceIdFilter",
    "create_cancellable_process",
    "current_log_file",
    "generate_trace_id",
    "get_logger",
    "get_trace_id",
    "reset_trace_id",
    "set_log_level",
    "set_trace_id",
    "trace_id_scope",
]
