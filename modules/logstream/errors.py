"""Exceptions raised by the log streaming engine."""

from __future__ import annotations

from typing import Optional


class LogStreamError(RuntimeError):
    """Base class for log stream failures."""


class MalformedRecordError(LogStreamError, ValueError):
    """Raised when a raw log line cannot be turned into a record."""

    def __init__(self, message: str, line: Optional[str] = None) -> None:
        super().__init__(message)
        self.line = line


class InvalidFilterSyntaxError(LogStreamError, ValueError):
    """The configured text filter does not compile as a regular expression."""

    def __init__(self, pattern: str, reason: str) -> None:
        super().__init__(f'Invalid regexp filter {pattern!r}: {reason}')
        self.pattern = pattern
        self.reason = reason


class InvalidConfigurationError(LogStreamError, ValueError):
    """Raised synchronously when a configuration value is rejected."""


class LogSourceError(LogStreamError):
    """The underlying log source could not be spawned or read."""


__all__ = [
    'InvalidConfigurationError',
    'InvalidFilterSyntaxError',
    'LogSourceError',
    'LogStreamError',
    'MalformedRecordError',
]
