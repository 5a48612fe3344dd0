"""Data models for the log streaming engine."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum, IntEnum
from typing import Optional

from config.constants import StreamConstants

from .errors import InvalidConfigurationError


class TraceLevel(IntEnum):
    """Logcat severity levels, ordered from least to most important."""

    VERBOSE = 0
    DEBUG = 1
    INFO = 2
    WARNING = 3
    ERROR = 4
    ASSERT = 5
    WTF = 6

    @property
    def code(self) -> str:
        """Single character used by logcat for this level."""
        return _LEVEL_TO_CODE[self]

    @classmethod
    def from_code(cls, code: Optional[str]) -> "TraceLevel":
        """Map a logcat level character to a level; unknown input maps to DEBUG."""
        if not isinstance(code, str) or len(code) != 1:
            return cls.DEBUG
        return _CODE_TO_LEVEL.get(code, cls.DEBUG)

    @classmethod
    def lowest(cls) -> "TraceLevel":
        return cls.VERBOSE


_LEVEL_TO_CODE = {
    TraceLevel.VERBOSE: 'V',
    TraceLevel.DEBUG: 'D',
    TraceLevel.INFO: 'I',
    TraceLevel.WARNING: 'W',
    TraceLevel.ERROR: 'E',
    TraceLevel.ASSERT: 'A',
    TraceLevel.WTF: 'F',
}
_CODE_TO_LEVEL = {code: level for level, code in _LEVEL_TO_CODE.items()}


class EngineState(Enum):
    """Lifecycle states of the stream engine."""

    IDLE = 'IDLE'
    RUNNING = 'RUNNING'


@dataclass(frozen=True)
class LogRecord:
    """A parsed log line: severity plus the timestamped message."""

    level: TraceLevel
    message: str


@dataclass(frozen=True)
class StreamConfig:
    """Filtering, sampling and retention settings for a log stream.

    Instances are immutable values; use ``replace`` to derive a changed copy.
    Every construction path runs the same validation.
    """

    max_retained: int = StreamConstants.DEFAULT_MAX_RETAINED
    text_filter: str = ''
    min_level: TraceLevel = TraceLevel.VERBOSE
    flush_interval_ms: int = StreamConstants.DEFAULT_FLUSH_INTERVAL_MS
    text_size_px: Optional[float] = None

    def __post_init__(self) -> None:
        if isinstance(self.max_retained, bool) or not isinstance(self.max_retained, int):
            raise InvalidConfigurationError(
                f'max_retained must be an integer, got {self.max_retained!r}'
            )
        if self.max_retained <= 0:
            raise InvalidConfigurationError(
                "You can't use a max number of records equal or lower than zero."
            )
        if self.text_filter is None:
            raise InvalidConfigurationError("text_filter can't be None")
        if not isinstance(self.text_filter, str):
            raise InvalidConfigurationError(f'text_filter must be a string, got {self.text_filter!r}')
        if self.min_level is None:
            raise InvalidConfigurationError("min_level can't be None")
        if not isinstance(self.min_level, TraceLevel):
            # Accept plain ints/codes coming from persisted settings.
            try:
                level = TraceLevel(self.min_level)
            except ValueError as exc:
                raise InvalidConfigurationError(f'Unknown min_level {self.min_level!r}') from exc
            object.__setattr__(self, 'min_level', level)
        if isinstance(self.flush_interval_ms, bool) or not isinstance(self.flush_interval_ms, int):
            raise InvalidConfigurationError(
                f'flush_interval_ms must be an integer, got {self.flush_interval_ms!r}'
            )
        if self.flush_interval_ms < 0:
            raise InvalidConfigurationError('flush_interval_ms must be zero or positive')
        if self.text_size_px is not None and self.text_size_px <= 0:
            raise InvalidConfigurationError('text_size_px must be positive when set')

    def replace(self, **changes) -> "StreamConfig":
        """Return a validated copy with the given fields changed."""
        return replace(self, **changes)

    def copy(self) -> "StreamConfig":
        return replace(self)

    def has_filter(self) -> bool:
        """True when either the text filter or the level threshold restricts records."""
        return bool(self.text_filter) or self.min_level != TraceLevel.VERBOSE

    def has_text_size(self) -> bool:
        return self.text_size_px is not None

    @property
    def resolved_text_size_px(self) -> float:
        if self.text_size_px is None:
            return StreamConstants.DEFAULT_TEXT_SIZE_PX
        return float(self.text_size_px)


__all__ = [
    'EngineState',
    'LogRecord',
    'StreamConfig',
    'TraceLevel',
]
