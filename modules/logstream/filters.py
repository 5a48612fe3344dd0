"""Record filtering by text (substring or regexp) and minimum severity."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from utils import common

from .errors import InvalidFilterSyntaxError
from .models import LogRecord, StreamConfig, TraceLevel


logger = common.get_logger('logstream_filters')


class RecordFilter:
    """Pure predicate combining a text gate and a level gate.

    The text gate matches when the lower-cased message contains the filter
    or when the filter, compiled as a regexp, finds a match in it. A filter
    that is not a valid regexp falls back to plain substring matching.
    """

    def __init__(self, text_filter: str = '', min_level: TraceLevel = TraceLevel.VERBOSE) -> None:
        self._text_filter = text_filter or ''
        self._lower_filter = self._text_filter.lower()
        self._min_level = min_level
        self._regex: Optional[re.Pattern[str]] = None
        self._regex_error: Optional[InvalidFilterSyntaxError] = None
        if self._lower_filter:
            self._regex = self._compile(self._lower_filter)

    @classmethod
    def from_config(cls, config: StreamConfig) -> "RecordFilter":
        return cls(config.text_filter, config.min_level)

    def _compile(self, pattern: str) -> Optional[re.Pattern[str]]:
        try:
            return re.compile(pattern)
        except re.error as exc:
            self._regex_error = InvalidFilterSyntaxError(pattern, str(exc))
            logger.debug('Invalid regexp filter, using substring matching: %s', self._regex_error)
            return None

    @property
    def text_filter(self) -> str:
        return self._text_filter

    @property
    def min_level(self) -> TraceLevel:
        return self._min_level

    @property
    def regex_error(self) -> Optional[InvalidFilterSyntaxError]:
        """The compile error of the text filter, if it is not a valid regexp."""
        return self._regex_error

    def is_passthrough(self) -> bool:
        return not self._lower_filter and self._min_level == TraceLevel.VERBOSE

    def matches(self, record: LogRecord) -> bool:
        return self._level_matches(record) and self._text_matches(record)

    def select(self, records: Iterable[LogRecord]) -> List[LogRecord]:
        """Return the matching records, keeping their order."""
        return [record for record in records if self.matches(record)]

    def _level_matches(self, record: LogRecord) -> bool:
        if self._min_level == TraceLevel.VERBOSE:
            return True
        return record.level >= self._min_level

    def _text_matches(self, record: LogRecord) -> bool:
        if not self._lower_filter:
            return True
        message = record.message.lower()
        if self._lower_filter in message:
            return True
        if self._regex is not None:
            return self._regex.search(message) is not None
        return False

    def __repr__(self) -> str:
        return f'RecordFilter(text_filter={self._text_filter!r}, min_level={self._min_level.name})'


__all__ = ['RecordFilter']
