"""Parsing helpers turning raw `logcat -v time` lines into records."""

from __future__ import annotations

from typing import Iterable, Iterator, Optional

from config.constants import ParserConstants

from .errors import MalformedRecordError
from .models import LogRecord, TraceLevel


class RecordParser:
    """Parses ``MM-DD HH:MM:SS.mmm L/message`` lines using fixed offsets.

    The emitted message keeps the timestamp and drops the level marker, so
    ``02-07 17:45:33.014 D/hello`` becomes ``DEBUG`` / ``02-07 17:45:33.014 hello``.
    """

    END_OF_DATE_INDEX = ParserConstants.END_OF_DATE_INDEX
    LEVEL_INDEX = ParserConstants.LEVEL_INDEX
    SEPARATOR_INDEX = ParserConstants.SEPARATOR_INDEX
    MESSAGE_INDEX = ParserConstants.MESSAGE_INDEX
    MIN_TRACE_LENGTH = ParserConstants.MIN_TRACE_LENGTH
    SEPARATOR = ParserConstants.SEPARATOR

    def parse(self, line: Optional[str]) -> LogRecord:
        """Parse a single raw line or raise MalformedRecordError."""
        if line is None:
            raise MalformedRecordError('Trace must not be None', line)
        if not isinstance(line, str):
            raise MalformedRecordError(f'Trace must be a string, got {type(line).__name__}')

        trace = line.rstrip('\r\n')
        if len(trace) < self.MIN_TRACE_LENGTH:
            raise MalformedRecordError(
                f'Trace shorter than {self.MIN_TRACE_LENGTH} characters', line
            )
        if trace[self.SEPARATOR_INDEX] != self.SEPARATOR:
            raise MalformedRecordError('Trace level separator not found', line)

        level = TraceLevel.from_code(trace[self.LEVEL_INDEX])
        date = trace[:self.END_OF_DATE_INDEX].strip()
        body = trace[self.MESSAGE_INDEX:]
        return LogRecord(level=level, message=f'{date} {body}')

    def try_parse(self, line: Optional[str]) -> Optional[LogRecord]:
        """Return the parsed record, or None when the line is malformed."""
        try:
            return self.parse(line)
        except MalformedRecordError:
            return None

    def parse_many(self, lines: Iterable[Optional[str]]) -> Iterator[LogRecord]:
        """Yield records for the well-formed lines, skipping the rest."""
        for line in lines:
            record = self.try_parse(line)
            if record is not None:
                yield record


_default_parser = RecordParser()


def parse_record(line: Optional[str]) -> LogRecord:
    """Module level shortcut for ``RecordParser().parse``."""
    return _default_parser.parse(line)


__all__ = ['RecordParser', 'parse_record']
