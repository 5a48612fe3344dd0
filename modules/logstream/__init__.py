"""Log streaming subsystem: parse, filter, batch and retain logcat records."""

from .buffer import RetentionBuffer
from .dispatch import Dispatcher, ImmediateDispatcher, QueueDispatcher
from .engine import StreamEngine, monotonic_millis
from .errors import (
    InvalidConfigurationError,
    InvalidFilterSyntaxError,
    LogSourceError,
    LogStreamError,
    MalformedRecordError,
)
from .facade import LogStreamFacade
from .filters import RecordFilter
from .models import EngineState, LogRecord, StreamConfig, TraceLevel
from .parser import RecordParser, parse_record
from .sources import (
    IterableLogSource,
    LogSource,
    ProcessLogSource,
    build_logcat_command,
    logcat_source_factory,
)

__all__ = [
    'Dispatcher',
    'EngineState',
    'ImmediateDispatcher',
    'InvalidConfigurationError',
    'InvalidFilterSyntaxError',
    'IterableLogSource',
    'LogRecord',
    'LogSource',
    'LogSourceError',
    'LogStreamError',
    'LogStreamFacade',
    'MalformedRecordError',
    'ProcessLogSource',
    'QueueDispatcher',
    'RecordFilter',
    'RecordParser',
    'RetentionBuffer',
    'StreamConfig',
    'StreamEngine',
    'TraceLevel',
    'build_logcat_command',
    'logcat_source_factory',
    'monotonic_millis',
    'parse_record',
]
