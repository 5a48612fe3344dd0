"""Stream engine: reads raw lines, filters records and flushes batches."""

from __future__ import annotations

import threading
import time
from typing import Callable, List, Optional

from utils import common

from .dispatch import Dispatcher
from .errors import InvalidConfigurationError, MalformedRecordError
from .filters import RecordFilter
from .models import EngineState, LogRecord, StreamConfig
from .parser import RecordParser
from .sources import LogSource, SourceFactory, reading_source


logger = common.get_logger('logstream_engine')


Clock = Callable[[], float]
BatchSubscriber = Callable[[List[LogRecord]], None]


def monotonic_millis() -> float:
    """Milliseconds from a monotonic clock; only differences are meaningful."""
    return time.monotonic() * 1000.0


class StreamEngine:
    """Turns a log source into rate limited batches of filtered records.

    Every raw line goes through the parser and the current filter on the
    reader thread. Matching records accumulate in a pending list, which is
    flushed to subscribers (through the dispatcher) at most once per
    ``flush_interval_ms``. Flushes are driven by arriving lines only, so a
    quiet log never produces empty batches.
    """

    def __init__(
        self,
        source_factory: SourceFactory,
        dispatcher: Dispatcher,
        clock: Clock = monotonic_millis,
        config: Optional[StreamConfig] = None,
        parser: Optional[RecordParser] = None,
    ) -> None:
        self._source_factory = source_factory
        self._dispatcher = dispatcher
        self._clock = clock
        self._parser = parser or RecordParser()
        self._config = config or StreamConfig()
        self._filter = RecordFilter.from_config(self._config)

        self._lock = threading.RLock()
        self._source: LogSource = source_factory()
        self._state = EngineState.IDLE
        self._pending: List[LogRecord] = []
        self._last_flush: Optional[float] = None
        self._session = 0
        self._subscribers: List[BatchSubscriber] = []

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------
    @property
    def state(self) -> EngineState:
        return self._state

    def is_running(self) -> bool:
        return self._state is EngineState.RUNNING

    @property
    def dispatcher(self) -> Dispatcher:
        return self._dispatcher

    @property
    def source(self) -> LogSource:
        return self._source

    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_config(self, config: StreamConfig) -> None:
        if config is None:
            raise InvalidConfigurationError("You can't use a None configuration.")
        record_filter = RecordFilter.from_config(config)
        with self._lock:
            self._config = config
            self._filter = record_filter
        logger.info(
            'Stream config updated (filter=%r, min_level=%s, interval=%sms)',
            config.text_filter,
            config.min_level.name,
            config.flush_interval_ms,
        )

    def get_config(self) -> StreamConfig:
        """Return the current configuration; the value is immutable."""
        with self._lock:
            return self._config

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------
    def register_subscriber(self, subscriber: BatchSubscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unregister_subscriber(self, subscriber: BatchSubscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._state is EngineState.RUNNING:
                return
            if self._source.is_started():
                # A stopped source cannot be resumed; read from a new one.
                self._source = self._source_factory()
            source = self._source
            source.set_listener(self._on_line)
            self._state = EngineState.RUNNING
        logger.info('Starting log stream (%s)', source.trace_id)
        source.start()

    def stop(self) -> None:
        with self._lock:
            if self._state is EngineState.IDLE:
                return
            self._state = EngineState.IDLE
            source = self._source
        logger.info('Stopping log stream (%s)', source.trace_id)
        source.stop()

    def restart(self) -> None:
        """Replace the source with a fresh one, dropping records not yet flushed."""
        with self._lock:
            previous = self._source
            listener = previous.listener or self._on_line
        previous.stop()

        with self._lock:
            self._session += 1
            dropped = len(self._pending)
            self._pending.clear()
            self._last_flush = None
            source = self._source_factory()
            source.set_listener(listener)
            self._source = source
            self._state = EngineState.RUNNING
        logger.info('Restarting log stream (%s), %s pending record(s) dropped', source.trace_id, dropped)
        source.start()

    # ------------------------------------------------------------------
    # Reader callback
    # ------------------------------------------------------------------
    def _on_line(self, line: str) -> None:
        session = self._session
        origin = reading_source()
        try:
            record = self._parser.parse(line)
        except MalformedRecordError as exc:
            logger.debug('Dropping malformed line: %s', exc)
            return

        with self._lock:
            # A line read before a restart, or by a replaced source, never
            # reaches the new session.
            if session != self._session or (origin is not None and origin is not self._source):
                logger.debug('Dropping line from a replaced reader: %r', line)
                return
            if self._filter.matches(record):
                self._pending.append(record)
            self._flush_if_needed()

    def flush_pending(self) -> int:
        """Post whatever is pending right away; returns the batch size.

        Used when a finite source (a replay) reaches its end, since flushes
        are otherwise only triggered by new lines.
        """
        with self._lock:
            count = len(self._pending)
            if count:
                self._post_pending(self._clock())
            return count

    def _flush_if_needed(self) -> None:
        if not self._pending:
            return
        now = self._clock()
        if self._last_flush is not None and now - self._last_flush <= self._config.flush_interval_ms:
            return
        self._post_pending(now)

    def _post_pending(self, now: float) -> None:
        batch = self._pending
        self._pending = []
        self._last_flush = now
        session = self._session
        self._dispatcher.post(lambda: self._deliver(batch, session))

    def _deliver(self, batch: List[LogRecord], session: int) -> None:
        with self._lock:
            subscribers = list(self._subscribers)

        for subscriber in subscribers:
            try:
                subscriber(batch)
            except Exception:
                logger.exception('Subscriber %r failed while handling %s record(s)', subscriber, len(batch))

        with self._lock:
            if session == self._session:
                self._last_flush = self._clock()


__all__ = ['BatchSubscriber', 'Clock', 'StreamEngine', 'monotonic_millis']
