"""Facade composing the stream engine with the retention buffer."""

from __future__ import annotations

import threading
from typing import Callable, List, Optional

from config.constants import StreamConstants
from utils import common

from .buffer import RetentionBuffer
from .engine import StreamEngine
from .errors import InvalidConfigurationError
from .filters import RecordFilter
from .models import LogRecord, StreamConfig, TraceLevel


logger = common.get_logger('logstream_facade')


RecordsSubscriber = Callable[[List[LogRecord], int], None]


class LogStreamFacade:
    """Lifecycle and configuration entry point for log stream consumers.

    Subscribers receive the whole retained history plus the number of
    records evicted by the latest append, which lets a list view keep its
    scroll position stable. All notifications run on the engine dispatcher.

    Usage:
        facade = LogStreamFacade(engine)
        facade.add_subscriber(view.show_records)
        facade.resume()
    """

    def __init__(self, engine: StreamEngine, max_retained: Optional[int] = None) -> None:
        if max_retained is None:
            max_retained = engine.get_config().max_retained
        self._engine = engine
        self._buffer = RetentionBuffer(max_retained)
        self._subscribers: List[RecordsSubscriber] = []
        self._lock = threading.Lock()
        self._resumed = False

    @property
    def engine(self) -> StreamEngine:
        return self._engine

    @property
    def configuration(self) -> StreamConfig:
        return self._engine.get_config()

    def is_resumed(self) -> bool:
        return self._resumed

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------
    def add_subscriber(self, subscriber: RecordsSubscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def remove_subscriber(self, subscriber: RecordsSubscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def resume(self) -> None:
        """Register with the engine and start reading, once."""
        if self._resumed:
            return
        self._resumed = True
        self._engine.register_subscriber(self._on_batch)
        self._engine.start()

    def pause(self) -> None:
        """Stop reading and detach from the engine, if resumed."""
        if not self._resumed:
            return
        self._resumed = False
        self._engine.stop()
        self._engine.unregister_subscriber(self._on_batch)

    def restart(self) -> None:
        self._engine.restart()

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def set_configuration(self, config: StreamConfig) -> None:
        """Apply capacity and filters, then re-deliver the retained records."""
        if config is None:
            raise InvalidConfigurationError("You can't use a None configuration.")
        if not isinstance(config, StreamConfig):
            raise InvalidConfigurationError(f'Expected StreamConfig, got {type(config).__name__}')

        evicted = self._buffer.set_capacity(config.max_retained)
        if evicted:
            logger.info('Capacity reduced to %s, %s record(s) evicted', config.max_retained, evicted)
        self._engine.set_config(config)
        self.redeliver()

    def update_filter(self, text_filter: str) -> None:
        """Clear the history and restart reading with a new text filter."""
        if not self._resumed:
            return
        config = self._engine.get_config().replace(text_filter=text_filter)
        self._engine.set_config(config)
        self.clear()
        self._engine.restart()

    def update_min_level(self, level: TraceLevel) -> None:
        """Clear the history and restart reading with a new level threshold."""
        if not self._resumed:
            return
        self.clear()
        config = self._engine.get_config().replace(min_level=level)
        self._engine.set_config(config)
        self._engine.restart()

    def redeliver(self) -> None:
        """Notify subscribers with the retained records passing the current filter.

        The buffer itself is left untouched.
        """
        record_filter = RecordFilter.from_config(self._engine.get_config())
        visible = record_filter.select(self._buffer.snapshot())
        self._engine.dispatcher.post(lambda: self._notify(visible, 0))

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def current_records(self) -> List[LogRecord]:
        return self._buffer.snapshot()

    def export_plain_text(self) -> str:
        """Render the whole retained history for sharing.

        One ``<level code>/ <message>`` line per record, oldest first. The
        current filter is not applied.
        """
        return ''.join(f'{record.level.code}/ {record.message}\n' for record in self._buffer.snapshot())

    def record_count(self) -> int:
        return len(self._buffer)

    @property
    def max_retained(self) -> int:
        return self._buffer.capacity

    def clear(self) -> None:
        """Empty the history and tell subscribers to clear their views."""
        self._buffer.clear()
        self._engine.dispatcher.post(lambda: self._notify([], 0))

    def should_auto_scroll(self, last_visible_position: int) -> bool:
        """Whether a view showing ``last_visible_position`` is close enough to the tail."""
        offset = len(self._buffer) - last_visible_position
        return offset < StreamConstants.AUTO_SCROLL_TAIL_DISTANCE

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _on_batch(self, records: List[LogRecord]) -> None:
        evicted = self._buffer.append(records)
        self._notify(self._buffer.snapshot(), evicted)

    def _notify(self, records: List[LogRecord], evicted: int) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(list(records), evicted)
            except Exception:
                logger.exception('Records subscriber %r failed', subscriber)


__all__ = ['LogStreamFacade', 'RecordsSubscriber']
