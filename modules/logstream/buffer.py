"""Bounded FIFO history of delivered records."""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Iterable, List

from .errors import InvalidConfigurationError
from .models import LogRecord


def _validate_capacity(capacity: int) -> int:
    if isinstance(capacity, bool) or not isinstance(capacity, int):
        raise InvalidConfigurationError(f'Buffer capacity must be an integer, got {capacity!r}')
    if capacity <= 0:
        raise InvalidConfigurationError(
            "You can't pass a zero or negative number of records to retain."
        )
    return capacity


class RetentionBuffer:
    """Keeps at most ``capacity`` records, discarding the oldest first.

    Mutations and snapshots are serialised with a lock, so a reader on
    another thread never observes a half-applied append.
    """

    def __init__(self, capacity: int) -> None:
        self._capacity = _validate_capacity(capacity)
        self._records: Deque[LogRecord] = deque()
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, records: Iterable[LogRecord]) -> int:
        """Add records to the tail and return how many old ones were evicted."""
        with self._lock:
            self._records.extend(records)
            return self._discard_overflow()

    def set_capacity(self, capacity: int) -> int:
        """Change the capacity, evicting from the head when shrinking."""
        capacity = _validate_capacity(capacity)
        with self._lock:
            self._capacity = capacity
            return self._discard_overflow()

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def snapshot(self) -> List[LogRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def _discard_overflow(self) -> int:
        overflow = len(self._records) - self._capacity
        if overflow <= 0:
            return 0
        for _ in range(overflow):
            self._records.popleft()
        return overflow


__all__ = ['RetentionBuffer']
