"""Delivery contexts used to hand batches to subscribers."""

from __future__ import annotations

import queue
import threading
from typing import Callable, Optional

from config.constants import StreamConstants
from utils import common


logger = common.get_logger('logstream_dispatch')


Task = Callable[[], None]


class Dispatcher:
    """Single-consumer delivery context; ``post`` must not block the caller."""

    def post(self, task: Task) -> None:
        raise NotImplementedError


class ImmediateDispatcher(Dispatcher):
    """Runs tasks inline on the posting thread."""

    def post(self, task: Task) -> None:
        task()


_STOP = object()


class QueueDispatcher(Dispatcher):
    """Runs posted tasks in FIFO order on one dedicated worker thread."""

    def __init__(self, name: str = 'logstream-dispatcher') -> None:
        self._name = name
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    @property
    def thread(self) -> Optional[threading.Thread]:
        return self._thread

    def is_running(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def start(self) -> "QueueDispatcher":
        with self._lock:
            if self.is_running():
                return self
            self._thread = threading.Thread(target=self._loop, name=self._name, daemon=True)
            self._thread.start()
        return self

    def stop(self, wait: bool = True) -> None:
        """Drain already queued tasks, then end the worker."""
        with self._lock:
            thread = self._thread
            if thread is None:
                return
            self._queue.put(_STOP)
            self._thread = None
        if wait and thread is not threading.current_thread():
            thread.join(timeout=StreamConstants.DISPATCHER_JOIN_TIMEOUT_S)

    def post(self, task: Task) -> None:
        self._queue.put(task)

    def _loop(self) -> None:
        while True:
            task = self._queue.get()
            try:
                if task is _STOP:
                    return
                task()
            except Exception:
                logger.exception('Dispatched task failed')
            finally:
                self._queue.task_done()

    def wait_idle(self) -> None:
        """Block until every task posted so far has run."""
        self._queue.join()


__all__ = ['Dispatcher', 'ImmediateDispatcher', 'QueueDispatcher', 'Task']
