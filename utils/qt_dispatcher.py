"""Qt delivery context running posted tasks on the owning (GUI) thread."""

from __future__ import annotations

from typing import Optional

from PyQt6.QtCore import QObject, Qt, pyqtSignal

from modules.logstream.dispatch import Task
from utils import common


logger = common.get_logger('qt_dispatcher')


class QtMainThreadDispatcher(QObject):
    """Posts tasks through a queued signal so they run in this object's thread.

    Create it on the GUI thread; ``post`` may then be called from any reader
    thread and the task executes inside the Qt event loop.
    """

    task_posted = pyqtSignal(object)
    task_failed = pyqtSignal(Exception)

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self.task_posted.connect(self._run_task, Qt.ConnectionType.QueuedConnection)

    def post(self, task: Task) -> None:
        self.task_posted.emit(task)

    def _run_task(self, task: Task) -> None:
        try:
            task()
        except Exception as exc:
            logger.exception('Main thread task failed: %s', exc)
            self.task_failed.emit(exc)


__all__ = ['QtMainThreadDispatcher']
