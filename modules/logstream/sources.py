"""Log sources producing raw lines on a dedicated reader thread."""

from __future__ import annotations

import subprocess
import threading
from contextvars import ContextVar
from typing import Callable, Iterable, List, Optional, Sequence

from config.constants import SourceConstants, StreamConstants
from utils import common

from .errors import LogSourceError


logger = common.get_logger('logstream_sources')


LineListener = Callable[[str], None]
SourceFactory = Callable[[], "LogSource"]

_READING_SOURCE: ContextVar[Optional["LogSource"]] = ContextVar('logstream_reading_source', default=None)


def reading_source() -> Optional["LogSource"]:
    """The source whose reader thread is running the caller, or None."""
    return _READING_SOURCE.get()


class LogSource:
    """Base reader: one thread, one listener, started at most once.

    Subclasses implement ``_read_lines`` (a blocking iterator of raw lines)
    and may override ``_interrupt`` to unblock a pending read on ``stop``.
    """

    def __init__(self, name: str = 'log-source') -> None:
        self._name = name
        self._listener: Optional[LineListener] = None
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._trace_id = common.generate_trace_id()

    # ------------------------------------------------------------------
    # Listener management
    # ------------------------------------------------------------------
    def set_listener(self, listener: Optional[LineListener]) -> None:
        self._listener = listener

    @property
    def listener(self) -> Optional[LineListener]:
        return self._listener

    @property
    def trace_id(self) -> str:
        return self._trace_id

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def is_started(self) -> bool:
        return self._thread is not None

    def is_alive(self) -> bool:
        thread = self._thread
        return thread is not None and thread.is_alive()

    def is_stopping(self) -> bool:
        return self._stop_event.is_set()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                raise RuntimeError(f'{self._name} can only be started once')
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Ask the reader to finish and unblock any read in progress."""
        self._stop_event.set()
        try:
            self._interrupt()
        except OSError as exc:
            logger.debug('Interrupting %s failed: %s', self._name, exc)

    def join(self, timeout: Optional[float] = StreamConstants.READER_JOIN_TIMEOUT_S) -> bool:
        """Wait for the reader thread; returns True when it has exited."""
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # ------------------------------------------------------------------
    # Reader loop
    # ------------------------------------------------------------------
    def _run(self) -> None:
        token = _READING_SOURCE.set(self)
        with common.trace_id_scope(self._trace_id):
            logger.info('Reader %s started', self._name)
            try:
                for line in self._read_lines():
                    if self._stop_event.is_set():
                        break
                    self._notify(line)
            except LogSourceError as exc:
                logger.error('Log source %s unavailable: %s', self._name, exc)
            except (OSError, ValueError) as exc:
                if not self._stop_event.is_set():
                    logger.error('Log source %s read failure: %s', self._name, exc)
            finally:
                self._on_finished()
                _READING_SOURCE.reset(token)
                logger.info('Reader %s finished', self._name)

    def _notify(self, line: str) -> None:
        listener = self._listener
        if listener is None:
            return
        try:
            listener(line)
        except Exception:
            logger.exception('Listener %r of %s failed on line %r', listener, self._name, line)

    def _read_lines(self) -> Iterable[str]:
        raise NotImplementedError

    def _interrupt(self) -> None:
        """Hook to unblock a pending read; default relies on the stop event."""

    def _on_finished(self) -> None:
        """Hook to release resources once the loop exits."""


class IterableLogSource(LogSource):
    """Replays lines from any iterable, e.g. a list or an open file."""

    def __init__(self, lines: Iterable[str], name: str = 'iterable-source') -> None:
        super().__init__(name)
        self._lines = lines

    def _read_lines(self) -> Iterable[str]:
        for line in self._lines:
            yield line.rstrip('\r\n')


class ProcessLogSource(LogSource):
    """Reads lines from the stdout of a child process such as ``adb logcat``."""

    def __init__(
        self,
        command: Sequence[str],
        name: str = 'logcat-reader',
        process_factory: Callable[[Sequence[str]], Optional[subprocess.Popen]] = common.create_cancellable_process,
    ) -> None:
        super().__init__(name)
        self._command: List[str] = list(command)
        self._process_factory = process_factory
        self._process: Optional[subprocess.Popen] = None

    @property
    def command(self) -> List[str]:
        return list(self._command)

    def _read_lines(self) -> Iterable[str]:
        process = self._process_factory(self._command)
        if process is None:
            raise LogSourceError(f'Unable to spawn {" ".join(self._command)}')
        self._process = process
        if self._stop_event.is_set():
            # stop() raced with the spawn; make sure the child does not linger.
            self._interrupt()
            return

        stdout = process.stdout
        if stdout is None:
            raise LogSourceError('Process has no stdout pipe')

        for line in iter(stdout.readline, ''):
            yield line.rstrip('\r\n')

        if not self._stop_event.is_set():
            return_code = process.poll()
            logger.warning('Log stream closed unexpectedly (exit code %s)', return_code)

    def _interrupt(self) -> None:
        process = self._process
        if process is None or process.poll() is not None:
            return
        try:
            process.kill()
        except ProcessLookupError:
            return
        try:
            process.wait(timeout=SourceConstants.PROCESS_KILL_TIMEOUT_S)
        except subprocess.TimeoutExpired:
            logger.warning('Log process did not exit within %.1fs', SourceConstants.PROCESS_KILL_TIMEOUT_S)

    def _on_finished(self) -> None:
        process = self._process
        if process is None:
            return
        self._interrupt()
        stdout = process.stdout
        if stdout is not None:
            try:
                stdout.close()
            except OSError as exc:
                logger.debug('Closing log process stdout failed: %s', exc)


def build_logcat_command(
    serial: Optional[str] = None,
    adb_path: Optional[str] = SourceConstants.DEFAULT_ADB_PATH,
) -> List[str]:
    """Build the logcat command; ``adb_path=None`` targets an on-device shell."""
    if adb_path is None:
        return list(SourceConstants.LOGCAT_FORMAT_ARGS)
    command = [adb_path]
    if serial:
        command.extend(['-s', serial])
    command.extend(SourceConstants.LOGCAT_FORMAT_ARGS)
    return command


def logcat_source_factory(
    serial: Optional[str] = None,
    adb_path: Optional[str] = SourceConstants.DEFAULT_ADB_PATH,
) -> SourceFactory:
    """Return a factory creating a fresh logcat reader on every call."""
    command = build_logcat_command(serial, adb_path)
    name = f'{serial}-logcat' if serial else 'logcat-reader'

    def _factory() -> LogSource:
        return ProcessLogSource(command, name=name)

    return _factory


__all__ = [
    'IterableLogSource',
    'LineListener',
    'LogSource',
    'ProcessLogSource',
    'SourceFactory',
    'build_logcat_command',
    'logcat_source_factory',
    'reading_source',
]
