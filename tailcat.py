"""Entry point for the tailcat log tailer."""

import argparse
import sys
import threading
from typing import List, Optional, Sequence, TextIO

from config.config_manager import ConfigManager
from config.constants import ApplicationConstants
from modules.logstream import (
    IterableLogSource,
    LogRecord,
    LogStreamFacade,
    QueueDispatcher,
    StreamEngine,
    TraceLevel,
    logcat_source_factory,
)
from modules.logstream.dispatch import Dispatcher
from modules.logstream.errors import InvalidConfigurationError
from modules.logstream.sources import SourceFactory
from utils import common

__all__ = [
    "TailPrinter",
    "build_parser",
    "main",
]

logger = common.get_logger("tailcat")


class TailPrinter:
    """Facade subscriber writing only the records it has not shown yet.

    Regular batches extend the history it last printed from, minus the
    evicted head. Any other view (a filtered or trimmed redelivery) is
    resolved against the newest printed record, so it prints nothing and the
    next batch only prints what is new. An empty list means the history was
    cleared.
    """

    def __init__(self, stream: Optional[TextIO] = None):
        self._stream = stream if stream is not None else sys.stdout
        self._seen: List[LogRecord] = []

    def __call__(self, records: List[LogRecord], evicted: int) -> None:
        if not records:
            self._seen = []
            return

        kept = self._seen[evicted:]
        if records[:len(kept)] == kept:
            fresh = records[len(kept):]
        else:
            fresh = self._after_last_shown(records, evicted)
        if not fresh:
            return

        for record in fresh:
            self._stream.write(f"{record.level.code} {record.message}\n")
        self._stream.flush()
        self._seen = list(records)

    def _after_last_shown(self, records: List[LogRecord], evicted: int) -> List[LogRecord]:
        last = self._seen[-1]
        for index in range(len(records) - 1, -1, -1):
            if records[index] == last:
                return records[index + 1:]
        # Without the newest printed record, only an evicting batch is new.
        return records if evicted else []


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=ApplicationConstants.APP_NAME,
        description=ApplicationConstants.APP_DESCRIPTION,
    )
    parser.add_argument("--serial", "-s", help="device serial passed to adb -s")
    parser.add_argument("--adb", dest="adb_path", help="adb executable, 'none' to run logcat directly")
    parser.add_argument("--filter", dest="text_filter", help="substring or regular expression")
    parser.add_argument(
        "--level",
        choices=[level.code for level in TraceLevel],
        help="minimum level code (V D I W E A F)",
    )
    parser.add_argument("--max-retained", type=int, help="number of records kept in history")
    parser.add_argument("--interval", dest="flush_interval_ms", type=int, help="flush interval in ms")
    parser.add_argument("--config", dest="config_path", help="configuration file path")
    parser.add_argument("--replay", metavar="FILE", help="replay a saved 'logcat -v time' file")
    parser.add_argument("--gui", action="store_true", help="deliver batches through a Qt event loop")
    parser.add_argument("--log-level", help="diagnostic log level (DEBUG, INFO, ...)")
    parser.add_argument("--version", action="version", version=ApplicationConstants.APP_VERSION)
    return parser


def _stream_overrides(args: argparse.Namespace) -> dict:
    overrides = {}
    if args.text_filter is not None:
        overrides["text_filter"] = args.text_filter
    if args.level is not None:
        overrides["min_level"] = TraceLevel.from_code(args.level)
    if args.max_retained is not None:
        overrides["max_retained"] = args.max_retained
    if args.flush_interval_ms is not None:
        overrides["flush_interval_ms"] = args.flush_interval_ms
    return overrides


def _source_factory(args: argparse.Namespace, config_manager: ConfigManager) -> SourceFactory:
    if args.replay:
        path = args.replay

        def _replay_factory() -> IterableLogSource:
            return IterableLogSource(_read_lines(path), name="replay-reader")

        return _replay_factory

    source_settings = config_manager.get_source_settings()
    serial = args.serial or source_settings.device_serial
    adb_path = args.adb_path or source_settings.adb_path
    if adb_path and adb_path.lower() == "none":
        adb_path = None
    return logcat_source_factory(serial=serial, adb_path=adb_path)


def _read_lines(path: str):
    with open(path, "r", encoding="utf-8", errors="replace") as handle:
        yield from handle


def _wait_for_source(engine: StreamEngine) -> None:
    while not engine.source.join(0.5):
        pass
    engine.flush_pending()


def _run_headless(facade: LogStreamFacade, dispatcher: QueueDispatcher) -> int:
    dispatcher.start()
    facade.resume()
    try:
        _wait_for_source(facade.engine)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        facade.pause()
        dispatcher.wait_idle()
        dispatcher.stop()
    return 0


def _run_gui(facade: LogStreamFacade, dispatcher: Dispatcher, app) -> int:
    def _watch() -> None:
        _wait_for_source(facade.engine)
        dispatcher.post(app.quit)

    facade.resume()
    threading.Thread(target=_watch, name="source-watcher", daemon=True).start()
    try:
        return app.exec()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0
    finally:
        facade.pause()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main application entry point."""
    args = build_parser().parse_args(argv)

    config_manager = ConfigManager(args.config_path)
    log_level = args.log_level or config_manager.get_logging_settings().log_level
    try:
        common.set_log_level(log_level)
    except ValueError as exc:
        logger.warning("Ignoring log level: %s", exc)

    try:
        stream_config = config_manager.get_stream_config().replace(**_stream_overrides(args))
    except InvalidConfigurationError as exc:
        print(f"{ApplicationConstants.APP_NAME}: {exc}", file=sys.stderr)
        return 2

    factory = _source_factory(args, config_manager)

    if args.gui:
        from PyQt6.QtCore import QCoreApplication

        from utils.qt_dispatcher import QtMainThreadDispatcher

        app = QCoreApplication.instance() or QCoreApplication(sys.argv[:1])
        app.setApplicationName(ApplicationConstants.APP_NAME)
        app.setApplicationVersion(ApplicationConstants.APP_VERSION)
        gui_dispatcher = QtMainThreadDispatcher()
        engine = StreamEngine(factory, gui_dispatcher, config=stream_config)
        facade = LogStreamFacade(engine)
        facade.add_subscriber(TailPrinter())
        return _run_gui(facade, gui_dispatcher, app)

    dispatcher = QueueDispatcher()
    engine = StreamEngine(factory, dispatcher, config=stream_config)
    facade = LogStreamFacade(engine)
    facade.add_subscriber(TailPrinter())
    return _run_headless(facade, dispatcher)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
