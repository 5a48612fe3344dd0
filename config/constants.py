"""Application constants and configuration values."""


class StreamConstants:
    """Defaults for the streaming engine and its retention buffer."""

    # Retention and delivery
    DEFAULT_MAX_RETAINED = 2500
    DEFAULT_FLUSH_INTERVAL_MS = 150  # Minimum gap between two batch deliveries
    DEFAULT_TEXT_SIZE_PX = 36.0

    # Scroll heuristic: rows away from the tail before auto scroll is paused
    AUTO_SCROLL_TAIL_DISTANCE = 3

    # Thread shutdown
    READER_JOIN_TIMEOUT_S = 2.0
    DISPATCHER_JOIN_TIMEOUT_S = 2.0


class ParserConstants:
    """Fixed offsets of the `logcat -v time` line format.

    Example: ``02-07 17:45:33.014 D/ActivityManager( 123): message``
    """

    END_OF_DATE_INDEX = 18
    LEVEL_INDEX = 19
    SEPARATOR_INDEX = 20
    MESSAGE_INDEX = 21
    MIN_TRACE_LENGTH = 21
    SEPARATOR = '/'


class SourceConstants:
    """Log source command settings."""

    DEFAULT_ADB_PATH = 'adb'
    LOGCAT_FORMAT_ARGS = ('logcat', '-v', 'time')
    PROCESS_KILL_TIMEOUT_S = 3.0


class LoggingConstants:
    """Logging configuration constants."""

    DEFAULT_LOG_LEVEL = 'INFO'

    LOG_FORMAT = '%(asctime)s %(trace_id)s %(name)-20s %(levelname)-8s %(message)s'
    CONSOLE_LOG_FORMAT = '%(levelname)s [%(trace_id)s] %(message)s'
    LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

    LOG_FILE_PREFIX = 'tailcat_'
    LOG_DIR_NAME = 'tailcat'
    LOG_RETENTION_DAYS = 7


class ApplicationConstants:
    """General application constants."""

    APP_NAME = "tailcat"
    APP_VERSION = "0.3.0"
    APP_DESCRIPTION = "Embedded logcat tailing engine with filtered, rate limited delivery"
