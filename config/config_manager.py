"""Configuration management module for application settings."""

import json
import shutil
from dataclasses import dataclass, asdict, field
from pathlib import Path
from typing import Any, Dict, Optional

from config.constants import LoggingConstants, SourceConstants, StreamConstants
from modules.logstream.errors import InvalidConfigurationError
from modules.logstream.models import StreamConfig, TraceLevel
from utils import common

logger = common.get_logger('config_manager')


@dataclass
class StreamSettings:
    """Filtering, sampling and retention settings for the log stream."""
    max_retained: int = StreamConstants.DEFAULT_MAX_RETAINED
    text_filter: str = ''
    min_level: str = TraceLevel.VERBOSE.name
    flush_interval_ms: int = StreamConstants.DEFAULT_FLUSH_INTERVAL_MS
    text_size_px: Optional[float] = None

    def to_stream_config(self) -> StreamConfig:
        """Build the engine configuration; raises InvalidConfigurationError."""
        try:
            min_level = TraceLevel[str(self.min_level).upper()]
        except KeyError as exc:
            raise InvalidConfigurationError(f'Unknown min_level {self.min_level!r}') from exc
        return StreamConfig(
            max_retained=self.max_retained,
            text_filter=self.text_filter,
            min_level=min_level,
            flush_interval_ms=self.flush_interval_ms,
            text_size_px=self.text_size_px,
        )

    @classmethod
    def from_stream_config(cls, config: StreamConfig) -> "StreamSettings":
        return cls(
            max_retained=config.max_retained,
            text_filter=config.text_filter,
            min_level=config.min_level.name,
            flush_interval_ms=config.flush_interval_ms,
            text_size_px=config.text_size_px,
        )


@dataclass
class SourceSettings:
    """Where raw log lines come from."""
    adb_path: Optional[str] = SourceConstants.DEFAULT_ADB_PATH
    device_serial: Optional[str] = None


@dataclass
class LoggingSettings:
    """Logging configuration."""
    log_level: str = LoggingConstants.DEFAULT_LOG_LEVEL


@dataclass
class AppConfig:
    """Main application configuration."""
    stream: StreamSettings = field(default_factory=StreamSettings)
    source: SourceSettings = field(default_factory=SourceSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    version: str = "1.0.0"


class ConfigManager:
    """Manages application configuration persistence and validation."""

    DEFAULT_CONFIG_PATH = '~/.tailcat_config.json'
    BACKUP_SUFFIX = '.backup.json'

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(config_path or self.DEFAULT_CONFIG_PATH).expanduser()
        self.backup_path = self.config_path.with_name(self.config_path.stem + self.BACKUP_SUFFIX)
        self._config: Optional[AppConfig] = None
        self._ensure_config_dir()

    def _ensure_config_dir(self):
        """Ensure configuration directory exists."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)

    def _create_default_config(self) -> AppConfig:
        """Create default configuration."""
        return AppConfig()

    def _validate_config(self, config_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Validate and clean configuration dictionary."""
        default_config = asdict(self._create_default_config())

        # Merge with defaults for missing keys
        def merge_dict(default: Dict, user: Dict) -> Dict:
            result = default.copy()
            for key, value in user.items():
                if key in result:
                    if isinstance(value, dict) and isinstance(result[key], dict):
                        result[key] = merge_dict(result[key], value)
                    else:
                        result[key] = value
            return result

        validated = merge_dict(default_config, config_dict if isinstance(config_dict, dict) else {})

        stream_settings = validated.get('stream', {})
        max_retained = stream_settings.get('max_retained')
        if not isinstance(max_retained, int) or isinstance(max_retained, bool) or max_retained <= 0:
            stream_settings['max_retained'] = StreamConstants.DEFAULT_MAX_RETAINED
            logger.warning('Stream max_retained invalid, reset to %s', StreamConstants.DEFAULT_MAX_RETAINED)
        interval = stream_settings.get('flush_interval_ms')
        if not isinstance(interval, int) or isinstance(interval, bool) or interval < 0:
            stream_settings['flush_interval_ms'] = StreamConstants.DEFAULT_FLUSH_INTERVAL_MS
            logger.warning('Stream flush interval invalid, reset to %s ms', StreamConstants.DEFAULT_FLUSH_INTERVAL_MS)
        if not isinstance(stream_settings.get('text_filter'), str):
            stream_settings['text_filter'] = ''
            logger.warning('Stream text filter invalid, cleared')
        level_name = stream_settings.get('min_level')
        if not isinstance(level_name, str) or level_name.upper() not in TraceLevel.__members__:
            stream_settings['min_level'] = TraceLevel.VERBOSE.name
            logger.warning('Stream min_level %r unknown, reset to VERBOSE', level_name)
        else:
            stream_settings['min_level'] = level_name.upper()
        text_size = stream_settings.get('text_size_px')
        if text_size is not None and (not isinstance(text_size, (int, float)) or text_size <= 0):
            stream_settings['text_size_px'] = None
            logger.warning('Stream text size invalid, unset')

        logging_settings = validated.get('logging', {})
        log_level = logging_settings.get('log_level')
        if not isinstance(log_level, str) or log_level.upper() not in ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'):
            logging_settings['log_level'] = LoggingConstants.DEFAULT_LOG_LEVEL
            logger.warning('Log level invalid, reset to %s', LoggingConstants.DEFAULT_LOG_LEVEL)

        return validated

    def _build_config(self, validated_dict: Dict[str, Any]) -> AppConfig:
        return AppConfig(
            stream=StreamSettings(**validated_dict['stream']),
            source=SourceSettings(**validated_dict['source']),
            logging=LoggingSettings(**validated_dict['logging']),
            version=validated_dict.get('version', '1.0.0'),
        )

    def _read_config_file(self, path: Path) -> AppConfig:
        with open(path, 'r', encoding='utf-8') as f:
            config_dict = json.load(f)
        return self._build_config(self._validate_config(config_dict))

    def load_config(self) -> AppConfig:
        """Load configuration from file."""
        if self._config is not None:
            return self._config

        try:
            if self.config_path.exists():
                self._config = self._read_config_file(self.config_path)
                logger.info('Configuration loaded from %s', self.config_path)
            else:
                self._config = self._create_default_config()
                logger.info('Created default configuration')

        except (OSError, ValueError, TypeError) as e:
            logger.error('Failed to load config: %s', e)
            # Try backup if available
            if self.backup_path.exists():
                try:
                    logger.info('Attempting to load from backup')
                    self._config = self._read_config_file(self.backup_path)
                    logger.info('Configuration loaded from backup')
                except (OSError, ValueError, TypeError) as backup_error:
                    logger.error('Backup config also failed: %s', backup_error)
                    self._config = self._create_default_config()
            else:
                self._config = self._create_default_config()

        return self._config

    def save_config(self, config: Optional[AppConfig] = None):
        """Save configuration to file."""
        if config is None:
            config = self._config

        if config is None:
            logger.warning('No configuration to save')
            return

        # Create backup of existing config
        if self.config_path.exists():
            try:
                shutil.copy2(self.config_path, self.backup_path)
            except OSError as e:
                logger.warning('Failed to create config backup: %s', e)

        try:
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(asdict(config), f, indent=4, ensure_ascii=False)
        except OSError as e:
            logger.error('Failed to save config: %s', e)
            raise

        self._config = config
        logger.info('Configuration saved to %s', self.config_path)

    def get_stream_settings(self) -> StreamSettings:
        """Get stream settings."""
        return self.load_config().stream

    def get_source_settings(self) -> SourceSettings:
        """Get log source settings."""
        return self.load_config().source

    def get_logging_settings(self) -> LoggingSettings:
        """Get logging settings."""
        return self.load_config().logging

    def get_stream_config(self) -> StreamConfig:
        """Get the engine configuration built from the stored stream settings."""
        return self.get_stream_settings().to_stream_config()

    def update_stream_settings(self, **kwargs):
        """Update stream settings; invalid combinations are rejected before saving."""
        config = self.load_config()
        candidate = StreamSettings(**asdict(config.stream))
        for key, value in kwargs.items():
            if hasattr(candidate, key):
                setattr(candidate, key, value)
        candidate.to_stream_config()
        config.stream = candidate
        self.save_config(config)

    def store_stream_config(self, stream_config: StreamConfig):
        """Persist an engine configuration as the stream settings."""
        config = self.load_config()
        config.stream = StreamSettings.from_stream_config(stream_config)
        self.save_config(config)

    def update_source_settings(self, **kwargs):
        """Update log source settings."""
        config = self.load_config()
        for key, value in kwargs.items():
            if hasattr(config.source, key):
                setattr(config.source, key, value)
        self.save_config(config)

    def export_config(self, filepath: str):
        """Export configuration to file."""
        config = self.load_config()
        export_path = Path(filepath).expanduser()

        try:
            with open(export_path, 'w', encoding='utf-8') as f:
                json.dump(asdict(config), f, indent=4, ensure_ascii=False)
            logger.info('Configuration exported to %s', export_path)
        except OSError as e:
            logger.error('Failed to export config: %s', e)
            raise

    def import_config(self, filepath: str):
        """Import configuration from file."""
        import_path = Path(filepath).expanduser()

        try:
            imported_config = self._read_config_file(import_path)
        except (OSError, ValueError, TypeError) as e:
            logger.error('Failed to import config: %s', e)
            raise

        self.save_config(imported_config)
        logger.info('Configuration imported from %s', import_path)

    def reset_to_defaults(self):
        """Reset configuration to defaults."""
        self._config = self._create_default_config()
        self.save_config()
        logger.info('Configuration reset to defaults')
