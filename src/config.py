"""
Configuration module for the LIDAR capture SDK
Centralizes all constants, settings, and configuration with validation
"""

import os
import json
import logging
import threading
from pathlib import Path
from typing import Dict, Any, Optional, Union


class ConfigError(Exception):
    """Configuration validation error"""
    pass


def _safe_float_env(name: str, default: float, min_val: float = None, max_val: float = None) -> float:
    """
    Safely parse float environment variable with bounds.
    Falls back to default on invalid values.
    """
    logger_local = logging.getLogger(__name__)
    try:
        value = float(os.getenv(name, str(default)))
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


def _safe_int_env(name: str, default: int, min_val: int = None, max_val: int = None) -> int:
    """
    Safely parse integer environment variable with bounds.
    Falls back to default on invalid values.
    """
    logger_local = logging.getLogger(__name__)
    try:
        value = int(os.getenv(name, str(default)))
        if min_val is not None:
            value = max(min_val, value)
        if max_val is not None:
            value = min(max_val, value)
        return value
    except (ValueError, TypeError):
        logger_local.warning(f"Invalid {name}, using default {default}")
        return default


def _env_flag(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


class Config:
    """
    Configuration management with:
    - Input validation
    - Environment variable support
    - Safe defaults
    - JSON persistence
    """

    # ========== Capture Replay Settings ==========
    REPLAY = {
        'default_speed': _safe_float_env('LIDAR_REPLAY_SPEED', 1.0, 0.001),
        'enable_loop': _env_flag('LIDAR_REPLAY_LOOP'),
        'thread_join_timeout': 2.0,
    }

    # ========== Network Settings ==========
    NETWORK = {
        'port': _safe_int_env('LIDAR_PORT', 8808, 1, 65535),
        'control_flags': _safe_int_env('LIDAR_CONTROL_FLAGS', 0, 0),
    }

    # ========== Frame Settings ==========
    FRAME = {
        'mode': os.getenv('LIDAR_FRAME_MODE', 'STREAMING'),
        'length': _safe_float_env('LIDAR_FRAME_LENGTH', 0.05, 0.0),
    }

    # ========== Error Checking ==========
    # Read once at import time: the unchecked-error policy is fixed for the process.
    ERRORS = {
        'abort_on_unchecked': _env_flag('LIDAR_ABORT_ON_UNCHECKED_ERROR'),
    }

    # ========== Logging Settings ==========
    LOGGING = {
        'level': os.getenv('LOG_LEVEL', 'INFO'),
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'date_format': '%Y-%m-%d %H:%M:%S',
        'max_bytes': 5 * 1024 * 1024,
        'backup_count': 3,
        'console_output': True,
        'json_logs': _env_flag('LIDAR_LOG_JSON'),
    }

    # ========== File Settings ==========
    @classmethod
    def get_files_config(cls) -> dict:
        """Get file configuration with lazy initialization to avoid import issues"""
        return {
            'captures_dir': Path(os.getenv(
                'LIDAR_CAPTURES_DIR',
                str(Path.cwd() / 'captures')
            )),
            'config_dir': Path(os.getenv(
                'LIDAR_CONFIG_DIR',
                str(Path.home() / '.lidar_sdk')
            )),
            'log_dir': Path(os.getenv(
                'LIDAR_LOG_DIR',
                str(Path.home() / '.lidar_sdk' / 'logs')
            )),
        }

    def __init__(
        self,
        config_file: Optional[str] = None,
        validate: bool = True,
        ensure_directories: bool = True,
    ):
        """
        Initialize configuration with optional validation

        Args:
            config_file: Optional path to JSON config file
            validate: Whether to validate configuration on init
            ensure_directories: Create required directories on init
        """
        self._lock = threading.RLock()
        self._files_config: Optional[dict] = None
        self.config_file = config_file
        self._custom_settings = {}
        self._logger = None  # Will be set after logger initialization

        if ensure_directories:
            self.ensure_directories()

        if config_file:
            self.load_from_file(config_file)

        if validate:
            self.validate()

    @property
    def FILES(self) -> dict:
        """Cached file configuration"""
        with self._lock:
            if self._files_config is None:
                self._files_config = self.get_files_config()
            return self._files_config

    def ensure_directories(self) -> Dict[str, bool]:
        """Ensure all required directories exist, track success."""
        status: Dict[str, bool] = {}
        logger_local = self._logger or logging.getLogger(__name__)
        for key in ['config_dir', 'log_dir']:
            path = self.FILES[key]
            try:
                path.mkdir(parents=True, exist_ok=True)
                status[key] = path.exists() and path.is_dir()
            except OSError as e:
                logger_local.warning(f"Could not create {key}: {e}")
                status[key] = False
        self._directory_status = status
        return status

    def validate(self):
        """
        Validate all configuration values

        Raises:
            ConfigError: If configuration is invalid
        """
        errors = []

        # Validate replay settings
        if self.get('replay', 'default_speed', 1.0) <= 0:
            errors.append("default_speed must be positive")
        if self.get('replay', 'thread_join_timeout', 0) <= 0:
            errors.append("thread_join_timeout must be positive")

        # Validate network settings
        port = self.get('network', 'port', 0)
        if not isinstance(port, int) or not 1 <= port <= 65535:
            errors.append(f"Invalid port: {port}")
        if self.get('network', 'control_flags', 0) < 0:
            errors.append("control_flags cannot be negative")

        # Validate frame settings
        mode = str(self.get('frame', 'mode', 'STREAMING')).upper()
        if mode not in ('STREAMING', 'TIMED'):
            errors.append(f"Invalid frame mode: {mode}")
        length = self.get('frame', 'length', 0.0)
        if length < 0 or (mode == 'TIMED' and length == 0):
            errors.append("frame length must be positive in TIMED mode")

        # Validate logging
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if self.LOGGING['level'].upper() not in valid_levels:
            errors.append(f"Invalid log level: {self.LOGGING['level']}")

        # Validate directory creation status
        if hasattr(self, '_directory_status'):
            for key, success in self._directory_status.items():
                if not success:
                    errors.append(f"Required directory {key} could not be created")

        if errors:
            raise ConfigError("Configuration validation failed:\n" + "\n".join(errors))

    def load_from_file(self, filepath: Union[str, Path]):
        """
        Load configuration from JSON file

        Args:
            filepath: Path to JSON configuration file
        """
        filepath = Path(filepath)

        try:
            if not filepath.exists():
                if self._logger:
                    self._logger.warning(f"Config file not found: {filepath}")
                return

            with open(filepath, 'r') as f:
                data = json.load(f)

            if not isinstance(data, dict):
                raise ConfigError(f"Config file must contain a JSON object: {filepath}")

            with self._lock:
                self._custom_settings = {
                    section.lower(): values
                    for section, values in data.items()
                    if isinstance(values, dict)
                }

            if self._logger:
                self._logger.info(f"Loaded configuration from {filepath}")

        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in config file: {e}"
            if self._logger:
                self._logger.error(error_msg)
            raise ConfigError(error_msg)
        except OSError as e:
            error_msg = f"Error loading config file: {e}"
            if self._logger:
                self._logger.error(error_msg)
            raise ConfigError(error_msg)

    def save_to_file(self, filepath: Union[str, Path]):
        """
        Save current configuration to JSON file

        Args:
            filepath: Path where to save the configuration
        """
        filepath = Path(filepath)
        config_dict = self.to_dict()
        config_dict.pop('files', None)

        filepath.parent.mkdir(parents=True, exist_ok=True)

        with open(filepath, 'w') as f:
            json.dump(config_dict, f, indent=2, default=str)

        if self._logger:
            self._logger.info(f"Saved configuration to {filepath}")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value with support for custom settings

        Args:
            section: Configuration section name
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        with self._lock:
            section_lower = section.lower()
            if section_lower in self._custom_settings:
                if key in self._custom_settings[section_lower]:
                    return self._custom_settings[section_lower][key]

            section_attr = section.upper()
            if hasattr(self, section_attr):
                section_dict = getattr(self, section_attr)
                if isinstance(section_dict, dict):
                    return section_dict.get(key, default)

        return default

    def set(self, section: str, key: str, value: Any):
        """
        Set a configuration value

        Args:
            section: Configuration section name
            key: Configuration key
            value: Value to set
        """
        with self._lock:
            section_lower = section.lower()
            if section_lower not in self._custom_settings:
                self._custom_settings[section_lower] = {}
            self._custom_settings[section_lower][key] = value

    def set_logger(self, logger):
        """Set logger instance after logger initialization"""
        self._logger = logger

    def _section(self, name: str) -> dict:
        with self._lock:
            merged = dict(getattr(self, name.upper()))
            merged.update(self._custom_settings.get(name.lower(), {}))
            return merged

    def to_dict(self) -> dict:
        """Export entire configuration as dictionary"""
        replay = self._section('replay')
        return {
            'replay': replay,
            'network': self._section('network'),
            'frame': self._section('frame'),
            'errors': self._section('errors'),
            'logging': self._section('logging'),
            'files': {k: str(v) for k, v in self.FILES.items()},
        }


# Create global configuration instance.
#
# IMPORTANT: Keep this import side-effect free. Runtime initialization (logging
# configuration, directory creation, validation) must happen in an explicit app
# startup path (see `src/main.py`).
config = Config(validate=False, ensure_directories=False)
