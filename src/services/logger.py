"""
Logger Service Module

Configures the root logger once per process:
- console handler on stderr (colored with colorlog when attached to a tty)
- sdk.log: rotating log of everything at file_level and above
- errors.log: ERROR and above only; unchecked SensorError reports land here

Modules keep using logging.getLogger(__name__); nothing else needs this
module except the entry point and the tests.
"""

import json
import logging
import os
import sys
import time
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import colorlog

# LogRecord attributes that are not user-supplied `extra` fields
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys() | {"message", "asctime"}
)

LOG_COLORS = {
    "DEBUG": "cyan",
    "INFO": "green",
    "WARNING": "yellow",
    "ERROR": "red",
    "CRITICAL": "red,bg_white",
}

DEFAULTS: dict[str, Any] = {
    "log_dir": "./logs",
    "console_level": "INFO",
    "file_level": "DEBUG",
    "max_bytes": 5 * 1024 * 1024,
    "backup_count": 3,
    "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    "date_format": "%Y-%m-%d %H:%M:%S",
    "console_output": True,
    "colored_output": True,
    "json_logs": False,
}


def _level(name) -> int:
    return getattr(logging, str(name).upper())


class LoggerService:
    """Owns the handlers it attaches to the root logger"""

    def __init__(self, settings: dict[str, Any] | None = None):
        self.settings = dict(DEFAULTS)
        self.settings.update({k: v for k, v in (settings or {}).items() if v is not None})
        self.handlers: list[logging.Handler] = []
        self.log_dir = self._writable_log_dir(Path(self.settings["log_dir"]))
        self._install()

    @staticmethod
    def _writable_log_dir(log_dir: Path) -> Path | None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
        except OSError:
            return None
        return log_dir if os.access(log_dir, os.W_OK) else None

    def _install(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)  # Filter at handler level

        # Keep pytest's capture handlers, drop anything else
        root_logger.handlers = [
            h for h in root_logger.handlers if type(h).__module__.startswith("_pytest")
        ]

        if self.settings["console_output"]:
            self._add(self._console_handler())
        self._add(self._file_handler("sdk.log", _level(self.settings["file_level"])))
        self._add(self._file_handler("errors.log", logging.ERROR))

        if self.log_dir is None:
            logging.getLogger(__name__).warning(
                f"Log directory {self.settings['log_dir']} not writable, file logs go to stderr"
            )

    def _add(self, handler: logging.Handler):
        logging.getLogger().addHandler(handler)
        self.handlers.append(handler)

    def _plain_formatter(self) -> logging.Formatter:
        if self.settings["json_logs"]:
            return JsonFormatter()
        return logging.Formatter(self.settings["format"], datefmt=self.settings["date_format"])

    def _console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(_level(self.settings["console_level"]))

        if self.settings["colored_output"] and not self.settings["json_logs"] and sys.stderr.isatty():
            handler.setFormatter(
                colorlog.ColoredFormatter(
                    "%(log_color)s" + self.settings["format"],
                    datefmt=self.settings["date_format"],
                    log_colors=LOG_COLORS,
                )
            )
        else:
            handler.setFormatter(self._plain_formatter())
        return handler

    def _file_handler(self, filename: str, level: int) -> logging.Handler:
        handler: logging.Handler
        if self.log_dir is None:
            handler = logging.StreamHandler(sys.stderr)
        else:
            handler = RotatingFileHandler(
                self.log_dir / filename,
                maxBytes=self.settings["max_bytes"],
                backupCount=self.settings["backup_count"],
            )
        handler.setLevel(level)
        handler.setFormatter(self._plain_formatter())
        return handler

    def cleanup(self):
        """Detach and close every handler this service installed"""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()


class JsonFormatter(logging.Formatter):
    """One JSON object per record, `extra` fields included"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


class PerformanceLogger:
    """Context manager for performance logging"""

    def __init__(self, logger: logging.Logger, operation: str):
        self.logger = logger
        self.operation = operation
        self.start_time = None
        self.duration = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration = time.perf_counter() - self.start_time

        if exc_type:
            self.logger.error(
                f"Operation '{self.operation}' failed after {self.duration:.3f}s: {exc_val}"
            )
        else:
            self.logger.info(f"Operation '{self.operation}' completed in {self.duration:.3f}s")


# Global logger service instance
_logger_service: LoggerService | None = None


def setup_logging(overrides: dict | None = None) -> logging.Logger:
    """
    Configure the root logger from the `logging` config section.

    Only the first call takes effect until cleanup_logging().

    Args:
        overrides: Settings that win over the config file (e.g. CLI flags)

    Returns:
        Configured root logger
    """
    global _logger_service

    if _logger_service is not None:
        return logging.getLogger()

    from config import config as app_config

    settings = {
        key: app_config.get("logging", key)
        for key in ("max_bytes", "backup_count", "format", "date_format", "console_output", "json_logs")
    }
    settings["console_level"] = app_config.get("logging", "level")
    settings["log_dir"] = str(app_config.FILES.get("log_dir", DEFAULTS["log_dir"]))
    settings.update(overrides or {})

    _logger_service = LoggerService(settings)
    return logging.getLogger()


def cleanup_logging():
    """Remove the handlers installed by setup_logging()"""
    global _logger_service

    if _logger_service:
        _logger_service.cleanup()
        _logger_service = None
