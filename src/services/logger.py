"""
Logger Service Module
Process-wide logging setup: colored console, optional rotating files, JSON lines
"""

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import colorlog

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord has; anything else came in through ``extra=``
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


class LoggerService:
    """
    Owns the root logger's handlers:
    - Colored console output (colorlog)
    - Rotating app/error log files when a log directory is configured
    - JSON structured file output on request
    """

    def __init__(self, config: dict[str, Any] | None = None):
        self.config = {**self._default_config(), **(config or {})}
        self.handlers: list[logging.Handler] = []

        self.log_dir: Path | None = None
        if self.config.get("log_dir"):
            self.log_dir = Path(self.config["log_dir"])
            self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()

    @staticmethod
    def _default_config() -> dict[str, Any]:
        """Default logging configuration, overridable from the environment"""
        return {
            "log_dir": os.getenv("ROULETTE_LOG_DIR") or None,
            "console_level": os.getenv("ROULETTE_LOG_LEVEL", "INFO").upper(),
            "file_level": "DEBUG",
            "max_bytes": 5 * 1024 * 1024,  # 5MB
            "backup_count": 3,
            "format": DEFAULT_FORMAT,
            "date_format": DEFAULT_DATE_FORMAT,
            "colored_output": True,
            "json_logs": False,
        }

    def _setup_root_logger(self):
        root_logger = logging.getLogger()
        root_logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level

        for handler in list(root_logger.handlers):
            root_logger.removeHandler(handler)

        self._add(root_logger, self._create_console_handler())

        if self.log_dir is not None:
            self._add(root_logger, self._create_file_handler("roulette-sync.log"))
            self._add(root_logger, self._create_file_handler("errors.log", level=logging.ERROR))

    def _add(self, logger: logging.Logger, handler: logging.Handler) -> None:
        logger.addHandler(handler)
        self.handlers.append(handler)

    def _level(self, name: str, default: int) -> int:
        level = logging.getLevelName(str(self.config.get(name, "")).upper())
        return level if isinstance(level, int) else default

    def _create_console_handler(self) -> logging.Handler:
        """Console handler, colored unless disabled"""
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(self._level("console_level", logging.INFO))

        if self.config.get("colored_output"):
            formatter = colorlog.ColoredFormatter(
                "%(log_color)s" + self.config["format"],
                datefmt=self.config["date_format"],
                log_colors={
                    "DEBUG": "cyan",
                    "INFO": "green",
                    "WARNING": "yellow",
                    "ERROR": "red",
                    "CRITICAL": "red,bg_white",
                },
            )
        else:
            formatter = logging.Formatter(self.config["format"], datefmt=self.config["date_format"])

        console_handler.setFormatter(formatter)
        return console_handler

    def _create_file_handler(self, filename: str, level: int | None = None) -> logging.Handler:
        """Rotating file handler inside log_dir"""
        handler = RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.config["max_bytes"],
            backupCount=self.config["backup_count"],
        )
        handler.setLevel(level or self._level("file_level", logging.DEBUG))

        if self.config.get("json_logs"):
            handler.setFormatter(JsonFormatter())
        else:
            handler.setFormatter(
                logging.Formatter(self.config["format"], datefmt=self.config["date_format"])
            )
        return handler

    def set_level(self, level: str, logger_name: str | None = None):
        """Set logging level for a specific logger or the root logger"""
        logging.getLogger(logger_name).setLevel(getattr(logging, level.upper()))

    def cleanup(self):
        """Detach and close every handler this service installed"""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self.handlers.clear()


class JsonFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

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

        # Fields passed through extra=
        for key, value in record.__dict__.items():
            if key not in _RECORD_ATTRS:
                log_data[key] = value

        return json.dumps(log_data, default=str)


# Global logger service instance
_logger_service: LoggerService | None = None


def setup_logging(config: dict | None = None) -> logging.Logger:
    """
    Setup logging configuration and return root logger

    Calling it again without cleanup_logging() in between is a no-op.

    Args:
        config: Optional overrides of LoggerService defaults

    Returns:
        Configured root logger
    """
    global _logger_service

    if _logger_service is None:
        _logger_service = LoggerService(config)

    return logging.getLogger()


def get_logger(name: str) -> logging.Logger:
    """Get a named logger, configuring logging on first use"""
    if _logger_service is None:
        setup_logging()
    return logging.getLogger(name)


def cleanup_logging():
    """Clean up logging resources"""
    global _logger_service

    if _logger_service:
        _logger_service.cleanup()
        _logger_service = None
