"""Services package."""

from .logger import JsonFormatter, LoggerService, cleanup_logging, get_logger, setup_logging

__all__ = ["JsonFormatter", "LoggerService", "cleanup_logging", "get_logger", "setup_logging"]
