"""Logging configuration for the k3sctl package."""
import logging
import logging.handlers
import sys
from typing import Optional

from .config import Config


def setup_logger(
    name: str,
    level: int = logging.INFO,
    log_file: Optional[str] = None,
    max_size_mb: int = 100,
    backup_count: int = 5,
    console: bool = True,
) -> logging.Logger:
    """
    Set up a logger with the specified name and log level.

    Args:
        name: The name of the logger
        level: The logging level (default: logging.INFO)
        log_file: Optional path of a rotating log file
        max_size_mb: Rotate the log file at this size
        backup_count: Number of rotated files to keep
        console: Attach a stdout handler. Leave off when the root logger
            already prints, to avoid duplicate lines

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    formatter = logging.Formatter(Config.LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')

    # Don't add handlers if they're already configured
    if console and not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    if log_file and not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
