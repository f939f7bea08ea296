"""
Centralized logging configuration for volradar.

Every module logs through ``logging.getLogger(__name__)``; this module decides
where those records end up:
- Console output with colored level names
- Optional rotating log file
- Optional JSON lines for log shipping
- Environment overrides (VOLRADAR_LOG_LEVEL, VOLRADAR_LOG_FILE, VOLRADAR_LOG_JSON)
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional

ENV_LEVEL = "VOLRADAR_LOG_LEVEL"
ENV_FILE = "VOLRADAR_LOG_FILE"
ENV_JSON = "VOLRADAR_LOG_JSON"

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = (
    '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
    '"logger": "%(name)s", "line": %(lineno)d, "message": "%(message)s"}'
)


class ColoredFormatter(logging.Formatter):
    """Formatter that paints the level name for terminal output."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        color = self.COLORS.get(levelname)
        if color:
            record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            # Other handlers share the record
            record.levelname = levelname


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def setup_logging(
    name: Optional[str] = "volradar",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: bool = True,
    json_format: Optional[bool] = None,
    rotation: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the volradar logger tree.

    Args:
        name: Logger to configure (defaults to the package logger)
        level: Log level name; falls back to VOLRADAR_LOG_LEVEL, then INFO
        log_file: Path to a log file; falls back to VOLRADAR_LOG_FILE
        console: Emit to stdout
        json_format: JSON lines instead of text; falls back to VOLRADAR_LOG_JSON
        rotation: Use a size-rotated file handler
        max_bytes: Rotation threshold
        backup_count: Rotated files to keep

    Returns:
        The configured logger

    Example:
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("monitor started")
    """
    logger = logging.getLogger(name)

    if level is None:
        level = os.getenv(ENV_LEVEL, "INFO")
    if log_file is None:
        log_file = os.getenv(ENV_FILE)
    if json_format is None:
        json_format = _env_flag(ENV_JSON)

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)
    logger.handlers.clear()

    log_format = JSON_FORMAT if json_format else TEXT_FORMAT
    date_format = "%Y-%m-%dT%H:%M:%S" if json_format else "%Y-%m-%d %H:%M:%S"

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(numeric_level)
        if json_format:
            console_handler.setFormatter(logging.Formatter(log_format, date_format))
        else:
            console_handler.setFormatter(ColoredFormatter(log_format, date_format))
        logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        if rotation:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        else:
            file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(log_format, date_format))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    message: str = "An exception occurred",
    level: int = logging.ERROR,
) -> None:
    """Log an exception with its traceback."""
    logger.log(level, f"{message}: {exc}", exc_info=exc)
