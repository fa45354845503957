"""
Logging for SourceCon.

Everything goes through the "sourcecon" logger. It can write to a rotating
file under ~/.sourcecon/logs and to stderr, colored when stderr is a terminal.
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .config import (
    LOG_FILE,
    LOG_MAX_BYTES,
    LOG_BACKUP_COUNT,
    LOG_DIR,
)


LOGGER_NAME = "sourcecon"

FILE_FORMAT = "%(asctime)s %(levelname)-8s %(threadName)s %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
CONSOLE_FORMAT = "[%(levelname)s] %(message)s"

_logger: Optional[logging.Logger] = None


class ColorFormatter(logging.Formatter):
    """Colors the level name by severity."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        # Other handlers share the record; color a copy
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{self.COLORS.get(record.levelname, '')}{record.levelname}{self.RESET}"
        return super().format(record)


def _file_handler() -> logging.Handler:
    Path(LOG_DIR).mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        LOG_FILE,
        maxBytes=LOG_MAX_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATE_FORMAT))
    return handler


def _console_handler(level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    formatter_cls = ColorFormatter if sys.stderr.isatty() else logging.Formatter
    handler.setFormatter(formatter_cls(CONSOLE_FORMAT))
    return handler


def setup_logging(
    log_to_file: bool = True,
    log_to_console: bool = True,
    log_level: str = "INFO",
) -> logging.Logger:
    """
    (Re)configure the sourcecon logger, replacing any previous handlers.

    The file handler records DEBUG and up regardless of log_level, which
    only gates the logger itself and the console. With both outputs off,
    a NullHandler keeps records from reaching logging.lastResort.
    """
    global _logger

    level = getattr(logging, log_level.upper(), logging.INFO)
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if log_to_file:
        logger.addHandler(_file_handler())
    if log_to_console:
        logger.addHandler(_console_handler(level))
    if not logger.handlers:
        logger.addHandler(logging.NullHandler())

    _logger = logger
    return logger


def get_logger() -> logging.Logger:
    """Return the sourcecon logger; warnings to stderr until configured."""
    if _logger is None:
        return setup_logging(log_to_file=False, log_level="WARNING")
    return _logger


def log(msg: str) -> None:
    get_logger().info(msg)


def log_debug(msg: str) -> None:
    get_logger().debug(msg)


def log_warning(msg: str) -> None:
    get_logger().warning(msg)


def format_block(title: str, lines: list) -> str:
    """Render `[title]` followed by `lines`, indented two spaces."""
    return "\n".join([f"[{title}]"] + [f"  {line}" for line in lines])
