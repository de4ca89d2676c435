"""
================================
Centralized logging configuration.
================================

Provides consistent logging setup across all modules with:
- Colored console output with emojis
- Optional file output
- Module-specific loggers
- A dedicated query logger for the debug side channel

When a client is configured with ``debug=True`` every prepared statement and
its bindings are written to the ``db.query`` logger. The side channel never
changes behavior; it only makes the SQL visible.

Example:
    >>> from core.logger import get_logger, setup_logging
    >>>
    >>> setup_logging(log_level='DEBUG', log_file='db.log')
    >>> logger = get_logger(__name__)
    >>> logger.info("Client created")
"""

import logging
import os
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

QUERY_LOGGER_NAME = 'db.query'

CONSOLE_FORMAT = '%(emoji)s %(asctime)s - %(name)s - %(levelname)s - %(message)s'
PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class ColoredFormatter(logging.Formatter):
    """Formatter adding ANSI colors and emoji indicators for console output.

    Attributes:
        COLORS: Dict mapping log levels to ANSI color codes
        EMOJI: Dict mapping log levels to emoji indicators
    """

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    EMOJI = {
        'DEBUG': '🔍',
        'INFO': 'ℹ️ ',
        'WARNING': '⚠️ ',
        'ERROR': '❌',
        'CRITICAL': '🔥'
    }

    def format(self, record):
        levelname = record.levelname
        record.emoji = self.EMOJI.get(levelname, '')
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.COLORS['RESET']}"
        try:
            return super().format(record)
        finally:
            # Handlers share the record; keep the plain level name for the next one
            record.levelname = levelname


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Get a logger instance for the specified module.

    Args:
        name: Logger name (typically __name__ of calling module)
        level: Optional logging level override (DEBUG/INFO/WARNING/ERROR/CRITICAL)

    Returns:
        Logger instance
    """
    logger = logging.getLogger(name)

    if level:
        logger.setLevel(getattr(logging, level.upper()))

    return logger


def _file_handler(log_dir: Optional[str], log_file: str, level: int) -> logging.Handler:
    log_path = Path(log_dir) if log_dir else Path('logs')
    log_path.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(log_path / log_file, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(PLAIN_FORMAT, datefmt=DATE_FORMAT))
    return handler


def setup_logging(
    log_level: str = 'INFO',
    log_file: Optional[str] = None,
    log_dir: Optional[str] = None,
    console_output: bool = True,
    use_colors: bool = True,
    query_log_file: Optional[str] = None
) -> None:
    """Configure the root logger with console and/or file handlers.

    Should be called once at application startup.

    Args:
        log_level: Logging level (DEBUG/INFO/WARNING/ERROR/CRITICAL)
        log_file: Optional log file name (e.g., 'db.log')
        log_dir: Optional log directory path (defaults to 'logs/')
        console_output: If True, output to console (stdout)
        use_colors: If True, use colored output for console
        query_log_file: Optional extra file receiving only the ``db.query``
            side channel (prepared SQL and bindings)
    """
    level = getattr(logging, log_level.upper())
    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        formatter_cls = ColoredFormatter if use_colors else logging.Formatter
        fmt = CONSOLE_FORMAT if use_colors else PLAIN_FORMAT
        console_handler.setFormatter(formatter_cls(fmt, datefmt=DATE_FORMAT))
        root_logger.addHandler(console_handler)

    if log_file:
        root_logger.addHandler(_file_handler(log_dir, log_file, level))

    query_logger = logging.getLogger(QUERY_LOGGER_NAME)
    for handler in [h for h in query_logger.handlers if isinstance(h, logging.FileHandler)]:
        query_logger.removeHandler(handler)
        handler.close()
    if query_log_file:
        query_logger.setLevel(logging.INFO)
        query_logger.addHandler(_file_handler(log_dir, query_log_file, logging.INFO))


def log_statement(sql: str, bindings: Sequence[Any], dialect: str) -> None:
    """Write a prepared statement to the query logger.

    Args:
        sql: Dialect-native SQL text
        bindings: Ordered binding values
        dialect: Dialect name, included for multi-client applications
    """
    query_logger = logging.getLogger(QUERY_LOGGER_NAME)
    query_logger.info(f"[{dialect}] {sql}")
    if bindings:
        query_logger.info(f"[{dialect}] bindings: {list(bindings)!r}")


def _init_default_logging():
    """Initialize default logging if the application has not configured any.

    Called automatically on module import so the query side channel is always
    visible, even when setup_logging() is never called explicitly.
    """
    if not logging.getLogger().handlers:
        setup_logging(
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            console_output=True,
            use_colors=True
        )


# Auto-initialize on import
_init_default_logging()
