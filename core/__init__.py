"""
========================================
Core infrastructure package for the client.
========================================

Centralized configuration, logging and the error taxonomy shared by the SQL
compiler (``sql``), the runtime client (``db``) and the driver glue
(``utils``).

Modules:
    config: Configuration management from environment variables
    logger: Centralized logging configuration and the query side channel
    errors: Error taxonomy and driver-error classification

Example:
    >>> from core.config import config
    >>> from core.logger import get_logger
    >>>
    >>> logger = get_logger(__name__)
    >>> logger.info(f"Using dialect {config.db_client}")
"""

__version__ = "0.1.0"
__all__ = [
    'get_logger', 'setup_logging', 'log_statement', 'config', 'Config', 'DatabaseConfig',
    'DatabaseError', 'DatabaseConnectionError', 'QueryError', 'TransactionError',
    'UnsupportedTypeError', 'UnsupportedOperationError', 'MigrationError',
    'PaginationWarning', 'classify_error',
]

from core.config import Config, DatabaseConfig, config
from core.errors import (
    DatabaseConnectionError,
    DatabaseError,
    MigrationError,
    PaginationWarning,
    QueryError,
    TransactionError,
    UnsupportedOperationError,
    UnsupportedTypeError,
    classify_error,
)
from core.logger import get_logger, log_statement, setup_logging
