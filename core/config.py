"""
=====================================
Configuration management for the client.
=====================================

Loads connection settings from environment variables (.env file) and
provides a centralized Config singleton for application-wide access.

The configuration recognises the fields the compiler and coordinator
consume:
- client: dialect selector (postgres, mysql, mssql, oracle)
- connection: driver parameters forwarded untouched, apart from
  dialect-specific renames (host -> server for MSSQL)
- debug: surface every compiled statement and its bindings on the log
- row_format: per-client row shape ('dict' or 'tuple')

Example:
    >>> from core.config import config
    >>>
    >>> # Environment-driven settings
    >>> print(f"Dialect: {config.db_client}, host: {config.db_host}")
    >>>
    >>> # Explicit settings
    >>> db_config = DatabaseConfig.from_dict({
    ...     'client': 'postgres',
    ...     'connection': {'host': 'localhost', 'user': 'app', 'database': 'shop'},
    ...     'debug': True,
    ... })
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

# Load environment variables from .env file
env_path = Path(__file__).parent.parent / '.env'
load_dotenv(dotenv_path=env_path)

SUPPORTED_CLIENTS = ('postgres', 'mysql', 'mssql', 'oracle')

CLIENT_ALIASES = {
    'postgresql': 'postgres',
    'pg': 'postgres',
    'mariadb': 'mysql',
    'sqlserver': 'mssql',
    'oracledb': 'oracle',
}

DEFAULT_PORTS = {
    'postgres': 5432,
    'mysql': 3306,
    'mssql': 1433,
    'oracle': 1521,
}

# Driver parameter names that differ from the generic ones
CONNECTION_RENAMES = {
    'mssql': {'host': 'server'},
}


def normalize_client(client: str) -> str:
    """Return the canonical dialect name for a client selector.

    Args:
        client: Dialect selector, case-insensitive, aliases allowed

    Returns:
        One of SUPPORTED_CLIENTS

    Raises:
        ValueError: If the selector names no supported dialect
    """
    name = (client or '').strip().lower()
    name = CLIENT_ALIASES.get(name, name)
    if name not in SUPPORTED_CLIENTS:
        available = ", ".join(SUPPORTED_CLIENTS)
        raise ValueError(f"Unsupported database client '{client}'. Available: {available}")
    return name


def _as_bool(value: Optional[str]) -> bool:
    return (value or '').strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class DatabaseConfig:
    """Database client configuration.

    Attributes:
        client: Canonical dialect name
        connection: Driver connection parameters (host, port, user, password, database, ...)
        debug: Log every prepared statement and its bindings
        pool_size: Connection pool size
        max_overflow: Extra connections allowed above pool_size
        row_format: 'dict' for mapping rows, 'tuple' for positional rows
        migrations_table: Name of the migrations tracking table
    """

    client: str
    connection: Dict[str, Any] = field(default_factory=dict)
    debug: bool = False
    pool_size: int = 5
    max_overflow: int = 10
    row_format: str = 'dict'
    migrations_table: str = 'migrations'

    def __post_init__(self):
        self.client = normalize_client(self.client)
        if self.row_format not in ('dict', 'tuple'):
            raise ValueError(f"row_format must be 'dict' or 'tuple', got '{self.row_format}'")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DatabaseConfig':
        """Build a config from a plain mapping.

        Args:
            data: Mapping with at least 'client' and 'connection'

        Returns:
            DatabaseConfig instance

        Raises:
            ValueError: If 'client' or 'connection' is missing
        """
        if not data or not data.get('client') or data.get('connection') is None:
            raise ValueError("Invalid configuration: 'client' and 'connection' are required")

        known = {name: data[name] for name in cls.__dataclass_fields__ if name in data}
        known['connection'] = dict(data['connection'])
        return cls(**known)

    def get_connection_params(self) -> Dict[str, Any]:
        """Get driver connection parameters with dialect-specific renames.

        Returns:
            Copy of ``connection`` with renamed keys (e.g. host -> server for MSSQL)
        """
        renames = CONNECTION_RENAMES.get(self.client, {})
        params = {}
        for key, value in self.connection.items():
            params[renames.get(key, key)] = value
        return params

    @property
    def port(self) -> int:
        """Get the configured port or the dialect default."""
        return int(self.connection.get('port') or DEFAULT_PORTS[self.client])


class Config:
    """Centralized configuration manager.

    Provides access to the environment-driven database configuration and the
    logging level.

    Attributes:
        db: DatabaseConfig built from environment variables
        log_level: Root logging level name

    Properties:
        db_client: Dialect name
        db_host: Database server hostname
        db_port: Database server port
        db_user: Database username
        db_password: Database password
        db_name: Database name

    Example:
        >>> config = Config()
        >>> print(f"Connecting to {config.db_host}:{config.db_port}")
    """

    def __init__(self):
        """Initialize configuration from environment variables."""
        client = os.getenv('DB_CLIENT', 'postgres')
        self.db = DatabaseConfig(
            client=client,
            connection={
                'host': os.getenv('DB_HOST', 'localhost'),
                'port': int(os.getenv('DB_PORT', str(DEFAULT_PORTS[normalize_client(client)]))),
                'user': os.getenv('DB_USER', 'postgres'),
                'password': os.getenv('DB_PASSWORD', ''),
                'database': os.getenv('DB_NAME', 'postgres'),
            },
            debug=_as_bool(os.getenv('DB_DEBUG')),
            pool_size=int(os.getenv('DB_POOL_SIZE', '5')),
            max_overflow=int(os.getenv('DB_MAX_OVERFLOW', '10')),
            row_format=os.getenv('DB_ROW_FORMAT', 'dict'),
            migrations_table=os.getenv('MIGRATIONS_TABLE', 'migrations')
        )
        self.log_level = os.getenv('LOG_LEVEL', 'INFO')

    @property
    def db_client(self) -> str:
        """Get dialect name."""
        return self.db.client

    @property
    def db_host(self) -> str:
        """Get database server hostname."""
        return self.db.connection['host']

    @property
    def db_port(self) -> int:
        """Get database server port number."""
        return self.db.port

    @property
    def db_user(self) -> str:
        """Get database username."""
        return self.db.connection['user']

    @property
    def db_password(self) -> str:
        """Get database password."""
        return self.db.connection['password']

    @property
    def db_name(self) -> str:
        """Get database name."""
        return self.db.connection['database']


# Global configuration instance
config = Config()
