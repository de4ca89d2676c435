"""
==================================================
Database connectivity utilities (SQLAlchemy glue).
==================================================

Bridges compiled statements to real DBAPI drivers through SQLAlchemy
engines. This is the only module that touches a driver; everything above it
works with ``CompiledStatement`` objects and the small connection protocol
implemented by ``SQLAlchemyConnection``:

    begin() / commit() / rollback() / execute(compiled) / release()

Key Features:
    - Driver registry keyed by dialect (postgresql+psycopg2, mysql+pymysql, ...)
    - Engine creation with URL.create() and connection pooling
    - Native markers converted to the driver's paramstyle at the last moment
    - Oracle RETURNING ... INTO through output bind variables
    - Per-connection row format ('dict' or 'tuple')
    - Database availability check

Example:
    >>> from core.config import DatabaseConfig
    >>> from utils.database_utils import SQLAlchemyConnectionFactory, create_sqlalchemy_engine
    >>>
    >>> db_config = DatabaseConfig.from_dict({
    ...     'client': 'postgres',
    ...     'connection': {'host': 'localhost', 'user': 'app', 'password': 'secret', 'database': 'shop'},
    ... })
    >>> factory = SQLAlchemyConnectionFactory(create_sqlalchemy_engine(db_config), db_config)
    >>> connection = factory.acquire()
    >>> connection.release()
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from core.config import DatabaseConfig, config
from core.errors import wrap_connection_error, wrap_query_error, wrap_transaction_error
from sql.parameters import CompiledStatement, to_driver_paramstyle

logger = logging.getLogger(__name__)

# SQLAlchemy driver names per dialect
DRIVERS: Dict[str, str] = {
    'postgres': 'postgresql+psycopg2',
    'mysql': 'mysql+pymysql',
    'mssql': 'mssql+pymssql',
    'oracle': 'oracle+oracledb',
}

# Quote characters per dialect, used when scanning SQL for markers
QUOTES: Dict[str, str] = {
    'postgres': '"\'',
    'mysql': '`"\'',
    'mssql': '["\'',
    'oracle': '"\'',
}

PING_SQL: Dict[str, str] = {
    'oracle': 'SELECT 1 FROM DUAL',
}

# Connection keys that map onto URL components; everything else goes to connect_args
_URL_KEYS = ('host', 'server', 'port', 'user', 'password', 'database', 'service_name')


def register_driver(client: str, drivername: str) -> None:
    """Use a different SQLAlchemy driver for a dialect (e.g. 'postgresql+psycopg')."""
    DRIVERS[client] = drivername


def get_connection_url(db_config: Optional[DatabaseConfig] = None) -> URL:
    """
    Build the SQLAlchemy URL for a configuration.

    Oracle connections use ``service_name`` (or ``database`` as the service
    name) as a query parameter.

    Args:
        db_config: Database configuration (defaults to config.db)

    Returns:
        SQLAlchemy URL

    Example:
        >>> url = get_connection_url(db_config)
        >>> url.drivername
        'postgresql+psycopg2'
    """
    db_config = db_config or config.db
    params = db_config.get_connection_params()
    host = params.get('host') or params.get('server')
    database = params.get('database')
    query = {}

    if db_config.client == 'oracle':
        service_name = params.get('service_name') or database
        database = None
        if service_name:
            query['service_name'] = service_name

    return URL.create(
        drivername=DRIVERS[db_config.client],
        username=params.get('user'),
        password=params.get('password'),
        host=host,
        port=db_config.port if host else None,
        database=database,
        query=query
    )


def get_connect_args(db_config: DatabaseConfig) -> Dict[str, Any]:
    """Driver-specific connection options (timeouts, ssl, ...) forwarded untouched."""
    params = db_config.get_connection_params()
    return {key: value for key, value in params.items() if key not in _URL_KEYS}


def create_sqlalchemy_engine(
    db_config: Optional[DatabaseConfig] = None,
    echo: bool = False
) -> Engine:
    """
    Create SQLAlchemy engine with connection pooling.

    Args:
        db_config: Database configuration (defaults to config.db)
        echo: Enable SQLAlchemy's own statement logging

    Returns:
        Configured SQLAlchemy Engine

    Raises:
        DatabaseConnectionError: If the driver is missing or the URL is invalid
    """
    db_config = db_config or config.db
    try:
        return create_engine(
            get_connection_url(db_config),
            echo=echo,
            pool_size=db_config.pool_size,
            max_overflow=db_config.max_overflow,
            pool_pre_ping=True,  # Verify connections before using
            connect_args=get_connect_args(db_config)
        )
    except (SQLAlchemyError, ImportError) as e:
        logger.error(f"❌ Could not create {db_config.client} engine: {e}")
        raise wrap_connection_error(e, db_config.client) from e


@dataclass
class QueryResult:
    """Outcome of one executed statement.

    Attributes:
        rows: Result rows (dicts or tuples depending on row format)
        rowcount: Affected row count reported by the driver (-1 if unknown)
        returned: Values of Oracle RETURNING ... INTO output parameters
    """

    rows: List[Any] = field(default_factory=list)
    rowcount: int = -1
    returned: Optional[Dict[str, Any]] = None


class SQLAlchemyConnection:
    """
    One borrowed pooled connection speaking the client's connection protocol.

    Args:
        connection: SQLAlchemy Connection checked out from the engine pool
        dialect: Dialect name (postgres, mysql, mssql, oracle)
        row_format: 'dict' or 'tuple'
    """

    def __init__(self, connection: Connection, dialect: str, row_format: str = 'dict'):
        self.connection = connection
        self.dialect = dialect
        self.row_format = row_format
        self.quotes = QUOTES.get(dialect, '"\'')
        self._transaction = None

    @property
    def paramstyle(self) -> str:
        return self.connection.dialect.paramstyle

    @property
    def _driver_errors(self) -> tuple:
        dbapi = getattr(self.connection.dialect, 'dbapi', None)
        driver_error = getattr(dbapi, 'Error', None)
        return (SQLAlchemyError, driver_error) if driver_error else (SQLAlchemyError,)

    # --- Transaction control ---

    def begin(self) -> None:
        try:
            self._transaction = self.connection.begin()
        except SQLAlchemyError as e:
            raise wrap_transaction_error(e, 'BEGIN', self.dialect) from e

    def commit(self) -> None:
        try:
            if self._transaction is not None:
                self._transaction.commit()
            else:
                self.connection.commit()
        except SQLAlchemyError as e:
            raise wrap_transaction_error(e, 'COMMIT', self.dialect) from e
        finally:
            self._transaction = None

    def rollback(self) -> None:
        try:
            if self._transaction is not None:
                self._transaction.rollback()
            else:
                self.connection.rollback()
        except SQLAlchemyError as e:
            raise wrap_transaction_error(e, 'ROLLBACK', self.dialect) from e
        finally:
            self._transaction = None

    # --- Statements ---

    def execute(self, compiled: CompiledStatement) -> QueryResult:
        """
        Execute a prepared statement.

        Args:
            compiled: Statement with dialect-native markers

        Returns:
            QueryResult with rows, rowcount and any returned output values

        Raises:
            QueryError: Wrapping the driver failure, with the SQL and bindings
        """
        try:
            if compiled.out_params:
                return self._execute_returning_into(compiled)

            sql, params = to_driver_paramstyle(
                compiled.sql, compiled.style, compiled.bindings, self.paramstyle, self.quotes
            )
            if params is None:
                result = self.connection.exec_driver_sql(sql)
            else:
                result = self.connection.exec_driver_sql(sql, params)

            rows = self._fetch_rows(result) if result.returns_rows else []
            return QueryResult(rows=rows, rowcount=result.rowcount)
        except self._driver_errors as e:
            raise wrap_query_error(e, compiled.sql, compiled.bindings, self.dialect) from e

    def _fetch_rows(self, result) -> List[Any]:
        if self.row_format == 'tuple':
            return [tuple(row) for row in result]
        return [dict(row._mapping) for row in result]

    def _execute_returning_into(self, compiled: CompiledStatement) -> QueryResult:
        """Run an Oracle ``RETURNING ... INTO`` statement on the raw DBAPI cursor."""
        cursor = self.connection.connection.cursor()
        try:
            out_types = compiled.out_types or (None,) * len(compiled.out_params)
            out_vars = [cursor.var(out_type or int) for out_type in out_types]
            sql, params = to_driver_paramstyle(
                compiled.sql,
                compiled.style,
                list(compiled.bindings) + out_vars,
                self.paramstyle,
                self.quotes
            )
            cursor.execute(sql, params)

            returned = {}
            for column, var in zip(compiled.out_params, out_vars):
                value = var.getvalue()
                # DML returning binds one value per affected row
                if isinstance(value, list) and len(value) == 1:
                    value = value[0]
                returned[column] = value
            return QueryResult(rowcount=cursor.rowcount, returned=returned)
        finally:
            cursor.close()

    def release(self) -> None:
        """Return the connection to the pool."""
        self._transaction = None
        self.connection.close()


class SQLAlchemyConnectionFactory:
    """
    Hands out pooled connections wrapped in SQLAlchemyConnection.

    Args:
        engine: SQLAlchemy engine owning the pool
        db_config: Configuration supplying dialect name and row format
    """

    def __init__(self, engine: Engine, db_config: DatabaseConfig):
        self.engine = engine
        self.db_config = db_config

    def acquire(self) -> SQLAlchemyConnection:
        """Borrow a connection from the pool.

        Raises:
            DatabaseConnectionError: If no connection could be established
        """
        try:
            connection = self.engine.connect()
        except SQLAlchemyError as e:
            logger.error(f"❌ Could not connect to {self.db_config.client}: {e}")
            raise wrap_connection_error(e, self.db_config.client) from e
        return SQLAlchemyConnection(connection, self.db_config.client, self.db_config.row_format)

    def dispose(self) -> None:
        """Close every pooled connection."""
        self.engine.dispose()


def check_database_available(db_config: Optional[DatabaseConfig] = None) -> bool:
    """
    Check if the configured database accepts connections.

    Args:
        db_config: Database configuration (defaults to config.db)

    Returns:
        True if a connection could be opened and pinged, False otherwise

    Example:
        >>> if check_database_available():
        ...     print("Database ready")
    """
    db_config = db_config or config.db
    engine = create_sqlalchemy_engine(db_config)
    try:
        with engine.connect() as conn:
            conn.exec_driver_sql(PING_SQL.get(db_config.client, 'SELECT 1'))
        return True
    except SQLAlchemyError as e:
        logger.debug(f"Database not available: {e}")
        return False
    finally:
        engine.dispose()
