"""
=====================================
Database client facade.
=====================================

``Client`` is the entry point applications hold on to. It resolves the
dialect grammars from the configuration, borrows pooled connections through
a connection factory (SQLAlchemy engine by default) and exposes:

    table(name)         fluent QueryBuilder
    query(sql, params)  raw SQL with canonical ``?`` markers
    schema              SchemaBuilder (create/alter/drop/has/rename)
    transaction(fn)     transaction, callback or context-manager form
    fn.now()            CURRENT_TIMESTAMP expression

Outside a transaction every statement borrows its own connection, commits
on success, rolls back on failure and always returns the connection to the
pool.

When ``debug`` is enabled every prepared statement and its bindings are
logged on the ``db.query`` logger.

Example:
    >>> from db import Client
    >>>
    >>> db = Client({
    ...     'client': 'mysql',
    ...     'connection': {'host': 'localhost', 'user': 'app', 'password': 'secret', 'database': 'shop'},
    ...     'debug': True,
    ... })
    >>> db.connect()
    >>> db.table('users').where('id', 7).first()
    >>>
    >>> with db.transaction() as trx:
    ...     trx.table('users').insert({'name': 'Ada'})
    >>>
    >>> db.disconnect()
"""

from contextlib import contextmanager
from typing import Any, Callable, Iterator, List, Mapping, Optional, Sequence, Union

from core.config import DatabaseConfig, config
from core.errors import DatabaseError
from core.logger import get_logger, log_statement
from db.schema_builder import SchemaBuilder
from db.transaction import Transaction, TransactionState
from sql.dialects import get_dialect
from sql.parameters import CompiledStatement
from sql.query_builder import QueryBuilder
from sql.statement import Raw
from utils.database_utils import SQLAlchemyConnectionFactory, create_sqlalchemy_engine

logger = get_logger(__name__)


class DatabaseFunctions:
    """SQL expression helpers usable as values and column defaults."""

    @staticmethod
    def now() -> Raw:
        return Raw('CURRENT_TIMESTAMP')

    @staticmethod
    def raw(sql: str) -> Raw:
        return Raw(sql)


class Client:
    """
    Dialect-aware database client.

    Args:
        db_config: DatabaseConfig, a plain mapping with 'client' and
            'connection', or None for the environment configuration
        connection_factory: Object with ``acquire()`` (and optionally
            ``dispose()``); defaults to a SQLAlchemy engine pool created on
            connect()

    Raises:
        ValueError: If the configuration is invalid or names an unknown dialect
    """

    def __init__(
        self,
        db_config: Union[DatabaseConfig, Mapping[str, Any], None] = None,
        connection_factory=None
    ):
        if db_config is None:
            db_config = config.db
        elif not isinstance(db_config, DatabaseConfig):
            db_config = DatabaseConfig.from_dict(db_config)

        self.config = db_config
        self.dialect = get_dialect(db_config.client)
        self.grammar = self.dialect.query_grammar()
        self.schema_grammar = self.dialect.schema_grammar(self.grammar)
        self.schema = SchemaBuilder(self)
        self.fn = DatabaseFunctions()
        self._factory = connection_factory

    @property
    def is_connected(self) -> bool:
        return self._factory is not None

    # --- Connection management ---

    def connect(self) -> 'Client':
        """Create the connection pool and verify it with one borrow.

        Raises:
            DatabaseConnectionError: If the driver or the server is unavailable
        """
        if self._factory is not None:
            return self

        engine = create_sqlalchemy_engine(self.config)
        factory = SQLAlchemyConnectionFactory(engine, self.config)
        try:
            # Fail fast on bad credentials / unreachable host
            factory.acquire().release()
        except DatabaseError:
            factory.dispose()
            raise

        self._factory = factory
        logger.info(f"✅ Connected to {self.dialect.name} database")
        return self

    def disconnect(self) -> None:
        """Close every pooled connection."""
        if self._factory is None:
            return
        factory, self._factory = self._factory, None
        dispose = getattr(factory, 'dispose', None)
        if dispose is not None:
            dispose()
        logger.info(f"Disconnected from {self.dialect.name} database")

    def _acquire(self):
        if self._factory is None:
            self.connect()
        return self._factory.acquire()

    # --- Statements ---

    def table(self, table_name: str) -> QueryBuilder:
        return QueryBuilder(self.grammar, self.execute, table_name)

    def query(self, sql: str, bindings: Sequence[Any] = ()) -> List[Any]:
        """Run raw SQL written with canonical ``?`` markers.

        Args:
            sql: SQL text; ``?`` markers are rewritten to the dialect's style
            bindings: Ordered values for the markers

        Returns:
            Result rows (empty list for statements without a result set)
        """
        compiled = self.grammar.prepare(CompiledStatement(sql, tuple(bindings)))
        return self.execute(compiled).rows

    def execute(self, compiled: CompiledStatement):
        """Execute a prepared statement on a freshly borrowed connection."""
        connection = self._acquire()
        try:
            self.log_statement(compiled)
            result = connection.execute(compiled)
            connection.commit()
            return result
        except DatabaseError:
            self._rollback_after_failure(connection)
            raise
        finally:
            connection.release()

    def _rollback_after_failure(self, connection) -> None:
        try:
            connection.rollback()
        except DatabaseError as e:
            # The statement error is what the caller needs; keep this one in the log
            logger.warning(f"⚠️  Rollback after failed statement also failed: {e}")

    def log_statement(self, compiled: CompiledStatement) -> None:
        """Debug side channel: log the prepared SQL and bindings when enabled."""
        if self.config.debug:
            log_statement(compiled.sql, compiled.bindings, self.dialect.name)

    # --- Transactions ---

    def transaction(self, callback: Optional[Callable[[Transaction], Any]] = None):
        """Run ``callback`` in a transaction, or return a context manager.

        The transaction commits when the callback (or ``with`` block)
        completes and rolls back when it raises; the error is re-raised. The
        connection is released on every path.

        Args:
            callback: Receives the Transaction; its return value is returned

        Example:
            >>> total = db.transaction(lambda trx: trx.table('orders').count())
            >>> with db.transaction() as trx:
            ...     trx.table('orders').insert({'total': 10})
        """
        if callback is None:
            return self._transaction_scope()
        with self._transaction_scope() as trx:
            return callback(trx)

    @contextmanager
    def _transaction_scope(self) -> Iterator[Transaction]:
        trx = Transaction(self, self._acquire())
        trx.begin()
        try:
            yield trx
        except BaseException:
            if trx.state is TransactionState.ACTIVE:
                trx.rollback()
            raise
        else:
            if trx.state is TransactionState.ACTIVE:
                trx.commit()

    def __repr__(self) -> str:
        return f"<Client {self.dialect.name} connected={self.is_connected}>"
