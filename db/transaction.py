"""
=====================================
Transaction coordinator.
=====================================

A ``Transaction`` exclusively owns one borrowed connection from BEGIN until
COMMIT or ROLLBACK. Nested scopes are implemented with savepoints named
``sp_<level+1>``: a failing nested scope rolls back to its own savepoint,
pops it, and re-raises the original error so the enclosing scope decides
what happens next.

State machine:
    IDLE -> ACTIVE -> (nested ACTIVE)* -> COMMITTED | ROLLED_BACK

COMMITTED and ROLLED_BACK are terminal: the connection is released on the
way into them, on every path, and any further statement raises
``TransactionError``.

Exclusive use:
    - statements are accepted only from the thread that began the transaction
    - a second statement while one is in flight raises TransactionError

Example:
    >>> def transfer(trx):
    ...     trx.table('accounts').where('id', 1).update({'balance': 50})
    ...     try:
    ...         with trx.transaction() as nested:
    ...             nested.table('audit').insert({'event': 'transfer'})
    ...     except QueryError:
    ...         pass  # only the audit insert was undone
    ...     return 'done'
    >>>
    >>> db.transaction(transfer)
    'done'
"""

import logging
import threading
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, List, Optional, Sequence

from core.errors import DatabaseError, TransactionError, wrap_transaction_error
from db.schema_builder import SchemaBuilder
from sql.parameters import CompiledStatement
from sql.query_builder import QueryBuilder

logger = logging.getLogger(__name__)


class TransactionState(str, Enum):
    IDLE = 'idle'
    ACTIVE = 'active'
    COMMITTED = 'committed'
    ROLLED_BACK = 'rolled_back'


class Transaction:
    """
    Transaction context bound to one connection.

    Exposes the same statement API as the client (``table``, ``query``,
    ``schema``, ``transaction``, ``fn``) so callbacks can be written against
    either.

    Attributes:
        client: Owning client (grammars, debug channel)
        connection: Exclusively owned connection
        level: Nesting depth (0 = top level)
        savepoints: Stack of active savepoint names
        state: Current TransactionState
    """

    def __init__(self, client, connection):
        self.client = client
        self.connection = connection
        self.grammar = client.grammar
        self.schema_grammar = client.schema_grammar
        self.fn = client.fn
        self.schema = SchemaBuilder(self)

        self.level = 0
        self.savepoints: List[str] = []
        self.state = TransactionState.IDLE

        self._owner: Optional[int] = None
        self._in_flight = threading.Lock()
        self._released = False

    @property
    def dialect(self) -> str:
        return self.grammar.name

    @property
    def is_active(self) -> bool:
        return self.state is TransactionState.ACTIVE

    # --- Lifecycle ---

    def begin(self) -> 'Transaction':
        """Issue BEGIN on the owned connection.

        Raises:
            TransactionError: If already begun, or BEGIN fails (the connection
                is released before raising)
        """
        if self.state is not TransactionState.IDLE:
            raise TransactionError(f"Cannot begin a transaction in state '{self.state.value}'")
        try:
            self.connection.begin()
        except DatabaseError as e:
            self.state = TransactionState.ROLLED_BACK
            self._release()
            if isinstance(e, TransactionError):
                raise
            raise wrap_transaction_error(e, 'BEGIN', self.dialect) from e

        self._owner = threading.get_ident()
        self.state = TransactionState.ACTIVE
        logger.debug(f"Transaction started on {self.dialect}")
        return self

    def commit(self) -> None:
        """Commit the top-level transaction and release the connection.

        Raises:
            TransactionError: Inside a nested scope, when not active, or when
                COMMIT fails (after the connection has been released)
        """
        self._check_usable()
        if self.level > 0:
            raise TransactionError("Cannot commit inside a nested transaction scope")
        try:
            self.connection.commit()
            self.state = TransactionState.COMMITTED
            logger.debug(f"Transaction committed on {self.dialect}")
        except TransactionError:
            self.state = TransactionState.ROLLED_BACK
            raise
        except DatabaseError as e:
            self.state = TransactionState.ROLLED_BACK
            raise wrap_transaction_error(e, 'COMMIT', self.dialect) from e
        finally:
            self._release()

    def rollback(self) -> None:
        """Roll back the whole transaction and release the connection."""
        self._check_usable()
        try:
            self.connection.rollback()
            logger.debug(f"Transaction rolled back on {self.dialect}")
        except TransactionError:
            raise
        except DatabaseError as e:
            raise wrap_transaction_error(e, 'ROLLBACK', self.dialect) from e
        finally:
            self.state = TransactionState.ROLLED_BACK
            self.level = 0
            self.savepoints.clear()
            self._release()

    # --- Savepoints ---

    def savepoint(self, name: str) -> None:
        self._control(self.grammar.compile_savepoint(name))

    def rollback_to(self, name: str) -> None:
        self._control(self.grammar.compile_rollback_to_savepoint(name))

    def release_savepoint(self, name: str) -> None:
        """Release a savepoint; a no-op on dialects without RELEASE SAVEPOINT."""
        sql = self.grammar.compile_release_savepoint(name)
        if sql is not None:
            self._control(sql)

    def transaction(self, callback: Optional[Callable[['Transaction'], Any]] = None):
        """Open a nested scope backed by a savepoint.

        Args:
            callback: Called with this transaction; its return value is
                returned. Without a callback a context manager is returned.

        Raises:
            Whatever the callback raised, after rolling back to the savepoint
        """
        if callback is None:
            return self._nested()
        with self._nested() as trx:
            return callback(trx)

    @contextmanager
    def _nested(self) -> Iterator['Transaction']:
        self._check_usable()
        name = f"sp_{self.level + 1}"
        self.savepoint(name)
        self.savepoints.append(name)
        self.level += 1
        try:
            yield self
        except BaseException as error:
            try:
                if self.is_active:
                    self.rollback_to(name)
            except TransactionError as rollback_error:
                logger.error(f"❌ Rollback to savepoint {name} failed; nested scope had raised {error!r}")
                raise TransactionError(
                    f"Rollback to savepoint {name} failed after the nested scope raised {error!r}",
                    cause=error
                ) from rollback_error
            finally:
                self._pop_savepoint(name)
            raise
        else:
            try:
                self.release_savepoint(name)
            finally:
                self._pop_savepoint(name)

    def _pop_savepoint(self, name: str) -> None:
        if self.savepoints and self.savepoints[-1] == name:
            self.savepoints.pop()
            self.level -= 1

    # --- Statements ---

    def table(self, table_name: str) -> QueryBuilder:
        return QueryBuilder(self.grammar, self.execute, table_name)

    def query(self, sql: str, bindings: Sequence[Any] = ()) -> List[Any]:
        """Run raw SQL (canonical ``?`` markers) on the owned connection."""
        compiled = self.grammar.prepare(CompiledStatement(sql, tuple(bindings)))
        return self.execute(compiled).rows

    def execute(self, compiled: CompiledStatement):
        """Execute a prepared statement on the owned connection.

        Raises:
            TransactionError: If the transaction is not active, is used from a
                foreign thread, or already has a statement in flight
        """
        self._check_usable()
        if not self._in_flight.acquire(blocking=False):
            raise TransactionError("Another statement is already in flight on this transaction")
        try:
            self.client.log_statement(compiled)
            return self.connection.execute(compiled)
        finally:
            self._in_flight.release()

    # --- Helpers ---

    def _control(self, sql: str) -> None:
        """Run a transaction-control statement, wrapping failures."""
        try:
            self.execute(CompiledStatement(sql))
        except TransactionError:
            raise
        except DatabaseError as e:
            raise wrap_transaction_error(e, sql, self.dialect) from e

    def _check_usable(self) -> None:
        if self.state is not TransactionState.ACTIVE:
            raise TransactionError(f"Transaction is not active (state: {self.state.value})")
        if self._owner is not None and threading.get_ident() != self._owner:
            raise TransactionError("Transaction is owned by another thread")

    def _release(self) -> None:
        if not self._released:
            self._released = True
            self.connection.release()

    def __repr__(self) -> str:
        return f"<Transaction {self.dialect} state={self.state.value} level={self.level}>"
