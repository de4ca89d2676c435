"""
=====================================================
Error taxonomy and driver-error classification.
=====================================================

Every failure raised by the compiler, the client or the transaction
coordinator is one of the exceptions defined here. Driver-level failures
(psycopg2, pymysql, pymssql, oracledb, or the SQLAlchemy wrappers around
them) are never surfaced raw: they are classified by ``classify_error`` and
re-raised wrapped, with the original exception kept as ``cause`` and chained
via ``raise ... from``.

Taxonomy:
    DatabaseError: Base class for everything below
    DatabaseConnectionError: Establishing or tearing down a connection failed
    QueryError: Compiling or executing a DML/DDL statement failed
    TransactionError: BEGIN/COMMIT/ROLLBACK/SAVEPOINT machinery failed
    UnsupportedTypeError: Column or aggregate type not representable in a dialect
    UnsupportedOperationError: Clause or operation not representable in a dialect
    MigrationError: A migration or the migrations table failed
    PaginationWarning: Pagination compiled without a deterministic ORDER BY

Nothing in this package retries automatically; retry policy belongs to the
caller.

Example:
    >>> from core.errors import QueryError, classify_error
    >>>
    >>> try:
    ...     db.table('users').where('id', 7).get()
    ... except QueryError as e:
    ...     print(e.sql, e.bindings)
    ...     print(classify_error(e.cause).reason)
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from psycopg2 import errorcodes
from sqlalchemy.exc import DBAPIError

__all__ = [
    'DatabaseError', 'DatabaseConnectionError', 'QueryError', 'TransactionError',
    'CompileError', 'UnsupportedTypeError', 'UnsupportedOperationError',
    'MigrationError', 'PaginationWarning', 'ErrorClassification', 'classify_error',
    'wrap_connection_error', 'wrap_query_error', 'wrap_transaction_error',
]


# ====================
# Exceptions
# ====================

class DatabaseError(Exception):
    """Base class for all errors raised by the compiler and coordinator.

    Attributes:
        cause: Underlying exception, when the error wraps one
        hint: Short human-readable suggestion produced by the classifier
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None, hint: Optional[str] = None):
        super().__init__(message)
        self.cause = cause
        self.hint = hint


class DatabaseConnectionError(DatabaseError):
    """Raised when a connection cannot be established or torn down."""
    pass


class QueryError(DatabaseError):
    """Raised when a statement fails to compile consistently or to execute.

    Always carries the exact SQL text and bindings that were attempted.

    Attributes:
        sql: SQL text as sent (or about to be sent) to the driver
        bindings: Ordered binding values for that SQL
    """

    def __init__(
        self,
        message: str,
        sql: str,
        bindings: Optional[Sequence[Any]] = None,
        cause: Optional[BaseException] = None,
        hint: Optional[str] = None
    ):
        super().__init__(message, cause=cause, hint=hint)
        self.sql = sql
        self.bindings = list(bindings or [])


class TransactionError(DatabaseError):
    """Raised when a transaction control command fails or is misused."""
    pass


class CompileError(DatabaseError):
    """Base class for compile-time rejections (raised before any I/O)."""
    pass


class UnsupportedTypeError(CompileError):
    """Raised when a column or aggregate type has no mapping in the active dialect."""
    pass


class UnsupportedOperationError(CompileError):
    """Raised when a clause or operation cannot be expressed in the active dialect."""
    pass


class MigrationError(DatabaseError):
    """Raised when running, reverting or recording a migration fails.

    Attributes:
        migration: Name of the migration involved, if any
    """

    def __init__(
        self,
        message: str,
        migration: Optional[str] = None,
        cause: Optional[BaseException] = None
    ):
        super().__init__(message, cause=cause)
        self.migration = migration


class PaginationWarning(UserWarning):
    """Pagination was compiled without an explicit ORDER BY."""
    pass


# ====================
# Classification
# ====================

@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying a driver error.

    Attributes:
        kind: 'connection', 'query', 'transaction' or 'unsupported'
        reason: Normalized failure reason (e.g. 'table_not_found')
        code: Driver error code as text, when one could be extracted
        sql_context: {'sql': ..., 'bindings': [...]} when SQL was supplied
        hint: Short human-readable suggestion
    """

    kind: str
    reason: str
    code: Optional[str] = None
    sql_context: Optional[Dict[str, Any]] = None
    hint: str = ''


_ORA_CODE = re.compile(r'ORA-(\d{5})')
_TABLE_IN_SQL = re.compile(r'(?:from|into|update|join|table)\s+[`"\[]?(\w+)[`"\]]?', re.IGNORECASE)

_POSTGRES_REASONS = {
    errorcodes.UNDEFINED_TABLE: 'table_not_found',
    errorcodes.UNDEFINED_COLUMN: 'column_not_found',
    errorcodes.UNIQUE_VIOLATION: 'unique_violation',
    errorcodes.FOREIGN_KEY_VIOLATION: 'foreign_key_violation',
    errorcodes.NOT_NULL_VIOLATION: 'not_null_violation',
    errorcodes.SYNTAX_ERROR: 'syntax_error',
    errorcodes.INVALID_PASSWORD: 'authentication_failed',
    errorcodes.INVALID_AUTHORIZATION_SPECIFICATION: 'authentication_failed',
    errorcodes.INVALID_CATALOG_NAME: 'database_not_found',
    errorcodes.INVALID_SAVEPOINT_SPECIFICATION: 'savepoint_not_found',
    errorcodes.DEADLOCK_DETECTED: 'deadlock',
}

_MYSQL_REASONS = {
    '1146': 'table_not_found',
    '1054': 'column_not_found',
    '1062': 'unique_violation',
    '1451': 'foreign_key_violation',
    '1452': 'foreign_key_violation',
    '1048': 'not_null_violation',
    '1064': 'syntax_error',
    '1045': 'authentication_failed',
    '1049': 'database_not_found',
    '1305': 'savepoint_not_found',
    '1213': 'deadlock',
    '2003': 'host_unreachable',
    '2005': 'host_unreachable',
}

_MSSQL_REASONS = {
    '208': 'table_not_found',
    '207': 'column_not_found',
    '2627': 'unique_violation',
    '2601': 'unique_violation',
    '547': 'foreign_key_violation',
    '515': 'not_null_violation',
    '102': 'syntax_error',
    '18456': 'authentication_failed',
    '4060': 'database_not_found',
    '1205': 'deadlock',
    '20009': 'host_unreachable',
}

_ORACLE_REASONS = {
    'ORA-00942': 'table_not_found',
    'ORA-00904': 'column_not_found',
    'ORA-00001': 'unique_violation',
    'ORA-02291': 'foreign_key_violation',
    'ORA-02292': 'foreign_key_violation',
    'ORA-01400': 'not_null_violation',
    'ORA-00900': 'syntax_error',
    'ORA-00933': 'syntax_error',
    'ORA-01017': 'authentication_failed',
    'ORA-12514': 'database_not_found',
    'ORA-01086': 'savepoint_not_found',
    'ORA-00060': 'deadlock',
    'ORA-12541': 'host_unreachable',
    'ORA-12545': 'host_unreachable',
}

_NUMERIC_REASONS = {
    'mysql': _MYSQL_REASONS,
    'mssql': _MSSQL_REASONS,
}

_MESSAGE_REASONS = [
    ('password authentication failed', 'authentication_failed'),
    ('login failed', 'authentication_failed'),
    ('access denied', 'authentication_failed'),
    ('connection refused', 'host_unreachable'),
    ('could not connect', 'host_unreachable'),
    ("can't connect", 'host_unreachable'),
    ('could not translate host name', 'host_unreachable'),
    ('name or service not known', 'host_unreachable'),
    ('timeout expired', 'host_unreachable'),
    ('database "', 'database_not_found'),
    ('does not exist', 'table_not_found'),
    ('invalid object name', 'table_not_found'),
    ('invalid column name', 'column_not_found'),
    ('unknown column', 'column_not_found'),
    ('duplicate', 'unique_violation'),
    ('syntax', 'syntax_error'),
]

_CONNECTION_REASONS = {'authentication_failed', 'host_unreachable', 'database_not_found'}


def _unwrap(error: BaseException) -> BaseException:
    """Return the DBAPI exception hidden behind a SQLAlchemy wrapper."""
    if isinstance(error, DBAPIError) and error.orig is not None:
        return error.orig
    if isinstance(error, DatabaseError) and error.cause is not None:
        return _unwrap(error.cause)
    return error


def _extract_code(error: BaseException) -> Optional[str]:
    """Extract a driver error code without touching the network."""
    pgcode = getattr(error, 'pgcode', None)
    if pgcode:
        return str(pgcode)

    args = getattr(error, 'args', ())
    if args:
        # oracledb wraps an _Error object carrying full_code ('ORA-00942')
        full_code = getattr(args[0], 'full_code', None)
        if full_code:
            return str(full_code)
        if isinstance(args[0], int) and not isinstance(args[0], bool):
            return str(args[0])

    match = _ORA_CODE.search(str(error))
    if match:
        return f"ORA-{match.group(1)}"

    return None


def _reason_for(code: Optional[str], message: str, dialect: Optional[str]) -> str:
    """Map an error code (or, failing that, the message) to a reason."""
    if code:
        if code.startswith('ORA-'):
            tables = [_ORACLE_REASONS]
        elif dialect in _NUMERIC_REASONS:
            tables = [_NUMERIC_REASONS[dialect]]
        elif dialect == 'postgres' or not code.isdigit():
            tables = [_POSTGRES_REASONS]
        else:
            # SQLSTATE codes can be all digits ('23505'), so try Postgres first
            tables = [_POSTGRES_REASONS, _MYSQL_REASONS, _MSSQL_REASONS]
        reason = next((table[code] for table in tables if code in table), None)
        if reason:
            return reason

    lowered = message.lower()
    for needle, reason in _MESSAGE_REASONS:
        if needle in lowered:
            return reason
    return 'unknown'


def _build_hint(reason: str, sql: Optional[str], message: str) -> str:
    """Produce a short suggestion for a classified failure."""
    if reason == 'table_not_found':
        match = _TABLE_IN_SQL.search(sql or '')
        table = match.group(1) if match else 'unknown'
        return f'Table "{table}" was not found. Have the migrations been run?'
    if reason == 'column_not_found':
        return 'A referenced column was not found. Check the column names.'
    if reason == 'unique_violation':
        return 'The statement would violate a UNIQUE constraint.'
    if reason == 'foreign_key_violation':
        return 'The statement would violate a FOREIGN KEY constraint.'
    if reason == 'not_null_violation':
        return 'A NOT NULL column received no value.'
    if reason == 'syntax_error':
        return 'The statement contains an SQL syntax error.'
    if reason == 'authentication_failed':
        return 'Authentication failed. Check the user and password.'
    if reason == 'host_unreachable':
        return 'The database server could not be reached. Is it running and reachable?'
    if reason == 'database_not_found':
        return 'The configured database does not exist on the server.'
    if reason == 'savepoint_not_found':
        return 'The savepoint does not exist in the current transaction.'
    if reason == 'deadlock':
        return 'The statement was chosen as a deadlock victim.'
    return message or 'The database reported an error.'


def classify_error(
    error: BaseException,
    sql: Optional[str] = None,
    bindings: Optional[Sequence[Any]] = None,
    dialect: Optional[str] = None
) -> ErrorClassification:
    """Classify a driver-level failure into the error taxonomy.

    Pure function: inspects exception attributes and messages only.

    Args:
        error: Exception raised by a driver, SQLAlchemy, or this package
        sql: SQL text that was being executed, if any
        bindings: Bindings for that SQL, if any
        dialect: Active dialect name, used to disambiguate numeric codes

    Returns:
        ErrorClassification with kind, reason, code, sql_context and hint

    Example:
        >>> result = classify_error(exc, sql='SELECT * FROM "users"')
        >>> result.reason
        'table_not_found'
    """
    sql_context = {'sql': sql, 'bindings': list(bindings or [])} if sql is not None else None

    if isinstance(error, CompileError):
        return ErrorClassification(
            kind='unsupported',
            reason='unsupported',
            sql_context=sql_context,
            hint=str(error)
        )
    if isinstance(error, TransactionError) and error.cause is None:
        return ErrorClassification(
            kind='transaction',
            reason='transaction_state',
            sql_context=sql_context,
            hint=str(error)
        )

    original = _unwrap(error)
    code = _extract_code(original)
    message = str(original)
    reason = _reason_for(code, message, dialect)

    if isinstance(error, TransactionError):
        kind = 'transaction'
    elif isinstance(error, DatabaseConnectionError) or reason in _CONNECTION_REASONS:
        kind = 'connection'
    else:
        kind = 'query'

    return ErrorClassification(
        kind=kind,
        reason=reason,
        code=code,
        sql_context=sql_context,
        hint=_build_hint(reason, sql, message)
    )


# ====================
# Wrapping helpers
# ====================

def wrap_query_error(
    error: BaseException,
    sql: str,
    bindings: Optional[Sequence[Any]] = None,
    dialect: Optional[str] = None
) -> QueryError:
    """Build a QueryError for a failed statement (caller raises it)."""
    classification = classify_error(error, sql=sql, bindings=bindings, dialect=dialect)
    return QueryError(
        f"Query failed ({classification.reason}): {classification.hint}",
        sql=sql,
        bindings=bindings,
        cause=error,
        hint=classification.hint
    )


def wrap_connection_error(error: BaseException, dialect: Optional[str] = None) -> DatabaseConnectionError:
    """Build a DatabaseConnectionError for a failed connect/disconnect."""
    classification = classify_error(error, dialect=dialect)
    return DatabaseConnectionError(
        f"Database connection failed ({classification.reason}): {classification.hint}",
        cause=error,
        hint=classification.hint
    )


def wrap_transaction_error(
    error: BaseException,
    command: str,
    dialect: Optional[str] = None
) -> TransactionError:
    """Build a TransactionError for a failed control command."""
    classification = classify_error(error, sql=command, dialect=dialect)
    return TransactionError(
        f"Transaction command failed: {command} ({classification.reason})",
        cause=error,
        hint=classification.hint
    )
