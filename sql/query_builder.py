"""
============================
Fluent query builder.
============================

``QueryBuilder`` populates a ``Statement`` through chainable calls and
compiles it with the active dialect's grammar when a terminal is invoked.
Builders are obtained from ``Client.table()`` (or a transaction's
``table()``), which binds them to the dialect grammar and to an executor.

Chainable methods:
- select / distinct / from_
- where / where_in / where_not_in / where_null / where_not_null / where_raw
- join / left_join / right_join
- group_by / having / having_raw
- order_by / limit / offset / returning

Terminals:
- get, first: SELECT, returning rows
- insert, update, delete: DML, returning the affected row count or, with
  returning(), the returned rows
- count, max, min, sum, avg: aggregate SELECT, returning a scalar
- to_sql: compile without executing

All predicates are AND-combined. Compile-time rejections (unknown operator,
unsupported aggregate, RETURNING on MySQL ...) are raised before anything is
sent to the database.

Usage:
    from db.client import Client

    db = Client({'client': 'postgres', 'connection': {...}})
    rows = (
        db.table('users')
        .select('id', 'name')
        .where('active', True)
        .where('age', '>=', 18)
        .order_by('name')
        .limit(20)
        .get()
    )
    total = db.table('orders').where('status', 'paid').sum('amount')
"""

import copy
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Union

from core.errors import DatabaseError, UnsupportedOperationError, UnsupportedTypeError
from sql.parameters import CompiledStatement
from sql.query_grammar import QueryGrammar
from sql.statement import (
    AGGREGATE_FUNCTIONS,
    JOIN_KINDS,
    ORDER_DIRECTIONS,
    Aggregate,
    InPredicate,
    Join,
    NullPredicate,
    OrderSpec,
    Predicate,
    Raw,
    RawPredicate,
    Statement,
)

# Distinguishes where('col', value) from where('col', '=', None)
_MISSING = object()

Executor = Callable[[CompiledStatement], Any]


def _flatten(columns: Sequence[Any]) -> List[Any]:
    """Accept both select('a', 'b') and select(['a', 'b'])."""
    flat: List[Any] = []
    for column in columns:
        if isinstance(column, (list, tuple)):
            flat.extend(column)
        else:
            flat.append(column)
    return flat


class QueryBuilder:
    """Chainable builder for one statement against one table.

    Args:
        grammar: Query grammar of the active dialect
        executor: Callable running a prepared CompiledStatement and returning
            a result with ``rows``, ``rowcount`` and ``returned`` attributes
        table: Source table
    """

    def __init__(self, grammar: QueryGrammar, executor: Optional[Executor] = None, table: Optional[str] = None):
        self.grammar = grammar
        self.executor = executor
        self.statement = Statement(table=table or '')

    def clone(self) -> 'QueryBuilder':
        """Independent copy sharing grammar and executor."""
        cloned = QueryBuilder(self.grammar, self.executor)
        cloned.statement = copy.deepcopy(self.statement)
        return cloned

    # --- Source & columns ---

    def from_(self, table: str) -> 'QueryBuilder':
        self.statement.table = table
        return self

    table = from_

    def select(self, *columns: Union[str, Raw, Sequence[str]]) -> 'QueryBuilder':
        self.statement.set_columns(_flatten(columns))
        return self

    def distinct(self) -> 'QueryBuilder':
        self.statement.distinct = True
        return self

    # --- Predicates ---

    def where(self, column: Union[str, Mapping[str, Any]], operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        """Add an AND-combined predicate.

        Forms:
            where('id', 7)                  -> "id" = ?
            where('age', '>=', 18)          -> "age" >= ?
            where({'a': 1, 'b': 2})         -> "a" = ? AND "b" = ?
            where('id', 'in', sub_builder)  -> "id" IN (subquery)
            where('total', '>', sub_builder)-> "total" > (subquery)

        A None value with '=' / '!=' compiles to IS NULL / IS NOT NULL.
        """
        if isinstance(column, Mapping):
            for key, item in column.items():
                self.where(key, '=', item)
            return self

        if value is _MISSING:
            if operator is _MISSING:
                raise ValueError(f"where('{column}') requires a value")
            operator, value = '=', operator

        normalized = ' '.join(str(operator).lower().split())
        if normalized in ('in', 'not in'):
            return self._where_in(column, value, negated=normalized == 'not in')

        if isinstance(value, QueryBuilder):
            sub = value.compile_select()
            operator = self.grammar._check_operator(operator)
            self.statement.wheres.append(
                RawPredicate(f"{self.grammar.wrap(column)} {operator} ({sub.sql})", sub.bindings)
            )
            return self

        if value is None and normalized in ('=', '!=', '<>'):
            self.statement.wheres.append(NullPredicate(column, negated=normalized != '='))
            return self

        self.statement.wheres.append(Predicate(column, operator, value))
        return self

    def where_in(self, column: str, values: Union[Sequence[Any], 'QueryBuilder']) -> 'QueryBuilder':
        """``column IN (...)`` over a value list or a sub-builder."""
        return self._where_in(column, values, negated=False)

    def where_not_in(self, column: str, values: Union[Sequence[Any], 'QueryBuilder']) -> 'QueryBuilder':
        return self._where_in(column, values, negated=True)

    def _where_in(self, column: str, values: Any, negated: bool) -> 'QueryBuilder':
        if isinstance(values, QueryBuilder):
            sub = values.compile_select()
            predicate = InPredicate(column, tuple(sub.bindings), subquery_sql=sub.sql, negated=negated)
        else:
            predicate = InPredicate(column, tuple(values), negated=negated)
        self.statement.wheres.append(predicate)
        return self

    def where_null(self, column: str) -> 'QueryBuilder':
        self.statement.wheres.append(NullPredicate(column))
        return self

    def where_not_null(self, column: str) -> 'QueryBuilder':
        self.statement.wheres.append(NullPredicate(column, negated=True))
        return self

    def where_raw(self, sql: str, bindings: Sequence[Any] = ()) -> 'QueryBuilder':
        """Raw predicate using canonical ``?`` markers for its bindings."""
        self.statement.wheres.append(RawPredicate(sql, tuple(bindings)))
        return self

    # --- Joins ---

    def join(self, table: str, first: str, operator: str, second: Optional[str] = None, kind: str = 'inner') -> 'QueryBuilder':
        """Join ``table`` ON ``first operator second``.

        The three-argument form ``join('posts', 'users.id', 'posts.user_id')``
        uses '='.
        """
        if second is None:
            operator, second = '=', operator
        kind = kind.lower()
        if kind not in JOIN_KINDS:
            raise UnsupportedOperationError(f"Unknown join kind '{kind}'. Expected one of {JOIN_KINDS}")
        self.statement.joins.append(Join(kind, table, first, operator, second))
        return self

    def left_join(self, table: str, first: str, operator: str, second: Optional[str] = None) -> 'QueryBuilder':
        return self.join(table, first, operator, second, kind='left')

    def right_join(self, table: str, first: str, operator: str, second: Optional[str] = None) -> 'QueryBuilder':
        return self.join(table, first, operator, second, kind='right')

    # --- Grouping, ordering, pagination ---

    def group_by(self, *columns: Union[str, Sequence[str]]) -> 'QueryBuilder':
        self.statement.groups.extend(_flatten(columns))
        return self

    def having(self, column: str, operator: Any = _MISSING, value: Any = _MISSING) -> 'QueryBuilder':
        if value is _MISSING:
            if operator is _MISSING:
                raise ValueError(f"having('{column}') requires a value")
            operator, value = '=', operator
        self.statement.havings.append(Predicate(column, operator, value))
        return self

    def having_raw(self, sql: str, bindings: Sequence[Any] = ()) -> 'QueryBuilder':
        self.statement.havings.append(RawPredicate(sql, tuple(bindings)))
        return self

    def order_by(self, column: str, direction: str = 'asc') -> 'QueryBuilder':
        direction = direction.lower()
        if direction not in ORDER_DIRECTIONS:
            raise UnsupportedOperationError(f"Order direction must be 'asc' or 'desc', got '{direction}'")
        self.statement.orders.append(OrderSpec(column, direction))
        return self

    def limit(self, value: Optional[int]) -> 'QueryBuilder':
        """Maximum rows; None or a value <= 0 removes the limit."""
        self.statement.limit = self._positive(value, 'limit')
        return self

    def offset(self, value: Optional[int]) -> 'QueryBuilder':
        """Rows to skip; None or a value <= 0 removes the offset."""
        self.statement.offset = self._positive(value, 'offset')
        return self

    @staticmethod
    def _positive(value: Optional[int], name: str) -> Optional[int]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"{name} must be an integer, got {value!r}")
        return value if value > 0 else None

    def returning(
        self,
        *columns: Union[str, Sequence[str]],
        types: Optional[Mapping[str, Any]] = None
    ) -> 'QueryBuilder':
        """Columns to return from insert/update/delete.

        Args:
            columns: Returned column names
            types: Optional Python type per column (e.g. ``{'code': str}``), used
                for Oracle output variables; untyped columns are numeric
        """
        self.statement.returning = _flatten(columns)
        self.statement.returning_types = dict(types or {})
        return self

    # --- Compilation ---

    def compile_select(self) -> CompiledStatement:
        """Compile the SELECT with canonical ``?`` markers."""
        return self.grammar.compile_select(self.statement)

    def to_sql(self) -> CompiledStatement:
        """Compile the SELECT to dialect-native SQL without executing it."""
        return self.grammar.prepare(self.compile_select())

    # --- Terminals ---

    def get(self) -> List[Any]:
        """Run the SELECT and return all rows."""
        return self._run(self.compile_select()).rows

    def first(self) -> Optional[Any]:
        """Run the SELECT limited to one row; returns the row or None."""
        rows = self.clone().limit(1).get()
        return rows[0] if rows else None

    def insert(self, data: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]]) -> Union[int, List[Any]]:
        """Insert one row (mapping) or many rows (sequence of mappings).

        Returns:
            Affected row count, or the returned rows when returning() is set
        """
        compiled = self.grammar.compile_insert(self.statement.table, data, self.statement.returning)
        if compiled.out_params:
            compiled = compiled.with_out_types(self.statement.returning_types)
        return self._dml_result(self._run(compiled))

    def update(self, data: Mapping[str, Any]) -> Union[int, List[Any]]:
        compiled = self.grammar.compile_update(self.statement, data)
        return self._dml_result(self._run(compiled))

    def delete(self) -> Union[int, List[Any]]:
        compiled = self.grammar.compile_delete(self.statement)
        return self._dml_result(self._run(compiled))

    def count(self, column: str = '*') -> Any:
        return self.aggregate('count', column)

    def max(self, column: str) -> Any:
        return self.aggregate('max', column)

    def min(self, column: str) -> Any:
        return self.aggregate('min', column)

    def sum(self, column: str) -> Any:
        return self.aggregate('sum', column)

    def avg(self, column: str) -> Any:
        return self.aggregate('avg', column)

    def aggregate(self, function: str, column: str = '*') -> Any:
        """Run an aggregate SELECT and return its scalar value.

        Ordering and pagination are dropped for the aggregate query.

        Raises:
            UnsupportedTypeError: If ``function`` is not a supported aggregate
        """
        function = function.lower()
        if function not in AGGREGATE_FUNCTIONS:
            raise UnsupportedTypeError(
                f"Unsupported aggregate '{function}'. Expected one of {AGGREGATE_FUNCTIONS}"
            )

        query = self.clone()
        query.statement.set_aggregate(Aggregate(function, column))
        query.statement.orders = []
        query.statement.limit = None
        query.statement.offset = None

        rows = query.get()
        if not rows:
            return None
        row = rows[0]
        if isinstance(row, Mapping):
            return next(iter(row.values()), None)
        return row[0]

    # --- Execution ---

    def _run(self, compiled: CompiledStatement) -> Any:
        if self.executor is None:
            raise DatabaseError("QueryBuilder is not bound to a connection; use client.table()")
        return self.executor(self.grammar.prepare(compiled))

    def _dml_result(self, result: Any) -> Union[int, List[Any]]:
        if not self.statement.returning:
            return result.rowcount
        if result.returned:
            return [result.returned]
        return result.rows

    def __repr__(self) -> str:
        return f"<QueryBuilder {self.grammar.name} table={self.statement.table!r}>"
