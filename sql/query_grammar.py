"""
=======================================
Per-dialect query grammars (SELECT/DML).
=======================================

Translates a ``Statement`` into SQL text plus ordered bindings for one
dialect. Compilation is pure: no I/O, no shared state, and every rejection
(unknown operator, unsupported RETURNING, ...) is raised here, before any
statement reaches a connection.

Each clause compiles to a ``Fragment`` and ``join_fragments`` assembles them,
so the SQL and its bindings are produced by the same pass:

    SELECT|aggregate -> FROM -> JOIN* -> WHERE -> GROUP BY -> HAVING
    -> ORDER BY -> pagination

Grammars:
    QueryGrammar: Default rules shared by every dialect
    PostgresGrammar: "ident", $n markers, LIMIT/OFFSET, native RETURNING
    MySqlGrammar: `ident`, ? markers, LIMIT/OFFSET, no RETURNING
    MssqlGrammar: [ident], @paramN markers, OFFSET/FETCH with ORDER BY fallback
    OracleGrammar: "IDENT", :n markers, OFFSET/FETCH, RETURNING ... INTO

Example:
    >>> grammar = PostgresGrammar()
    >>> stmt = Statement(table='users', columns=['id', 'name'],
    ...                  wheres=[Predicate('id', '=', 7)])
    >>> prepared = grammar.prepare(grammar.compile_select(stmt))
    >>> prepared.sql
    'SELECT "id", "name" FROM "users" WHERE "id" = $1'
    >>> prepared.bindings
    (7,)
"""

import warnings
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from core.errors import PaginationWarning, QueryError, UnsupportedOperationError, UnsupportedTypeError
from sql.parameters import (
    CompiledStatement,
    Fragment,
    PlaceholderStyle,
    count_placeholders,
    fragment,
    join_fragments,
    rewrite_placeholders,
)
from sql.statement import (
    AGGREGATE_FUNCTIONS,
    Aggregate,
    AnyPredicate,
    InPredicate,
    Join,
    NullPredicate,
    Predicate,
    Raw,
    RawPredicate,
    Statement,
)

BASE_OPERATORS = ('=', '<', '>', '<=', '>=', '<>', '!=', 'like', 'not like')

# Largest row count MySQL accepts; used when only an offset is requested
MYSQL_MAX_ROWS = 18446744073709551615


@dataclass(frozen=True)
class DialectRules:
    """Static facts about a dialect consumed by the shared compile logic.

    Attributes:
        name: Dialect name
        open_quote: Identifier opening quote
        close_quote: Identifier closing quote
        placeholder_style: Native positional marker style
        quotes: Characters that open literals/identifiers (for marker scanning)
        supports_returning: Whether INSERT/UPDATE/DELETE can return rows
        upper_identifiers: Upper-case identifiers before quoting
        extra_operators: Comparison operators beyond BASE_OPERATORS
    """

    name: str
    open_quote: str = '"'
    close_quote: str = '"'
    placeholder_style: PlaceholderStyle = PlaceholderStyle.QMARK
    quotes: str = '"\''
    supports_returning: bool = False
    upper_identifiers: bool = False
    extra_operators: Tuple[str, ...] = ()


class QueryGrammar:
    """Default compile rules; dialects override the pieces that differ."""

    rules = DialectRules(name='ansi')

    @property
    def name(self) -> str:
        return self.rules.name

    # --- Identifiers ---

    def wrap(self, value: Union[str, Raw]) -> str:
        """Quote an identifier, supporting ``table.column`` and ``column as alias``.

        ``*``, Raw expressions and function-call expressions (anything
        containing a parenthesis) are returned as-is.
        """
        if isinstance(value, Raw):
            return value.sql
        if value == '*' or '(' in value:
            return value

        lowered = value.lower()
        if ' as ' in lowered:
            index = lowered.index(' as ')
            column, alias = value[:index].strip(), value[index + 4:].strip()
            return f"{self.wrap(column)} AS {self._quote(alias)}"

        return '.'.join(part if part == '*' else self._quote(part) for part in value.split('.'))

    def _quote(self, identifier: str) -> str:
        if self.rules.upper_identifiers:
            identifier = identifier.upper()
        close = self.rules.close_quote
        escaped = identifier.replace(close, close + close)
        return f"{self.rules.open_quote}{escaped}{close}"

    def wrap_table(self, table: str) -> str:
        return self.wrap(table)

    def columnize(self, columns: Iterable[Union[str, Raw]]) -> str:
        return ', '.join(self.wrap(column) for column in columns)

    def parameter(self, value: Any) -> Fragment:
        """Marker for a value; Raw values are inlined instead of bound."""
        if isinstance(value, Raw):
            return Fragment(value.sql)
        return Fragment('?', (value,))

    def parameterize(self, values: Iterable[Any]) -> Fragment:
        return join_fragments([self.parameter(value) for value in values], ', ')

    # --- SELECT ---

    def compile_select(self, stmt: Statement) -> CompiledStatement:
        """Compile a SELECT statement with canonical ``?`` markers."""
        self._require_table(stmt)
        compiled = join_fragments([
            self.compile_select_core(stmt),
            self.compile_from(stmt),
            self.compile_joins(stmt.joins),
            self.compile_predicates(stmt.wheres, 'WHERE'),
            self.compile_groups(stmt.groups),
            self.compile_predicates(stmt.havings, 'HAVING'),
            self.compile_orders(stmt),
            self.compile_pagination(stmt),
        ])
        return CompiledStatement(compiled.sql, compiled.bindings)

    def compile_select_core(self, stmt: Statement) -> Fragment:
        keyword = 'SELECT DISTINCT' if stmt.distinct and stmt.aggregate is None else 'SELECT'
        if stmt.aggregate is not None:
            return Fragment(f"{keyword} {self.compile_aggregate(stmt.aggregate, stmt.distinct)}")
        return Fragment(f"{keyword} {self.columnize(stmt.columns)}")

    def compile_aggregate(self, aggregate: Aggregate, distinct: bool = False) -> str:
        function = aggregate.function.lower()
        if function not in AGGREGATE_FUNCTIONS:
            raise UnsupportedTypeError(
                f"Aggregate '{aggregate.function}' is not supported by the {self.name} grammar"
            )
        column = self.wrap(aggregate.column)
        if distinct and aggregate.column != '*':
            column = f"DISTINCT {column}"
        return f"{function.upper()}({column}) AS {self._quote(aggregate.alias)}"

    def compile_from(self, stmt: Statement) -> Fragment:
        return Fragment(f"FROM {self.wrap_table(stmt.table)}")

    def compile_joins(self, joins: Sequence[Join]) -> Optional[Fragment]:
        if not joins:
            return None
        clauses = []
        for join in joins:
            operator = self._check_operator(join.operator)
            clauses.append(
                f"{join.kind.upper()} JOIN {self.wrap_table(join.table)} "
                f"ON {self.wrap(join.first)} {operator} {self.wrap(join.second)}"
            )
        return Fragment(' '.join(clauses))

    def compile_predicates(self, predicates: Sequence[AnyPredicate], keyword: str) -> Optional[Fragment]:
        """Compile AND-combined predicates under ``keyword`` (WHERE/HAVING)."""
        if not predicates:
            return None
        body = join_fragments([self.compile_predicate(p) for p in predicates], ' AND ')
        return Fragment(f"{keyword} {body.sql}", body.bindings)

    def compile_predicate(self, predicate: AnyPredicate) -> Fragment:
        if isinstance(predicate, Predicate):
            operator = self._check_operator(predicate.operator)
            value = self.parameter(predicate.value)
            return Fragment(f"{self.wrap(predicate.column)} {operator} {value.sql}", value.bindings)

        if isinstance(predicate, InPredicate):
            keyword = 'NOT IN' if predicate.negated else 'IN'
            if predicate.subquery_sql is not None:
                return fragment(
                    f"{self.wrap(predicate.column)} {keyword} ({predicate.subquery_sql})",
                    predicate.values
                )
            if not predicate.values:
                # Empty IN lists are invalid SQL; emit the equivalent constant predicate
                return Fragment('1 = 1' if predicate.negated else '1 = 0')
            values = self.parameterize(predicate.values)
            return Fragment(f"{self.wrap(predicate.column)} {keyword} ({values.sql})", values.bindings)

        if isinstance(predicate, NullPredicate):
            keyword = 'IS NOT NULL' if predicate.negated else 'IS NULL'
            return Fragment(f"{self.wrap(predicate.column)} {keyword}")

        if isinstance(predicate, RawPredicate):
            return fragment(f"({predicate.sql})", predicate.bindings)

        raise UnsupportedOperationError(f"Unknown predicate type: {type(predicate).__name__}")

    def compile_groups(self, groups: Sequence[str]) -> Optional[Fragment]:
        if not groups:
            return None
        return Fragment(f"GROUP BY {self.columnize(groups)}")

    def compile_orders(self, stmt: Statement) -> Optional[Fragment]:
        if not stmt.orders:
            return None
        clauses = ', '.join(f"{self.wrap(order.column)} {order.direction.upper()}" for order in stmt.orders)
        return Fragment(f"ORDER BY {clauses}")

    def compile_pagination(self, stmt: Statement) -> Optional[Fragment]:
        parts = []
        if stmt.limit is not None:
            parts.append(f"LIMIT {int(stmt.limit)}")
        if stmt.offset is not None:
            parts.append(f"OFFSET {int(stmt.offset)}")
        return Fragment(' '.join(parts)) if parts else None

    # --- INSERT / UPDATE / DELETE ---

    def compile_insert(
        self,
        table: str,
        rows: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        returning: Sequence[str] = ()
    ) -> CompiledStatement:
        """Compile an INSERT for one row or many rows.

        Columns come from the first row's key order; bindings are flattened
        row-then-column.

        Raises:
            UnsupportedOperationError: Empty rows, rows with differing
                columns, or RETURNING on a dialect without it
        """
        columns, rows = self._normalize_rows(rows)
        values = join_fragments(
            [self._row_values(row, columns) for row in rows],
            ', '
        )
        compiled = join_fragments([
            Fragment(f"INSERT INTO {self.wrap_table(table)} ({self.columnize(columns)}) VALUES {values.sql}",
                     values.bindings),
            self.compile_returning(returning),
        ])
        return CompiledStatement(compiled.sql, compiled.bindings)

    def compile_update(self, stmt: Statement, data: Mapping[str, Any]) -> CompiledStatement:
        """Compile an UPDATE; bindings are [data..., where...]."""
        self._require_table(stmt)
        if not data:
            raise UnsupportedOperationError("UPDATE requires at least one column to set")
        if stmt.joins:
            raise UnsupportedOperationError(f"UPDATE with JOIN is not supported by the {self.name} grammar")

        assignments = join_fragments(
            [self._assignment(column, value) for column, value in data.items()],
            ', '
        )
        compiled = join_fragments([
            Fragment(f"UPDATE {self.wrap_table(stmt.table)} SET {assignments.sql}", assignments.bindings),
            self.compile_predicates(stmt.wheres, 'WHERE'),
            self.compile_returning(stmt.returning),
        ])
        return CompiledStatement(compiled.sql, compiled.bindings)

    def compile_delete(self, stmt: Statement) -> CompiledStatement:
        """Compile a DELETE; bindings are [where...]."""
        self._require_table(stmt)
        compiled = join_fragments([
            Fragment(f"DELETE FROM {self.wrap_table(stmt.table)}"),
            self.compile_predicates(stmt.wheres, 'WHERE'),
            self.compile_returning(stmt.returning),
        ])
        return CompiledStatement(compiled.sql, compiled.bindings)

    def compile_returning(self, returning: Sequence[str]) -> Optional[Fragment]:
        if not returning:
            return None
        if not self.rules.supports_returning:
            raise UnsupportedOperationError(f"RETURNING is not supported by the {self.name} grammar")
        return Fragment(f"RETURNING {self.columnize(returning)}")

    # --- Transaction control ---

    def compile_savepoint(self, name: str) -> str:
        return f"SAVEPOINT {self.wrap(name)}"

    def compile_rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TO SAVEPOINT {self.wrap(name)}"

    def compile_release_savepoint(self, name: str) -> Optional[str]:
        """SQL releasing a savepoint, or None where the dialect has no such command."""
        return f"RELEASE SAVEPOINT {self.wrap(name)}"

    # --- Placeholders ---

    def rewrite_placeholders(self, sql: str) -> str:
        return rewrite_placeholders(sql, self.rules.placeholder_style, self.rules.quotes)

    def prepare(self, compiled: CompiledStatement) -> CompiledStatement:
        """Validate marker/binding alignment and rewrite to native markers.

        Raises:
            QueryError: If the number of canonical markers differs from the
                number of bindings (plus output parameters)
        """
        if compiled.style is not PlaceholderStyle.QMARK:
            return compiled

        found = count_placeholders(compiled.sql, PlaceholderStyle.QMARK, self.rules.quotes)
        if found != compiled.marker_count:
            raise QueryError(
                f"Statement has {found} placeholders but {compiled.marker_count} bindings",
                sql=compiled.sql,
                bindings=compiled.bindings
            )
        return compiled.with_sql(self.rewrite_placeholders(compiled.sql), self.rules.placeholder_style)

    # --- Helpers ---

    def operators(self) -> Tuple[str, ...]:
        return BASE_OPERATORS + self.rules.extra_operators

    def _check_operator(self, operator: str) -> str:
        normalized = ' '.join(operator.lower().split())
        if normalized not in self.operators():
            raise UnsupportedOperationError(
                f"Operator '{operator}' is not supported by the {self.name} grammar"
            )
        return normalized.upper()

    def _require_table(self, stmt: Statement) -> None:
        if not stmt.table:
            raise UnsupportedOperationError("No table specified; call from_()/table() first")

    def _normalize_rows(self, rows) -> Tuple[List[str], List[Mapping[str, Any]]]:
        rows = [rows] if isinstance(rows, Mapping) else list(rows)
        if not rows or not rows[0]:
            raise UnsupportedOperationError("INSERT requires at least one row with at least one column")

        columns = list(rows[0].keys())
        for row in rows[1:]:
            if set(row.keys()) != set(columns):
                raise UnsupportedOperationError("All rows of a multi-row INSERT must have the same columns")
        return columns, rows

    def _row_values(self, row: Mapping[str, Any], columns: Sequence[str]) -> Fragment:
        values = self.parameterize(row[column] for column in columns)
        return Fragment(f"({values.sql})", values.bindings)

    def _assignment(self, column: str, value: Any) -> Fragment:
        marker = self.parameter(value)
        return Fragment(f"{self.wrap(column)} = {marker.sql}", marker.bindings)


class PostgresGrammar(QueryGrammar):
    """PostgreSQL: $n markers, LIMIT/OFFSET, native RETURNING."""

    rules = DialectRules(
        name='postgres',
        placeholder_style=PlaceholderStyle.DOLLAR,
        supports_returning=True,
        extra_operators=('ilike', 'not ilike'),
    )


class MySqlGrammar(QueryGrammar):
    """MySQL: backtick identifiers, native ? markers, no RETURNING."""

    rules = DialectRules(
        name='mysql',
        open_quote='`',
        close_quote='`',
        quotes='`"\'',
    )

    def compile_pagination(self, stmt: Statement) -> Optional[Fragment]:
        if stmt.offset is not None and stmt.limit is None:
            # MySQL cannot OFFSET without LIMIT
            return Fragment(f"LIMIT {MYSQL_MAX_ROWS} OFFSET {int(stmt.offset)}")
        return super().compile_pagination(stmt)


class MssqlGrammar(QueryGrammar):
    """SQL Server: [ident], @paramN markers, OFFSET/FETCH pagination.

    OFFSET/FETCH requires an ORDER BY. When pagination is requested without
    one, a fallback ordering is injected (the first plain selected column,
    otherwise ``(SELECT NULL)``) and a PaginationWarning is emitted.
    """

    rules = DialectRules(
        name='mssql',
        open_quote='[',
        close_quote=']',
        placeholder_style=PlaceholderStyle.AT_PARAM,
        quotes='["\'',
    )

    def compile_orders(self, stmt: Statement) -> Optional[Fragment]:
        if stmt.orders or not stmt.is_paginated:
            return super().compile_orders(stmt)

        fallback = self._fallback_order_column(stmt)
        warnings.warn(
            f"SQL Server pagination requires ORDER BY; ordering by {fallback} "
            f"for table '{stmt.table}'. Add order_by() for a stable row order.",
            PaginationWarning,
            stacklevel=4
        )
        return Fragment(f"ORDER BY {fallback}")

    def _fallback_order_column(self, stmt: Statement) -> str:
        if stmt.aggregate is None:
            for column in stmt.explicit_columns:
                if self._orderable(column):
                    return self.wrap(column)
        return '(SELECT NULL)'

    @staticmethod
    def _orderable(column: Union[str, Raw]) -> bool:
        # Plain column names only; qualified wildcards (users.*) cannot be ordered by
        if not isinstance(column, str) or column.endswith('*'):
            return False
        return '(' not in column and ' as ' not in column.lower()

    def compile_pagination(self, stmt: Statement) -> Optional[Fragment]:
        if not stmt.is_paginated:
            return None
        sql = f"OFFSET {int(stmt.offset or 0)} ROWS"
        if stmt.limit is not None:
            sql += f" FETCH NEXT {int(stmt.limit)} ROWS ONLY"
        return Fragment(sql)

    def compile_savepoint(self, name: str) -> str:
        return f"SAVE TRANSACTION {self.wrap(name)}"

    def compile_rollback_to_savepoint(self, name: str) -> str:
        return f"ROLLBACK TRANSACTION {self.wrap(name)}"

    def compile_release_savepoint(self, name: str) -> Optional[str]:
        return None


class OracleGrammar(QueryGrammar):
    """Oracle 12c+: upper-cased "IDENT", :n markers, OFFSET/FETCH.

    Pagination without ORDER BY only emits a PaginationWarning; no ordering
    is injected, so the caller must supply one for deterministic pages.
    INSERT ... RETURNING binds the returned columns to trailing output
    markers (``RETURNING "ID" INTO :3``).
    """

    rules = DialectRules(
        name='oracle',
        placeholder_style=PlaceholderStyle.COLON_NUMERIC,
        upper_identifiers=True,
    )

    def compile_select(self, stmt: Statement) -> CompiledStatement:
        if stmt.is_paginated and not stmt.orders:
            warnings.warn(
                f"Oracle pagination without ORDER BY on '{stmt.table}' returns rows in "
                f"no guaranteed order. Add order_by() for stable pages.",
                PaginationWarning,
                stacklevel=3
            )
        return super().compile_select(stmt)

    def compile_pagination(self, stmt: Statement) -> Optional[Fragment]:
        parts = []
        if stmt.offset is not None:
            parts.append(f"OFFSET {int(stmt.offset)} ROWS")
        if stmt.limit is not None:
            parts.append(f"FETCH NEXT {int(stmt.limit)} ROWS ONLY")
        return Fragment(' '.join(parts)) if parts else None

    def compile_insert(
        self,
        table: str,
        rows: Union[Mapping[str, Any], Sequence[Mapping[str, Any]]],
        returning: Sequence[str] = ()
    ) -> CompiledStatement:
        columns, rows = self._normalize_rows(rows)
        if len(rows) == 1:
            values = self._row_values(rows[0], columns)
            sql = f"INSERT INTO {self.wrap_table(table)} ({self.columnize(columns)}) VALUES {values.sql}"
            if not returning:
                return CompiledStatement(sql, values.bindings)
            markers = ', '.join('?' for _ in returning)
            return CompiledStatement(
                f"{sql} RETURNING {self.columnize(returning)} INTO {markers}",
                values.bindings,
                out_params=tuple(returning)
            )

        if returning:
            raise UnsupportedOperationError("Oracle cannot return columns from a multi-row INSERT")

        # Oracle has no multi-row VALUES list
        target = f"INTO {self.wrap_table(table)} ({self.columnize(columns)}) VALUES "
        clauses = join_fragments(
            [join_fragments([Fragment(target), self._row_values(row, columns)], '') for row in rows]
        )
        return CompiledStatement(f"INSERT ALL {clauses.sql} SELECT 1 FROM DUAL", clauses.bindings)

    def compile_returning(self, returning: Sequence[str]) -> Optional[Fragment]:
        if returning:
            raise UnsupportedOperationError(
                "Oracle RETURNING is only supported for single-row INSERT"
            )
        return None

    def compile_release_savepoint(self, name: str) -> Optional[str]:
        return None
