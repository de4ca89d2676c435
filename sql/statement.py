"""
=================================
In-memory model of a pending query.
=================================

A ``Statement`` is populated by ``sql.query_builder.QueryBuilder`` and
consumed by a dialect grammar at terminal time. It holds no SQL text of its
own, only the abstract parts: select list or aggregate, source table, joins,
predicates, grouping, ordering, pagination and returning columns.

Invariant: exactly one of ``aggregate`` or ``columns`` drives the SELECT
core. ``set_columns`` clears the aggregate and ``set_aggregate`` resets the
column list to the wildcard.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

JOIN_KINDS = ('inner', 'left', 'right')
ORDER_DIRECTIONS = ('asc', 'desc')
AGGREGATE_FUNCTIONS = ('count', 'max', 'min', 'sum', 'avg')


@dataclass(frozen=True)
class Raw:
    """SQL expression inserted verbatim (never quoted, never bound)."""

    sql: str

    def __str__(self) -> str:
        return self.sql


@dataclass(frozen=True)
class Join:
    kind: str
    table: str
    first: str
    operator: str
    second: str


@dataclass(frozen=True)
class Predicate:
    """``column operator ?`` with one bound value."""

    column: str
    operator: str
    value: Any
    boolean: str = 'and'


@dataclass(frozen=True)
class InPredicate:
    """``column [NOT] IN (...)`` over a value list or a compiled subquery."""

    column: str
    values: Tuple[Any, ...] = ()
    subquery_sql: Optional[str] = None
    negated: bool = False
    boolean: str = 'and'


@dataclass(frozen=True)
class NullPredicate:
    column: str
    negated: bool = False
    boolean: str = 'and'


@dataclass(frozen=True)
class RawPredicate:
    """Caller-supplied SQL (e.g. a subquery) with its own ``?`` bindings."""

    sql: str
    bindings: Tuple[Any, ...] = ()
    boolean: str = 'and'


AnyPredicate = Union[Predicate, InPredicate, NullPredicate, RawPredicate]


@dataclass(frozen=True)
class OrderSpec:
    column: str
    direction: str = 'asc'


@dataclass(frozen=True)
class Aggregate:
    function: str
    column: str = '*'
    alias: str = 'aggregate'


@dataclass
class Statement:
    """Pending query description.

    Attributes:
        table: Source table name
        columns: Ordered select expressions (default wildcard)
        distinct: SELECT DISTINCT
        joins: Ordered joins
        wheres: Ordered WHERE predicates (AND-combined)
        groups: GROUP BY columns
        havings: Ordered HAVING predicates (AND-combined)
        orders: ORDER BY specs
        limit: Maximum rows, or None
        offset: Rows to skip, or None
        returning: Columns to return from INSERT/UPDATE/DELETE
        returning_types: Python types for returned columns, keyed by column
        aggregate: Aggregate driving the SELECT core, or None
    """

    table: str = ''
    columns: List[Union[str, Raw]] = field(default_factory=lambda: ['*'])
    distinct: bool = False
    joins: List[Join] = field(default_factory=list)
    wheres: List[AnyPredicate] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    havings: List[AnyPredicate] = field(default_factory=list)
    orders: List[OrderSpec] = field(default_factory=list)
    limit: Optional[int] = None
    offset: Optional[int] = None
    returning: List[str] = field(default_factory=list)
    returning_types: Dict[str, Any] = field(default_factory=dict)
    aggregate: Optional[Aggregate] = None

    def set_columns(self, columns: Sequence[Union[str, Raw]]) -> None:
        self.columns = list(columns) if columns else ['*']
        self.aggregate = None

    def set_aggregate(self, aggregate: Aggregate) -> None:
        self.aggregate = aggregate
        self.columns = ['*']

    @property
    def is_paginated(self) -> bool:
        return self.limit is not None or self.offset is not None

    @property
    def explicit_columns(self) -> List[Union[str, Raw]]:
        """Selected columns other than the wildcard."""
        return [c for c in self.columns if c != '*']
