"""
====================================================
SQL compiler package.
====================================================

Pure, dialect-aware SQL generation: nothing in this package performs I/O.

The package follows a clear organization:
    - statement.py: Statement model populated by the query builder
    - parameters.py: Fragments, compiled statements and placeholder rewriting
    - query_grammar.py: SELECT/INSERT/UPDATE/DELETE grammars per dialect
    - ddl.py: Table definition model (TableBuilder, ColumnDefinition)
    - schema_grammar.py: DDL grammars per dialect
    - dialects.py: Registry mapping dialect names to grammar factories
    - query_builder.py: Fluent QueryBuilder with terminals

Example:
    >>> from sql.dialects import get_dialect
    >>> from sql.query_builder import QueryBuilder
    >>>
    >>> grammar = get_dialect('mssql').query_grammar()
    >>> QueryBuilder(grammar, table='users').where('id', 7).to_sql().sql
    'SELECT * FROM [users] WHERE [id] = @param0'
"""

__version__ = "0.1.0"
__all__ = [
    'CompiledStatement', 'PlaceholderStyle', 'rewrite_placeholders',
    'Statement', 'Raw', 'QueryBuilder', 'TableBuilder',
    'get_dialect', 'register_dialect',
]

from .ddl import TableBuilder
from .dialects import get_dialect, register_dialect
from .parameters import CompiledStatement, PlaceholderStyle, rewrite_placeholders
from .query_builder import QueryBuilder
from .statement import Raw, Statement
