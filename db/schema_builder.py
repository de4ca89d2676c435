"""
Schema API exposed as ``client.schema`` and ``trx.schema``.

Builds a ``TableBuilder`` for the user callback, compiles it with the
dialect's schema grammar and runs the resulting statements in order on the
owning runner (the client, or a transaction's connection).

Example:
    >>> def users(table):
    ...     table.increments('id')
    ...     table.string('email').not_nullable().unique()
    ...     table.timestamps()
    >>> db.schema.create_table('users', users)
    >>> db.schema.has_table('users')
    True
"""

import logging
from typing import Callable, List, Union

from sql.ddl import TableBuilder
from sql.parameters import CompiledStatement

logger = logging.getLogger(__name__)


class SchemaBuilder:
    """Schema operations bound to a runner.

    Args:
        runner: Object providing ``grammar``, ``schema_grammar`` and
            ``execute(prepared_statement)`` (a Client or a Transaction)
    """

    def __init__(self, runner):
        self.runner = runner

    @property
    def grammar(self):
        return self.runner.schema_grammar

    def create_table(self, table_name: str, callback: Callable[[TableBuilder], None]) -> List[str]:
        """Create a table defined by ``callback``.

        Returns:
            The executed statements
        """
        table = TableBuilder(table_name, 'create')
        callback(table)
        statements = self.grammar.compile_create_table(table)
        logger.info(f"Creating table '{table_name}'")
        return self._run(statements)

    def alter_table(self, table_name: str, callback: Callable[[TableBuilder], None]) -> List[str]:
        table = TableBuilder(table_name, 'alter')
        callback(table)
        return self._run(self.grammar.compile_alter_table(table))

    table = alter_table

    def drop_table(self, table_name: str) -> List[str]:
        return self._run(self.grammar.compile_drop_table(table_name))

    def drop_table_if_exists(self, table_name: str) -> List[str]:
        return self._run(self.grammar.compile_drop_table_if_exists(table_name))

    def rename_table(self, source: str, target: str) -> List[str]:
        return self._run(self.grammar.compile_rename_table(source, target))

    def has_table(self, table_name: str) -> bool:
        """True when the existence query returns at least one row."""
        compiled = self.runner.grammar.prepare(self.grammar.compile_has_table(table_name))
        return len(self.runner.execute(compiled).rows) > 0

    def _run(self, statements: Union[str, List[str]]) -> List[str]:
        if isinstance(statements, str):
            statements = [statements]
        executed = []
        for sql in statements:
            if not sql:
                continue
            self.runner.execute(self.runner.grammar.prepare(CompiledStatement(sql)))
            executed.append(sql)
        return executed
