"""
=======================================
Per-dialect schema grammars (DDL).
=======================================

Compiles a ``TableBuilder`` into the DDL statements of one dialect. Create
and alter compile to a list of statements, executed in order; Oracle needs
extra statements for auto-increment columns (sequence + trigger).

Identifier quoting is delegated to the dialect's query grammar, so DDL and
DML quote identically.

Column clause order:
    NAME TYPE [DEFAULT v] [NOT NULL] [PRIMARY KEY | UNIQUE]

Grammars:
    SchemaGrammar: Shared compile logic and constraint syntax
    PostgresSchemaGrammar: SERIAL, JSONB, timestamp(0) with/without time zone
    MySqlSchemaGrammar: AUTO_INCREMENT, table options, ON UPDATE CURRENT_TIMESTAMP
    MssqlSchemaGrammar: IDENTITY(1,1), NVARCHAR, sp_rename
    OracleSchemaGrammar: NUMBER/VARCHAR2/CLOB, sequence + trigger, 30-char names

Example:
    >>> table = TableBuilder('users')
    >>> table.increments('id')
    >>> table.string('name', 100).not_nullable()
    >>> PostgresSchemaGrammar().compile_create_table(table)
    ['CREATE TABLE "users" ("id" SERIAL PRIMARY KEY, "name" VARCHAR(100) NOT NULL)']
"""

import hashlib
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from core.errors import UnsupportedOperationError, UnsupportedTypeError
from sql.ddl import ColumnDefinition, Command, TableBuilder
from sql.parameters import CompiledStatement
from sql.query_grammar import MssqlGrammar, MySqlGrammar, OracleGrammar, PostgresGrammar, QueryGrammar
from sql.statement import Raw

ALTER_ONLY_COMMANDS = ('drop_column', 'rename_column', 'drop_index', 'drop_foreign')

NAME_SUFFIXES = {
    'index': 'index',
    'primary': 'pkey',
    'unique': 'unique',
    'foreign': 'foreign',
}


def quote_literal(value: str) -> str:
    """Render a Python string as a single-quoted SQL literal."""
    return "'" + value.replace("'", "''") + "'"


class SchemaGrammar:
    """Shared DDL compilation; dialects override types and dialect-only syntax."""

    query_grammar_class = QueryGrammar

    # generic type -> native type template
    TYPES: Dict[str, str] = {}

    def __init__(self, query_grammar: Optional[QueryGrammar] = None):
        self.query_grammar = query_grammar or self.query_grammar_class()

    @property
    def name(self) -> str:
        return self.query_grammar.name

    def wrap(self, value: str) -> str:
        return self.query_grammar.wrap(value)

    def wrap_table(self, table: str) -> str:
        return self.query_grammar.wrap_table(table)

    def columnize(self, columns: Sequence[str]) -> str:
        return self.query_grammar.columnize(columns)

    # --- Table statements ---

    def compile_create_table(self, table: TableBuilder) -> List[str]:
        """Compile CREATE TABLE plus any follow-up statements (indexes, ...).

        Raises:
            UnsupportedOperationError: If the builder holds alter-only commands
            UnsupportedTypeError: If a column type has no native mapping
        """
        for command in table.commands:
            if command.kind in ALTER_ONLY_COMMANDS:
                raise UnsupportedOperationError(
                    f"'{command.kind}' is only valid inside alter_table(), not create_table()"
                )

        definitions = [self.compile_column(column, table) for column in table.columns]
        for command in table.commands:
            if command.kind in ('primary', 'unique', 'foreign'):
                definitions.append(self.compile_constraint(table, command))

        create = f"CREATE TABLE {self.wrap_table(table.table_name)} ({', '.join(definitions)})"
        statements = [create + self.compile_table_options(table)]
        statements.extend(self.compile_index(table, command) for command in table.commands_of('index'))
        statements.extend(self.compile_increment_support(table))
        return statements

    def compile_alter_table(self, table: TableBuilder) -> List[str]:
        """Compile ALTER TABLE statements: added columns first, then commands in order."""
        statements = [self.compile_add_column(table, column) for column in table.columns]
        statements.extend(self.compile_increment_support(table))

        for command in table.commands:
            if command.kind == 'index':
                statements.append(self.compile_index(table, command))
            elif command.kind in ('primary', 'unique', 'foreign'):
                statements.append(
                    f"ALTER TABLE {self.wrap_table(table.table_name)} ADD {self.compile_constraint(table, command)}"
                )
            elif command.kind == 'drop_column':
                statements.append(self.compile_drop_column(table, command))
            elif command.kind == 'rename_column':
                statements.append(self.compile_rename_column(table, command))
            elif command.kind == 'drop_index':
                statements.append(self.compile_drop_index(table, command))
            elif command.kind == 'drop_foreign':
                statements.append(self.compile_drop_foreign(table, command))
            else:
                raise UnsupportedOperationError(f"Unknown table command '{command.kind}'")
        return statements

    def compile_drop_table(self, name: str) -> str:
        return f"DROP TABLE {self.wrap_table(name)}"

    def compile_drop_table_if_exists(self, name: str) -> str:
        return f"DROP TABLE IF EXISTS {self.wrap_table(name)}"

    def compile_has_table(self, name: str) -> CompiledStatement:
        """Query returning at least one row when the table exists."""
        return CompiledStatement(
            "SELECT 1 FROM information_schema.tables WHERE table_name = ?",
            (name,)
        )

    def compile_rename_table(self, source: str, target: str) -> str:
        return f"ALTER TABLE {self.wrap_table(source)} RENAME TO {self.wrap_table(target)}"

    # --- Columns ---

    def compile_column(self, column: ColumnDefinition, table: Optional[TableBuilder] = None) -> str:
        sql = f"{self.wrap(column.name)} {self.column_type(column)}"
        return sql + ''.join(self.compile_modifiers(column))

    def compile_modifiers(self, column: ColumnDefinition) -> List[str]:
        modifiers = []
        if column.has_default:
            modifiers.append(f" DEFAULT {self.format_default(column.default, column)}")
        if not column.is_nullable:
            modifiers.append(' NOT NULL')
        if column.is_primary:
            modifiers.append(' PRIMARY KEY')
        elif column.is_unique:
            modifiers.append(' UNIQUE')
        return modifiers

    def column_type(self, column: ColumnDefinition) -> str:
        key = column.type
        if column.type == 'timestamp' and column.use_tz:
            key = 'timestamp_tz'
        template = self.TYPES.get(key)
        if template is None:
            raise UnsupportedTypeError(
                f"Column type '{key}' ({column.name}) is not supported by the {self.name} schema grammar"
            )
        return template.format(length=column.length, precision=column.precision, scale=column.scale)

    def format_default(self, value: Any, column: Optional[ColumnDefinition] = None) -> str:
        """Render a default value as SQL.

        Raw values are inserted verbatim, strings are quoted, booleans become
        1/0 (TRUE/FALSE on Postgres) and None becomes NULL.
        """
        if isinstance(value, Raw):
            return value.sql
        if value is None:
            return 'NULL'
        if isinstance(value, bool):
            return self.format_boolean(value)
        if isinstance(value, (int, float, Decimal)):
            return str(value)
        if isinstance(value, str):
            return quote_literal(value)
        raise UnsupportedTypeError(f"Cannot render default value of type {type(value).__name__}")

    def format_boolean(self, value: bool) -> str:
        return '1' if value else '0'

    def compile_add_column(self, table: TableBuilder, column: ColumnDefinition) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} ADD COLUMN {self.compile_column(column, table)}"

    # --- Constraints & indexes ---

    def constraint_name(self, table: TableBuilder, command: Command) -> str:
        if command.name:
            return command.name
        parts = [table.table_name, *command.columns, NAME_SUFFIXES[command.kind]]
        return self.limit_name('_'.join(parts).replace('.', '_').lower())

    def limit_name(self, name: str) -> str:
        return name

    def compile_constraint(self, table: TableBuilder, command: Command) -> str:
        name = self.wrap(self.constraint_name(table, command))
        columns = self.columnize(command.columns)
        if command.kind == 'primary':
            return f"CONSTRAINT {name} PRIMARY KEY ({columns})"
        if command.kind == 'unique':
            return f"CONSTRAINT {name} UNIQUE ({columns})"
        return f"CONSTRAINT {name} {self.compile_foreign(command)}"

    def compile_foreign(self, command: Command) -> str:
        sql = (
            f"FOREIGN KEY ({self.columnize(command.columns)}) "
            f"REFERENCES {self.wrap_table(command.on)} ({self.columnize(command.references)})"
        )
        if command.on_delete:
            sql += f" ON DELETE {command.on_delete.upper()}"
        if command.on_update:
            sql += f" ON UPDATE {command.on_update.upper()}"
        return sql

    def compile_index(self, table: TableBuilder, command: Command) -> str:
        return (
            f"CREATE INDEX {self.wrap(self.constraint_name(table, command))} "
            f"ON {self.wrap_table(table.table_name)} ({self.columnize(command.columns)})"
        )

    def compile_drop_column(self, table: TableBuilder, command: Command) -> str:
        drops = ', '.join(f"DROP COLUMN {self.wrap(column)}" for column in command.columns)
        return f"ALTER TABLE {self.wrap_table(table.table_name)} {drops}"

    def compile_rename_column(self, table: TableBuilder, command: Command) -> str:
        return (
            f"ALTER TABLE {self.wrap_table(table.table_name)} "
            f"RENAME COLUMN {self.wrap(command.columns[0])} TO {self.wrap(command.to)}"
        )

    def compile_drop_index(self, table: TableBuilder, command: Command) -> str:
        return f"DROP INDEX {self.wrap(command.name)}"

    def compile_drop_foreign(self, table: TableBuilder, command: Command) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} DROP CONSTRAINT {self.wrap(command.name)}"

    # --- Dialect hooks ---

    def compile_table_options(self, table: TableBuilder) -> str:
        return ''

    def compile_increment_support(self, table: TableBuilder) -> List[str]:
        """Extra statements an auto-increment column needs (none by default)."""
        return []


class PostgresSchemaGrammar(SchemaGrammar):
    query_grammar_class = PostgresGrammar

    TYPES = {
        'increments': 'SERIAL',
        'big_increments': 'BIGSERIAL',
        'string': 'VARCHAR({length})',
        'text': 'TEXT',
        'integer': 'INTEGER',
        'big_integer': 'BIGINT',
        'boolean': 'BOOLEAN',
        'decimal': 'DECIMAL({precision}, {scale})',
        'timestamp': 'TIMESTAMP(0) WITHOUT TIME ZONE',
        'timestamp_tz': 'TIMESTAMP(0) WITH TIME ZONE',
        'json': 'JSONB',
    }

    def format_boolean(self, value: bool) -> str:
        return 'TRUE' if value else 'FALSE'

    def compile_has_table(self, name: str) -> CompiledStatement:
        return CompiledStatement(
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = current_schema() AND table_name = ?",
            (name,)
        )


class MySqlSchemaGrammar(SchemaGrammar):
    """MySQL DDL.

    Auto-increment columns get ``AUTO_INCREMENT PRIMARY KEY``; an
    ``updated_at`` column defaulting to CURRENT_TIMESTAMP also gets
    ``ON UPDATE CURRENT_TIMESTAMP``. Every CREATE TABLE carries the table
    options (InnoDB, utf8mb4, utf8mb4_unicode_ci unless overridden).
    """

    query_grammar_class = MySqlGrammar

    TYPES = {
        'increments': 'INT UNSIGNED',
        'big_increments': 'BIGINT UNSIGNED',
        'string': 'VARCHAR({length})',
        'text': 'TEXT',
        'integer': 'INT',
        'big_integer': 'BIGINT',
        'boolean': 'TINYINT(1)',
        'decimal': 'DECIMAL({precision}, {scale})',
        'timestamp': 'TIMESTAMP',
        'json': 'JSON',
    }

    DEFAULT_ENGINE = 'InnoDB'
    DEFAULT_CHARSET = 'utf8mb4'
    DEFAULT_COLLATION = 'utf8mb4_unicode_ci'

    def column_type(self, column: ColumnDefinition) -> str:
        if column.type == 'timestamp' and column.use_tz:
            raise UnsupportedTypeError(
                f"MySQL has no timestamp with time zone type (column '{column.name}')"
            )
        return super().column_type(column)

    def compile_modifiers(self, column: ColumnDefinition) -> List[str]:
        modifiers = []
        if column.has_default:
            modifiers.append(f" DEFAULT {self.format_default(column.default, column)}")
            if column.name == 'updated_at' and self._defaults_to_now(column):
                modifiers.append(' ON UPDATE CURRENT_TIMESTAMP')
        if not column.is_nullable:
            modifiers.append(' NOT NULL')
        if column.is_primary and column.is_increments:
            modifiers.append(' AUTO_INCREMENT PRIMARY KEY')
        elif column.is_primary:
            modifiers.append(' PRIMARY KEY')
        elif column.is_unique:
            modifiers.append(' UNIQUE')
        return modifiers

    @staticmethod
    def _defaults_to_now(column: ColumnDefinition) -> bool:
        return isinstance(column.default, Raw) and column.default.sql.upper() in ('CURRENT_TIMESTAMP', 'NOW()')

    def compile_table_options(self, table: TableBuilder) -> str:
        engine = table.engine or self.DEFAULT_ENGINE
        charset = table.charset or self.DEFAULT_CHARSET
        collation = table.collation or self.DEFAULT_COLLATION
        return f" ENGINE={engine} DEFAULT CHARACTER SET {charset} COLLATE {collation}"

    def compile_add_column(self, table: TableBuilder, column: ColumnDefinition) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} ADD {self.compile_column(column, table)}"

    def compile_drop_index(self, table: TableBuilder, command: Command) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} DROP INDEX {self.wrap(command.name)}"

    def compile_drop_foreign(self, table: TableBuilder, command: Command) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} DROP FOREIGN KEY {self.wrap(command.name)}"

    def compile_has_table(self, name: str) -> CompiledStatement:
        return CompiledStatement(
            "SELECT 1 FROM information_schema.tables "
            "WHERE table_schema = DATABASE() AND table_name = ?",
            (name,)
        )

    def compile_rename_table(self, source: str, target: str) -> str:
        return f"RENAME TABLE {self.wrap_table(source)} TO {self.wrap_table(target)}"


class MssqlSchemaGrammar(SchemaGrammar):
    query_grammar_class = MssqlGrammar

    TYPES = {
        'increments': 'INT IDENTITY(1,1)',
        'big_increments': 'BIGINT IDENTITY(1,1)',
        'string': 'NVARCHAR({length})',
        'text': 'NVARCHAR(MAX)',
        'integer': 'INT',
        'big_integer': 'BIGINT',
        'boolean': 'BIT',
        'decimal': 'DECIMAL({precision}, {scale})',
        'timestamp': 'DATETIME2',
        'timestamp_tz': 'DATETIMEOFFSET',
        'json': 'NVARCHAR(MAX)',
    }

    def compile_add_column(self, table: TableBuilder, column: ColumnDefinition) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} ADD {self.compile_column(column, table)}"

    def compile_drop_column(self, table: TableBuilder, command: Command) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} DROP COLUMN {self.columnize(command.columns)}"

    def compile_rename_column(self, table: TableBuilder, command: Command) -> str:
        source = quote_literal(f"{table.table_name}.{command.columns[0]}")
        return f"EXEC sp_rename N{source}, N{quote_literal(command.to)}, N'COLUMN'"

    def compile_drop_index(self, table: TableBuilder, command: Command) -> str:
        return f"DROP INDEX {self.wrap(command.name)} ON {self.wrap_table(table.table_name)}"

    def compile_drop_table_if_exists(self, name: str) -> str:
        return f"IF OBJECT_ID(N{quote_literal(name)}, N'U') IS NOT NULL DROP TABLE {self.wrap_table(name)}"

    def compile_has_table(self, name: str) -> CompiledStatement:
        return CompiledStatement(
            "SELECT 1 FROM sys.objects WHERE object_id = OBJECT_ID(?) AND type IN (N'U')",
            (name,)
        )

    def compile_rename_table(self, source: str, target: str) -> str:
        return f"EXEC sp_rename N{quote_literal(source)}, N{quote_literal(target)}"


class OracleSchemaGrammar(SchemaGrammar):
    """Oracle DDL.

    Oracle has no auto-increment column type: CREATE TABLE with an
    increments column yields three statements (table, sequence, and a
    before-insert trigger filling the key from the sequence when it is
    NULL). Generated object names never exceed 30 characters.
    """

    query_grammar_class = OracleGrammar

    MAX_NAME_LENGTH = 30

    TYPES = {
        'increments': 'NUMBER(10, 0)',
        'big_increments': 'NUMBER(20, 0)',
        'string': 'VARCHAR2({length} CHAR)',
        'text': 'CLOB',
        'integer': 'NUMBER(10, 0)',
        'big_integer': 'NUMBER(20, 0)',
        'boolean': 'NUMBER(1, 0)',
        'decimal': 'NUMBER({precision}, {scale})',
        'timestamp': 'TIMESTAMP',
        'timestamp_tz': 'TIMESTAMP WITH TIME ZONE',
        'json': 'CLOB',
    }

    # ORA-00942 table or view does not exist, ORA-02289 sequence does not exist
    MISSING_TABLE_CODE = -942
    MISSING_SEQUENCE_CODE = -2289

    def sequence_name(self, table_name: str) -> str:
        return self.limit_name(f"{table_name}_seq")

    def trigger_name(self, table_name: str) -> str:
        return self.limit_name(f"{table_name}_bir")

    def limit_name(self, name: str) -> str:
        """Cap a generated name at 30 characters with a stable hash suffix."""
        if len(name) <= self.MAX_NAME_LENGTH:
            return name
        digest = hashlib.sha1(name.encode('utf-8')).hexdigest()[:8]
        return f"{name[:self.MAX_NAME_LENGTH - 9]}_{digest}"

    def compile_increment_support(self, table: TableBuilder) -> List[str]:
        column = table.increments_column
        if column is None:
            return []

        sequence = self.wrap(self.sequence_name(table.table_name))
        key = self.wrap(column.name)
        trigger = (
            f"CREATE OR REPLACE TRIGGER {self.wrap(self.trigger_name(table.table_name))}\n"
            f"BEFORE INSERT ON {self.wrap_table(table.table_name)}\n"
            f"FOR EACH ROW\n"
            f"BEGIN\n"
            f"  IF :new.{key} IS NULL THEN\n"
            f"    :new.{key} := {sequence}.NEXTVAL;\n"
            f"  END IF;\n"
            f"END;"
        )
        return [f"CREATE SEQUENCE {sequence}", trigger]

    def compile_add_column(self, table: TableBuilder, column: ColumnDefinition) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} ADD ({self.compile_column(column, table)})"

    def compile_drop_column(self, table: TableBuilder, command: Command) -> str:
        return f"ALTER TABLE {self.wrap_table(table.table_name)} DROP ({self.columnize(command.columns)})"

    def compile_foreign(self, command: Command) -> str:
        if command.on_update:
            raise UnsupportedOperationError("Oracle foreign keys do not support ON UPDATE actions")
        if command.on_delete and command.on_delete not in ('cascade', 'set null'):
            raise UnsupportedOperationError(
                f"Oracle foreign keys only support ON DELETE CASCADE or SET NULL, not '{command.on_delete}'"
            )
        return super().compile_foreign(command)

    def compile_drop_table(self, name: str) -> str:
        return f"DROP TABLE {self.wrap_table(name)} CASCADE CONSTRAINTS"

    def compile_drop_table_if_exists(self, name: str) -> str:
        """PL/SQL block dropping the table and its sequence.

        Each drop runs in its own guarded block that ignores only the
        "does not exist" error of that object and re-raises anything else.
        """
        drop_table = self._guarded(
            f"DROP TABLE {self.wrap_table(name)} CASCADE CONSTRAINTS", self.MISSING_TABLE_CODE
        )
        drop_sequence = self._guarded(
            f"DROP SEQUENCE {self.wrap(self.sequence_name(name))}", self.MISSING_SEQUENCE_CODE
        )
        return f"BEGIN\n{drop_table}\n{drop_sequence}\nEND;"

    @staticmethod
    def _guarded(statement: str, ignored_code: int) -> str:
        return (
            f"  BEGIN\n"
            f"    EXECUTE IMMEDIATE {quote_literal(statement)};\n"
            f"  EXCEPTION\n"
            f"    WHEN OTHERS THEN\n"
            f"      IF SQLCODE != {ignored_code} THEN\n"
            f"        RAISE;\n"
            f"      END IF;\n"
            f"  END;"
        )

    def compile_has_table(self, name: str) -> CompiledStatement:
        return CompiledStatement(
            "SELECT table_name FROM user_tables WHERE table_name = ?",
            (name.upper(),)
        )
