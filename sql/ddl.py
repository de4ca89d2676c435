"""
=======================================================================
Table definition model for schema creation and alteration.
=======================================================================

A ``TableBuilder`` is handed to the callback of ``create_table`` /
``alter_table``. The callback declares columns and table-level commands;
the builder is then consumed once by a dialect schema grammar.

Column types are generic (``increments``, ``string``, ``timestamp`` ...);
each schema grammar maps them to its native types.

Key Features:
    - Chainable column modifiers (not_nullable, nullable, unique, primary, default_to)
    - Table commands: index, composite primary key, unique, foreign key
    - Alter commands: drop/rename column, drop index, drop foreign key
    - MySQL table options (engine, charset, collation)

Example:
    >>> def define(table):
    ...     table.increments('id')
    ...     table.string('email', 120).not_nullable().unique()
    ...     table.decimal('balance', 10, 2).default_to(0)
    ...     table.timestamps()
    >>> builder = TableBuilder('users')
    >>> define(builder)
    >>> [column.name for column in builder.columns]
    ['id', 'email', 'balance', 'created_at', 'updated_at']
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple, Union

from sql.statement import Raw

COLUMN_TYPES = (
    'increments', 'big_increments', 'string', 'text', 'integer', 'big_integer',
    'boolean', 'decimal', 'timestamp', 'json',
)

INCREMENT_TYPES = ('increments', 'big_increments')

COMMAND_KINDS = (
    'index', 'primary', 'unique', 'foreign',
    'drop_column', 'rename_column', 'drop_index', 'drop_foreign',
)

FOREIGN_ACTIONS = ('cascade', 'restrict', 'set null', 'set default', 'no action')

CURRENT_TIMESTAMP = Raw('CURRENT_TIMESTAMP')

# Marks "no default declared" so that None can be used as an explicit NULL default
_NO_DEFAULT = object()


@dataclass
class ColumnDefinition:
    """One column of a table definition, with chainable modifiers.

    Attributes:
        name: Column name
        type: Generic column type (one of COLUMN_TYPES)
        length: String length
        precision: Decimal precision
        scale: Decimal scale
        is_nullable: Whether NULL is allowed
        is_unique: Inline UNIQUE constraint
        is_primary: Inline PRIMARY KEY constraint
        default: Default value (Raw for expressions)
        use_tz: Timestamp with time zone
    """

    name: str
    type: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_nullable: bool = True
    is_unique: bool = False
    is_primary: bool = False
    default: Any = _NO_DEFAULT
    use_tz: bool = False

    @property
    def has_default(self) -> bool:
        return self.default is not _NO_DEFAULT

    @property
    def is_increments(self) -> bool:
        return self.type in INCREMENT_TYPES

    def not_nullable(self) -> 'ColumnDefinition':
        self.is_nullable = False
        return self

    def nullable(self) -> 'ColumnDefinition':
        self.is_nullable = True
        return self

    def unique(self) -> 'ColumnDefinition':
        self.is_unique = True
        return self

    def primary(self) -> 'ColumnDefinition':
        self.is_primary = True
        return self

    def default_to(self, value: Any) -> 'ColumnDefinition':
        """Set the default; pass ``Raw`` (e.g. ``client.fn.now()``) for expressions."""
        self.default = value
        return self


@dataclass(frozen=True)
class Command:
    """Table-level command collected by the builder.

    Attributes:
        kind: One of COMMAND_KINDS
        columns: Columns the command applies to
        name: Explicit index/constraint name (generated when None)
        references: Referenced columns (foreign)
        on: Referenced table (foreign)
        on_delete: Referential action on delete (foreign)
        on_update: Referential action on update (foreign)
        to: New column name (rename_column)
    """

    kind: str
    columns: Tuple[str, ...] = ()
    name: Optional[str] = None
    references: Tuple[str, ...] = ()
    on: Optional[str] = None
    on_delete: Optional[str] = None
    on_update: Optional[str] = None
    to: Optional[str] = None


def _as_tuple(columns: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    if isinstance(columns, str):
        return (columns,)
    return tuple(columns)


def _check_action(action: Optional[str]) -> Optional[str]:
    if action is None:
        return None
    normalized = ' '.join(action.lower().split())
    if normalized not in FOREIGN_ACTIONS:
        raise ValueError(f"Unknown referential action '{action}'. Expected one of {FOREIGN_ACTIONS}")
    return normalized


class TableBuilder:
    """Collects column definitions and table commands for one table.

    Attributes:
        table_name: Table being created or altered
        action: 'create' or 'alter'
        columns: Ordered column definitions
        commands: Ordered table commands
        engine: MySQL storage engine (default InnoDB)
        charset: MySQL default character set (default utf8mb4)
        collation: MySQL collation (default utf8mb4_unicode_ci)
    """

    def __init__(self, table_name: str, action: str = 'create'):
        if action not in ('create', 'alter'):
            raise ValueError(f"Unknown table action '{action}'")
        self.table_name = table_name
        self.action = action
        self.columns: List[ColumnDefinition] = []
        self.commands: List[Command] = []
        self.engine: Optional[str] = None
        self.charset: Optional[str] = None
        self.collation: Optional[str] = None

    def _add_column(self, type_: str, name: str, **options) -> ColumnDefinition:
        column = ColumnDefinition(name=name, type=type_, **options)
        self.columns.append(column)
        return column

    def _add_command(self, kind: str, **options) -> Command:
        command = Command(kind=kind, **options)
        self.commands.append(command)
        return command

    # --- Column types ---

    def increments(self, name: str = 'id') -> ColumnDefinition:
        """Auto-incrementing integer primary key."""
        return self._add_column('increments', name).primary()

    def big_increments(self, name: str = 'id') -> ColumnDefinition:
        return self._add_column('big_increments', name).primary()

    def string(self, name: str, length: int = 255) -> ColumnDefinition:
        return self._add_column('string', name, length=length)

    def text(self, name: str) -> ColumnDefinition:
        return self._add_column('text', name)

    def integer(self, name: str) -> ColumnDefinition:
        return self._add_column('integer', name)

    def big_integer(self, name: str) -> ColumnDefinition:
        return self._add_column('big_integer', name)

    def boolean(self, name: str) -> ColumnDefinition:
        return self._add_column('boolean', name)

    def decimal(self, name: str, precision: int = 8, scale: int = 2) -> ColumnDefinition:
        return self._add_column('decimal', name, precision=precision, scale=scale)

    def timestamp(self, name: str, use_tz: bool = False) -> ColumnDefinition:
        return self._add_column('timestamp', name, use_tz=use_tz)

    def json(self, name: str) -> ColumnDefinition:
        return self._add_column('json', name)

    def timestamps(self, use_tz: bool = False, default_to_now: bool = True) -> Tuple[ColumnDefinition, ColumnDefinition]:
        """Add ``created_at`` and ``updated_at`` columns.

        Args:
            use_tz: Use timestamps with time zone
            default_to_now: Default both columns to CURRENT_TIMESTAMP (NOT NULL)

        Returns:
            Tuple of (created_at, updated_at) definitions
        """
        created = self.timestamp('created_at', use_tz=use_tz)
        updated = self.timestamp('updated_at', use_tz=use_tz)
        if default_to_now:
            for column in (created, updated):
                column.default_to(CURRENT_TIMESTAMP).not_nullable()
        return created, updated

    # --- Table commands ---

    def index(self, columns: Union[str, Sequence[str]], name: Optional[str] = None) -> Command:
        return self._add_command('index', columns=_as_tuple(columns), name=name)

    def primary(self, columns: Union[str, Sequence[str]], name: Optional[str] = None) -> Command:
        """Composite (or single-column) primary key constraint."""
        return self._add_command('primary', columns=_as_tuple(columns), name=name)

    def unique(self, columns: Union[str, Sequence[str]], name: Optional[str] = None) -> Command:
        return self._add_command('unique', columns=_as_tuple(columns), name=name)

    def foreign(
        self,
        columns: Union[str, Sequence[str]],
        references: Union[str, Sequence[str]],
        on: str,
        on_delete: Optional[str] = None,
        on_update: Optional[str] = None,
        name: Optional[str] = None
    ) -> Command:
        """Foreign key constraint.

        Args:
            columns: Local column(s)
            references: Referenced column(s)
            on: Referenced table
            on_delete: Referential action (cascade, restrict, set null, ...)
            on_update: Referential action; rejected by the Oracle grammar
            name: Constraint name (generated when None)

        Example:
            >>> table.foreign('user_id', 'id', on='users', on_delete='cascade')
        """
        local = _as_tuple(columns)
        remote = _as_tuple(references)
        if len(local) != len(remote):
            raise ValueError("Foreign key column count must match the referenced column count")
        return self._add_command(
            'foreign',
            columns=local,
            references=remote,
            on=on,
            on_delete=_check_action(on_delete),
            on_update=_check_action(on_update),
            name=name
        )

    # --- Alter commands ---

    def drop_column(self, columns: Union[str, Sequence[str]]) -> Command:
        return self._add_command('drop_column', columns=_as_tuple(columns))

    def rename_column(self, old: str, new: str) -> Command:
        return self._add_command('rename_column', columns=(old,), to=new)

    def drop_index(self, name: str) -> Command:
        return self._add_command('drop_index', name=name)

    def drop_foreign(self, name: str) -> Command:
        return self._add_command('drop_foreign', name=name)

    # --- Inspection ---

    def commands_of(self, kind: str) -> List[Command]:
        return [command for command in self.commands if command.kind == kind]

    @property
    def increments_column(self) -> Optional[ColumnDefinition]:
        """First auto-increment column, if any."""
        for column in self.columns:
            if column.is_increments:
                return column
        return None
