"""
=====================================
Migrations and seeds.
=====================================

Migrations are plain Python objects supplied by the application; nothing is
discovered from the filesystem. Each migration runs inside its own
transaction together with the bookkeeping row that records it, so a failing
migration leaves neither schema changes (where the dialect supports
transactional DDL) nor a record behind.

Classes:
    Migration: name + up/down callables receiving a Transaction
    MigrationRepository: tracking table (name, batch, migration_time)
    Migrator: latest() runs pending migrations as one batch; rollback()
        reverts the last batch in reverse order
    Seeder: runs seed callables in order, each in its own transaction

Example:
    >>> def create_users(db):
    ...     db.schema.create_table('users', lambda t: (t.increments('id'), t.string('name')))
    >>> def drop_users(db):
    ...     db.schema.drop_table_if_exists('users')
    >>>
    >>> migrator = Migrator(client, [Migration('20240101_create_users', create_users, drop_users)])
    >>> migrator.latest()
    ['20240101_create_users']
    >>> migrator.rollback()
    ['20240101_create_users']
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from core.errors import DatabaseError, MigrationError
from core.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Migration:
    """A named schema change.

    Attributes:
        name: Unique name; pending migrations run in name order
        up: Applies the change; receives the Transaction
        down: Reverts the change; receives the Transaction
    """

    name: str
    up: Callable[[Any], Any]
    down: Optional[Callable[[Any], Any]] = None


def _first_value(row: Any) -> Any:
    """First column of a row in either row format."""
    if isinstance(row, Mapping):
        return next(iter(row.values()), None)
    return row[0]


class MigrationRepository:
    """
    Reads and writes the migrations tracking table.

    Args:
        runner: Client or Transaction to run statements on
        table_name: Tracking table name
    """

    def __init__(self, runner, table_name: str = 'migrations'):
        self.runner = runner
        self.table_name = table_name

    def ensure_table_exists(self) -> None:
        """Create the tracking table when it is missing.

        Raises:
            MigrationError: If the existence check or creation fails
        """
        try:
            if self.runner.schema.has_table(self.table_name):
                return
            logger.info(f"Creating migrations table '{self.table_name}'")

            def define(table):
                table.increments('id')
                table.string('name').not_nullable().unique()
                table.integer('batch').not_nullable()
                table.timestamp('migration_time').default_to(self.runner.fn.now())

            self.runner.schema.create_table(self.table_name, define)
        except DatabaseError as e:
            raise MigrationError(
                f"Could not ensure migrations table '{self.table_name}' exists", cause=e
            ) from e

    def get_ran(self) -> List[str]:
        """Names of all recorded migrations, in name order."""
        try:
            rows = self.runner.table(self.table_name).select('name').order_by('name').get()
        except DatabaseError as e:
            raise MigrationError("Could not read the list of ran migrations", cause=e) from e
        return [_first_value(row) for row in rows]

    def get_last_batch_number(self) -> int:
        try:
            last = self.runner.table(self.table_name).max('batch')
        except DatabaseError as e:
            raise MigrationError("Could not read the last migration batch number", cause=e) from e
        return int(last or 0)

    def get_next_batch_number(self) -> int:
        return self.get_last_batch_number() + 1

    def get_batch(self, batch: int) -> List[str]:
        """Names recorded in ``batch``, newest name first."""
        try:
            rows = (
                self.runner.table(self.table_name)
                .select('name')
                .where('batch', batch)
                .order_by('name', 'desc')
                .get()
            )
        except DatabaseError as e:
            raise MigrationError(f"Could not read migrations of batch {batch}", cause=e) from e
        return [_first_value(row) for row in rows]

    def log(self, name: str, batch: int) -> None:
        try:
            self.runner.table(self.table_name).insert({'name': name, 'batch': batch})
        except DatabaseError as e:
            raise MigrationError(f"Could not record migration '{name}'", migration=name, cause=e) from e

    def delete(self, name: str) -> None:
        try:
            self.runner.table(self.table_name).where('name', name).delete()
        except DatabaseError as e:
            raise MigrationError(f"Could not remove migration record '{name}'", migration=name, cause=e) from e


class Migrator:
    """
    Runs and reverts migrations in batches.

    Args:
        client: Client owning the connection pool
        migrations: All known migrations
        table_name: Tracking table (defaults to the client's migrations_table)
    """

    def __init__(self, client, migrations: Sequence[Migration], table_name: Optional[str] = None):
        names = [migration.name for migration in migrations]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise MigrationError(f"Duplicate migration names: {', '.join(duplicates)}")

        self.client = client
        self.migrations: Dict[str, Migration] = {m.name: m for m in migrations}
        self.table_name = table_name or client.config.migrations_table
        self.repository = MigrationRepository(client, self.table_name)

    def pending(self) -> List[Migration]:
        """Migrations not yet recorded, in name order."""
        self.repository.ensure_table_exists()
        ran = set(self.repository.get_ran())
        return [self.migrations[name] for name in sorted(self.migrations) if name not in ran]

    def status(self) -> List[Tuple[str, bool]]:
        """(name, has_run) for every known migration, in name order."""
        self.repository.ensure_table_exists()
        ran = set(self.repository.get_ran())
        return [(name, name in ran) for name in sorted(self.migrations)]

    def latest(self) -> List[str]:
        """Run every pending migration as one new batch.

        Returns:
            Names of the migrations that ran

        Raises:
            MigrationError: On the first failing migration; earlier ones in
                the batch stay applied and recorded
        """
        pending = self.pending()
        if not pending:
            logger.info("Nothing to migrate")
            return []

        batch = self.repository.get_next_batch_number()
        for migration in pending:
            logger.info(f"Migrating: {migration.name} (batch {batch})")
            self._run(migration, migration.up, lambda repo: repo.log(migration.name, batch), 'run')
        return [migration.name for migration in pending]

    def rollback(self) -> List[str]:
        """Revert the last batch, newest migration first.

        Returns:
            Names of the reverted migrations
        """
        self.repository.ensure_table_exists()
        batch = self.repository.get_last_batch_number()
        if batch == 0:
            logger.info("Nothing to roll back")
            return []

        names = self.repository.get_batch(batch)
        for name in names:
            migration = self.migrations.get(name)
            if migration is None:
                raise MigrationError(f"Migration '{name}' is recorded but was not supplied", migration=name)
            if migration.down is None:
                raise MigrationError(f"Migration '{name}' has no down step", migration=name)
            logger.info(f"Rolling back: {name}")
            self._run(migration, migration.down, lambda repo: repo.delete(name), 'revert')
        return names

    def _run(self, migration: Migration, step: Callable[[Any], Any], record, action: str) -> None:
        def apply(trx):
            step(trx)
            record(MigrationRepository(trx, self.table_name))

        try:
            self.client.transaction(apply)
        except MigrationError:
            raise
        except Exception as e:
            raise MigrationError(
                f"Failed to {action} migration '{migration.name}': {e}",
                migration=migration.name,
                cause=e
            ) from e


Seed = Union[Callable[[Any], Any], Tuple[str, Callable[[Any], Any]]]


class Seeder:
    """
    Runs seed callables in order, each inside its own transaction.

    Seeds are callables receiving the Transaction, or (name, callable) pairs.
    """

    def __init__(self, client):
        self.client = client

    def run(self, seeds: Sequence[Seed]) -> List[str]:
        """Run the seeds; returns their names in execution order."""
        executed = []
        for seed in seeds:
            if isinstance(seed, tuple):
                name, callback = seed
            else:
                name, callback = getattr(seed, '__name__', repr(seed)), seed
            logger.info(f"Seeding: {name}")
            self.client.transaction(callback)
            executed.append(name)
        return executed
