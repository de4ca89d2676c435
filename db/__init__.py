"""
=====================================
Runtime database package.
=====================================

Client facade, transaction coordinator, schema API and migrations built on
top of the SQL compiler in ``sql``.

Modules:
    client: Client facade (pool borrow, debug side channel)
    transaction: Transaction coordinator with savepoint nesting
    schema_builder: create/alter/drop/has/rename table operations
    migrations: Migration repository, migrator and seeder

Example:
    >>> from db import Client
    >>> db = Client({'client': 'postgres', 'connection': {...}})
    >>> db.table('users').where('id', 7).get()
"""

__version__ = "0.1.0"
__all__ = [
    'Client', 'DatabaseFunctions', 'Transaction', 'TransactionState', 'SchemaBuilder',
    'Migration', 'MigrationRepository', 'Migrator', 'Seeder',
]

from db.client import Client, DatabaseFunctions
from db.migrations import Migration, MigrationRepository, Migrator, Seeder
from db.schema_builder import SchemaBuilder
from db.transaction import Transaction, TransactionState
