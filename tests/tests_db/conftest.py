"""
Shared fixtures for client, transaction and migration tests.

The fake connection keeps a journal of everything it receives and simulates
just enough transaction semantics (commit, rollback, savepoints) to check
which statements would have survived.
"""

import pytest

from core.errors import QueryError, TransactionError
from db.client import Client
from utils.database_utils import QueryResult

CONTROL_PREFIXES = ('SAVEPOINT ', 'SAVE TRANSACTION ', 'ROLLBACK TO SAVEPOINT ', 'ROLLBACK TRANSACTION ',
                    'RELEASE SAVEPOINT ')


# ==============================
# Mock Helper Classes
# ==============================

class JournalConnection:
    """Fake pooled connection implementing begin/commit/rollback/execute/release.

    Args:
        responder: Callable (sql, bindings) -> rows for SELECT-like statements
        fail_on: Substring; statements containing it raise QueryError
        fail_commit: Raise TransactionError from commit()
        fail_begin: Raise TransactionError from begin()
        fail_rollback_to: Raise QueryError from ROLLBACK TO SAVEPOINT
    """

    def __init__(self, responder=None, fail_on=None, fail_commit=False, fail_begin=False,
                 fail_rollback_to=False):
        self.responder = responder or (lambda sql, bindings: [])
        self.fail_on = fail_on
        self.fail_commit = fail_commit
        self.fail_begin = fail_begin
        self.fail_rollback_to = fail_rollback_to
        self.log = []
        self.pending = []
        self.committed = []
        self.savepoints = {}
        self.released = False
        self.in_transaction = False

    def begin(self):
        self.log.append('BEGIN')
        if self.fail_begin:
            raise TransactionError('begin failed')
        self.in_transaction = True

    def commit(self):
        self.log.append('COMMIT')
        if self.fail_commit:
            raise TransactionError('commit failed')
        self.committed.extend(self.pending)
        self.pending = []
        self.in_transaction = False

    def rollback(self):
        self.log.append('ROLLBACK')
        self.pending = []
        self.savepoints.clear()
        self.in_transaction = False

    def execute(self, compiled):
        sql = compiled.sql
        self.log.append(sql)

        if sql.startswith(('SAVEPOINT ', 'SAVE TRANSACTION ')):
            self.savepoints[sql.split()[-1]] = len(self.pending)
        elif sql.startswith(('ROLLBACK TO SAVEPOINT ', 'ROLLBACK TRANSACTION ')):
            if self.fail_rollback_to:
                raise QueryError('savepoint rollback failed', sql=sql)
            del self.pending[self.savepoints[sql.split()[-1]]:]
        elif sql.startswith('RELEASE SAVEPOINT '):
            self.savepoints.pop(sql.split()[-1], None)
        else:
            if self.fail_on and self.fail_on in sql:
                raise QueryError('statement failed', sql=sql, bindings=compiled.bindings)
            self.pending.append((sql, compiled.bindings))

        return QueryResult(rows=list(self.responder(sql, compiled.bindings)), rowcount=1)

    def release(self):
        self.released = True

    @property
    def statements(self):
        """Everything executed except transaction-control statements."""
        return [entry for entry in self.log
                if entry not in ('BEGIN', 'COMMIT', 'ROLLBACK') and not entry.startswith(CONTROL_PREFIXES)]


class FakeFactory:
    """Connection factory handing out JournalConnections."""

    def __init__(self, **connection_options):
        self.connection_options = connection_options
        self.connections = []
        self.disposed = False

    def acquire(self):
        connection = JournalConnection(**self.connection_options)
        self.connections.append(connection)
        return connection

    def dispose(self):
        self.disposed = True

    @property
    def last(self):
        return self.connections[-1]


# ==============
# Fixtures
# ==============

@pytest.fixture
def make_client():
    """Build (client, factory) for a dialect with a FakeFactory attached."""

    def _make(client='postgres', debug=False, **connection_options):
        factory = FakeFactory(**connection_options)
        db = Client(
            {'client': client, 'connection': {'host': 'localhost'}, 'debug': debug},
            connection_factory=factory
        )
        return db, factory

    return _make


@pytest.fixture
def pg_client(make_client):
    return make_client('postgres')
