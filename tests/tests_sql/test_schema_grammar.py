"""
========================================================
Comprehensive pytest suite for sql/schema_grammar.py and sql/ddl.py
========================================================

Sections:
---------
1. Fixtures
2. Unit tests - Table builder and column modifiers
3. Integration tests - CREATE/ALTER/DROP per dialect
4. Edge case tests - Oracle names, unsupported types and actions

Available markers:
------------------
unit, integration, edge_case

Test Coverage:
--------------
- Native column types and modifier order
- MySQL table options and ON UPDATE CURRENT_TIMESTAMP
- Oracle sequence + trigger for auto-increment columns
- Oracle guarded DROP ... IF EXISTS block
- 30-character limit on generated Oracle names

How to Execute:
---------------
All tests:          pytest tests/tests_sql/test_schema_grammar.py -v
By category:        pytest tests/tests_sql/test_schema_grammar.py -m integration
With coverage:      pytest tests/tests_sql/test_schema_grammar.py --cov=sql.schema_grammar
"""

import pytest

from core.errors import UnsupportedOperationError, UnsupportedTypeError
from sql.ddl import CURRENT_TIMESTAMP, TableBuilder
from sql.schema_grammar import (
    MssqlSchemaGrammar,
    MySqlSchemaGrammar,
    OracleSchemaGrammar,
    PostgresSchemaGrammar,
)


# ==============
# 1. Fixtures
# ==============

@pytest.fixture
def users_table():
    """users(id increments, email string(120) not null unique, active boolean default true)"""
    table = TableBuilder('users')
    table.increments('id')
    table.string('email', 120).not_nullable().unique()
    table.boolean('active').default_to(True)
    return table


# ===============
# 2. UNIT TESTS
# ===============

@pytest.mark.unit
def test_increments_is_primary():
    table = TableBuilder('users')
    column = table.increments()

    assert column.name == 'id'
    assert column.is_primary
    assert table.increments_column is column


@pytest.mark.unit
def test_timestamps_default_to_now():
    table = TableBuilder('users')
    created, updated = table.timestamps()

    assert [created.name, updated.name] == ['created_at', 'updated_at']
    assert created.default == CURRENT_TIMESTAMP
    assert not updated.is_nullable


@pytest.mark.unit
def test_default_none_is_an_explicit_null():
    table = TableBuilder('users')
    column = table.string('nickname').default_to(None)

    assert column.has_default
    assert PostgresSchemaGrammar().compile_column(column) == '"nickname" VARCHAR(255) DEFAULT NULL'


@pytest.mark.unit
def test_foreign_validates_columns_and_actions():
    table = TableBuilder('posts')

    with pytest.raises(ValueError):
        table.foreign(['a', 'b'], 'id', on='users')
    with pytest.raises(ValueError):
        table.foreign('user_id', 'id', on='users', on_delete='explode')


@pytest.mark.unit
def test_unknown_table_action():
    with pytest.raises(ValueError):
        TableBuilder('users', 'truncate')


@pytest.mark.unit
def test_string_default_is_quoted():
    table = TableBuilder('users')
    column = table.string('role').default_to("o'neil")

    assert MySqlSchemaGrammar().compile_column(column) == "`role` VARCHAR(255) DEFAULT 'o''neil'"


# ======================
# 3. INTEGRATION TESTS
# ======================

@pytest.mark.integration
def test_postgres_create_table(users_table):
    assert PostgresSchemaGrammar().compile_create_table(users_table) == [
        'CREATE TABLE "users" ("id" SERIAL PRIMARY KEY, "email" VARCHAR(120) NOT NULL UNIQUE, '
        '"active" BOOLEAN DEFAULT TRUE)'
    ]


@pytest.mark.integration
def test_mysql_create_table_carries_table_options(users_table):
    assert MySqlSchemaGrammar().compile_create_table(users_table) == [
        'CREATE TABLE `users` (`id` INT UNSIGNED AUTO_INCREMENT PRIMARY KEY, '
        '`email` VARCHAR(120) NOT NULL UNIQUE, `active` TINYINT(1) DEFAULT 1) '
        'ENGINE=InnoDB DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci'
    ]


@pytest.mark.integration
def test_mysql_table_options_can_be_overridden():
    table = TableBuilder('logs')
    table.text('line')
    table.engine = 'MyISAM'
    table.charset = 'latin1'
    table.collation = 'latin1_swedish_ci'

    assert MySqlSchemaGrammar().compile_create_table(table) == [
        'CREATE TABLE `logs` (`line` TEXT) ENGINE=MyISAM DEFAULT CHARACTER SET latin1 COLLATE latin1_swedish_ci'
    ]


@pytest.mark.integration
def test_mssql_create_table(users_table):
    assert MssqlSchemaGrammar().compile_create_table(users_table) == [
        'CREATE TABLE [users] ([id] INT IDENTITY(1,1) PRIMARY KEY, [email] NVARCHAR(120) NOT NULL UNIQUE, '
        '[active] BIT DEFAULT 1)'
    ]


@pytest.mark.integration
def test_oracle_create_table_with_increments_yields_sequence_and_trigger():
    table = TableBuilder('users')
    table.increments('id')
    table.string('name')

    statements = OracleSchemaGrammar().compile_create_table(table)

    assert len(statements) == 3
    assert statements[0] == 'CREATE TABLE "USERS" ("ID" NUMBER(10, 0) PRIMARY KEY, "NAME" VARCHAR2(255 CHAR))'
    assert statements[1] == 'CREATE SEQUENCE "USERS_SEQ"'
    assert statements[2].startswith('CREATE OR REPLACE TRIGGER "USERS_BIR"\nBEFORE INSERT ON "USERS"')
    assert ':new."ID" := "USERS_SEQ".NEXTVAL;' in statements[2]
    assert 'IF :new."ID" IS NULL THEN' in statements[2]


@pytest.mark.integration
def test_oracle_create_table_without_increments_is_one_statement():
    table = TableBuilder('settings')
    table.string('key', 50).primary()

    assert OracleSchemaGrammar().compile_create_table(table) == [
        'CREATE TABLE "SETTINGS" ("KEY" VARCHAR2(50 CHAR) PRIMARY KEY)'
    ]


@pytest.mark.integration
def test_mysql_timestamps_update_on_change():
    table = TableBuilder('users')
    table.timestamps()

    assert MySqlSchemaGrammar().compile_create_table(table)[0].startswith(
        'CREATE TABLE `users` (`created_at` TIMESTAMP DEFAULT CURRENT_TIMESTAMP NOT NULL, '
        '`updated_at` TIMESTAMP DEFAULT CURRENT_TIMESTAMP ON UPDATE CURRENT_TIMESTAMP NOT NULL)'
    )


@pytest.mark.integration
def test_postgres_timestamps_with_time_zone():
    table = TableBuilder('events')
    table.timestamp('happened_at', use_tz=True)

    assert PostgresSchemaGrammar().compile_create_table(table) == [
        'CREATE TABLE "events" ("happened_at" TIMESTAMP(0) WITH TIME ZONE)'
    ]


@pytest.mark.integration
def test_constraints_and_indexes():
    table = TableBuilder('posts')
    table.increments('id')
    table.integer('user_id').not_nullable()
    table.string('slug')
    table.foreign('user_id', 'id', on='users', on_delete='cascade')
    table.unique('slug')
    table.index(['user_id', 'slug'])

    statements = PostgresSchemaGrammar().compile_create_table(table)

    assert statements == [
        'CREATE TABLE "posts" ("id" SERIAL PRIMARY KEY, "user_id" INTEGER NOT NULL, "slug" VARCHAR(255), '
        'CONSTRAINT "posts_user_id_foreign" FOREIGN KEY ("user_id") REFERENCES "users" ("id") ON DELETE CASCADE, '
        'CONSTRAINT "posts_slug_unique" UNIQUE ("slug"))',
        'CREATE INDEX "posts_user_id_slug_index" ON "posts" ("user_id", "slug")',
    ]


@pytest.mark.integration
def test_postgres_alter_table():
    table = TableBuilder('users', 'alter')
    table.string('nickname', 50)
    table.drop_column('legacy')
    table.rename_column('a', 'b')
    table.drop_foreign('users_team_id_foreign')

    assert PostgresSchemaGrammar().compile_alter_table(table) == [
        'ALTER TABLE "users" ADD COLUMN "nickname" VARCHAR(50)',
        'ALTER TABLE "users" DROP COLUMN "legacy"',
        'ALTER TABLE "users" RENAME COLUMN "a" TO "b"',
        'ALTER TABLE "users" DROP CONSTRAINT "users_team_id_foreign"',
    ]


@pytest.mark.integration
def test_dialect_specific_alter_syntax():
    table = TableBuilder('users', 'alter')
    table.rename_column('a', 'b')
    table.drop_index('users_email_index')

    assert MssqlSchemaGrammar().compile_alter_table(table) == [
        "EXEC sp_rename N'users.a', N'b', N'COLUMN'",
        'DROP INDEX [users_email_index] ON [users]',
    ]
    assert MySqlSchemaGrammar().compile_alter_table(table)[1] == (
        'ALTER TABLE `users` DROP INDEX `users_email_index`'
    )


@pytest.mark.integration
def test_oracle_alter_add_and_drop():
    table = TableBuilder('users', 'alter')
    table.integer('age')
    table.drop_column(['legacy', 'old'])

    assert OracleSchemaGrammar().compile_alter_table(table) == [
        'ALTER TABLE "USERS" ADD ("AGE" NUMBER(10, 0))',
        'ALTER TABLE "USERS" DROP ("LEGACY", "OLD")',
    ]


@pytest.mark.integration
def test_drop_table_if_exists_per_dialect():
    assert PostgresSchemaGrammar().compile_drop_table_if_exists('users') == 'DROP TABLE IF EXISTS "users"'
    assert MySqlSchemaGrammar().compile_drop_table_if_exists('users') == 'DROP TABLE IF EXISTS `users`'
    assert MssqlSchemaGrammar().compile_drop_table_if_exists('users') == (
        "IF OBJECT_ID(N'users', N'U') IS NOT NULL DROP TABLE [users]"
    )


@pytest.mark.integration
def test_oracle_drop_table_if_exists_guards_each_object():
    """Only ORA-00942 and ORA-02289 are swallowed; anything else is re-raised."""
    block = OracleSchemaGrammar().compile_drop_table_if_exists('users')

    assert block.startswith('BEGIN\n') and block.endswith('\nEND;')
    assert "EXECUTE IMMEDIATE 'DROP TABLE \"USERS\" CASCADE CONSTRAINTS';" in block
    assert "EXECUTE IMMEDIATE 'DROP SEQUENCE \"USERS_SEQ\"';" in block
    assert 'IF SQLCODE != -942 THEN' in block
    assert 'IF SQLCODE != -2289 THEN' in block
    assert block.count('RAISE;') == 2


@pytest.mark.integration
def test_has_table_queries():
    pg = PostgresSchemaGrammar().compile_has_table('users')
    oracle = OracleSchemaGrammar().compile_has_table('users')

    assert 'current_schema()' in pg.sql
    assert pg.bindings == ('users',)
    assert oracle.sql == 'SELECT table_name FROM user_tables WHERE table_name = ?'
    assert oracle.bindings == ('USERS',)


@pytest.mark.integration
def test_rename_table_per_dialect():
    assert PostgresSchemaGrammar().compile_rename_table('a', 'b') == 'ALTER TABLE "a" RENAME TO "b"'
    assert MySqlSchemaGrammar().compile_rename_table('a', 'b') == 'RENAME TABLE `a` TO `b`'
    assert MssqlSchemaGrammar().compile_rename_table('a', 'b') == "EXEC sp_rename N'a', N'b'"


# ===================
# 4. EDGE CASE TESTS
# ===================

@pytest.mark.edge_case
def test_oracle_object_names_stay_within_30_characters():
    grammar = OracleSchemaGrammar()
    long_table = 'customer_transaction_history_archive'

    assert len(grammar.sequence_name(long_table)) <= 30
    assert len(grammar.trigger_name(long_table)) <= 30

    name = grammar.limit_name('customer_transactions_account_identifier_created_at_index')
    assert len(name) == 30
    assert name == grammar.limit_name('customer_transactions_account_identifier_created_at_index')


@pytest.mark.edge_case
def test_oracle_tables_sharing_a_long_prefix_get_distinct_sequences_and_triggers():
    grammar = OracleSchemaGrammar()

    def increments_ddl(name):
        table = TableBuilder(name)
        table.increments('id')
        return grammar.compile_create_table(table)

    archive = increments_ddl('customer_subscription_events_archive')
    history = increments_ddl('customer_subscription_events_history')

    assert archive[1] != history[1]
    assert archive[2].splitlines()[0] != history[2].splitlines()[0]

    # The trigger and the guarded drop reference the same sequence as CREATE SEQUENCE
    sequence = archive[1][len('CREATE SEQUENCE '):]
    assert f"{sequence}.NEXTVAL" in archive[2]
    assert f"DROP SEQUENCE {sequence}" in grammar.compile_drop_table_if_exists(
        'customer_subscription_events_archive'
    )


@pytest.mark.edge_case
def test_oracle_long_index_name_is_shortened_in_ddl():
    table = TableBuilder('customer_transactions')
    table.string('account_identifier')
    table.index(['account_identifier'])

    index = OracleSchemaGrammar().compile_create_table(table)[1]
    name = index.split('"')[1]

    assert len(name) == 30


@pytest.mark.edge_case
def test_mysql_rejects_timestamp_with_time_zone():
    table = TableBuilder('events')
    table.timestamp('happened_at', use_tz=True)

    with pytest.raises(UnsupportedTypeError):
        MySqlSchemaGrammar().compile_create_table(table)


@pytest.mark.edge_case
def test_oracle_rejects_unsupported_foreign_actions():
    grammar = OracleSchemaGrammar()

    on_update = TableBuilder('posts')
    on_update.integer('user_id')
    on_update.foreign('user_id', 'id', on='users', on_update='cascade')

    restrict = TableBuilder('posts')
    restrict.integer('user_id')
    restrict.foreign('user_id', 'id', on='users', on_delete='restrict')

    with pytest.raises(UnsupportedOperationError):
        grammar.compile_create_table(on_update)
    with pytest.raises(UnsupportedOperationError):
        grammar.compile_create_table(restrict)


@pytest.mark.edge_case
def test_create_table_rejects_alter_only_commands():
    table = TableBuilder('users')
    table.string('name')
    table.drop_column('legacy')

    with pytest.raises(UnsupportedOperationError):
        PostgresSchemaGrammar().compile_create_table(table)


@pytest.mark.edge_case
def test_unrenderable_default_is_rejected():
    table = TableBuilder('users')
    table.json('settings').default_to({'theme': 'dark'})

    with pytest.raises(UnsupportedTypeError):
        PostgresSchemaGrammar().compile_create_table(table)
