"""
========================================================
Comprehensive pytest suite for sql/query_grammar.py
========================================================

Sections:
---------
1. Smoke tests - One SELECT per dialect
2. Unit tests - Clause compilation, identifiers, operators
3. Integration tests - DML, pagination, RETURNING per dialect
4. Edge case tests - Empty IN lists, NULL, marker validation

Available markers:
------------------
smoke, unit, integration, edge_case

Test Coverage:
--------------
- Quoting and escaping rules of each dialect
- Clause order and binding order (data -> WHERE -> HAVING)
- Native placeholder rewriting through prepare()
- SQL Server ORDER BY injection and Oracle pagination warnings
- RETURNING support and rejection

How to Execute:
---------------
All tests:          pytest tests/tests_sql/test_query_grammar.py -v
By category:        pytest tests/tests_sql/test_query_grammar.py -m unit
With coverage:      pytest tests/tests_sql/test_query_grammar.py --cov=sql.query_grammar
"""

import warnings

import pytest

from core.errors import PaginationWarning, QueryError, UnsupportedOperationError, UnsupportedTypeError
from sql.parameters import CompiledStatement, PlaceholderStyle
from sql.query_grammar import (
    MssqlGrammar,
    MySqlGrammar,
    OracleGrammar,
    PostgresGrammar,
)
from sql.statement import (
    Aggregate,
    InPredicate,
    Join,
    NullPredicate,
    OrderSpec,
    Predicate,
    Raw,
    RawPredicate,
    Statement,
)


# ==============
# Fixtures
# ==============

@pytest.fixture
def pg():
    return PostgresGrammar()


@pytest.fixture
def mysql():
    return MySqlGrammar()


@pytest.fixture
def mssql():
    return MssqlGrammar()


@pytest.fixture
def oracle():
    return OracleGrammar()


def users_by_id(**overrides):
    """SELECT id, name FROM users WHERE id = 7"""
    options = dict(table='users', columns=['id', 'name'], wheres=[Predicate('id', '=', 7)])
    options.update(overrides)
    return Statement(**options)


# ================
# 1. SMOKE TESTS
# ================

@pytest.mark.smoke
def test_postgres_select_by_id(pg):
    """Postgres quotes with double quotes and numbers $n markers."""
    prepared = pg.prepare(pg.compile_select(users_by_id()))

    assert prepared.sql == 'SELECT "id", "name" FROM "users" WHERE "id" = $1'
    assert prepared.bindings == (7,)
    assert prepared.style is PlaceholderStyle.DOLLAR


@pytest.mark.smoke
def test_mysql_select_by_id(mysql):
    prepared = mysql.prepare(mysql.compile_select(users_by_id()))

    assert prepared.sql == 'SELECT `id`, `name` FROM `users` WHERE `id` = ?'
    assert prepared.bindings == (7,)


@pytest.mark.smoke
def test_mssql_select_by_id(mssql):
    prepared = mssql.prepare(mssql.compile_select(users_by_id()))

    assert prepared.sql == 'SELECT [id], [name] FROM [users] WHERE [id] = @param0'
    assert prepared.bindings == (7,)


@pytest.mark.smoke
def test_oracle_select_by_id(oracle):
    prepared = oracle.prepare(oracle.compile_select(users_by_id()))

    assert prepared.sql == 'SELECT "ID", "NAME" FROM "USERS" WHERE "ID" = :1'
    assert prepared.bindings == (7,)


# ===============
# 2. UNIT TESTS
# ===============

@pytest.mark.unit
def test_wrap_handles_dotted_alias_wildcard_and_raw(pg):
    assert pg.wrap('users.id') == '"users"."id"'
    assert pg.wrap('users.*') == '"users".*'
    assert pg.wrap('name as full_name') == '"name" AS "full_name"'
    assert pg.wrap('*') == '*'
    assert pg.wrap('COUNT(id)') == 'COUNT(id)'
    assert pg.wrap(Raw('now()')) == 'now()'


@pytest.mark.unit
def test_wrap_escapes_closing_quote(pg, mysql, mssql):
    assert pg.wrap('we"ird') == '"we""ird"'
    assert mysql.wrap('we`ird') == '`we``ird`'
    assert mssql.wrap('we]ird') == '[we]]ird]'


@pytest.mark.unit
def test_oracle_upper_cases_identifiers(oracle):
    assert oracle.wrap('orders.customer_id') == '"ORDERS"."CUSTOMER_ID"'


@pytest.mark.unit
def test_clause_order_and_binding_order(pg):
    """WHERE bindings precede HAVING bindings."""
    stmt = Statement(
        table='orders',
        columns=['user_id', Raw('SUM(total) AS total')],
        wheres=[Predicate('status', '=', 'paid')],
        groups=['user_id'],
        havings=[Predicate('SUM(total)', '>', 100)],
        orders=[OrderSpec('user_id', 'desc')],
        limit=10,
    )

    compiled = pg.compile_select(stmt)

    assert compiled.sql == (
        'SELECT "user_id", SUM(total) AS total FROM "orders" WHERE "status" = ? '
        'GROUP BY "user_id" HAVING SUM(total) > ? ORDER BY "user_id" DESC LIMIT 10'
    )
    assert compiled.bindings == ('paid', 100)


@pytest.mark.unit
def test_join_compiles_with_qualified_columns(pg):
    stmt = Statement(
        table='users',
        columns=['users.name', 'posts.title'],
        joins=[Join('inner', 'posts', 'users.id', '=', 'posts.user_id')],
    )

    assert pg.compile_select(stmt).sql == (
        'SELECT "users"."name", "posts"."title" FROM "users" '
        'INNER JOIN "posts" ON "users"."id" = "posts"."user_id"'
    )


@pytest.mark.unit
def test_aggregate_select(pg):
    stmt = Statement(table='users')
    stmt.set_aggregate(Aggregate('count'))

    assert pg.compile_select(stmt).sql == 'SELECT COUNT(*) AS "aggregate" FROM "users"'


@pytest.mark.unit
def test_distinct_aggregate(mysql):
    stmt = Statement(table='orders', distinct=True)
    stmt.set_aggregate(Aggregate('count', 'user_id'))

    assert mysql.compile_select(stmt).sql == 'SELECT COUNT(DISTINCT `user_id`) AS `aggregate` FROM `orders`'


@pytest.mark.unit
def test_unknown_aggregate_is_rejected(pg):
    stmt = Statement(table='users')
    stmt.set_aggregate(Aggregate('median', 'age'))

    with pytest.raises(UnsupportedTypeError):
        pg.compile_select(stmt)


@pytest.mark.unit
def test_unknown_operator_is_rejected(pg):
    with pytest.raises(UnsupportedOperationError):
        pg.compile_select(Statement(table='users', wheres=[Predicate('name', 'regexp', 'a.*')]))


@pytest.mark.unit
def test_ilike_is_postgres_only(pg, mysql):
    stmt = Statement(table='users', wheres=[Predicate('name', 'ilike', 'a%')])

    assert pg.compile_select(stmt).sql == 'SELECT * FROM "users" WHERE "name" ILIKE ?'
    with pytest.raises(UnsupportedOperationError):
        mysql.compile_select(stmt)


@pytest.mark.unit
def test_raw_values_are_inlined_not_bound(pg):
    compiled = pg.compile_update(Statement(table='users'), {'updated_at': Raw('CURRENT_TIMESTAMP')})

    assert compiled.sql == 'UPDATE "users" SET "updated_at" = CURRENT_TIMESTAMP'
    assert compiled.bindings == ()


@pytest.mark.unit
def test_savepoint_sql_per_dialect(pg, mysql, mssql, oracle):
    assert pg.compile_savepoint('sp_1') == 'SAVEPOINT "sp_1"'
    assert pg.compile_rollback_to_savepoint('sp_1') == 'ROLLBACK TO SAVEPOINT "sp_1"'
    assert mysql.compile_release_savepoint('sp_1') == 'RELEASE SAVEPOINT `sp_1`'
    assert mssql.compile_savepoint('sp_1') == 'SAVE TRANSACTION [sp_1]'
    assert mssql.compile_rollback_to_savepoint('sp_1') == 'ROLLBACK TRANSACTION [sp_1]'
    assert mssql.compile_release_savepoint('sp_1') is None
    assert oracle.compile_savepoint('sp_1') == 'SAVEPOINT "SP_1"'
    assert oracle.compile_release_savepoint('sp_1') is None


# ======================
# 3. INTEGRATION TESTS
# ======================

@pytest.mark.integration
def test_update_bindings_are_data_then_where(pg):
    stmt = Statement(table='users', wheres=[Predicate('id', '=', 7)])

    prepared = pg.prepare(pg.compile_update(stmt, {'name': 'x', 'age': 3}))

    assert prepared.sql == 'UPDATE "users" SET "name" = $1, "age" = $2 WHERE "id" = $3'
    assert prepared.bindings == ('x', 3, 7)


@pytest.mark.integration
def test_delete_with_where(mssql):
    stmt = Statement(table='sessions', wheres=[Predicate('expires_at', '<', '2024-01-01')])

    prepared = mssql.prepare(mssql.compile_delete(stmt))

    assert prepared.sql == 'DELETE FROM [sessions] WHERE [expires_at] < @param0'
    assert prepared.bindings == ('2024-01-01',)


@pytest.mark.integration
def test_multi_row_insert(pg):
    compiled = pg.compile_insert('t', [{'a': 1, 'b': 2}, {'b': 4, 'a': 3}])

    assert compiled.sql == 'INSERT INTO "t" ("a", "b") VALUES (?, ?), (?, ?)'
    assert compiled.bindings == (1, 2, 3, 4)


@pytest.mark.integration
def test_oracle_multi_row_insert_uses_insert_all(oracle):
    prepared = oracle.prepare(oracle.compile_insert('t', [{'a': 1, 'b': 2}, {'a': 3, 'b': 4}]))

    assert prepared.sql == (
        'INSERT ALL INTO "T" ("A", "B") VALUES (:1, :2) '
        'INTO "T" ("A", "B") VALUES (:3, :4) SELECT 1 FROM DUAL'
    )
    assert prepared.bindings == (1, 2, 3, 4)


@pytest.mark.integration
def test_oracle_insert_all_inlines_raw_values(oracle):
    rows = [
        {'a': 1, 'created_at': Raw('CURRENT_TIMESTAMP')},
        {'a': 2, 'created_at': Raw('CURRENT_TIMESTAMP')},
    ]

    prepared = oracle.prepare(oracle.compile_insert('t', rows))

    assert prepared.sql == (
        'INSERT ALL INTO "T" ("A", "CREATED_AT") VALUES (:1, CURRENT_TIMESTAMP) '
        'INTO "T" ("A", "CREATED_AT") VALUES (:2, CURRENT_TIMESTAMP) SELECT 1 FROM DUAL'
    )
    assert prepared.bindings == (1, 2)


@pytest.mark.integration
def test_postgres_insert_returning(pg):
    prepared = pg.prepare(pg.compile_insert('users', {'name': 'a'}, ['id']))

    assert prepared.sql == 'INSERT INTO "users" ("name") VALUES ($1) RETURNING "id"'


@pytest.mark.integration
def test_oracle_insert_returning_into_out_params(oracle):
    """The returned column binds to a trailing output marker."""
    prepared = oracle.prepare(oracle.compile_insert('users', {'name': 'a'}, ['id']))

    assert prepared.sql == 'INSERT INTO "USERS" ("NAME") VALUES (:1) RETURNING "ID" INTO :2'
    assert prepared.bindings == ('a',)
    assert prepared.out_params == ('id',)


@pytest.mark.integration
def test_returning_rejected_where_unsupported(mysql, mssql, oracle):
    with pytest.raises(UnsupportedOperationError):
        mysql.compile_insert('users', {'name': 'a'}, ['id'])
    with pytest.raises(UnsupportedOperationError):
        mssql.compile_delete(Statement(table='users', returning=['id']))
    with pytest.raises(UnsupportedOperationError):
        oracle.compile_update(Statement(table='users', returning=['id']), {'name': 'b'})
    with pytest.raises(UnsupportedOperationError):
        oracle.compile_insert('users', [{'name': 'a'}, {'name': 'b'}], ['id'])


@pytest.mark.integration
def test_limit_offset_per_dialect(pg, mysql):
    stmt = Statement(table='users', orders=[OrderSpec('id')], limit=10, offset=20)

    assert pg.compile_select(stmt).sql == 'SELECT * FROM "users" ORDER BY "id" ASC LIMIT 10 OFFSET 20'
    assert mysql.compile_select(stmt).sql == 'SELECT * FROM `users` ORDER BY `id` ASC LIMIT 10 OFFSET 20'


@pytest.mark.integration
def test_mysql_offset_without_limit(mysql):
    assert mysql.compile_select(Statement(table='users', offset=5)).sql == (
        'SELECT * FROM `users` LIMIT 18446744073709551615 OFFSET 5'
    )


@pytest.mark.integration
def test_mssql_pagination_injects_order_by(mssql):
    """Without ORDER BY the first selected column is used and a warning is emitted."""
    stmt = Statement(table='users', columns=['id', 'name'], limit=10, offset=20)

    with pytest.warns(PaginationWarning):
        compiled = mssql.compile_select(stmt)

    assert compiled.sql == (
        'SELECT [id], [name] FROM [users] ORDER BY [id] OFFSET 20 ROWS FETCH NEXT 10 ROWS ONLY'
    )


@pytest.mark.integration
def test_mssql_pagination_wildcard_falls_back_to_select_null(mssql):
    with pytest.warns(PaginationWarning):
        compiled = mssql.compile_select(Statement(table='users', limit=5))

    assert compiled.sql == 'SELECT * FROM [users] ORDER BY (SELECT NULL) OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY'


@pytest.mark.integration
def test_mssql_pagination_skips_qualified_wildcards(mssql):
    stmt = Statement(table='users', columns=['users.*', 'users.name'], limit=5)

    with pytest.warns(PaginationWarning):
        compiled = mssql.compile_select(stmt)

    assert compiled.sql == (
        'SELECT [users].*, [users].[name] FROM [users] '
        'ORDER BY [users].[name] OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY'
    )
    with pytest.warns(PaginationWarning):
        only_wildcard = mssql.compile_select(Statement(table='users', columns=['users.*'], limit=5))
    assert 'ORDER BY (SELECT NULL)' in only_wildcard.sql


@pytest.mark.integration
def test_mssql_pagination_with_order_does_not_warn(mssql):
    stmt = Statement(table='users', orders=[OrderSpec('name')], limit=5)

    with warnings.catch_warnings():
        warnings.simplefilter('error')
        compiled = mssql.compile_select(stmt)

    assert compiled.sql == 'SELECT * FROM [users] ORDER BY [name] ASC OFFSET 0 ROWS FETCH NEXT 5 ROWS ONLY'


@pytest.mark.integration
def test_oracle_pagination_warns_without_injecting_order(oracle):
    stmt = Statement(table='users', limit=10, offset=20)

    with pytest.warns(PaginationWarning):
        compiled = oracle.compile_select(stmt)

    assert compiled.sql == 'SELECT * FROM "USERS" OFFSET 20 ROWS FETCH NEXT 10 ROWS ONLY'
    assert 'ORDER BY' not in compiled.sql


# ===================
# 4. EDGE CASE TESTS
# ===================

@pytest.mark.edge_case
def test_empty_in_list_compiles_to_constant_predicate(pg):
    stmt = Statement(table='users', wheres=[InPredicate('id', ())])
    negated = Statement(table='users', wheres=[InPredicate('id', (), negated=True)])

    assert pg.compile_select(stmt).sql == 'SELECT * FROM "users" WHERE 1 = 0'
    assert pg.compile_select(negated).sql == 'SELECT * FROM "users" WHERE 1 = 1'


@pytest.mark.edge_case
def test_in_list_binds_each_value(mssql):
    stmt = Statement(table='users', wheres=[InPredicate('id', (1, 2, 3))])

    prepared = mssql.prepare(mssql.compile_select(stmt))

    assert prepared.sql == 'SELECT * FROM [users] WHERE [id] IN (@param0, @param1, @param2)'
    assert prepared.bindings == (1, 2, 3)


@pytest.mark.edge_case
def test_null_predicates(pg):
    stmt = Statement(table='users', wheres=[NullPredicate('deleted_at'), NullPredicate('email', negated=True)])

    assert pg.compile_select(stmt).sql == (
        'SELECT * FROM "users" WHERE "deleted_at" IS NULL AND "email" IS NOT NULL'
    )


@pytest.mark.edge_case
def test_raw_predicate_keeps_its_bindings(pg):
    stmt = Statement(table='users', wheres=[Predicate('a', '=', 1), RawPredicate('lower(name) = ?', ('x',))])

    prepared = pg.prepare(pg.compile_select(stmt))

    assert prepared.sql == 'SELECT * FROM "users" WHERE "a" = $1 AND (lower(name) = $2)'
    assert prepared.bindings == (1, 'x')


@pytest.mark.edge_case
def test_prepare_rejects_marker_binding_mismatch(pg):
    with pytest.raises(QueryError) as exc:
        pg.prepare(CompiledStatement('SELECT * FROM t WHERE a = ? AND b = ?', (1,)))

    assert exc.value.sql == 'SELECT * FROM t WHERE a = ? AND b = ?'


@pytest.mark.edge_case
def test_prepare_is_idempotent(pg):
    prepared = pg.prepare(CompiledStatement('SELECT ?', (1,)))

    assert pg.prepare(prepared) is prepared


@pytest.mark.edge_case
def test_missing_table_is_rejected(pg):
    with pytest.raises(UnsupportedOperationError):
        pg.compile_select(Statement())


@pytest.mark.edge_case
def test_insert_rows_must_share_columns(pg):
    with pytest.raises(UnsupportedOperationError):
        pg.compile_insert('t', [{'a': 1}, {'b': 2}])
    with pytest.raises(UnsupportedOperationError):
        pg.compile_insert('t', [])


@pytest.mark.edge_case
def test_update_requires_data(pg):
    with pytest.raises(UnsupportedOperationError):
        pg.compile_update(Statement(table='users'), {})
