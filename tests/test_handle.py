"""Tests for QueryHandle SQL rendering."""

import pytest

from datatable_query.query.handle import Projection, QueryHandle
from datatable_query.security import IdentifierValidator


@pytest.fixture
def validator():
    return IdentifierValidator()


def test_list_query_selects_from_table(validator):
    handle = QueryHandle("orders", validator).select(
        [Projection("orders", "id"), Projection("orders", "status")]
    )

    sql, params = handle.where("orders.status", "=", "paid").paginate(10, 5).to_sql()

    assert sql.startswith('SELECT "orders"."id", "orders"."status" FROM "orders"')
    assert 'WHERE "orders"."status" = ?' in sql
    assert "LIMIT 5" in sql
    assert "OFFSET 10" in sql
    assert params == ["paid"]


def test_count_query_wraps_source(validator):
    handle = QueryHandle("orders", validator).where("orders.status", "=", "paid").paginate(0, 5)

    sql, params = handle.count_sql()

    assert sql.startswith('SELECT COUNT(*) AS "aggregate" FROM (SELECT 1 FROM "orders"')
    assert sql.endswith(' AS "count_source"')
    assert "LIMIT" not in sql
    assert params == ["paid"]


def test_virtual_source_selects_from_aliased_subquery(validator):
    handle = QueryHandle(
        "recent",
        validator,
        subquery_sql="SELECT id, total FROM orders WHERE total > 100",
    )

    sql, _ = handle.to_sql()

    assert 'FROM (SELECT id, total FROM orders WHERE total > 100) AS "recent"' in sql


def test_join_renders_after_from(validator):
    handle = QueryHandle("orders", validator).left_join(
        "customers", "orders", "customer_id", "customers", "id"
    )

    sql, _ = handle.to_sql()

    assert (
        'FROM "orders" LEFT JOIN "customers" '
        'ON "orders"."customer_id" = "customers"."id"'
    ) in sql


def test_query_executes_against_duckdb(validator, shop_datasource):
    handle = QueryHandle("orders", validator).select([Projection("orders", "id")])
    sql, params = handle.where("orders.status", "=", "paid").paginate(0, 3).to_sql()

    rows = shop_datasource.fetch_rows(sql, params)

    assert len(rows) == 3
