"""Tests for the parameterized filter builder and cascading option queries."""

import pytest

from datatable_query.errors import InvalidIdentifier, SecurityViolation
from datatable_query.query import (
    FilterOptionsRequest,
    ParameterizedFilterBuilder,
    decode_previous_chain,
    strip_reserved,
)
from datatable_query.security import IdentifierValidator


@pytest.fixture
def builder():
    return ParameterizedFilterBuilder(IdentifierValidator(), dialect="mysql")


def test_list_becomes_in_and_scalar_becomes_equality(builder):
    query = builder.build({"status": ["A", "B"], "region": "west"})

    assert query.sql == "`status` IN (?, ?) AND `region` = ?"
    assert query.bindings == ["A", "B", "west"]


def test_sql_never_contains_values(builder):
    filters = {"status": ["O'Brien", "x) OR 1=1"], "region": "'; DROP TABLE t; --"}
    query = builder.build(filters)

    for value in ("O'Brien", "x) OR 1=1", "DROP"):
        assert value not in query.sql
    assert query.sql.count("?") == 3
    assert len(query.bindings) == 3


def test_empty_values_are_skipped(builder):
    query = builder.build({"status": "", "region": [], "city": None})

    assert query.sql == ""
    assert query.bindings == []


def test_nested_lists_are_flattened(builder):
    query = builder.build({"status": [["A"], ["B", ""]]})

    assert query.sql == "`status` IN (?, ?)"
    assert query.bindings == ["A", "B"]


def test_previous_chain_appends_equalities(builder):
    query = builder.build({"status": "A"}, previous="region|city#west|Oslo")

    assert query.sql == "`status` = ? AND `region` = ? AND `city` = ?"
    assert query.bindings == ["A", "west", "Oslo"]


def test_join_hints_qualify_fields(builder):
    query = builder.build({"region": "west"}, join_hints={"region": "customers"})

    assert query.sql == "`customers`.`region` = ?"


def test_injected_field_name_is_rejected(builder):
    with pytest.raises(SecurityViolation):
        builder.build({"status OR 1": "A"})


def test_malformed_field_name_is_rejected(builder):
    with pytest.raises(InvalidIdentifier):
        builder.build({"9lives": "A"})


def test_decode_previous_chain():
    assert decode_previous_chain("a|b#1|2") == [("a", "1"), ("b", "2")]
    assert decode_previous_chain("#null") == []
    assert decode_previous_chain("") == []
    assert decode_previous_chain(None) == []
    assert decode_previous_chain("a|b#1") == [("a", "1")]


def test_strip_reserved_drops_protocol_keys():
    params = {"draw": "1", "_token": "abc", "_": "123", "status": "paid", "empty": ""}

    assert strip_reserved(params) == {"status": "paid"}


def test_options_request_parsing():
    request = FilterOptionsRequest.parse(
        "x::orders::customers.region::status#paid",
        '{"orders.customer_id": "customers.id"}',
    )

    assert request.table == "orders"
    assert request.target == "customers.region"
    assert request.previous == (("status", "paid"),)
    assert request.foreign_keys[0].parent_table == "customers"


def test_malformed_options_descriptor():
    with pytest.raises(InvalidIdentifier):
        FilterOptionsRequest.parse("nothing-here")


def test_options_query_with_join():
    builder = ParameterizedFilterBuilder(IdentifierValidator(), dialect="duckdb")
    request = FilterOptionsRequest.parse(
        "x::orders::customers.region::#null",
        {"orders.customer_id": "customers.id"},
    )

    query = builder.build_options_query(request, {"status": "paid"})

    assert query.sql == (
        'SELECT DISTINCT "customers"."region" FROM "orders" '
        'LEFT JOIN "customers" ON "orders"."customer_id" = "customers"."id" '
        'WHERE "orders"."status" = ? ORDER BY "customers"."region"'
    )
    assert query.bindings == ["paid"]
