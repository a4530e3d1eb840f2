"""End-to-end tests for DatatableService over an in-memory DuckDB shop."""

import pytest

from datatable_query.catalog import Catalog
from datatable_query.errors import NoSourceResolved, SecurityViolation
from datatable_query.protocol import TRANSPORT_QUERY
from datatable_query.security import ClientInfo, SecurityEventType
from datatable_query.service import DatatableService

ORDER_COUNT = 35


def _ids(envelope):
    ids = []
    for row in envelope.data:
        ids.append(row["id"])
    return ids


def test_pagination_returns_requested_window(service):
    """start=20, length=10 over 35 rows returns rows 21-30."""
    envelope = service.process({"draw": "4", "start": "20", "length": "10"}, table="order_list")

    assert envelope.draw == 4
    assert envelope.records_total == ORDER_COUNT
    assert envelope.records_filtered == ORDER_COUNT
    assert _ids(envelope) == list(range(21, 31))


def test_last_page_is_partial(service):
    envelope = service.process({"start": "30", "length": "10"}, table="order_list")

    assert _ids(envelope) == [31, 32, 33, 34, 35]


def test_client_order_wins_and_id_is_qualified_with_joins(service, shop_datasource):
    """Ordering on column index 2 resolves to total desc; joined id is table-qualified."""
    params = {
        "order": [{"column": 2, "dir": "desc"}],
        "columns": [{"data": "id"}, {"data": "customer"}, {"data": "total"}],
    }
    envelope = service.process(params, table="orders")

    sql, _ = shop_datasource.last_query()
    assert 'ORDER BY "orders"."total" DESC' in sql
    assert '"orders"."id"' in sql
    assert 'LEFT JOIN "customers"' in sql
    assert '"customers"."name" AS "customer"' in sql

    first = envelope.data[0]
    assert first["id"] == 35
    assert first["total"] == 350.0
    assert first["customer"] == "Carlos"
    assert envelope.records_total == ORDER_COUNT


def test_configured_order_used_without_client_order(service, shop_datasource):
    envelope = service.process({}, table="orders")

    sql, _ = shop_datasource.last_query()
    assert 'ORDER BY "orders"."id" DESC' in sql
    assert envelope.data[0]["id"] == 35


def test_pseudo_column_order_never_reaches_sql(service, shop_datasource):
    params = {
        "order": [{"column": 0, "dir": "asc"}],
        "columns": [{"data": "number_lists"}, {"data": "total"}],
    }
    service.process(params, table="order_list")

    for sql, _ in shop_datasource.captured:
        assert "number_lists" not in sql
    sql, _ = shop_datasource.last_query()
    assert 'ORDER BY "orders"."id"' in sql
    assert "DESC" not in sql


def test_unknown_order_column_falls_back_to_configured_order(service, shop_datasource):
    params = {
        "order": [{"column": 0, "dir": "desc"}],
        "columns": [{"data": "no_such_column"}],
    }
    envelope = service.process(params, table="order_list")

    sql, _ = shop_datasource.last_query()
    assert "no_such_column" not in sql
    assert _ids(envelope)[:3] == [1, 2, 3]


def test_filter_values_are_bound_not_interpolated(service, shop_datasource):
    envelope = service.process({"status": "paid"}, table="order_list")

    assert envelope.records_total == 18
    assert envelope.records_filtered == 18
    for sql, params in shop_datasource.captured:
        assert "paid" not in sql
        assert params == ["paid"]
    for row in envelope.data:
        assert row["status"] == "paid"


def test_filter_list_value_last_one_wins(service):
    envelope = service.process({"status": ["paid", "pending"]}, table="order_list")

    assert envelope.records_total == 17


def test_unknown_filter_is_ignored(service, shop_datasource):
    envelope = service.process({"warehouse": "north"}, table="order_list")

    assert envelope.records_total == ORDER_COUNT
    for sql, _ in shop_datasource.captured:
        assert "warehouse" not in sql


def test_global_search_narrows_filtered_count(service):
    envelope = service.process({"search": {"value": "pend"}}, table="order_list")

    assert envelope.records_total == ORDER_COUNT
    assert envelope.records_filtered == 17
    for row in envelope.data:
        assert row["status"] == "pending"


def test_unlimited_length_is_capped(shop_config, shop_catalog):
    shop_config.engine.max_limit = 5
    service = DatatableService(shop_config, shop_catalog)

    envelope = service.process({"length": "-1"}, table="order_list")

    assert len(envelope.data) == 5
    assert envelope.records_total == ORDER_COUNT


def test_unconfigured_table_uses_bare_table_fallback(service, shop_datasource):
    """widgets has no configuration: first six physical columns, first column desc."""
    envelope = service.process({}, table="widgets")

    assert envelope.records_total == 3
    assert _ids(envelope) == [3, 2, 1]
    assert set(envelope.data[0].keys()) == {"id", "name", "color", "weight", "size", "price"}
    sql, _ = shop_datasource.last_query()
    assert '"stock"' not in sql


def test_missing_table_name_falls_back_to_first_bound_table(service):
    envelope = service.process({})

    assert envelope.records_total == ORDER_COUNT
    assert len(envelope.data) == 10


def test_unknown_table_raises_no_source_resolved(service):
    with pytest.raises(NoSourceResolved) as exc_info:
        service.process({}, table="ghosts")

    assert exc_info.value.table == "ghosts"
    assert len(exc_info.value.attempts) > 0


def test_injection_in_table_name_is_rejected_and_audited(service, audit_sink):
    with pytest.raises(SecurityViolation):
        service.process({}, table="orders;drop", client=ClientInfo(ip="203.0.113.9"))

    events = audit_sink.of_type(SecurityEventType.SQL_INJECTION_ATTEMPT)
    assert len(events) == 1
    assert events[0].client.ip == "203.0.113.9"


def test_allow_list_blocks_unlisted_table(shop_config, shop_catalog, audit_sink):
    shop_config.security.allowed_tables = ["orders", "customers"]
    service = DatatableService(shop_config, shop_catalog, audit_sink=audit_sink)

    with pytest.raises(SecurityViolation):
        service.process({}, table="widgets")

    assert len(audit_sink.of_type(SecurityEventType.AUTHORIZATION_FAILURE)) == 1


def test_static_where_conditions_apply(shop_config, shop_catalog):
    shop_config.tables["paid_orders"] = {
        "table": "orders",
        "columns": ["id", "status"],
        "where": [{"field": "status", "operator": "=", "value": "paid"}],
    }
    service = DatatableService(shop_config, shop_catalog)

    envelope = service.process({}, table="paid_orders")

    assert envelope.records_total == 18


def test_static_where_list_becomes_in(shop_config, shop_catalog, shop_datasource):
    shop_config.tables["any_orders"] = {
        "table": "orders",
        "columns": ["id", "status"],
        "where": [{"field": "status", "operator": "in", "value": ["paid", "pending"]}],
    }
    service = DatatableService(shop_config, shop_catalog)

    envelope = service.process({}, table="any_orders")

    assert envelope.records_total == ORDER_COUNT
    sql, params = shop_datasource.last_query()
    assert '"status" IN (?, ?)' in sql
    assert params == ["paid", "pending"]


def test_sql_source_is_wrapped_as_subquery(shop_config, shop_catalog, shop_datasource):
    shop_config.tables["big_orders"] = {
        "sql": "SELECT id, total FROM orders WHERE total > 300",
        "columns": ["id", "total"],
        "order": {"column": "total", "direction": "asc"},
    }
    service = DatatableService(shop_config, shop_catalog)

    envelope = service.process({}, table="big_orders")

    assert envelope.records_total == 5
    assert _ids(envelope) == [31, 32, 33, 34, 35]
    sql, _ = shop_datasource.last_query()
    assert 'AS "orders"' in sql


def test_bundle_overrides_columns_but_not_sql(service, shop_datasource):
    bundle = {"sql": "SELECT * FROM customers", "columns": ["id", "status"]}
    envelope = service.process({"datatables_data": bundle}, table="order_list")

    assert set(envelope.data[0].keys()) == {"id", "status"}
    for sql, _ in shop_datasource.captured:
        assert "customers" not in sql


def _paid_orders_service(shop_config, shop_catalog):
    shop_config.tables["paid_orders"] = {
        "table": "orders",
        "columns": ["id", "status"],
        "where": [{"field": "status", "operator": "=", "value": "paid"}],
    }
    return DatatableService(shop_config, shop_catalog)


def test_bundle_cannot_drop_configured_where(shop_config, shop_catalog):
    service = _paid_orders_service(shop_config, shop_catalog)

    envelope = service.process({"datatables_data": {"where": []}}, table="paid_orders")

    assert envelope.records_total == 18
    for row in envelope.data:
        assert row["status"] == "paid"


def test_bundle_cannot_redirect_configured_table(shop_config, shop_catalog, shop_datasource):
    service = _paid_orders_service(shop_config, shop_catalog)
    bundle = {
        "table": "customers",
        "connection": "other",
        "where": [],
        "foreign_keys": {"orders.customer_id": "customers.id"},
        "columns": ["id", "name"],
    }

    envelope = service.process({"datatables_data": bundle}, table="paid_orders")

    assert envelope.records_total == 18
    assert set(envelope.data[0].keys()) == {"id"}
    for sql, _ in shop_datasource.captured:
        assert "customers" not in sql


def test_strict_query_mode_drops_unlisted_params(shop_config, shop_catalog):
    shop_config.engine.strict_query_params = True
    shop_config.tables["order_list"]["filterable"] = ["status"]
    service = DatatableService(shop_config, shop_catalog)

    request = service.parse_request(
        {"status": "paid", "total": "10.0"}, transport=TRANSPORT_QUERY, table="order_list"
    )

    assert dict(request.filters) == {"status": "paid"}


def test_filter_options_returns_distinct_values(service, shop_datasource):
    values = service.filter_options({"_fita": "x::orders::status::#null"})

    assert values == ["paid", "pending"]
    sql, _ = shop_datasource.last_query()
    assert sql.startswith("SELECT DISTINCT")


def test_filter_options_with_previous_chain(service, shop_datasource):
    values = service.filter_options({"_fita": "x::orders::customer_id::status#paid"})

    assert values == [1, 2, 3]
    sql, params = shop_datasource.last_query()
    assert "paid" not in sql
    assert params == ["paid"]


def test_envelope_serializes_to_wire_keys(service):
    payload = service.process({"draw": 9, "length": 1}, table="order_list").to_dict()

    assert payload["draw"] == 9
    assert payload["recordsTotal"] == ORDER_COUNT
    assert payload["recordsFiltered"] == ORDER_COUNT
    assert len(payload["data"]) == 1
    assert "error" not in payload


def test_catalog_has_shop_tables(shop_catalog: Catalog):
    assert shop_catalog.physical_columns("orders") == ["id", "customer_id", "total", "status"]
