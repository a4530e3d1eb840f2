"""Shared fixtures: an in-memory shop database and a service over it."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

from datatable_query.catalog import Catalog
from datatable_query.config import Config
from datatable_query.datasources.duckdb import DuckDBDataSource
from datatable_query.security import MemoryAuditSink
from datatable_query.service import DatatableService

ORDER_COUNT = 35

CUSTOMERS_DDL = """
    CREATE TABLE customers (
        id INTEGER,
        name VARCHAR,
        region VARCHAR,
        active INTEGER
    )
"""

CUSTOMERS_ROWS = """
    INSERT INTO customers VALUES
        (1, 'Alice', 'west', 1),
        (2, 'Bob', 'east', 1),
        (3, 'Carlos', 'west', 0)
"""

ORDERS_DDL = """
    CREATE TABLE orders (
        id INTEGER,
        customer_id INTEGER,
        total DOUBLE,
        status VARCHAR
    )
"""

# ids 1..35; odd ids are 'paid', even ids 'pending'; customer = (id % 3) + 1
ORDERS_ROWS = """
    INSERT INTO orders
    SELECT
        i AS id,
        (i % 3) + 1 AS customer_id,
        i * 10.0 AS total,
        CASE WHEN i % 2 = 1 THEN 'paid' ELSE 'pending' END AS status
    FROM range(1, 36) AS t(i)
"""

WIDGETS_DDL = """
    CREATE TABLE widgets (
        id INTEGER,
        name VARCHAR,
        color VARCHAR,
        weight DOUBLE,
        size VARCHAR,
        price DOUBLE,
        stock INTEGER,
        sku VARCHAR
    )
"""

WIDGETS_ROWS = """
    INSERT INTO widgets VALUES
        (1, 'Sprocket', 'red', 1.5, 'S', 9.99, 10, 'SP-1'),
        (2, 'Gear', 'blue', 2.0, 'M', 14.5, 0, 'GE-2'),
        (3, 'Cog', 'green', 0.5, 'L', 4.25, 7, 'CO-3')
"""

TABLES = {
    "order_list": {
        "table": "orders",
        "columns": ["id", "total", "status"],
        "order": {"column": "id", "direction": "asc"},
    },
    "orders": {
        "source": "model",
        "columns": ["id", "customer", "total"],
        "foreign_keys": {"orders.customer_id": "customers.id"},
        "aliases": {"customer": "customers.name"},
        "order": {"column": "id", "direction": "desc"},
    },
}


class QueryCapturingDataSource(DuckDBDataSource):
    """DuckDB source that records every executed query and its bindings."""

    def __init__(self, name: str, config: Dict[str, Any]):
        super().__init__(name, config)
        self.captured: List[Tuple[str, List[Any]]] = []

    def execute_query(self, query: str, params: Optional[Sequence[Any]] = None):
        self.captured.append((query, list(params or [])))
        return super().execute_query(query, params)

    def clear_queries(self) -> None:
        self.captured = []

    def last_query(self) -> Tuple[str, List[Any]]:
        return self.captured[-1]


def seed_shop(connection) -> None:
    connection.execute(CUSTOMERS_DDL)
    connection.execute(CUSTOMERS_ROWS)
    connection.execute(ORDERS_DDL)
    connection.execute(ORDERS_ROWS)
    connection.execute(WIDGETS_DDL)
    connection.execute(WIDGETS_ROWS)


@pytest.fixture
def shop_datasource():
    """In-memory DuckDB with customers, orders and widgets."""
    ds = QueryCapturingDataSource("shop", {"path": ":memory:", "read_only": False})
    ds.connect()
    seed_shop(ds.connection)
    yield ds
    ds.disconnect()


@pytest.fixture
def shop_catalog(shop_datasource):
    catalog = Catalog()
    catalog.register_datasource(shop_datasource)
    catalog.load_metadata()
    shop_datasource.clear_queries()
    return catalog


@pytest.fixture
def shop_config():
    config = Config()
    for name, table in TABLES.items():
        config.tables[name] = dict(table)
    return config


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def service(shop_config, shop_catalog, audit_sink):
    return DatatableService(shop_config, shop_catalog, audit_sink=audit_sink)
