"""Tests for data source connectors."""

import pytest
import duckdb

from datatable_query.datasources import DRIVER_ERRORS
from datatable_query.datasources.duckdb import DuckDBDataSource
from datatable_query.datasources.postgresql import PostgreSQLDataSource, to_pyformat


@pytest.fixture
def duckdb_datasource():
    """Create an in-memory DuckDB datasource for testing."""
    ds = DuckDBDataSource("test_duck", {"path": ":memory:", "read_only": False})
    ds.connect()

    conn = ds.connection
    conn.execute("""
        CREATE TABLE IF NOT EXISTS main.test_table (
            id INTEGER PRIMARY KEY,
            name VARCHAR,
            value DOUBLE
        )
    """)
    conn.execute("""
        INSERT INTO main.test_table VALUES
            (1, 'Alice', 100.5),
            (2, 'Bob', 200.75),
            (3, 'Carol', 150.25)
    """)

    yield ds

    ds.disconnect()


def test_duckdb_connection(duckdb_datasource):
    """Test DuckDB connection."""
    assert duckdb_datasource.is_connected()
    assert duckdb_datasource.connection is not None
    assert duckdb_datasource.dialect == "duckdb"


def test_duckdb_list_schemas(duckdb_datasource):
    schemas = duckdb_datasource.list_schemas()

    assert "main" in schemas


def test_duckdb_list_tables_and_exists(duckdb_datasource):
    assert "test_table" in duckdb_datasource.list_tables("main")
    assert duckdb_datasource.table_exists("TEST_TABLE")
    assert not duckdb_datasource.table_exists("missing")


def test_duckdb_get_table_metadata(duckdb_datasource):
    """Columns come back in ordinal order."""
    metadata = duckdb_datasource.get_table_metadata("main", "test_table")

    assert metadata.schema_name == "main"
    assert metadata.table_name == "test_table"
    assert metadata.column_names() == ["id", "name", "value"]

    id_col = next(col for col in metadata.columns if col.name == "id")
    assert id_col.nullable is False  # PRIMARY KEY is NOT NULL


def test_duckdb_metadata_for_missing_table_is_empty(duckdb_datasource):
    metadata = duckdb_datasource.get_table_metadata("main", "nope")

    assert metadata.columns == []


def test_duckdb_execute_query(duckdb_datasource):
    """Test executing a query and fetching Arrow batches."""
    batches = list(duckdb_datasource.execute_query("SELECT * FROM main.test_table ORDER BY id"))

    data = batches[0].to_pydict()
    assert data["id"] == [1, 2, 3]
    assert data["name"] == ["Alice", "Bob", "Carol"]


def test_duckdb_fetch_rows_with_bindings(duckdb_datasource):
    rows = duckdb_datasource.fetch_rows(
        "SELECT id, name FROM test_table WHERE value > ? ORDER BY id", [150]
    )

    assert rows == [{"id": 2, "name": "Bob"}, {"id": 3, "name": "Carol"}]


def test_duckdb_bound_value_is_not_sql(duckdb_datasource):
    rows = duckdb_datasource.fetch_rows(
        "SELECT id FROM test_table WHERE name = ?", ["Alice' OR '1'='1"]
    )

    assert rows == []


def test_duckdb_fetch_scalar(duckdb_datasource):
    assert duckdb_datasource.fetch_scalar("SELECT COUNT(*) FROM test_table WHERE id >= ?", [2]) == 2
    assert duckdb_datasource.fetch_scalar("SELECT id FROM test_table WHERE id < 0") is None


def test_duckdb_query_schema(duckdb_datasource):
    schema = duckdb_datasource.get_query_schema("SELECT id, name FROM test_table")

    assert schema.names == ["id", "name"]


def test_duckdb_context_manager():
    """Test using data source as context manager."""
    ds = DuckDBDataSource("test", {"path": ":memory:", "read_only": False})

    assert not ds.is_connected()

    with ds:
        assert ds.is_connected()
        assert ds.fetch_scalar("SELECT 1") == 1

    assert not ds.is_connected()


def test_duckdb_reconnect():
    ds = DuckDBDataSource("test", {"path": ":memory:", "read_only": False})

    ds.connect()
    ds.disconnect()
    assert not ds.is_connected()
    assert ds.connection is None

    ds.ensure_connected()
    assert ds.is_connected()

    ds.disconnect()


def test_duckdb_error_is_a_driver_error():
    ds = DuckDBDataSource("test", {"path": ":memory:", "read_only": False})
    ds.connect()

    with pytest.raises(DRIVER_ERRORS):
        ds.fetch_rows("SELECT * FROM nonexistent_table")
    with pytest.raises(duckdb.Error):
        ds.fetch_scalar("SELECT nope(")

    ds.disconnect()


def test_duckdb_repr():
    ds = DuckDBDataSource("my_duckdb", {"path": ":memory:"})

    assert repr(ds) == "DuckDBDataSource(name=my_duckdb)"


def test_to_pyformat_translates_placeholders():
    query = 'SELECT "a" FROM "t" WHERE "b" LIKE ? AND "c" = ? AND "d" % 2 = 0'

    assert to_pyformat(query) == 'SELECT "a" FROM "t" WHERE "b" LIKE %s AND "c" = %s AND "d" %% 2 = 0'


def test_postgresql_defaults_without_connecting():
    ds = PostgreSQLDataSource(
        "reports", {"host": "localhost", "database": "r", "user": "u", "password": "p"}
    )

    assert ds.dialect == "postgres"
    assert ds.default_schema == "public"
    assert ds.list_schemas() == ["public"]
    assert not ds.is_connected()
