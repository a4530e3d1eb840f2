"""DuckDB data source implementation."""

from typing import List, Dict, Any, Iterator, Optional, Sequence
import pyarrow as pa
import duckdb
import logging

from .base import DataSource, TableMetadata, ColumnMetadata
from ..utils.logging import fingerprint_sql

logger = logging.getLogger(__name__)

BATCH_SIZE = 10000


class DuckDBDataSource(DataSource):
    """DuckDB data source connector."""

    dialect = "duckdb"

    def __init__(self, name: str, config: Dict[str, Any]):
        """Initialize DuckDB data source.

        Config should include:
            - path: Path to DuckDB database file (or :memory: for in-memory)
            - read_only: Whether to open in read-only mode
              (default: True for files, False for :memory:)
            - schema: Default schema (default: main)
        """
        super().__init__(name, config)
        self.connection = None
        self.db_path = config.get("path", ":memory:")
        self.read_only = config.get("read_only", self.db_path != ":memory:")

    def connect(self) -> None:
        """Establish connection to DuckDB."""
        logger.info(f"Connecting to DuckDB at '{self.db_path}'")
        self.connection = duckdb.connect(self.db_path, read_only=self.read_only)
        self._connected = True
        logger.info(f"Successfully connected to DuckDB: {self.name}")

    def disconnect(self) -> None:
        """Close DuckDB connection."""
        if self.connection:
            self.connection.close()
            logger.info(f"Disconnected from DuckDB: {self.name}")
            self.connection = None
            self._connected = False

    def list_schemas(self) -> List[str]:
        """List available schemas."""
        result = self.connection.execute(
            "SELECT schema_name FROM information_schema.schemata"
        ).fetchall()
        schemas = []
        for row in result:
            if row[0] not in schemas:
                schemas.append(row[0])
        return schemas

    def list_tables(self, schema: str) -> List[str]:
        """List tables and views in a schema."""
        result = self.connection.execute(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = ?
            ORDER BY table_name
            """,
            [schema],
        ).fetchall()
        tables = []
        for row in result:
            tables.append(row[0])
        return tables

    def get_table_metadata(self, schema: str, table: str) -> TableMetadata:
        """Get table metadata in ordinal column order."""
        result = self.connection.execute(
            """
            SELECT
                column_name,
                data_type,
                is_nullable
            FROM information_schema.columns
            WHERE table_schema = ? AND table_name = ?
            ORDER BY ordinal_position
            """,
            [schema, table],
        ).fetchall()

        columns = []
        for row in result:
            columns.append(
                ColumnMetadata(
                    name=row[0],
                    data_type=row[1],
                    nullable=row[2] == "YES",
                )
            )

        return TableMetadata(schema_name=schema, table_name=table, columns=columns)

    def execute_query(
        self, query: str, params: Optional[Sequence[Any]] = None
    ) -> Iterator[pa.RecordBatch]:
        """Execute query with bound parameters and yield Arrow record batches."""
        if params is None:
            params = []
        logger.debug(f"Executing query on {self.name}: {fingerprint_sql(query)}")
        cursor = self.connection.cursor()
        try:
            result = cursor.execute(query, list(params))
            arrow_table = result.fetch_arrow_table()
        finally:
            cursor.close()

        for batch in arrow_table.to_batches(max_chunksize=BATCH_SIZE):
            yield batch

    def get_query_schema(self, query: str) -> pa.Schema:
        """Get query schema without executing."""
        result = self.connection.execute(f"DESCRIBE {query}")
        rows = result.fetchall()

        fields = []
        for row in rows:
            fields.append(pa.field(row[0], pa.string()))

        return pa.schema(fields)
