"""Base data source interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Dict, Any, Iterator, Optional, Sequence
import pyarrow as pa
import sqlglot


@dataclass
class ColumnMetadata:
    """Metadata about a column."""

    name: str
    data_type: str
    nullable: bool
    primary_key: bool = False


@dataclass
class TableMetadata:
    """Metadata about a table."""

    schema_name: str
    table_name: str
    columns: List[ColumnMetadata]

    def column_names(self) -> List[str]:
        names = []
        for column in self.columns:
            names.append(column.name)
        return names


class DataSource(ABC):
    """Abstract base class for data sources.

    Queries are passed as SQL text with ``?`` placeholders plus a separate
    parameter sequence; drivers that use another paramstyle translate it.
    """

    dialect = "duckdb"

    def __init__(self, name: str, config: Dict[str, Any]):
        """Initialize data source.

        Args:
            name: Unique name for this data source
            config: Configuration dictionary
        """
        self.name = name
        self.config = config
        self.connection = None
        self._connected = False
        self.default_schema = config.get("schema", "main")

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to the data source."""
        pass

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection to the data source."""
        pass

    @abstractmethod
    def list_schemas(self) -> List[str]:
        """List all available schemas."""
        pass

    @abstractmethod
    def list_tables(self, schema: str) -> List[str]:
        """List all tables in a schema.

        Args:
            schema: Schema name

        Returns:
            List of table names
        """
        pass

    @abstractmethod
    def get_table_metadata(self, schema: str, table: str) -> TableMetadata:
        """Get metadata for a table.

        Args:
            schema: Schema name
            table: Table name

        Returns:
            Table metadata including columns and types
        """
        pass

    @abstractmethod
    def execute_query(
        self, query: str, params: Optional[Sequence[Any]] = None
    ) -> Iterator[pa.RecordBatch]:
        """Execute a SQL query and return results as Arrow record batches.

        Args:
            query: SQL query string with ``?`` placeholders
            params: Values bound to the placeholders, in order

        Returns:
            Iterator of Arrow record batches
        """
        pass

    @abstractmethod
    def get_query_schema(self, query: str) -> pa.Schema:
        """Get the schema of a query without executing it.

        Args:
            query: SQL query string

        Returns:
            Arrow schema
        """
        pass

    def fetch_rows(
        self, query: str, params: Optional[Sequence[Any]] = None
    ) -> List[Dict[str, Any]]:
        """Execute a query and return every row as a dict."""
        rows: List[Dict[str, Any]] = []
        for batch in self.execute_query(query, params):
            for row in batch.to_pylist():
                rows.append(row)
        return rows

    def fetch_scalar(self, query: str, params: Optional[Sequence[Any]] = None) -> Any:
        """Execute a query and return the first column of the first row."""
        for batch in self.execute_query(query, params):
            if batch.num_rows > 0:
                return batch.column(0)[0].as_py()
        return None

    def table_exists(self, table: str, schema: Optional[str] = None) -> bool:
        """Check whether a physical table exists."""
        if schema is None:
            schema = self.default_schema
        tables = self.list_tables(schema)
        for name in tables:
            if name.lower() == table.lower():
                return True
        return False

    def parse_query(self, query: str):
        """Parse query text into a sqlglot AST."""
        return sqlglot.parse_one(query, dialect=self.dialect)

    def is_connected(self) -> bool:
        """Check if data source is connected.

        Returns:
            True if connected, False otherwise
        """
        return self._connected

    def ensure_connected(self) -> None:
        """Ensure data source is connected.

        Raises:
            ConnectionError: If connection cannot be established
        """
        if not self.is_connected():
            self.connect()
            self._connected = True

    def __enter__(self):
        """Context manager entry."""
        self.ensure_connected()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
        self._connected = False
        return False

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name})"
