"""PostgreSQL data source implementation."""

from typing import List, Dict, Any, Iterator, Optional, Sequence
import pyarrow as pa
import psycopg2
from psycopg2 import pool
from psycopg2.extras import RealDictCursor
import logging

from .base import DataSource, TableMetadata, ColumnMetadata
from ..utils.logging import fingerprint_sql

logger = logging.getLogger(__name__)

BATCH_SIZE = 10000


def to_pyformat(query: str) -> str:
    """Translate ``?`` placeholders into psycopg2's ``%s`` style.

    Generated SQL never carries string literals, so every ``?`` is a
    placeholder; literal ``%`` signs are doubled for psycopg2.
    """
    escaped = query.replace("%", "%%")
    return escaped.replace("?", "%s")


class PostgreSQLDataSource(DataSource):
    """PostgreSQL data source connector with connection pooling."""

    dialect = "postgres"

    def __init__(self, name: str, config: Dict[str, Any]):
        """Initialize PostgreSQL data source.

        Config should include:
            - host: Database host
            - port: Database port
            - database: Database name
            - user: Username
            - password: Password
            - schema: Default schema (default: public)
            - schemas: List of schemas to include (optional)
            - min_connections: Minimum connections in pool (default: 1)
            - max_connections: Maximum connections in pool (default: 5)
        """
        super().__init__(name, config)
        self.default_schema = config.get("schema", "public")
        self.schemas = config.get("schemas", [self.default_schema])
        self._pool = None
        self._min_connections = config.get("min_connections", 1)
        self._max_connections = config.get("max_connections", 5)

    def connect(self) -> None:
        """Establish connection pool to PostgreSQL."""
        try:
            logger.info(
                f"Connecting to PostgreSQL database '{self.config['database']}' at {self.config['host']}"
            )
            self._pool = pool.ThreadedConnectionPool(
                self._min_connections,
                self._max_connections,
                host=self.config["host"],
                port=self.config.get("port", 5432),
                database=self.config["database"],
                user=self.config["user"],
                password=self.config["password"],
            )
            conn = self._pool.getconn()
            self._pool.putconn(conn)
            self.connection = conn
            self._connected = True
            logger.info(f"Successfully connected to PostgreSQL: {self.name}")
        except psycopg2.Error as e:
            logger.error(f"Failed to connect to PostgreSQL {self.name}: {e}")
            raise ConnectionError(f"PostgreSQL connection failed: {e}") from e

    def disconnect(self) -> None:
        """Close all connections in the pool."""
        if self._pool:
            self._pool.closeall()
            logger.info(f"Disconnected from PostgreSQL: {self.name}")
            self._pool = None
            self.connection = None
            self._connected = False

    def _get_connection(self):
        """Get a connection from the pool."""
        if not self._pool:
            raise RuntimeError(f"Not connected to {self.name}")
        return self._pool.getconn()

    def _return_connection(self, conn):
        """Return a connection to the pool."""
        if self._pool:
            self._pool.putconn(conn)

    def list_schemas(self) -> List[str]:
        """List configured schemas."""
        return self.schemas

    def list_tables(self, schema: str) -> List[str]:
        """List tables and views in a schema."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(
                    """
                    SELECT table_name
                    FROM information_schema.tables
                    WHERE table_schema = %s
                    ORDER BY table_name
                    """,
                    (schema,),
                )
                tables = []
                for row in cursor.fetchall():
                    tables.append(row[0])
                return tables
        except psycopg2.Error as e:
            logger.error(f"Error listing tables in schema {schema}: {e}")
            raise
        finally:
            self._return_connection(conn)

    def get_table_metadata(self, schema: str, table: str) -> TableMetadata:
        """Get table metadata from information_schema."""
        conn = self._get_connection()
        try:
            with conn.cursor(cursor_factory=RealDictCursor) as cursor:
                cursor.execute(
                    """
                    SELECT
                        column_name,
                        data_type,
                        is_nullable
                    FROM information_schema.columns
                    WHERE table_schema = %s AND table_name = %s
                    ORDER BY ordinal_position
                    """,
                    (schema, table),
                )

                columns = []
                for row in cursor.fetchall():
                    columns.append(
                        ColumnMetadata(
                            name=row["column_name"],
                            data_type=row["data_type"],
                            nullable=row["is_nullable"] == "YES",
                        )
                    )

                return TableMetadata(
                    schema_name=schema, table_name=table, columns=columns
                )
        except psycopg2.Error as e:
            logger.error(f"Error getting metadata for {schema}.{table}: {e}")
            raise
        finally:
            self._return_connection(conn)

    def execute_query(
        self, query: str, params: Optional[Sequence[Any]] = None
    ) -> Iterator[pa.RecordBatch]:
        """Execute query with bound parameters and yield Arrow record batches."""
        if params is None:
            params = []
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                logger.debug(f"Executing query on {self.name}: {fingerprint_sql(query)}")
                cursor.execute(to_pyformat(query), tuple(params))

                columns = self._extract_column_names(cursor.description)

                while True:
                    rows = cursor.fetchmany(BATCH_SIZE)
                    if not rows:
                        break

                    data = self._build_column_data(columns, rows)
                    yield pa.RecordBatch.from_pydict(data)
            conn.commit()
        except psycopg2.Error as e:
            conn.rollback()
            logger.error(f"Query execution failed on {self.name}: {e}")
            raise
        finally:
            self._return_connection(conn)

    def get_query_schema(self, query: str) -> pa.Schema:
        """Get query schema without executing."""
        conn = self._get_connection()
        try:
            with conn.cursor() as cursor:
                cursor.execute(f"SELECT * FROM ({to_pyformat(query)}) AS q LIMIT 0")
                columns = self._extract_column_names(cursor.description)
                fields = []
                for col in columns:
                    fields.append(pa.field(col, pa.string()))
                return pa.schema(fields)
        except psycopg2.Error as e:
            logger.error(f"Failed to get query schema: {e}")
            raise
        finally:
            self._return_connection(conn)

    def _extract_column_names(self, description) -> List[str]:
        """Extract column names from cursor description."""
        columns = []
        for desc in description:
            columns.append(desc[0])
        return columns

    def _build_column_data(self, columns: List[str], rows: List) -> Dict[str, List]:
        """Build column data dictionary from rows."""
        data = {}
        for col in columns:
            data[col] = []

        for row in rows:
            for i, col in enumerate(columns):
                data[col].append(row[i])

        return data
