"""Data source connectors."""

from .base import DataSource, TableMetadata, ColumnMetadata
from .postgresql import PostgreSQLDataSource
from .duckdb import DuckDBDataSource
from .errors import DRIVER_ERRORS

__all__ = [
    "DataSource",
    "TableMetadata",
    "ColumnMetadata",
    "PostgreSQLDataSource",
    "DuckDBDataSource",
    "DRIVER_ERRORS",
]
