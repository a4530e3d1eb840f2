"""Catalog of physical tables and columns across registered data sources."""

from typing import Dict, Optional, List, Tuple
import logging

from ..datasources.base import DataSource
from .schema import Schema, Table, Column

logger = logging.getLogger(__name__)


class Catalog:
    """Central catalog of data sources and their physical metadata.

    The first registered data source is the default connection.
    """

    def __init__(self):
        """Initialize catalog."""
        self.datasources: Dict[str, DataSource] = {}
        self.schemas: Dict[Tuple[str, str], Schema] = {}
        self._metadata_loaded = False

    def register_datasource(self, datasource: DataSource) -> None:
        """Register a data source with the catalog.

        Args:
            datasource: Data source to register
        """
        self.datasources[datasource.name] = datasource

    def load_metadata(self) -> None:
        """Discover tables and columns of every registered data source."""
        for ds_name, datasource in self.datasources.items():
            datasource.ensure_connected()
            for schema_name in self._schemas_to_load(datasource):
                self.schemas[(ds_name, schema_name)] = self._load_schema(
                    ds_name, datasource, schema_name
                )
        self._metadata_loaded = True
        logger.info(f"Catalog loaded: {self}")

    def refresh_table(self, datasource_name: str, table_name: str) -> Optional[Table]:
        """Reload a single table's metadata (used for late-created tables)."""
        datasource = self.get_datasource(datasource_name)
        if datasource is None:
            return None
        schema_name = datasource.default_schema
        metadata = datasource.get_table_metadata(schema_name, table_name)
        if not metadata.columns:
            return None
        schema = self.schemas.get((datasource_name, schema_name))
        if schema is None:
            schema = Schema(name=schema_name, datasource=datasource_name)
            self.schemas[(datasource_name, schema_name)] = schema
        table = self._build_table(table_name, metadata)
        schema.add_table(table)
        return table

    def _schemas_to_load(self, datasource: DataSource) -> List[str]:
        configured = datasource.config.get("schemas")
        if configured:
            return list(configured)
        return [datasource.default_schema]

    def _load_schema(self, ds_name: str, datasource: DataSource, schema_name: str) -> Schema:
        schema = Schema(name=schema_name, datasource=ds_name)
        for table_name in datasource.list_tables(schema_name):
            metadata = datasource.get_table_metadata(schema_name, table_name)
            schema.add_table(self._build_table(table_name, metadata))
        return schema

    def _build_table(self, table_name: str, metadata) -> Table:
        columns = []
        for col_meta in metadata.columns:
            columns.append(
                Column(
                    name=col_meta.name,
                    data_type=col_meta.data_type,
                    nullable=col_meta.nullable,
                )
            )
        return Table(name=table_name, columns=columns)

    def get_datasource(self, name: Optional[str] = None) -> Optional[DataSource]:
        """Get data source by name, or the default one when ``name`` is empty.

        Args:
            name: Data source name

        Returns:
            Data source if found, None otherwise
        """
        if not name:
            return self.default_datasource()
        return self.datasources.get(name)

    def default_datasource(self) -> Optional[DataSource]:
        for datasource in self.datasources.values():
            return datasource
        return None

    def get_schema(self, datasource: str, schema_name: str) -> Optional[Schema]:
        """Get schema by data source and name."""
        return self.schemas.get((datasource, schema_name))

    def get_table(self, table_name: str, datasource: Optional[str] = None) -> Optional[Table]:
        """Find a physical table by name.

        Args:
            table_name: Table name
            datasource: Restrict the search to this data source

        Returns:
            Table if found, None otherwise
        """
        for (ds_name, _), schema in self.schemas.items():
            if datasource and ds_name != datasource:
                continue
            table = schema.get_table(table_name)
            if table:
                return table
        return None

    def has_table(self, table_name: str, datasource: Optional[str] = None) -> bool:
        return self.get_table(table_name, datasource) is not None

    def physical_columns(
        self, table_name: str, datasource: Optional[str] = None, limit: Optional[int] = None
    ) -> List[str]:
        """Column names of a physical table in ordinal order; empty if unknown."""
        table = self.get_table(table_name, datasource)
        if table is None:
            return []
        return table.column_names(limit)

    def table_names(self) -> List[str]:
        names: List[str] = []
        for schema in self.schemas.values():
            for table in schema.tables.values():
                if table.name not in names:
                    names.append(table.name)
        return names

    def column_names(self) -> List[str]:
        names: List[str] = []
        for schema in self.schemas.values():
            for table in schema.tables.values():
                for column in table.columns:
                    if column.name not in names:
                        names.append(column.name)
        return names

    def __repr__(self) -> str:
        return f"Catalog(datasources={len(self.datasources)}, schemas={len(self.schemas)})"
