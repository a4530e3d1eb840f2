"""Configuration management for the datatable query engine."""

from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
import logging
import yaml
from pathlib import Path

from .table_config import SOURCE_MODEL, SOURCE_SQL, TableConfig, TableConfigBuilder

logger = logging.getLogger(__name__)

# Keys a client configuration bundle may never set.
BUNDLE_FORBIDDEN_KEYS = ("sql", "source", "source_type")

# Keys a bundle may set for a table that is also configured server-side.
BUNDLE_PRESENTATION_KEYS = (
    "columns", "labels", "status_labels", "formats", "format_data", "formulas",
    "formula", "actions", "clickable", "index_column", "index_lists",
)


@dataclass
class DataSourceConfig:
    """Configuration for a single data source."""

    name: str
    type: str  # "postgresql", "duckdb"
    config: Dict[str, Any]


@dataclass
class EngineConfig:
    """Paging, fallback and rendering settings."""

    default_length: int = 10
    max_limit: int = 1000
    fallback_column_count: int = 6
    strict_query_params: bool = False
    permissive_joins: bool = False
    image_root: str = "."
    image_url_prefix: str = ""
    image_extensions: List[str] = field(
        default_factory=lambda: ["jpg", "jpeg", "png", "gif"]
    )
    sanitizer_cache_size: int = 4096


@dataclass
class SecurityConfig:
    """Identifier allow-lists; empty lists disable the allow-list check."""

    allowed_tables: List[str] = field(default_factory=list)
    allowed_fields: List[str] = field(default_factory=list)
    allow_catalog_identifiers: bool = False
    max_identifier_length: int = 64


@dataclass
class Config:
    """Main configuration class."""

    datasources: Dict[str, DataSourceConfig] = field(default_factory=dict)
    engine: EngineConfig = field(default_factory=EngineConfig)
    security: SecurityConfig = field(default_factory=SecurityConfig)
    tables: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def table_config(
        self,
        name: str,
        overrides: Optional[Dict[str, Any]] = None,
        validator=None,
    ) -> Optional[TableConfig]:
        """Build the TableConfig for a logical table.

        The file configuration is applied first and ``overrides`` (a request
        bundle) last. A bundle never sets the source; for a table configured
        here it is further limited to presentation keys and to columns the
        file layer already lists. Returns None when neither layer exists.
        """
        file_layer = self.tables.get(name)
        overrides = self._bundle_layer(name, file_layer, overrides)
        if file_layer is None and not overrides:
            return None
        builder = TableConfigBuilder(name)
        if file_layer is not None:
            defaults = {"source": SOURCE_SQL if file_layer.get("sql") else SOURCE_MODEL}
            builder.apply(defaults)
        builder.apply(file_layer)
        builder.apply(overrides)
        return builder.build(validator)

    def _bundle_layer(
        self,
        name: str,
        file_layer: Optional[Dict[str, Any]],
        bundle: Optional[Dict[str, Any]],
    ) -> Optional[Dict[str, Any]]:
        if not bundle:
            return None
        layer: Dict[str, Any] = {}
        for key, value in bundle.items():
            if key in BUNDLE_FORBIDDEN_KEYS:
                logger.warning(f"Ignoring '{key}' in client configuration bundle for {name}")
                continue
            if file_layer is not None and key not in BUNDLE_PRESENTATION_KEYS:
                logger.warning(f"Ignoring '{key}' in client configuration bundle for configured table {name}")
                continue
            layer[key] = value
        if file_layer is not None and "columns" in layer:
            columns = _configured_subset(layer["columns"], file_layer.get("columns"))
            if columns:
                layer["columns"] = columns
            else:
                del layer["columns"]
        return layer


def _configured_subset(requested: Any, configured: Any) -> List[str]:
    """Requested columns that the file layer also lists, in requested order."""
    if isinstance(requested, str):
        requested = [requested]
    if not isinstance(requested, (list, tuple)):
        return []
    if isinstance(configured, str):
        configured = [configured]
    allowed = set()
    for column in configured or []:
        allowed.add(str(column))
    kept = []
    for column in requested:
        if not allowed or str(column) in allowed:
            kept.append(str(column))
    return kept


def load_config(config_path: str) -> Config:
    """Load configuration from YAML file.

    Args:
        config_path: Path to YAML configuration file

    Returns:
        Parsed configuration

    Example YAML format:
        datasources:
          shop:
            type: duckdb
            path: /data/shop.duckdb
            read_only: true

          reporting:
            type: postgresql
            host: localhost
            port: 5432
            database: reports
            user: user
            password: pass

        engine:
          default_length: 10
          max_limit: 1000
          fallback_column_count: 6
          image_root: /srv/uploads

        security:
          allowed_tables: [orders, customers]
          allowed_fields: [id, customer_id, total, status, name]

        tables:
          orders:
            source: model
            columns: [id, customer_name, total, status]
            foreign_keys:
              orders.customer_id: customers.id
            aliases:
              customer_name: customers.name
            where:
              - {field: status, operator: "!=", value: X}
            order: {column: id, direction: desc}
            formats:
              - {field: total, decimals: 2, separator: "."}
            actions: {buttons: [print], removed: [delete], url: /orders}
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    datasources = {}
    for name, ds_config in (data.get("datasources") or {}).items():
        ds_config = dict(ds_config)
        ds_type = ds_config.pop("type")
        datasources[name] = DataSourceConfig(name=name, type=ds_type, config=ds_config)

    engine = EngineConfig(**(data.get("engine") or {}))
    security = SecurityConfig(**(data.get("security") or {}))

    tables = {}
    for name, table_data in (data.get("tables") or {}).items():
        tables[name] = dict(table_data or {})

    return Config(
        datasources=datasources, engine=engine, security=security, tables=tables
    )
