"""Configuration management."""

from .config import (
    Config,
    DataSourceConfig,
    EngineConfig,
    SecurityConfig,
    load_config,
)
from .table_config import (
    ActionSpec,
    ForeignKey,
    FormatSpec,
    FormulaSpec,
    OrderSpec,
    TableConfig,
    TableConfigBuilder,
    WhereCondition,
    PSEUDO_COLUMNS,
    ASC,
    DESC,
)

__all__ = [
    "Config",
    "DataSourceConfig",
    "EngineConfig",
    "SecurityConfig",
    "load_config",
    "ActionSpec",
    "ForeignKey",
    "FormatSpec",
    "FormulaSpec",
    "OrderSpec",
    "TableConfig",
    "TableConfigBuilder",
    "WhereCondition",
    "PSEUDO_COLUMNS",
    "ASC",
    "DESC",
]
