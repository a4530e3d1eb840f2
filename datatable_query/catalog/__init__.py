"""Catalog of physical tables across data sources."""

from .catalog import Catalog
from .schema import Schema, Table, Column

__all__ = ["Catalog", "Schema", "Table", "Column"]
