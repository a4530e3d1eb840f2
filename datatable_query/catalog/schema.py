"""Schema metadata classes."""

from dataclasses import dataclass
from typing import List, Optional, Dict


@dataclass
class Column:
    """Physical column metadata."""

    name: str
    data_type: str
    nullable: bool = True
    table: Optional["Table"] = None

    def qualified_name(self) -> str:
        """Get ``table.column``."""
        if self.table:
            return f"{self.table.name}.{self.name}"
        return self.name

    def __repr__(self) -> str:
        return f"Column({self.name}, {self.data_type})"


@dataclass
class Table:
    """Physical table metadata; columns keep ordinal order."""

    name: str
    schema: Optional["Schema"] = None
    columns: List[Column] = None

    def __post_init__(self):
        if self.columns is None:
            self.columns = []
        for col in self.columns:
            col.table = self

    def get_column(self, name: str) -> Optional[Column]:
        """Get column by name (case-insensitive)."""
        for col in self.columns:
            if col.name.lower() == name.lower():
                return col
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    def column_names(self, limit: Optional[int] = None) -> List[str]:
        """Column names in ordinal order, optionally only the first ``limit``."""
        names = []
        for col in self.columns:
            if limit is not None and len(names) >= limit:
                break
            names.append(col.name)
        return names

    def __repr__(self) -> str:
        return f"Table({self.name}, cols={len(self.columns)})"


@dataclass
class Schema:
    """Schema metadata."""

    name: str
    datasource: str
    tables: Dict[str, Table] = None

    def __post_init__(self):
        if self.tables is None:
            self.tables = {}
        for table in self.tables.values():
            table.schema = self

    def get_table(self, name: str) -> Optional[Table]:
        """Get table by name."""
        return self.tables.get(name.lower())

    def add_table(self, table: Table) -> None:
        """Add a table to this schema."""
        table.schema = self
        self.tables[table.name.lower()] = table

    def __repr__(self) -> str:
        return f"Schema({self.datasource}.{self.name}, tables={len(self.tables)})"
