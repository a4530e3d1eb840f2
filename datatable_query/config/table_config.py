"""Typed per-table configuration and its builder."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
import logging

from ..errors import ConfigurationError, InvalidIdentifier

logger = logging.getLogger(__name__)

SOURCE_MODEL = "model"
SOURCE_SQL = "sql"
SOURCE_TYPES = (SOURCE_MODEL, SOURCE_SQL)

ASC = "asc"
DESC = "desc"

DEFAULT_RAW_COLUMNS = ("action", "flag_status")
DEFAULT_ACTION_BUTTONS = ("view", "insert", "edit", "delete")
WHERE_OPERATORS = ("=", "!=", "<>", "<", "<=", ">", ">=", "like", "in", "not in")
FORMULA_LOCATIONS = ("first", "last", "after")

# UI-only columns with no physical backing; never projected or ordered on.
PSEUDO_COLUMNS = ("number_lists", "DT_RowIndex", "action", "no")


@dataclass(frozen=True)
class OrderSpec:
    """An ORDER BY target: column plus ``asc``/``desc``."""

    column: str
    direction: str = ASC

    @classmethod
    def parse(cls, value: Any) -> Optional["OrderSpec"]:
        """Build from ``{column, direction}``, ``[column, direction]`` or ``"column"``."""
        if value is None or value == "" or value == [] or value == {}:
            return None
        if isinstance(value, OrderSpec):
            return value
        if isinstance(value, str):
            return cls(column=value.strip(), direction=ASC)
        if isinstance(value, (list, tuple)):
            column = str(value[0]).strip()
            direction = value[1] if len(value) > 1 else ASC
            return cls(column=column, direction=normalize_direction(direction))
        if isinstance(value, Mapping):
            column = value.get("column")
            if column is None:
                return None
            direction = value.get("direction", value.get("order", ASC))
            return cls(column=str(column).strip(), direction=normalize_direction(direction))
        raise ConfigurationError(f"Unsupported order value: {value!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"column": self.column, "direction": self.direction}


def normalize_direction(direction: Any) -> str:
    if isinstance(direction, str) and direction.strip().lower() == DESC:
        return DESC
    return ASC


@dataclass(frozen=True)
class ForeignKey:
    """``child_table.child_column -> parent_table.parent_column``."""

    child_table: str
    child_column: str
    parent_table: str
    parent_column: str

    @classmethod
    def parse(cls, child: str, parent: str) -> "ForeignKey":
        child_parts = str(child).split(".")
        parent_parts = str(parent).split(".")
        if len(child_parts) != 2 or len(parent_parts) != 2:
            raise ConfigurationError(
                f"Foreign key must be 'table.column': {child!r} -> {parent!r}"
            )
        return cls(child_parts[0], child_parts[1], parent_parts[0], parent_parts[1])


@dataclass(frozen=True)
class WhereCondition:
    """Static condition; list values mean IN / NOT IN."""

    field: str
    operator: str
    value: Any


@dataclass(frozen=True)
class FormatSpec:
    """Number formatting of a single field."""

    field: str
    decimals: int = 0
    separator: str = "."
    format_type: str = "number"


@dataclass(frozen=True)
class FormulaSpec:
    """Computed column evaluated from ``logic`` over ``field_lists``."""

    name: str
    logic: str
    field_lists: Tuple[str, ...]
    label: Optional[str] = None
    location: str = "last"
    after: Optional[str] = None


@dataclass(frozen=True)
class ActionSpec:
    """Action button column settings."""

    enabled: bool = False
    buttons: Tuple[str, ...] = DEFAULT_ACTION_BUTTONS
    removed: Tuple[str, ...] = ()
    url: str = ""
    target_field: str = "id"

    def effective_buttons(self) -> List[str]:
        buttons: List[str] = []
        for button in self.buttons:
            if button in self.removed or button in buttons:
                continue
            buttons.append(button)
        return buttons


@dataclass(frozen=True)
class TableConfig:
    """Declarative configuration of one logical table.

    Built once through ``TableConfigBuilder`` and read-only afterwards.
    """

    name: str
    table: str
    source_type: Optional[str] = None
    sql: Optional[str] = None
    connection: Optional[str] = None
    columns: Tuple[str, ...] = ()
    labels: Dict[str, str] = field(default_factory=dict)
    foreign_keys: Tuple[ForeignKey, ...] = ()
    aliases: Dict[str, str] = field(default_factory=dict)
    where: Tuple[WhereCondition, ...] = ()
    order: Optional[OrderSpec] = None
    searchable: Tuple[str, ...] = ()
    filterable: Tuple[str, ...] = ()
    raw_columns: Tuple[str, ...] = ()
    image_fields: Tuple[str, ...] = ()
    relations: Dict[str, Dict[Any, Any]] = field(default_factory=dict)
    status_labels: Dict[str, Dict[Any, str]] = field(default_factory=dict)
    formats: Tuple[FormatSpec, ...] = ()
    formulas: Tuple[FormulaSpec, ...] = ()
    actions: ActionSpec = field(default_factory=ActionSpec)
    clickable: bool = False
    index_column: bool = False
    synthesized: bool = False

    @property
    def has_joins(self) -> bool:
        return len(self.foreign_keys) > 0

    def joined_tables(self) -> List[str]:
        """Tables referenced by the foreign-key map, excluding the primary."""
        tables: List[str] = []
        for fk in self.foreign_keys:
            for name in (fk.child_table, fk.parent_table):
                if name != self.table and name not in tables:
                    tables.append(name)
        return tables

    def formula_names(self) -> List[str]:
        names = []
        for formula in self.formulas:
            names.append(formula.name)
        return names

    def label_for(self, column: str) -> str:
        label = self.labels.get(column)
        if label:
            return label
        return column.replace("_", " ").title()


class TableConfigBuilder:
    """Layers configuration mappings into a validated ``TableConfig``.

    Layers are applied in call order (defaults first, overrides last); each
    later layer replaces the keys it sets. ``build`` validates identifiers
    once and freezes the result.
    """

    _LIST_KEYS = ("columns", "searchable", "filterable", "raw_columns", "image_fields")
    _KNOWN_KEYS = (
        "table", "source", "source_type", "sql", "connection", "columns", "labels",
        "foreign_keys", "aliases", "where", "order", "orderby", "searchable",
        "filterable", "raw_columns", "image_fields", "relations", "status_labels",
        "formats", "format_data", "formulas", "formula", "actions", "clickable",
        "index_column", "index_lists",
    )

    def __init__(self, name: str):
        self.name = name
        self._data: Dict[str, Any] = {}
        self._searchable_all = True

    def apply(self, layer: Optional[Mapping[str, Any]]) -> "TableConfigBuilder":
        """Merge one configuration layer."""
        if not layer:
            return self
        for key, value in layer.items():
            if key not in self._KNOWN_KEYS:
                logger.debug(f"Ignoring unknown table config key '{key}' for {self.name}")
                continue
            canonical = self._canonical_key(key)
            self._data[canonical] = value
        return self

    def _canonical_key(self, key: str) -> str:
        aliases = {
            "source": "source_type",
            "orderby": "order",
            "format_data": "formats",
            "formula": "formulas",
            "index_lists": "index_column",
        }
        return aliases.get(key, key)

    def build(self, validator=None) -> TableConfig:
        """Produce the frozen configuration.

        Args:
            validator: Optional ``IdentifierValidator`` used on every name

        Raises:
            ConfigurationError: On malformed or unsafe configuration
        """
        data = self._data
        columns = self._string_tuple(data.get("columns"), "columns")
        source_type = data.get("source_type")
        if source_type is not None and source_type not in SOURCE_TYPES:
            raise ConfigurationError(f"Unknown source type '{source_type}' for {self.name}")
        if source_type == SOURCE_SQL and not data.get("sql"):
            raise ConfigurationError(f"Table {self.name} has source 'sql' but no sql")

        config = TableConfig(
            name=self.name,
            table=str(data.get("table") or self.name),
            source_type=source_type,
            sql=data.get("sql"),
            connection=data.get("connection"),
            columns=columns,
            labels=dict(data.get("labels") or {}),
            foreign_keys=self._foreign_keys(data.get("foreign_keys")),
            aliases=self._aliases(data.get("aliases")),
            where=self._where(data.get("where")),
            order=OrderSpec.parse(data.get("order")),
            searchable=self._searchable(data.get("searchable"), columns),
            filterable=self._string_tuple(data.get("filterable"), "filterable"),
            raw_columns=self._string_tuple(data.get("raw_columns"), "raw_columns"),
            image_fields=self._string_tuple(data.get("image_fields"), "image_fields"),
            relations=dict(data.get("relations") or {}),
            status_labels=dict(data.get("status_labels") or {}),
            formats=self._formats(data.get("formats")),
            formulas=self._formulas(data.get("formulas")),
            actions=self._actions(data.get("actions")),
            clickable=bool(data.get("clickable", False)),
            index_column=bool(data.get("index_column", False)),
        )
        if validator is not None:
            validate_table_config(config, validator)
        return config

    def _string_tuple(self, value: Any, key: str) -> Tuple[str, ...]:
        if value is None:
            return ()
        if isinstance(value, str):
            return (value,)
        if not isinstance(value, (list, tuple)):
            raise ConfigurationError(f"'{key}' of {self.name} must be a list")
        items = []
        for item in value:
            items.append(str(item))
        return tuple(items)

    def _searchable(self, value: Any, columns: Tuple[str, ...]) -> Tuple[str, ...]:
        if value is None or value is True:
            return columns
        if value is False:
            return ()
        return self._string_tuple(value, "searchable")

    def _foreign_keys(self, value: Any) -> Tuple[ForeignKey, ...]:
        if not value:
            return ()
        keys = []
        if isinstance(value, Mapping):
            for child, parent in value.items():
                keys.append(ForeignKey.parse(child, parent))
        else:
            for entry in value:
                keys.append(ForeignKey.parse(entry["child"], entry["parent"]))
        return tuple(keys)

    def _aliases(self, value: Any) -> Dict[str, str]:
        aliases: Dict[str, str] = {}
        if not value:
            return aliases
        for alias, source in value.items():
            if len(str(source).split(".")) != 2:
                raise ConfigurationError(f"Alias '{alias}' must map to 'table.column'")
            aliases[str(alias)] = str(source)
        return aliases

    def _where(self, value: Any) -> Tuple[WhereCondition, ...]:
        if not value:
            return ()
        conditions = []
        if isinstance(value, Mapping):
            for field_name, field_value in value.items():
                conditions.append(WhereCondition(str(field_name), "=", field_value))
            return tuple(conditions)
        for entry in value:
            if isinstance(entry, (list, tuple)):
                field_name, operator, field_value = entry
            else:
                field_name = entry["field"]
                operator = entry.get("operator", "=")
                field_value = entry.get("value")
            operator = str(operator).strip().lower()
            if operator not in WHERE_OPERATORS:
                raise ConfigurationError(f"Unsupported where operator '{operator}'")
            if isinstance(field_value, list):
                field_value = tuple(field_value)
            conditions.append(WhereCondition(str(field_name), operator, field_value))
        return tuple(conditions)

    def _formats(self, value: Any) -> Tuple[FormatSpec, ...]:
        if not value:
            return ()
        entries = value.values() if isinstance(value, Mapping) else value
        formats = []
        for entry in entries:
            formats.append(
                FormatSpec(
                    field=str(entry.get("field", entry.get("field_name"))),
                    decimals=int(entry.get("decimals", entry.get("decimal_endpoint", 0))),
                    separator=str(entry.get("separator", ".")),
                    format_type=str(entry.get("format_type", "number")),
                )
            )
        return tuple(formats)

    def _formulas(self, value: Any) -> Tuple[FormulaSpec, ...]:
        if not value:
            return ()
        formulas = []
        for entry in value:
            location = str(entry.get("location", entry.get("node_location", "last")))
            after = entry.get("after", entry.get("node_after"))
            if after and location == "last" and "location" not in entry:
                location = "after"
            if location not in FORMULA_LOCATIONS:
                raise ConfigurationError(f"Unsupported formula location '{location}'")
            formulas.append(
                FormulaSpec(
                    name=str(entry["name"]),
                    logic=str(entry["logic"]),
                    field_lists=tuple(str(item) for item in entry.get("field_lists", [])),
                    label=entry.get("label"),
                    location=location,
                    after=after,
                )
            )
        return tuple(formulas)

    def _actions(self, value: Any) -> ActionSpec:
        if value is None or value is False:
            return ActionSpec(enabled=False)
        if value is True:
            return ActionSpec(enabled=True)
        if isinstance(value, (list, tuple)):
            return ActionSpec(enabled=True, buttons=_merge_buttons(value))
        return ActionSpec(
            enabled=bool(value.get("enabled", True)),
            buttons=_merge_buttons(value.get("buttons", [])),
            removed=tuple(value.get("removed", ())),
            url=str(value.get("url", "")),
            target_field=str(value.get("target_field", "id")),
        )


def _merge_buttons(extra: Any) -> Tuple[str, ...]:
    buttons = list(DEFAULT_ACTION_BUTTONS)
    for button in extra or []:
        if button not in buttons:
            buttons.append(str(button))
    return tuple(buttons)


def validate_table_config(config: TableConfig, validator) -> None:
    """Run every identifier of ``config`` through ``validator``.

    Raises:
        ConfigurationError: Wrapping the first identifier failure
    """
    virtual = set(PSEUDO_COLUMNS)
    virtual.update(config.aliases.keys())
    virtual.update(config.formula_names())
    try:
        validator.validate_table(config.table)
        for column in config.columns:
            if column in virtual:
                if not validator.is_valid("column", column):
                    raise InvalidIdentifier("column", column, "illegal virtual column")
                continue
            validator.validate_column(column)
        for fk in config.foreign_keys:
            validator.validate_table(fk.child_table)
            validator.validate_column(fk.child_column)
            validator.validate_table(fk.parent_table)
            validator.validate_column(fk.parent_column)
        for alias, source in config.aliases.items():
            validator.validate_qualified(source)
        for condition in config.where:
            validator.validate_qualified(condition.field)
        if config.order is not None:
            validator.validate_qualified(config.order.column)
        for group in (config.searchable, config.filterable, config.image_fields):
            for column in group:
                if column not in virtual:
                    validator.validate_column(column)
        for formula in config.formulas:
            if not validator.is_valid("column", formula.name):
                raise InvalidIdentifier("column", formula.name, "illegal formula name")
            for column in formula.field_lists:
                validator.validate_column(column)
    except InvalidIdentifier as e:
        raise ConfigurationError(f"Table config '{config.name}' is invalid: {e}") from e
