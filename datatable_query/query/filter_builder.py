"""Parameterized WHERE fragments from free-form client filters.

This is the ad-hoc query path used for cascading filter dropdowns; it builds
SQL text directly from sqlglot nodes rather than through ``QueryHandle``.
Identifiers are validated, values only ever become ``?`` bindings.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
import logging

from sqlglot import exp

from ..config.table_config import ForeignKey
from ..datasources import DRIVER_ERRORS
from ..datasources.base import DataSource
from ..errors import ExecutionFailure, InvalidIdentifier
from ..security.validator import IdentifierValidator, TABLE, COLUMN
from ..utils.logging import fingerprint_sql
from .handle import placeholder, quoted_column, quoted_table

logger = logging.getLogger(__name__)

RESERVED_KEYS = frozenset(
    [
        "renderDataTables",
        "draw",
        "columns",
        "order",
        "start",
        "length",
        "search",
        "difta",
        "_token",
        "_",
        "filters",
        "_fita",
        "_forKeys",
        "_n",
        "grabCoDIYC",
        "datatables_data",
        "_diyF",
    ]
)

NULL_CHAIN = "#null"


@dataclass(frozen=True)
class FilterQuery:
    """SQL text with ``?`` placeholders and the values bound to them."""

    sql: str
    bindings: List[Any] = field(default_factory=list)


def is_empty_value(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, (list, tuple)) and len(flatten_values(value)) == 0:
        return True
    return False


def flatten_values(value: Any) -> List[Any]:
    """Flatten nested lists, dropping empty members."""
    flat: List[Any] = []
    if isinstance(value, Mapping):
        value = list(value.values())
    if not isinstance(value, (list, tuple)):
        if not is_empty_value(value):
            flat.append(value)
        return flat
    for item in value:
        for inner in flatten_values(item):
            flat.append(inner)
    return flat


def strip_reserved(params: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop protocol keys and empty values from a request parameter map."""
    remaining: Dict[str, Any] = {}
    for key, value in params.items():
        if key in RESERVED_KEYS:
            continue
        if is_empty_value(value):
            continue
        remaining[key] = value
    return remaining


def decode_previous_chain(chain: Optional[str]) -> List[Tuple[str, str]]:
    """Decode ``"f1|f2#v1|v2"`` into ``[(f1, v1), (f2, v2)]``.

    ``"#null"``, an empty string or None yield no pairs. Extra fields
    without a value are ignored.
    """
    if not chain or chain == NULL_CHAIN:
        return []
    if "#" not in chain:
        return []
    fields_part, values_part = chain.split("#", 1)
    if values_part == "null":
        return []
    names = fields_part.split("|")
    values = values_part.split("|")
    pairs: List[Tuple[str, str]] = []
    index = 0
    while index < len(names) and index < len(values):
        name = names[index].strip()
        if name:
            pairs.append((name, values[index]))
        index += 1
    return pairs


@dataclass(frozen=True)
class FilterOptionsRequest:
    """Cascading dropdown request decoded from ``_fita`` and ``_forKeys``."""

    table: str
    target: str
    previous: Tuple[Tuple[str, str], ...] = ()
    foreign_keys: Tuple[ForeignKey, ...] = ()

    @classmethod
    def parse(cls, fita: str, for_keys: Any = None) -> "FilterOptionsRequest":
        """Parse ``"<token>::<table>::<target>::<previous chain>"``."""
        parts = str(fita or "").split("::")
        if len(parts) < 3:
            raise InvalidIdentifier(TABLE, str(fita), "malformed filter descriptor")
        table = parts[1].strip()
        target = parts[2].strip()
        chain = parts[3] if len(parts) > 3 else None
        return cls(
            table=table,
            target=target,
            previous=tuple(decode_previous_chain(chain)),
            foreign_keys=tuple(_parse_for_keys(for_keys)),
        )


def _parse_for_keys(for_keys: Any) -> List[ForeignKey]:
    if not for_keys:
        return []
    if isinstance(for_keys, str):
        try:
            for_keys = json.loads(for_keys)
        except json.JSONDecodeError as e:
            raise InvalidIdentifier(TABLE, for_keys[:64], "malformed join map") from e
    if not isinstance(for_keys, Mapping):
        raise InvalidIdentifier(TABLE, str(for_keys)[:64], "join map must be an object")
    keys = []
    for child, parent in for_keys.items():
        keys.append(ForeignKey.parse(child, parent))
    return keys


class ParameterizedFilterBuilder:
    """Builds ``field = ?`` / ``field IN (?, ...)`` fragments.

    Args:
        validator: Validates every field and table name
        dialect: sqlglot dialect the SQL text is rendered in
    """

    def __init__(self, validator: IdentifierValidator, dialect: str = "duckdb"):
        self.validator = validator
        self.dialect = dialect

    def build(
        self,
        filters: Mapping[str, Any],
        join_hints: Optional[Mapping[str, str]] = None,
        previous: Optional[str] = None,
    ) -> FilterQuery:
        """Build the AND-joined WHERE fragment (without the WHERE keyword).

        Args:
            filters: field -> value or list of values
            join_hints: field -> table used to qualify the field
            previous: Previous-selection chain ``"f1|f2#v1|v2"``

        Returns:
            FilterQuery; ``sql`` is empty when nothing applies
        """
        pairs = decode_previous_chain(previous)
        conditions, bindings = self._conditions(filters, join_hints, pairs)
        if not conditions:
            return FilterQuery(sql="", bindings=[])
        sql = exp.and_(*conditions).sql(dialect=self.dialect)
        return FilterQuery(sql=sql, bindings=bindings)

    def _conditions(
        self,
        filters: Mapping[str, Any],
        join_hints: Optional[Mapping[str, str]],
        previous: Sequence[Tuple[str, Any]],
    ) -> Tuple[List[exp.Expression], List[Any]]:
        conditions: List[exp.Expression] = []
        bindings: List[Any] = []
        for name, value in filters.items():
            if is_empty_value(value):
                continue
            column = self._column(name, join_hints)
            if isinstance(value, (list, tuple, Mapping)):
                values = flatten_values(value)
                slots = []
                for item in values:
                    slots.append(placeholder())
                    bindings.append(item)
                conditions.append(exp.In(this=column, expressions=slots))
            else:
                conditions.append(exp.EQ(this=column, expression=placeholder()))
                bindings.append(value)
        for name, value in previous:
            conditions.append(exp.EQ(this=self._column(name, join_hints), expression=placeholder()))
            bindings.append(value)
        return conditions, bindings

    def _column(self, name: str, join_hints: Optional[Mapping[str, str]]) -> exp.Column:
        table, column = self.validator.validate_qualified(name)
        if table is None and join_hints and column in join_hints:
            table = self.validator.validate(TABLE, join_hints[column])
        return quoted_column(column, table)

    def build_options_query(
        self,
        request: FilterOptionsRequest,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> FilterQuery:
        """``SELECT DISTINCT target FROM table [LEFT JOIN ...] WHERE ... ORDER BY target``."""
        table = self.validator.validate(TABLE, request.table)
        target_table, target = self.validator.validate_qualified(request.target)
        if target_table is None:
            target_table = table

        hints: Dict[str, str] = {}
        if request.foreign_keys:
            for name in filters or {}:
                if "." not in name:
                    hints[name] = table
            for name, _ in request.previous:
                if "." not in name:
                    hints[name] = table

        conditions, bindings = self._conditions(filters or {}, hints, request.previous)

        select = exp.Select()
        select.set("distinct", exp.Distinct())
        select.set("expressions", [quoted_column(target, target_table)])
        select.from_(quoted_table(table), copy=False)
        for join in self._joins(table, request.foreign_keys):
            select.append("joins", join)
        if conditions:
            select.set("where", exp.Where(this=exp.and_(*conditions)))
        select.set("order", exp.Order(expressions=[exp.Ordered(this=quoted_column(target, target_table))]))
        return FilterQuery(sql=select.sql(dialect=self.dialect), bindings=bindings)

    def _joins(self, table: str, foreign_keys: Sequence[ForeignKey]) -> List[exp.Join]:
        joins: List[exp.Join] = []
        joined = [table]
        for fk in foreign_keys:
            for name in (fk.child_table, fk.parent_table):
                self.validator.validate(TABLE, name)
            self.validator.validate(COLUMN, fk.child_column)
            self.validator.validate(COLUMN, fk.parent_column)
            other = fk.parent_table if fk.parent_table not in joined else fk.child_table
            if other in joined:
                continue
            joined.append(other)
            condition = exp.EQ(
                this=quoted_column(fk.child_column, fk.child_table),
                expression=quoted_column(fk.parent_column, fk.parent_table),
            )
            joins.append(exp.Join(this=quoted_table(other), on=condition, side="LEFT"))
        return joins

    def execute(self, datasource: DataSource, query: FilterQuery) -> List[Any]:
        """Run an options query and return the first column of every row.

        Raises:
            ExecutionFailure: Generic failure; details are only logged
        """
        try:
            rows = datasource.fetch_rows(query.sql, query.bindings)
        except DRIVER_ERRORS as e:
            logger.error(
                f"Filter query failed on {datasource.name}: {fingerprint_sql(query.sql)} "
                f"({type(e).__name__}, {len(query.bindings)} bindings)"
            )
            raise ExecutionFailure() from e
        values: List[Any] = []
        for row in rows:
            for value in row.values():
                values.append(value)
                break
        return values

