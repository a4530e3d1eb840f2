"""Per-row transformation of query results into output rows."""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set
import logging

from ..config.table_config import DEFAULT_RAW_COLUMNS, PSEUDO_COLUMNS, TableConfig
from ..security.audit import ClientInfo
from ..security.sanitizer import HtmlSanitizer
from .actions import render_actions, row_attributes
from .images import ImageRenderer
from .renderers import (
    BUILTIN_STATUS_RENDERERS,
    LOOPBACK_ADDRESS,
    FormulaEvaluator,
    format_number,
    insert_formula_columns,
    map_label,
)

logger = logging.getLogger(__name__)

ACTION_COLUMN = "action"
ROW_INDEX_COLUMNS = ("number_lists", "no", "DT_RowIndex")
IDENTITY_COLUMN = "id"
BLACKLIST = ("password",)


class ColumnShaper:
    """Shapes raw result rows for one table configuration.

    Every non-raw string is HTML-escaped through the sanitizer. Raw columns
    are the defaults (``action``, ``flag_status``), configured raw columns,
    image fields and matched status labels; ``action`` is always raw. A
    status value with no configured label is escaped like any other value.
    Only display columns, the reserved ``id`` and the ``DT_Row*`` keys
    appear in the output.
    """

    def __init__(
        self,
        config: TableConfig,
        sanitizer: Optional[HtmlSanitizer] = None,
        images: Optional[ImageRenderer] = None,
    ):
        self.config = config
        if sanitizer is None:
            sanitizer = HtmlSanitizer()
        self.sanitizer = sanitizer
        if images is None:
            images = ImageRenderer()
        self.images = images
        self.formats = {}
        for spec in config.formats:
            self.formats[spec.field] = spec
        self.formulas: Dict[str, FormulaEvaluator] = {}
        for formula in config.formulas:
            try:
                self.formulas[formula.name] = FormulaEvaluator(formula)
            except ValueError as e:
                logger.warning(f"Formula column skipped for {config.name}: {e}")
        self.raw_columns = self._raw_columns()

    def _raw_columns(self) -> Set[str]:
        raw = set(DEFAULT_RAW_COLUMNS)
        raw.update(self.config.raw_columns)
        raw.update(self.config.image_fields)
        raw.add(ACTION_COLUMN)
        return raw

    def display_columns(self, available: Optional[Sequence[str]] = None) -> List[str]:
        """Display list with formula columns placed and ``action`` appended."""
        columns = list(self.config.columns)
        if not columns and available is not None:
            columns = list(available)
        formulas = []
        for formula in self.config.formulas:
            if formula.name in self.formulas:
                formulas.append(formula)
        columns = insert_formula_columns(columns, formulas)
        if self.config.actions.enabled and ACTION_COLUMN not in columns:
            columns.append(ACTION_COLUMN)
        display = []
        for column in columns:
            if column in BLACKLIST or column in display:
                continue
            display.append(column)
        return display

    def shape(
        self,
        rows: Sequence[Mapping[str, Any]],
        client: Optional[ClientInfo] = None,
        start: int = 0,
    ) -> List[Dict[str, Any]]:
        """Shape every row; ``start`` offsets the running row number."""
        if client is None:
            client = ClientInfo()
        available = list(rows[0].keys()) if rows else None
        display = self.display_columns(available)
        shaped = []
        for position, row in enumerate(rows):
            shaped.append(self.shape_row(row, display, client, start + position + 1))
        return shaped

    def shape_row(
        self,
        row: Mapping[str, Any],
        display: Sequence[str],
        client: ClientInfo,
        number: int,
    ) -> Dict[str, Any]:
        output: Dict[str, Any] = {}
        row_id = row.get(IDENTITY_COLUMN)
        if row_id is not None:
            output[IDENTITY_COLUMN] = row_id

        for column in display:
            if column == ACTION_COLUMN:
                output[column] = self._action(row)
            elif column in ROW_INDEX_COLUMNS:
                output[column] = number
            elif column in self.formulas:
                output[column] = self._formula(column, row)
            elif column in PSEUDO_COLUMNS:
                output[column] = ""
            else:
                output[column] = self._value(column, row, client)

        if self.config.index_column:
            output["DT_RowIndex"] = number
        if self.config.clickable and row_id is not None:
            output["DT_RowAttr"] = row_attributes(row_id)
        return output

    def _action(self, row: Mapping[str, Any]) -> str:
        if not self.config.actions.enabled:
            return ""
        return render_actions(row.get(self.config.actions.target_field), self.config.actions)

    def _formula(self, column: str, row: Mapping[str, Any]) -> Any:
        result = self.formulas[column].evaluate(row)
        if result is None:
            return None
        spec = self.formats.get(column)
        if spec is not None:
            return format_number(result, spec)
        return _number(result)

    def _value(self, column: str, row: Mapping[str, Any], client: ClientInfo) -> Any:
        value = row.get(column)
        value = self._relation(column, value, row)

        if column == "ip_address" and value == LOOPBACK_ADDRESS and client.ip:
            value = client.ip

        if column in self.config.status_labels:
            label = map_label(self.config.status_labels[column], value)
            if label is not None:
                return label
        elif column in BUILTIN_STATUS_RENDERERS:
            value = BUILTIN_STATUS_RENDERERS[column](value)

        if column in self.config.image_fields:
            return self.images.render(column, value, row, self.config.label_for(column))

        if column in self.formats:
            value = format_number(value, self.formats[column])

        value = _plain(value)
        if isinstance(value, str) and column not in self.raw_columns:
            value = self.sanitizer.escape(value, column, client)
        return value

    def _relation(self, column: str, value: Any, row: Mapping[str, Any]) -> Any:
        """Substitute from a ``row id -> value`` map, only for unjoined tables."""
        mapping = self.config.relations.get(column)
        if not mapping or self.config.has_joins:
            return value
        row_id = row.get(IDENTITY_COLUMN)
        try:
            key = int(row_id)
        except (TypeError, ValueError):
            return value
        if key in mapping:
            return mapping[key]
        if str(key) in mapping:
            return mapping[str(key)]
        return value


def _number(value: Decimal) -> Any:
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _plain(value: Any) -> Any:
    """JSON-friendly form of a driver value."""
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)
