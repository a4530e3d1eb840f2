"""Value renderers: status labels, number formatting and formula evaluation."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Mapping, Optional, Sequence
import logging

import sqlglot
from sqlglot import exp
from sqlglot import errors as sqlglot_errors

from ..config.table_config import FormatSpec, FormulaSpec

logger = logging.getLogger(__name__)

LOOPBACK_ADDRESS = "::1"

FLAG_STATUS_LABELS = {0: "Super Admin <sup>( root )</sup>", 1: "Administrator"}
FLAG_STATUS_DEFAULT = "End User <sup>( all )</sup>"
REQUEST_STATUS_LABELS = ("Pending", "Accept", "Blocked", "Ban")


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def flag_status_label(value: Any) -> str:
    return FLAG_STATUS_LABELS.get(_as_int(value), FLAG_STATUS_DEFAULT)


def yes_no_label(value: Any) -> str:
    if _as_int(value) == 1:
        return "Yes"
    return "No"


def request_status_label(value: Any) -> Any:
    index = _as_int(value)
    if index is None or index < 0 or index >= len(REQUEST_STATUS_LABELS):
        return value
    return REQUEST_STATUS_LABELS[index]


BUILTIN_STATUS_RENDERERS: Dict[str, Callable[[Any], Any]] = {
    "flag_status": flag_status_label,
    "active": yes_no_label,
    "update_status": yes_no_label,
    "request_status": request_status_label,
}


def map_label(labels: Mapping[Any, str], value: Any) -> Optional[str]:
    """Configured code -> label lookup; YAML keys may be ints or strings.

    Returns None when no label matches.
    """
    if value in labels:
        return labels[value]
    text = str(value)
    if text in labels:
        return labels[text]
    number = _as_int(value)
    if number is not None and number in labels:
        return labels[number]
    return None


def format_number(value: Any, spec: FormatSpec) -> Any:
    """Group thousands and fix decimals.

    Separator ``.`` gives ``1,234.50``; any other separator gives
    ``1.234,50``. Empty values render as None; non-numeric values pass
    through.
    """
    if value is None or value == "":
        return None
    try:
        number = Decimal(str(value))
    except InvalidOperation:
        return value
    decimals = 0
    if spec.format_type == "decimal" or spec.decimals > 0:
        decimals = max(0, spec.decimals)
    text = f"{number:,.{decimals}f}"
    if spec.separator == ".":
        return text
    return text.replace(",", "\0").replace(".", ",").replace("\0", ".")


class FormulaEvaluator:
    """Arithmetic over row fields: ``+ - * / %``, parentheses and literals.

    The expression is parsed once; field references outside
    ``field_lists`` are rejected at construction.
    """

    _BINARY = {
        exp.Add: lambda a, b: a + b,
        exp.Sub: lambda a, b: a - b,
        exp.Mul: lambda a, b: a * b,
        exp.Div: lambda a, b: a / b,
        exp.Mod: lambda a, b: a % b,
    }

    def __init__(self, formula: FormulaSpec):
        self.formula = formula
        try:
            self.tree = sqlglot.parse_one(formula.logic)
        except sqlglot_errors.ParseError as e:
            raise ValueError(f"Formula '{formula.name}' cannot be parsed: {e}") from e
        allowed = set(formula.field_lists)
        for column in self.tree.find_all(exp.Column):
            if allowed and column.name not in allowed:
                raise ValueError(f"Formula '{formula.name}' uses undeclared field '{column.name}'")

    def evaluate(self, row: Mapping[str, Any]) -> Optional[Decimal]:
        """Result for one row, or None when an input is missing or not numeric."""
        try:
            return self._eval(self.tree, row)
        except (InvalidOperation, ZeroDivisionError, TypeError):
            return None

    def _eval(self, node: exp.Expression, row: Mapping[str, Any]) -> Decimal:
        if isinstance(node, exp.Paren):
            return self._eval(node.this, row)
        if isinstance(node, exp.Neg):
            return -self._eval(node.this, row)
        if isinstance(node, exp.Literal):
            if not node.is_number:
                raise TypeError("non-numeric literal")
            return Decimal(node.this)
        if isinstance(node, exp.Column):
            value = row.get(node.name)
            if value is None or value == "":
                raise TypeError(f"missing value for {node.name}")
            return Decimal(str(value))
        for node_type, operation in self._BINARY.items():
            if isinstance(node, node_type):
                return operation(self._eval(node.this, row), self._eval(node.expression, row))
        raise TypeError(f"unsupported formula element {type(node).__name__}")


def insert_formula_columns(columns: Sequence[str], formulas: Sequence[FormulaSpec]) -> list:
    """Place formula names into the display list by their location."""
    display = list(columns)
    for formula in formulas:
        if formula.name in display:
            continue
        if formula.location == "first":
            display.insert(0, formula.name)
        elif formula.location == "after" and formula.after in display:
            display.insert(display.index(formula.after) + 1, formula.name)
        else:
            display.append(formula.name)
    return display
