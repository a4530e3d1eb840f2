"""Row shaping: escaping, labels, formats, formulas, images and actions."""

from .column_shaper import ColumnShaper
from .images import ImageRenderer, MISSING_FILE_MARKER
from .actions import render_actions, row_attributes
from .renderers import (
    FormulaEvaluator,
    format_number,
    flag_status_label,
    yes_no_label,
    request_status_label,
    insert_formula_columns,
)

__all__ = [
    "ColumnShaper",
    "ImageRenderer",
    "MISSING_FILE_MARKER",
    "render_actions",
    "row_attributes",
    "FormulaEvaluator",
    "format_number",
    "flag_status_label",
    "yes_no_label",
    "request_status_label",
    "insert_formula_columns",
]
