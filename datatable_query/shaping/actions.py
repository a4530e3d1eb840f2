"""Action button links and clickable-row attributes."""

from __future__ import annotations

from typing import Any, Dict
import base64
import html

from ..config.table_config import ActionSpec

ROW_LINK_CLASS = "row-list-url clickable"


def render_actions(row_id: Any, spec: ActionSpec) -> str:
    """``<a>`` per effective button, linking to ``<url>/<id>/<button>``."""
    if row_id is None:
        return ""
    base = spec.url.rstrip("/")
    links = []
    for button in spec.effective_buttons():
        href = html.escape(f"{base}/{row_id}/{button}", quote=True)
        name = html.escape(button, quote=True)
        links.append(
            f'<a href="{href}" class="btn btn-xs btn-{name}" title="{name}">{html.escape(button.title())}</a>'
        )
    return " ".join(links)


def row_attributes(row_id: Any) -> Dict[str, str]:
    """``DT_RowAttr`` for a clickable row; ``rlp`` is the base64 row id."""
    encoded = base64.b64encode(str(row_id).encode("utf-8")).decode("ascii")
    return {"class": ROW_LINK_CLASS, "rlp": encoded}
