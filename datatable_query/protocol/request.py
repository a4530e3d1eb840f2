"""Inbound DataTables protocol parsing for query-string and body transports."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import parse_qsl
import logging

from ..config.config import EngineConfig
from ..config.table_config import OrderSpec, PSEUDO_COLUMNS, normalize_direction
from ..query.filter_builder import RESERVED_KEYS, is_empty_value
from ..security.audit import ClientInfo

logger = logging.getLogger(__name__)

TRANSPORT_QUERY = "query"
TRANSPORT_BODY = "body"
DEFAULT_SOURCE = "dynamics"
UNLIMITED_LENGTH = -1

_BRACKET_KEY = re.compile(r"^([^\[\]]+)((?:\[[^\[\]]*\])+)$")
_BRACKET_PART = re.compile(r"\[([^\[\]]*)\]")


@dataclass(frozen=True)
class ColumnMeta:
    """One entry of the DataTables ``columns[]`` list."""

    data: str
    name: str = ""
    searchable: bool = True
    orderable: bool = True
    search: str = ""


@dataclass(frozen=True)
class RoutingDescriptor:
    """``difta``: which logical table configuration to load."""

    name: str = ""
    source: str = DEFAULT_SOURCE


@dataclass(frozen=True)
class RequestContext:
    """Everything the engine needs from one request. Immutable."""

    table: str
    transport: str = TRANSPORT_QUERY
    draw: int = 0
    start: int = 0
    length: Optional[int] = 10
    search: str = ""
    order: Optional[OrderSpec] = None
    columns: Tuple[ColumnMeta, ...] = ()
    filters: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    routing: RoutingDescriptor = field(default_factory=RoutingDescriptor)
    connection: Optional[str] = None
    bundle: Optional[Mapping[str, Any]] = None
    client: ClientInfo = field(default_factory=ClientInfo)

    @property
    def has_filters(self) -> bool:
        return len(self.filters) > 0

    def column_searches(self) -> Dict[str, str]:
        """Per-column search values of searchable columns."""
        searches: Dict[str, str] = {}
        for column in self.columns:
            if column.searchable and column.search and column.data:
                searches[column.data] = column.search
        return searches


def unflatten_params(pairs: Sequence[Tuple[str, Any]]) -> Dict[str, Any]:
    """Turn ``order[0][column]=2`` style pairs into nested structures.

    Keys ending in ``[]`` collect every value into a list; numeric-keyed
    dicts become lists. A repeated plain key keeps its last value.
    """
    root: Dict[str, Any] = {}
    for key, value in pairs:
        match = _BRACKET_KEY.match(key)
        if match is None:
            root[key] = value
            continue
        path = [match.group(1)] + _BRACKET_PART.findall(match.group(2))
        _assign(root, path, value)
    return _listify(root)


def _assign(node: Dict[str, Any], path: List[str], value: Any) -> None:
    index = 0
    while index < len(path) - 1:
        part = path[index]
        following = path[index + 1]
        child = node.get(part)
        if following == "":
            if not isinstance(child, list):
                child = []
                node[part] = child
            child.append(value)
            return
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        node = child
        index += 1
    node[path[-1]] = value


def _listify(node: Any) -> Any:
    if isinstance(node, list):
        items = []
        for item in node:
            items.append(_listify(item))
        return items
    if not isinstance(node, dict):
        return node
    converted = {}
    for key, value in node.items():
        converted[key] = _listify(value)
    if converted and all(isinstance(key, str) and key.isdigit() for key in converted):
        ordered = []
        for key in sorted(converted, key=int):
            ordered.append(converted[key])
        return ordered
    return converted


def normalize_order(order: Any, columns: Sequence[ColumnMeta]) -> Optional[OrderSpec]:
    """Map the first DataTables order entry to ``{column, direction}``.

    Returns None when the index cannot be mapped or the resolved column is
    empty, whitespace or a pseudo column.
    """
    if isinstance(order, Mapping):
        order = [order]
    if not order or not isinstance(order, (list, tuple)):
        return None
    first = order[0]
    if not isinstance(first, Mapping):
        return None
    index = _to_int(first.get("column"), None)
    if index is None or index < 0 or index >= len(columns):
        logger.debug(f"Order column index {first.get('column')!r} out of range")
        return None
    name = columns[index].data
    if name is None or str(name).strip() == "":
        logger.info(f"Ignoring order on empty column name at index {index}")
        return None
    name = str(name).strip()
    if name in PSEUDO_COLUMNS:
        logger.info(f"Ignoring order on pseudo column '{name}'")
        return None
    return OrderSpec(column=name, direction=normalize_direction(first.get("dir")))


def _to_int(value: Any, default: Optional[int]) -> Optional[int]:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _to_bool(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _decode_json(value: Any) -> Any:
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("{") or text.startswith("["):
            try:
                return json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Discarding malformed JSON request field")
                return None
    return value


class RequestAdapter:
    """Parses raw request parameters into a ``RequestContext``."""

    def __init__(self, engine: Optional[EngineConfig] = None):
        if engine is None:
            engine = EngineConfig()
        self.engine = engine

    def parse_query_string(
        self,
        query_string: str,
        table: Optional[str] = None,
        client: Optional[ClientInfo] = None,
        filterable: Optional[Sequence[str]] = None,
        strict: Optional[bool] = None,
    ) -> RequestContext:
        """Parse a raw URL query string (already percent-decoded by parse_qsl)."""
        pairs = parse_qsl(query_string, keep_blank_values=True)
        return self.parse(
            unflatten_params(pairs),
            transport=TRANSPORT_QUERY,
            table=table,
            client=client,
            filterable=filterable,
            strict=strict,
        )

    def parse(
        self,
        params: Mapping[str, Any],
        transport: str = TRANSPORT_QUERY,
        table: Optional[str] = None,
        client: Optional[ClientInfo] = None,
        filterable: Optional[Sequence[str]] = None,
        strict: Optional[bool] = None,
    ) -> RequestContext:
        """Build the immutable request context.

        Args:
            params: Nested or flat (``order[0][column]``) parameters
            transport: ``"query"`` or ``"body"``
            table: Logical table when the caller already knows it (URL route)
            client: Caller details for auditing and ``ip_address`` rendering
            filterable: Filter names kept in strict mode
            strict: Trim query-string parameters outside ``filterable``

        Returns:
            RequestContext
        """
        if transport not in (TRANSPORT_QUERY, TRANSPORT_BODY):
            raise ValueError(f"Unknown transport: {transport}")
        params = self._normalize(params)
        routing = self._routing(params.get("difta"))
        logical_table = table or routing.name
        columns = self._columns(params.get("columns"))
        length = self._length(params.get("length"))
        if strict is None:
            strict = self.engine.strict_query_params
        filters = self._filters(params, transport, strict, filterable)

        return RequestContext(
            table=logical_table or "",
            transport=transport,
            draw=max(0, _to_int(params.get("draw"), 0)),
            start=max(0, _to_int(params.get("start"), 0)),
            length=length,
            search=self._search(params.get("search")),
            order=normalize_order(params.get("order"), columns),
            columns=columns,
            filters=MappingProxyType(filters),
            routing=routing,
            connection=params.get("grabCoDIYC") or None,
            bundle=self._bundle(params.get("datatables_data"), logical_table),
            client=client if client is not None else ClientInfo(),
        )

    def _normalize(self, params: Mapping[str, Any]) -> Dict[str, Any]:
        flat_keys = []
        for key in params:
            if "[" in key:
                flat_keys.append(key)
        if not flat_keys:
            return dict(params)
        pairs = []
        for key, value in params.items():
            pairs.append((key, value))
        return unflatten_params(pairs)

    def _routing(self, value: Any) -> RoutingDescriptor:
        value = _decode_json(value)
        if not isinstance(value, Mapping):
            return RoutingDescriptor()
        name = str(value.get("name") or "").strip()
        source = str(value.get("source") or DEFAULT_SOURCE)
        return RoutingDescriptor(name=name, source=source)

    def _columns(self, value: Any) -> Tuple[ColumnMeta, ...]:
        value = _decode_json(value)
        if isinstance(value, Mapping):
            value = list(value.values())
        if not isinstance(value, list):
            return ()
        columns = []
        for entry in value:
            if isinstance(entry, str):
                columns.append(ColumnMeta(data=entry))
                continue
            if not isinstance(entry, Mapping):
                columns.append(ColumnMeta(data=""))
                continue
            search = entry.get("search")
            search_value = ""
            if isinstance(search, Mapping):
                search_value = str(search.get("value") or "")
            columns.append(
                ColumnMeta(
                    data=str(entry.get("data") or ""),
                    name=str(entry.get("name") or ""),
                    searchable=_to_bool(entry.get("searchable"), True),
                    orderable=_to_bool(entry.get("orderable"), True),
                    search=search_value,
                )
            )
        return tuple(columns)

    def _length(self, value: Any) -> Optional[int]:
        length = _to_int(value, self.engine.default_length)
        if length == UNLIMITED_LENGTH:
            return None
        if length is None or length < 0:
            return self.engine.default_length
        return length

    def _search(self, value: Any) -> str:
        if isinstance(value, Mapping):
            value = value.get("value")
        if value is None:
            return ""
        return str(value).strip()

    def _filters(
        self,
        params: Mapping[str, Any],
        transport: str,
        strict: bool,
        filterable: Optional[Sequence[str]],
    ) -> Dict[str, Any]:
        filters: Dict[str, Any] = {}
        for source in (params.get("filters"), params.get("_diyF")):
            source = _decode_json(source)
            if isinstance(source, Mapping):
                for key, value in source.items():
                    self._put_filter(filters, key, value)
        for key, value in params.items():
            if key in RESERVED_KEYS:
                continue
            if transport == TRANSPORT_QUERY and strict and filterable is not None:
                if key not in filterable:
                    logger.debug(f"Strict mode dropped query parameter '{key}'")
                    continue
            self._put_filter(filters, key, value)
        return filters

    def _put_filter(self, filters: Dict[str, Any], key: str, value: Any) -> None:
        if is_empty_value(value):
            return
        if isinstance(value, list):
            value = tuple(value)
        filters[str(key)] = value

    def _bundle(self, value: Any, table: Optional[str]) -> Optional[Mapping[str, Any]]:
        value = _decode_json(value)
        if not isinstance(value, Mapping) or not value:
            return None
        if table and isinstance(value.get(table), Mapping):
            return dict(value[table])
        return dict(value)
