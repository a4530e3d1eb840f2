"""DataTables request parsing and response assembly."""

from .request import (
    ColumnMeta,
    RequestAdapter,
    RequestContext,
    RoutingDescriptor,
    normalize_order,
    unflatten_params,
    TRANSPORT_QUERY,
    TRANSPORT_BODY,
)
from .response import ResponseEnvelope

__all__ = [
    "ColumnMeta",
    "RequestAdapter",
    "RequestContext",
    "RoutingDescriptor",
    "normalize_order",
    "unflatten_params",
    "TRANSPORT_QUERY",
    "TRANSPORT_BODY",
    "ResponseEnvelope",
]
