"""Query construction: the handle builder and the ad-hoc filter builder."""

from .handle import QueryHandle, Projection, Predicate, JoinClause
from .filter_builder import (
    ParameterizedFilterBuilder,
    FilterQuery,
    FilterOptionsRequest,
    RESERVED_KEYS,
    strip_reserved,
    decode_previous_chain,
    flatten_values,
)

__all__ = [
    "QueryHandle",
    "Projection",
    "Predicate",
    "JoinClause",
    "ParameterizedFilterBuilder",
    "FilterQuery",
    "FilterOptionsRequest",
    "RESERVED_KEYS",
    "strip_reserved",
    "decode_previous_chain",
    "flatten_values",
]
