"""Source resolution strategies."""

from .source_resolver import (
    ResolvedSource,
    ResolutionContext,
    SourceResolver,
    SourceStrategy,
    ModelSourceStrategy,
    SqlSourceStrategy,
    FirstAvailableSourceStrategy,
    BareTableStrategy,
    extract_sql_table,
    resolve_order,
    synthesize_config,
)

__all__ = [
    "ResolvedSource",
    "ResolutionContext",
    "SourceResolver",
    "SourceStrategy",
    "ModelSourceStrategy",
    "SqlSourceStrategy",
    "FirstAvailableSourceStrategy",
    "BareTableStrategy",
    "extract_sql_table",
    "resolve_order",
    "synthesize_config",
]
