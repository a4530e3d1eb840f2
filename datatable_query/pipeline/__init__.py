"""Query pipeline: joins, conditions, filters, search, ordering, paging."""

from .plan import PipelineContext, QueryPlan, StageResult
from .pipeline import QueryPipeline, Stage
from .stages import (
    AMBIGUOUS_COLUMNS,
    DEFAULT_STAGES,
    JoinStage,
    StaticWhereStage,
    FilterStage,
    SearchStage,
    OrderingStage,
    PaginationStage,
    count_rows,
    virtual_columns,
)

__all__ = [
    "PipelineContext",
    "QueryPlan",
    "StageResult",
    "QueryPipeline",
    "Stage",
    "AMBIGUOUS_COLUMNS",
    "DEFAULT_STAGES",
    "JoinStage",
    "StaticWhereStage",
    "FilterStage",
    "SearchStage",
    "OrderingStage",
    "PaginationStage",
    "count_rows",
    "virtual_columns",
]
