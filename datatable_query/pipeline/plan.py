"""Builder state threaded through the pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional

from ..catalog import Catalog
from ..config.table_config import OrderSpec, TableConfig
from ..datasources.base import DataSource
from ..errors import StageError
from ..protocol.request import RequestContext
from ..query.handle import Projection, QueryHandle
from ..security.validator import IdentifierValidator
from ..config.config import EngineConfig


@dataclass(frozen=True)
class PipelineContext:
    """Read-only collaborators for one request."""

    request: RequestContext
    config: TableConfig
    datasource: DataSource
    validator: IdentifierValidator
    engine: EngineConfig
    catalog: Catalog


@dataclass
class QueryPlan:
    """Accumulated state; each stage produces a new plan via ``evolve``."""

    handle: QueryHandle
    join_fields: List[Projection] = field(default_factory=list)
    filters_applied: Dict[str, Any] = field(default_factory=dict)
    limit_total: Optional[int] = None
    records_filtered: Optional[int] = None
    start: int = 0
    length: Optional[int] = None
    order: Optional[OrderSpec] = None
    degradations: List[StageError] = field(default_factory=list)

    def evolve(self, **changes: Any) -> "QueryPlan":
        """Copy with ``changes`` applied; list and dict fields are copied too."""
        plan = replace(self, **changes)
        if "join_fields" not in changes:
            plan.join_fields = list(self.join_fields)
        if "filters_applied" not in changes:
            plan.filters_applied = dict(self.filters_applied)
        if "degradations" not in changes:
            plan.degradations = list(self.degradations)
        return plan

    @property
    def records_total(self) -> int:
        return self.limit_total or 0

    def output_names(self) -> List[str]:
        names = []
        for projection in self.join_fields:
            names.append(projection.output_name)
        return names


@dataclass(frozen=True)
class StageResult:
    """Either a new plan, or the last good plan plus the stage error."""

    plan: QueryPlan
    error: Optional[StageError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, plan: QueryPlan) -> "StageResult":
        return cls(plan=plan)

    @classmethod
    def degraded(cls, plan: QueryPlan, error: StageError) -> "StageResult":
        return cls(plan=plan, error=error)
