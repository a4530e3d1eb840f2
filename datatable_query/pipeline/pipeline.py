"""QueryPipeline runs the stages in a fixed order over one request."""

from __future__ import annotations

from typing import Iterable, List, Optional, Protocol
import logging

from .plan import PipelineContext, QueryPlan, StageResult
from .stages import DEFAULT_STAGES

logger = logging.getLogger(__name__)


class Stage(Protocol):
    """One step of the pipeline."""

    name: str

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        ...


class QueryPipeline:
    """Threads a ``QueryPlan`` through every stage.

    A degraded stage result keeps the plan the stage returned (the last good
    state) and records the error; exceptions raised by a stage propagate.
    """

    def __init__(self, stages: Optional[Iterable[Stage]] = None):
        if stages is None:
            stages = DEFAULT_STAGES
        self.stages: List[Stage] = list(stages)

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> QueryPlan:
        """Run every stage and return the final plan."""
        for stage in self.stages:
            result = stage.run(plan, ctx)
            plan = result.plan
            if not result.ok:
                logger.warning(f"Stage '{stage.name}' degraded for {ctx.config.name}: {result.error}")
                plan = plan.evolve(degradations=plan.degradations + [result.error])
            else:
                logger.debug(f"Stage '{stage.name}' done: {plan.handle!r}")
        return plan
