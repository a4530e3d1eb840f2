"""Pipeline stages: joins, static where, filters, search, ordering, pagination.

Each stage takes the previous plan and returns a ``StageResult``. A stage
that fails in a recoverable way returns the best plan it has together with a
``StageError``; identifier and execution failures propagate as exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Set, Tuple
import logging

from sqlglot import errors as sqlglot_errors

from ..config.table_config import PSEUDO_COLUMNS, OrderSpec, TableConfig
from ..datasources import DRIVER_ERRORS
from ..datasources.base import DataSource
from ..errors import ConfigurationError, ExecutionFailure, PipelineAbort, StageError
from ..query.filter_builder import flatten_values
from ..query.handle import Projection, QueryHandle
from ..utils.logging import fingerprint_sql
from .plan import PipelineContext, QueryPlan, StageResult

logger = logging.getLogger(__name__)

# Column names that commonly exist in several joined tables.
AMBIGUOUS_COLUMNS = ("id", "active", "status", "created_at", "updated_at", "deleted_at", "name")

THUMB_SUFFIX = "_thumb"

RECOVERABLE_ERRORS = (ValueError, KeyError, ConfigurationError, sqlglot_errors.SqlglotError)


def virtual_columns(config: TableConfig) -> Set[str]:
    """Display entries with no physical backing."""
    names = set(PSEUDO_COLUMNS)
    names.update(config.formula_names())
    return names


def count_rows(handle: Optional[QueryHandle], datasource: DataSource) -> int:
    """Run ``SELECT COUNT(*)`` over a handle.

    Raises:
        PipelineAbort: There is no handle to count
        ExecutionFailure: The data source rejected the count
    """
    if handle is None:
        raise PipelineAbort("no query available to count")
    sql, params = handle.count_sql()
    try:
        value = datasource.fetch_scalar(sql, params)
    except DRIVER_ERRORS as e:
        logger.error(f"Count query failed on {datasource.name}: {fingerprint_sql(sql)}")
        raise ExecutionFailure() from e
    if value is None:
        return 0
    return int(value)


class _ColumnLocator:
    """Finds which table a display column physically lives in."""

    def __init__(self, handle: QueryHandle, config: TableConfig, joined: Dict[str, List[str]]):
        self.handle = handle
        self.config = config
        self.joined = joined

    def primary_has(self, column: str) -> bool:
        if not self.handle.columns:
            return True
        return self.handle.has_column(column)

    def owner(self, column: str) -> Optional[str]:
        if self.primary_has(column):
            return self.handle.table
        for table, columns in self.joined.items():
            for name in columns:
                if name.lower() == column.lower():
                    return table
        return None

    def physical(self, column: str) -> Optional[Tuple[Optional[str], str]]:
        """(table, column) for a display, alias or qualified name."""
        if column in self.config.aliases:
            table, name = self.config.aliases[column].split(".")
            return table, name
        if "." in column:
            table, name = column.split(".", 1)
            return table, name
        owner = self.owner(column)
        if owner is None:
            return None
        if owner == self.handle.table and not self.handle.joins:
            return None, column
        return owner, column

    def qualified(self, column: str) -> Optional[str]:
        located = self.physical(column)
        if located is None:
            return None
        table, name = located
        if table:
            return f"{table}.{name}"
        return name


def _joined_columns(plan: QueryPlan, ctx: PipelineContext) -> Dict[str, List[str]]:
    joined: Dict[str, List[str]] = {}
    for table in plan.handle.joined_tables():
        joined[table] = ctx.catalog.physical_columns(table, ctx.datasource.name)
    return joined


class JoinStage:
    """LEFT JOIN every table of the foreign-key map and build the projection."""

    name = "joins"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        config = ctx.config
        handle = plan.handle
        try:
            if config.has_joins:
                handle = self._apply_joins(handle, config)
            joined = {}
            for table in handle.joined_tables():
                joined[table] = ctx.catalog.physical_columns(table, ctx.datasource.name)
            projections = self._projections(handle, config, joined, ctx)
            handle = handle.select(projections)
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Join stage degraded for {config.name}: {e}")
            return StageResult.degraded(plan, StageError(self.name, str(e), e))
        return StageResult.success(plan.evolve(handle=handle, join_fields=projections))

    def _apply_joins(self, handle: QueryHandle, config: TableConfig) -> QueryHandle:
        joined = [handle.table]
        for fk in config.foreign_keys:
            if fk.parent_table not in joined:
                other = fk.parent_table
            elif fk.child_table not in joined:
                other = fk.child_table
            else:
                continue
            handle = handle.left_join(
                other, fk.child_table, fk.child_column, fk.parent_table, fk.parent_column
            )
            joined.append(other)
        return handle

    def _projections(
        self,
        handle: QueryHandle,
        config: TableConfig,
        joined: Dict[str, List[str]],
        ctx: PipelineContext,
    ) -> List[Projection]:
        virtual = virtual_columns(config)
        display = []
        for column in config.columns:
            if column not in virtual:
                display.append(column)

        if not display:
            return self._unlisted_projection(handle, joined, ctx)

        locator = _ColumnLocator(handle, config, joined)
        projections: List[Projection] = []
        used: Set[str] = set()

        def add(projection: Projection) -> None:
            if projection.output_name in used:
                return
            used.add(projection.output_name)
            projections.append(projection)

        for column in display:
            if column in config.aliases:
                table, name = config.aliases[column].split(".")
                if table != handle.table and table not in joined:
                    logger.info(f"Alias '{column}' refers to unjoined table '{table}'; skipped")
                    continue
                add(Projection(table, name, alias=column))
                continue
            owner = locator.owner(column)
            if owner is None:
                logger.info(f"Display column '{column}' not found on {handle.table}; skipped")
                continue
            alias = None
            if owner != handle.table and column == "id":
                alias = f"{owner}_id"
            add(Projection(owner, column, alias=alias))

        for column in self._support_columns(config):
            if handle.columns and handle.has_column(column):
                add(Projection(handle.table, column))
        return projections

    def _unlisted_projection(
        self, handle: QueryHandle, joined: Dict[str, List[str]], ctx: PipelineContext
    ) -> List[Projection]:
        projections = [Projection(handle.table, "*")]
        if not joined or not ctx.engine.permissive_joins:
            return projections
        used = set()
        for name in handle.columns:
            used.add(name.lower())
        for table, columns in joined.items():
            for column in columns:
                alias = None
                if column.lower() in used:
                    alias = f"{table}_{column}"
                used.add((alias or column).lower())
                projections.append(Projection(table, column, alias=alias))
        return projections

    def _support_columns(self, config: TableConfig) -> List[str]:
        """Columns needed for row identity and shaping but not displayed."""
        columns = ["id", config.actions.target_field]
        for image in config.image_fields:
            columns.append(image + THUMB_SUFFIX)
        for formula in config.formulas:
            for name in formula.field_lists:
                columns.append(name)
        return columns


class StaticWhereStage:
    """Apply configured conditions; a failing condition is dropped and logged."""

    name = "static_where"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        handle = plan.handle
        locator = _ColumnLocator(handle, ctx.config, _joined_columns(plan, ctx))
        failures: List[str] = []
        for condition in ctx.config.where:
            field = locator.qualified(condition.field) or condition.field
            try:
                handle = handle.where(field, condition.operator, condition.value)
            except RECOVERABLE_ERRORS as e:
                logger.warning(
                    f"Skipping where condition on '{condition.field}' for {ctx.config.name}: {e}"
                )
                failures.append(condition.field)
        updated = plan.evolve(handle=handle)
        if failures:
            error = StageError(self.name, f"conditions skipped: {', '.join(failures)}")
            return StageResult.degraded(updated, error)
        return StageResult.success(updated)


class FilterStage:
    """Apply request filters (last value wins) and compute ``limit_total``."""

    name = "filters"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        if plan.handle is None:
            raise PipelineAbort("filter stage received no query")
        filters = self.collect_filters(ctx.request.filters, ctx.config, plan.handle)
        locator = _ColumnLocator(plan.handle, ctx.config, _joined_columns(plan, ctx))

        handle = plan.handle
        applied: Dict[str, Any] = {}
        error = None
        try:
            for name, value in filters.items():
                field = locator.qualified(name) or name
                handle = handle.where(field, "=", value)
                applied[name] = value
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Filter application degraded for {ctx.config.name}: {e}")
            handle = plan.handle
            applied = {}
            error = StageError(self.name, str(e), e)

        if applied:
            limit_total = count_rows(handle, ctx.datasource)
        else:
            limit_total = count_rows(self._baseline(handle, ctx, locator), ctx.datasource)

        updated = plan.evolve(handle=handle, filters_applied=applied, limit_total=limit_total)
        if error is not None:
            return StageResult.degraded(updated, error)
        return StageResult.success(updated)

    def collect_filters(
        self, raw: Mapping[str, Any], config: TableConfig, handle: QueryHandle
    ) -> Dict[str, Any]:
        """Known filter names only; list values collapse to their last member."""
        allowed = self._allowed_names(config, handle)
        filters: Dict[str, Any] = {}
        for name, value in raw.items():
            if name not in allowed:
                logger.debug(f"Ignoring unknown filter '{name}' for {config.name}")
                continue
            if isinstance(value, (list, tuple, Mapping)):
                values = flatten_values(value)
                if not values:
                    continue
                value = values[-1]
            filters[name] = value
        return filters

    def _allowed_names(self, config: TableConfig, handle: QueryHandle) -> Set[str]:
        if config.filterable:
            return set(config.filterable)
        virtual = virtual_columns(config)
        allowed = set()
        for column in config.columns:
            if column not in virtual:
                allowed.add(column)
        for column in handle.columns:
            allowed.add(column)
        return allowed

    def _baseline(
        self, handle: QueryHandle, ctx: PipelineContext, locator: _ColumnLocator
    ) -> QueryHandle:
        virtual = virtual_columns(ctx.config)
        for column in ctx.config.columns:
            if column in virtual:
                continue
            field = locator.qualified(column)
            if field is None:
                continue
            return handle.where_not_null(field)
        return handle


class SearchStage:
    """Global and per-column LIKE search over searchable columns."""

    name = "search"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        request = ctx.request
        config = ctx.config
        column_searches = request.column_searches()
        if not request.search and not column_searches:
            return StageResult.success(plan.evolve(records_filtered=plan.limit_total))

        locator = _ColumnLocator(plan.handle, config, _joined_columns(plan, ctx))
        virtual = virtual_columns(config)
        searchable: Dict[str, str] = {}
        for column in config.searchable:
            if column in virtual:
                continue
            field = locator.qualified(column)
            if field is not None:
                searchable[column] = field

        handle = plan.handle
        try:
            if request.search and searchable:
                handle = handle.where_any_like(list(searchable.values()), _like_pattern(request.search))
            for column, value in column_searches.items():
                if column in searchable:
                    handle = handle.where_any_like([searchable[column]], _like_pattern(value))
        except RECOVERABLE_ERRORS as e:
            logger.warning(f"Search degraded for {config.name}: {e}")
            updated = plan.evolve(records_filtered=plan.limit_total)
            return StageResult.degraded(updated, StageError(self.name, str(e), e))

        if handle is plan.handle:
            return StageResult.success(plan.evolve(records_filtered=plan.limit_total))
        filtered = count_rows(handle, ctx.datasource)
        return StageResult.success(plan.evolve(handle=handle, records_filtered=filtered))


def _like_pattern(value: str) -> str:
    return f"%{value}%"


class OrderingStage:
    """Single ORDER BY key; qualifies ambiguous names, never orders on pseudo columns."""

    name = "ordering"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        order = plan.order
        if order is None:
            return StageResult.success(plan)
        config = ctx.config
        locator = _ColumnLocator(plan.handle, config, _joined_columns(plan, ctx))

        candidates = [order]
        if config.order is not None and config.order != order:
            candidates.append(config.order)
        error = None
        for candidate in candidates:
            column = self.substitute(candidate.column, config)
            if column is None:
                logger.info(f"No orderable column for {config.name}; ordering skipped")
                continue
            target = self._target(column, locator, plan)
            if target is None:
                logger.warning(f"Unknown order column '{column}' for {config.name}")
                error = StageError(self.name, f"unknown order column '{column}'")
                continue
            table, name = target
            handle = plan.handle.order_by(name, table, candidate.direction == "desc")
            resolved = plan.evolve(handle=handle, order=OrderSpec(column, candidate.direction))
            if error is not None:
                return StageResult.degraded(resolved, error)
            return StageResult.success(resolved)

        if error is not None:
            return StageResult.degraded(plan.evolve(order=None), error)
        return StageResult.success(plan.evolve(order=None))

    def substitute(self, column: str, config: TableConfig) -> Optional[str]:
        """Replace a pseudo or computed column with the next display column."""
        virtual = virtual_columns(config)
        column = (column or "").strip()
        if column and column not in virtual:
            return column
        display = list(config.columns)
        start = display.index(column) + 1 if column in display else 0
        candidates = display[start:] + display[:start]
        for candidate in candidates:
            if candidate not in virtual:
                return candidate
        return None

    def _target(
        self, column: str, locator: _ColumnLocator, plan: QueryPlan
    ) -> Optional[Tuple[Optional[str], str]]:
        handle = plan.handle
        if column in locator.config.aliases or "." in column:
            return locator.physical(column)
        if locator.primary_has(column):
            if column in AMBIGUOUS_COLUMNS or handle.joins:
                return handle.table, column
            return None, column
        for projection in plan.join_fields:
            if projection.output_name == column and projection.table and projection.column != "*":
                return projection.table, projection.column
        return locator.physical(column)


class PaginationStage:
    """OFFSET start LIMIT length; the unlimited sentinel is capped."""

    name = "pagination"

    def run(self, plan: QueryPlan, ctx: PipelineContext) -> StageResult:
        start = max(0, int(ctx.request.start or 0))
        length = ctx.request.length
        if length is None or length > ctx.engine.max_limit:
            length = ctx.engine.max_limit
        if length < 0:
            length = ctx.engine.default_length
        handle = plan.handle.paginate(start, length)
        return StageResult.success(plan.evolve(handle=handle, start=start, length=length))


DEFAULT_STAGES = (
    JoinStage(),
    StaticWhereStage(),
    FilterStage(),
    SearchStage(),
    OrderingStage(),
    PaginationStage(),
)
