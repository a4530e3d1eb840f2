"""Resolve which data source answers a request, and the effective order.

Strategies are tried in a fixed priority order; each one either returns a
``ResolvedSource`` or None to pass to the next.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Callable, Iterable, List, Optional, Protocol
import logging

import sqlglot
from sqlglot import exp
from sqlglot import errors as sqlglot_errors

from ..catalog import Catalog
from ..config.config import EngineConfig
from ..config.table_config import (
    DESC,
    PSEUDO_COLUMNS,
    SOURCE_MODEL,
    SOURCE_SQL,
    OrderSpec,
    TableConfig,
    TableConfigBuilder,
)
from ..datasources import DRIVER_ERRORS
from ..datasources.base import DataSource
from ..errors import ConfigurationError, NoSourceResolved
from ..query.handle import QueryHandle
from ..security.validator import IdentifierValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedSource:
    """Output of the resolver: where to query and in which order."""

    handle: QueryHandle
    physical_table: str
    order: Optional[OrderSpec]
    config: TableConfig
    datasource: DataSource
    strategy: str


@dataclass
class ResolutionContext:
    """Inputs shared by every strategy for one resolution."""

    table: Optional[str]
    config: Optional[TableConfig]
    catalog: Catalog
    validator: IdentifierValidator
    engine: EngineConfig
    connection: Optional[str] = None
    bound_configs: Callable[[], Iterable[TableConfig]] = field(default=lambda: ())
    attempts: List[str] = field(default_factory=list)


class SourceStrategy(Protocol):
    """One way of finding a source for a logical table."""

    name: str

    def resolve(self, context: ResolutionContext) -> Optional[ResolvedSource]:
        ...


def pick_datasource(context: ResolutionContext, config: Optional[TableConfig]) -> DataSource:
    """Connection selector from the request, then the table's, then the default.

    Raises:
        NoSourceResolved: A named connection does not exist
    """
    name = context.connection
    if not name and config is not None:
        name = config.connection
    datasource = context.catalog.get_datasource(name)
    if datasource is None:
        context.attempts.append(f"connection '{name}' not registered")
        raise NoSourceResolved(context.table, list(context.attempts))
    return datasource


def extract_sql_table(sql: str, dialect: str) -> Optional[str]:
    """First table named after FROM in ``sql``."""
    try:
        tree = sqlglot.parse_one(sql, dialect=dialect)
    except sqlglot_errors.ParseError as e:
        logger.error(f"Could not parse virtual source SQL: {e}")
        return None
    from_clause = tree.find(exp.From)
    if from_clause is not None:
        table = from_clause.find(exp.Table)
        if table is not None and table.name:
            return table.name
    table = tree.find(exp.Table)
    if table is not None and table.name:
        return table.name
    return None


class ModelSourceStrategy:
    """A table bound to a physical source (``source: model``)."""

    name = "model"

    def resolve(self, context: ResolutionContext) -> Optional[ResolvedSource]:
        config = context.config
        if config is None or config.source_type != SOURCE_MODEL:
            return None
        datasource = pick_datasource(context, config)
        columns = context.catalog.physical_columns(config.table, datasource.name)
        handle = QueryHandle(
            config.table,
            context.validator,
            dialect=datasource.dialect,
            columns=columns,
        )
        return ResolvedSource(handle, config.table, None, config, datasource, self.name)


class SqlSourceStrategy:
    """A raw-SQL virtual source wrapped as a subquery table."""

    name = "sql"

    def resolve(self, context: ResolutionContext) -> Optional[ResolvedSource]:
        config = context.config
        if config is None or config.source_type != SOURCE_SQL:
            return None
        datasource = pick_datasource(context, config)
        virtual_name = extract_sql_table(config.sql, datasource.dialect)
        if virtual_name is None:
            context.attempts.append("sql: no table token found")
            return None
        columns = list(config.columns)
        try:
            schema = datasource.get_query_schema(config.sql)
            columns = list(schema.names)
        except DRIVER_ERRORS as e:
            logger.warning(f"Could not describe virtual source {virtual_name}: {type(e).__name__}")
        handle = QueryHandle(
            virtual_name,
            context.validator,
            dialect=datasource.dialect,
            subquery_sql=config.sql,
            columns=columns,
        )
        return ResolvedSource(handle, virtual_name, None, config, datasource, self.name)


class FirstAvailableSourceStrategy:
    """No table name given: fall back to the first bound table."""

    name = "first_available"

    def resolve(self, context: ResolutionContext) -> Optional[ResolvedSource]:
        if context.table:
            return None
        for config in context.bound_configs():
            if config.source_type != SOURCE_MODEL:
                continue
            logger.warning(
                f"Request named no table; falling back to first bound table '{config.name}'"
            )
            fallback = ResolutionContext(
                table=config.name,
                config=config,
                catalog=context.catalog,
                validator=context.validator,
                engine=context.engine,
                connection=context.connection,
                attempts=context.attempts,
            )
            resolved = ModelSourceStrategy().resolve(fallback)
            if resolved is not None:
                return ResolvedSource(
                    resolved.handle,
                    resolved.physical_table,
                    resolved.order,
                    resolved.config,
                    resolved.datasource,
                    self.name,
                )
        return None


class BareTableStrategy:
    """Table name known but not bound: ``SELECT * FROM <table>``.

    Without any configuration, display columns are the first N physical
    columns and the default order is the first column descending.
    """

    name = "bare_table"

    def resolve(self, context: ResolutionContext) -> Optional[ResolvedSource]:
        if not context.table:
            return None
        config = context.config
        table = config.table if config is not None else context.table
        context.validator.validate_table(table)
        datasource = pick_datasource(context, config)
        columns = context.catalog.physical_columns(table, datasource.name)
        if not columns:
            table_meta = context.catalog.refresh_table(datasource.name, table)
            if table_meta is not None:
                columns = table_meta.column_names()
        if not columns:
            context.attempts.append(f"bare_table: '{table}' not found on {datasource.name}")
            return None

        if config is None:
            logger.warning(
                f"No configuration for table '{table}'; using first "
                f"{context.engine.fallback_column_count} physical columns"
            )
            config = synthesize_config(
                context.table, table, columns, context.engine.fallback_column_count, context.validator
            )
        else:
            logger.warning(f"Table '{config.name}' has no source binding; querying it directly")

        handle = QueryHandle(table, context.validator, dialect=datasource.dialect, columns=columns)
        return ResolvedSource(handle, table, None, config, datasource, self.name)


def synthesize_config(
    name: str,
    table: str,
    physical_columns: List[str],
    count: int,
    validator: IdentifierValidator,
) -> TableConfig:
    """Minimal fallback configuration for an unconfigured table."""
    columns = list(physical_columns[:count])
    builder = TableConfigBuilder(name)
    layer = {"table": table, "columns": columns}
    if columns:
        layer["order"] = {"column": columns[0], "direction": DESC}
    builder.apply(layer)
    return replace(builder.build(validator), synthesized=True)


def resolve_order(
    config: Optional[TableConfig], requested: Optional[OrderSpec]
) -> Optional[OrderSpec]:
    """Client order, else configured order, else None. Idempotent."""
    if requested is not None and _usable(requested):
        return requested
    if config is not None and config.order is not None and _usable(config.order):
        return config.order
    return None


def _usable(order: OrderSpec) -> bool:
    column = order.column.strip() if order.column else ""
    return column != "" and column not in PSEUDO_COLUMNS


DEFAULT_STRATEGIES = (
    ModelSourceStrategy(),
    SqlSourceStrategy(),
    FirstAvailableSourceStrategy(),
    BareTableStrategy(),
)


class SourceResolver:
    """Runs the strategy chain and attaches the effective order."""

    def __init__(self, strategies: Optional[Iterable[SourceStrategy]] = None):
        if strategies is None:
            strategies = DEFAULT_STRATEGIES
        self.strategies = list(strategies)

    def resolve(
        self, context: ResolutionContext, requested_order: Optional[OrderSpec] = None
    ) -> ResolvedSource:
        """Return the first strategy's result, with the effective order.

        Raises:
            NoSourceResolved: Every strategy declined
            InvalidIdentifier: The table name itself is unsafe
        """
        for strategy in self.strategies:
            try:
                resolved = strategy.resolve(context)
            except ConfigurationError as e:
                context.attempts.append(f"{strategy.name}: {e}")
                logger.error(f"Strategy {strategy.name} failed for '{context.table}': {e}")
                continue
            if resolved is None:
                context.attempts.append(f"{strategy.name}: declined")
                continue
            order = resolve_order(resolved.config, requested_order)
            logger.debug(
                f"Resolved '{context.table}' via {strategy.name} "
                f"to {resolved.physical_table} (order={order})"
            )
            return ResolvedSource(
                resolved.handle,
                resolved.physical_table,
                order,
                resolved.config,
                resolved.datasource,
                resolved.strategy,
            )
        logger.error(f"No source resolved for '{context.table}': {context.attempts}")
        raise NoSourceResolved(context.table, list(context.attempts))
