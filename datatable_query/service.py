"""DatatableService: request in, paged response envelope out."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
import logging

from .catalog import Catalog
from .config.config import Config, SecurityConfig
from .config.table_config import TableConfig
from .datasources import DRIVER_ERRORS
from .datasources.base import DataSource
from .errors import ConfigurationError, ExecutionFailure, NoSourceResolved
from .pipeline import PipelineContext, QueryPipeline, QueryPlan
from .protocol.request import TRANSPORT_BODY, TRANSPORT_QUERY, RequestAdapter, RequestContext
from .protocol.response import ResponseEnvelope
from .query.filter_builder import FilterOptionsRequest, ParameterizedFilterBuilder
from .resolver import ResolutionContext, SourceResolver
from .security.audit import ClientInfo, LoggingAuditSink, SecurityAuditSink
from .security.sanitizer import HtmlSanitizer, SanitizationCache
from .security.validator import IdentifierValidator
from .shaping import ColumnShaper, ImageRenderer
from .utils.logging import fingerprint_sql, get_contextual_logger

logger = logging.getLogger(__name__)


def build_validator(
    security: SecurityConfig,
    catalog: Optional[Catalog] = None,
    audit_sink: Optional[SecurityAuditSink] = None,
) -> IdentifierValidator:
    """Validator from the security settings, optionally widened by the catalog."""
    validator = IdentifierValidator(
        allowed_tables=security.allowed_tables,
        allowed_columns=security.allowed_fields,
        audit_sink=audit_sink,
        max_length=security.max_identifier_length,
    )
    if catalog is not None and security.allow_catalog_identifiers:
        validator.allow(catalog.table_names(), catalog.column_names())
    return validator


class DatatableService:
    """Runs parse, resolve, pipeline, execute and shape for one request.

    Args:
        config: Engine, security and table configuration
        catalog: Registered data sources with loaded metadata
        audit_sink: Receives security events; defaults to the logging sink
        sanitizer: HTML escaper for shaped output
        resolver: Source resolver (strategy chain)
        pipeline: Query pipeline (stage list)
        images: Image renderer for image fields
    """

    def __init__(
        self,
        config: Config,
        catalog: Catalog,
        audit_sink: Optional[SecurityAuditSink] = None,
        sanitizer: Optional[HtmlSanitizer] = None,
        resolver: Optional[SourceResolver] = None,
        pipeline: Optional[QueryPipeline] = None,
        images: Optional[ImageRenderer] = None,
    ):
        self.config = config
        self.catalog = catalog
        if audit_sink is None:
            audit_sink = LoggingAuditSink()
        self.audit_sink = audit_sink
        self.validator = build_validator(config.security, catalog, audit_sink)
        if sanitizer is None:
            cache = SanitizationCache(config.engine.sanitizer_cache_size)
            sanitizer = HtmlSanitizer(cache, audit_sink)
        self.sanitizer = sanitizer
        self.resolver = resolver if resolver is not None else SourceResolver()
        self.pipeline = pipeline if pipeline is not None else QueryPipeline()
        if images is None:
            images = ImageRenderer(
                root=config.engine.image_root,
                url_prefix=config.engine.image_url_prefix,
                extensions=config.engine.image_extensions,
            )
        self.images = images
        self.adapter = RequestAdapter(config.engine)

    def parse_request(
        self,
        raw_params: Mapping[str, Any],
        transport: str = TRANSPORT_BODY,
        table: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> RequestContext:
        """Parse raw parameters; strict query mode trims to the table's filterable set."""
        request = self.adapter.parse(raw_params, transport, table=table, client=client, strict=False)
        if transport != TRANSPORT_QUERY or not self.config.engine.strict_query_params:
            return request
        validator = self.validator.for_client(request.client)
        table_config = self.table_config(request, validator)
        filterable: List[str] = []
        if table_config is not None:
            filterable = list(table_config.filterable or table_config.columns)
        return self.adapter.parse(
            raw_params, transport, table=table, client=client, filterable=filterable, strict=True
        )

    def process(
        self,
        raw_params: Mapping[str, Any],
        transport: str = TRANSPORT_BODY,
        table: Optional[str] = None,
        client: Optional[ClientInfo] = None,
    ) -> ResponseEnvelope:
        """Answer one paged-table request.

        Raises:
            InvalidIdentifier: An unsafe identifier reached the query
            NoSourceResolved: No strategy found a data source
            ExecutionFailure: The data source rejected the query
            PipelineAbort: No query was available to count
        """
        request = self.parse_request(raw_params, transport, table=table, client=client)
        return self.handle(request)

    def handle(self, request: RequestContext) -> ResponseEnvelope:
        """Run an already-parsed request."""
        validator = self.validator.for_client(request.client)
        request_logger = get_contextual_logger(
            __name__, {"table": request.table, "draw": request.draw, "ip": request.client.ip}
        )

        table_config = self.table_config(request, validator)
        context = ResolutionContext(
            table=request.table or None,
            config=table_config,
            catalog=self.catalog,
            validator=validator,
            engine=self.config.engine,
            connection=request.connection,
            bound_configs=lambda: self.bound_configs(validator),
        )
        resolved = self.resolver.resolve(context, request.order)

        pipeline_context = PipelineContext(
            request=request,
            config=resolved.config,
            datasource=resolved.datasource,
            validator=validator,
            engine=self.config.engine,
            catalog=self.catalog,
        )
        plan = self.pipeline.run(QueryPlan(handle=resolved.handle, order=resolved.order), pipeline_context)
        rows = self.fetch(plan, resolved.datasource)

        shaper = ColumnShaper(resolved.config, self.sanitizer, self.images)
        data = shaper.shape(rows, request.client, plan.start)

        records_filtered = plan.records_filtered
        if records_filtered is None:
            records_filtered = plan.records_total
        request_logger.info(
            f"Served {len(data)} rows from {resolved.physical_table} via {resolved.strategy}",
            extra={"extra_fields": {"degraded": len(plan.degradations)}},
        )
        return ResponseEnvelope(
            draw=request.draw,
            records_total=plan.records_total,
            records_filtered=records_filtered,
            data=data,
        )

    def table_config(
        self, request: RequestContext, validator: IdentifierValidator
    ) -> Optional[TableConfig]:
        """File configuration for the requested table, overlaid with the request bundle."""
        if not request.table:
            return None
        return self.config.table_config(request.table, request.bundle, validator)

    def bound_configs(self, validator: IdentifierValidator) -> List[TableConfig]:
        """Every configured table that builds cleanly, in file order."""
        configs = []
        for name in self.config.tables:
            try:
                table_config = self.config.table_config(name, None, validator)
            except ConfigurationError as e:
                logger.warning(f"Skipping table configuration '{name}': {e}")
                continue
            if table_config is not None:
                configs.append(table_config)
        return configs

    def fetch(self, plan: QueryPlan, datasource: DataSource) -> List[Dict[str, Any]]:
        """Execute the final paged query.

        Raises:
            ExecutionFailure: Generic failure; details are only logged
        """
        sql, params = plan.handle.to_sql()
        logger.debug(f"Executing on {datasource.name}: {fingerprint_sql(sql)}")
        try:
            return datasource.fetch_rows(sql, params)
        except DRIVER_ERRORS as e:
            logger.error(
                f"Query failed on {datasource.name}: {fingerprint_sql(sql)} "
                f"({type(e).__name__}, {len(params)} bindings)"
            )
            raise ExecutionFailure() from e

    def filter_options(
        self, raw_params: Mapping[str, Any], client: Optional[ClientInfo] = None
    ) -> List[Any]:
        """Distinct values for a cascading filter dropdown (``_fita``/``_forKeys``)."""
        request = self.adapter.parse(raw_params, TRANSPORT_BODY, client=client, strict=False)
        validator = self.validator.for_client(request.client)
        options = FilterOptionsRequest.parse(raw_params.get("_fita"), raw_params.get("_forKeys"))
        datasource = self.catalog.get_datasource(request.connection)
        if datasource is None:
            raise NoSourceResolved(options.table, [f"connection '{request.connection}' not registered"])
        builder = ParameterizedFilterBuilder(validator, dialect=datasource.dialect)
        query = builder.build_options_query(options, dict(request.filters))
        return builder.execute(datasource, query)
