"""Simple interactive CLI for the datatable query engine."""

from __future__ import annotations

import json
import shlex
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click
from prompt_toolkit import PromptSession
from prompt_toolkit.history import FileHistory
from prompt_toolkit.auto_suggest import AutoSuggestFromHistory

from ..catalog import Catalog
from ..config import Config, DataSourceConfig, load_config
from ..datasources.duckdb import DuckDBDataSource
from ..datasources.postgresql import PostgreSQLDataSource
from ..errors import DatatableError
from ..protocol import ResponseEnvelope
from ..service import DatatableService
from ..utils.logging import setup_logging

DEMO_TABLES = {
    "orders": {
        "source": "model",
        "columns": ["id", "customer_name", "total", "status", "created_at"],
        "foreign_keys": {"orders.customer_id": "customers.id"},
        "aliases": {"customer_name": "customers.name"},
        "order": {"column": "id", "direction": "desc"},
        "formats": [{"field": "total", "decimals": 2, "separator": "."}],
    },
    "customers": {
        "source": "model",
        "columns": ["id", "name", "region", "active"],
        "order": {"column": "name", "direction": "asc"},
    },
}


class ResultPrinter:
    """Formats shaped rows for CLI display."""

    def __init__(self, emit):
        self.emit = emit

    def display(self, envelope: ResponseEnvelope, elapsed_ms: float) -> None:
        headers = self._collect_headers(envelope.data)
        rows = self._build_rows(headers, envelope.data)
        lines = self._format_table(headers, rows)
        for line in lines:
            self.emit(line)
        summary = (
            f"{len(envelope.data)} rows (total {envelope.records_total}, "
            f"filtered {envelope.records_filtered}) in {elapsed_ms:.2f} ms"
        )
        self.emit(summary)

    def _collect_headers(self, data: List[Dict[str, Any]]) -> List[str]:
        headers: List[str] = []
        for row in data:
            for key in row:
                if key not in headers:
                    headers.append(key)
        return headers

    def _build_rows(self, headers: List[str], data: List[Dict[str, Any]]) -> List[List[str]]:
        rows: List[List[str]] = []
        for entry in data:
            row = []
            for header in headers:
                row.append(self._stringify_cell(entry.get(header)))
            rows.append(row)
        return rows

    def _format_table(self, headers: List[str], rows: List[List[str]]) -> List[str]:
        widths = self._compute_widths(headers, rows)
        border = self._build_border(widths)
        lines: List[str] = []
        lines.append(border)
        lines.append(self._format_row(headers, widths))
        lines.append(border)
        for row in rows:
            lines.append(self._format_row(row, widths))
        lines.append(border)
        return lines

    def _compute_widths(self, headers: List[str], rows: List[List[str]]) -> List[int]:
        widths: List[int] = []
        for header in headers:
            widths.append(len(header))
        for row in rows:
            index = 0
            while index < len(row):
                if len(row[index]) > widths[index]:
                    widths[index] = len(row[index])
                index += 1
        return widths

    def _build_border(self, widths: List[int]) -> str:
        parts: List[str] = ["+"]
        for width in widths:
            parts.append("-" * (width + 2))
            parts.append("+")
        return "".join(parts)

    def _format_row(self, values: List[str], widths: List[int]) -> str:
        parts: List[str] = ["|"]
        index = 0
        while index < len(values):
            parts.append(f" {values[index].ljust(widths[index])} ")
            parts.append("|")
            index += 1
        return "".join(parts)

    def _stringify_cell(self, value: object) -> str:
        if value is None:
            return "NULL"
        if isinstance(value, dict):
            return json.dumps(value)
        return str(value)


def parse_request_line(line: str) -> Tuple[str, Dict[str, Any]]:
    """Turn ``orders start=10 length=5 order=total:desc status=paid`` into params.

    ``order=<column>:<dir>`` becomes the ``order``/``columns`` protocol pair;
    every other ``key=value`` is passed through as a request parameter.
    """
    tokens = shlex.split(line)
    if not tokens:
        raise ValueError("empty request")
    table = tokens[0]
    params: Dict[str, Any] = {}
    for token in tokens[1:]:
        if "=" not in token:
            raise ValueError(f"expected key=value, got '{token}'")
        key, value = token.split("=", 1)
        if key == "order":
            column, _, direction = value.partition(":")
            params["columns"] = [{"data": column}]
            params["order"] = [{"column": 0, "dir": direction or "asc"}]
        else:
            params[key] = value
    return table, params


def load_request(value: Optional[str]) -> Dict[str, Any]:
    """Request parameters from a JSON file path or an inline JSON object."""
    if not value:
        return {}
    path = Path(value)
    if path.exists():
        text = path.read_text()
    else:
        text = value
    data = json.loads(text)
    if not isinstance(data, dict):
        raise click.BadParameter("request must be a JSON object")
    return data


class DtqRepl:
    """Interactive loop with full terminal support."""

    def __init__(self, service: DatatableService, printer: ResultPrinter):
        self.service = service
        self.printer = printer
        self.session = self._create_session()

    def _create_session(self) -> PromptSession:
        """Create prompt session backed by persistent history."""
        history_file = self._history_path()
        history = FileHistory(str(history_file))
        auto_suggest = AutoSuggestFromHistory()
        return PromptSession(history=history, auto_suggest=auto_suggest)

    def _history_path(self) -> Path:
        """Return history file path, creating the file when necessary."""
        history_path = Path(".dtq_history")
        if not history_path.exists():
            history_path.touch()
        return history_path

    def run(self) -> None:
        while True:
            line, should_continue = self._read_line()
            if not should_continue:
                break
            if line is None or not line.strip():
                continue
            if self._is_exit_command(line):
                break
            if line.strip().startswith("."):
                self._execute_shortcut(line)
                continue
            self._execute_request(line)

    def _read_line(self) -> Tuple[Optional[str], bool]:
        try:
            return self.session.prompt("dtq> "), True
        except EOFError:
            click.echo("")
            return None, False
        except KeyboardInterrupt:
            click.echo("")
            return None, True

    def _is_exit_command(self, line: str) -> bool:
        return line.strip().lower() in ("\\q", "quit", "exit")

    def _execute_shortcut(self, line: str) -> None:
        trimmed = line.strip().lower()
        if trimmed == ".tables":
            configured = list(self.service.config.tables)
            click.echo(f"Configured: {', '.join(configured) or '(none)'}")
            click.echo(f"Physical:   {', '.join(self.service.catalog.table_names()) or '(none)'}")
        else:
            click.echo(f"Unknown shortcut: {line.strip()}")
            click.echo("Available shortcuts: .tables")

    def _execute_request(self, line: str) -> None:
        try:
            table, params = parse_request_line(line)
            start = time.time()
            envelope = self.service.process(params, table=table)
            elapsed = (time.time() - start) * 1000
            self.printer.display(envelope, elapsed)
        except (ValueError, DatatableError) as exc:
            click.echo(f"error: {exc}")


def _prepare_service(config_path: Optional[str]) -> Tuple[DatatableService, str]:
    config, message = _load_config_bundle(config_path)
    catalog = _build_catalog(config, message is not None)
    service = DatatableService(config, catalog)
    return service, message or ""


def _load_config_bundle(config_path: Optional[str]) -> Tuple[Config, Optional[str]]:
    if config_path:
        return load_config(config_path), None
    return _build_default_config(), "Using in-memory DuckDB data source with demo tables."


def _build_default_config() -> Config:
    config = Config()
    ds_config = DataSourceConfig(
        name="duckdb_mem",
        type="duckdb",
        config={"path": ":memory:", "read_only": False},
    )
    config.datasources[ds_config.name] = ds_config
    for name, table in DEMO_TABLES.items():
        config.tables[name] = dict(table)
    return config


def _build_catalog(config: Config, seed_demo: bool) -> Catalog:
    catalog = Catalog()
    for ds_config in config.datasources.values():
        datasource = _create_datasource(ds_config)
        datasource.connect()
        if seed_demo:
            _seed_demo_data(datasource)
        catalog.register_datasource(datasource)
    catalog.load_metadata()
    return catalog


def _create_datasource(ds_config: DataSourceConfig):
    if ds_config.type == "duckdb":
        return DuckDBDataSource(ds_config.name, ds_config.config)
    if ds_config.type == "postgresql":
        return PostgreSQLDataSource(ds_config.name, ds_config.config)
    raise ValueError(f"Unsupported data source type: {ds_config.type}")


def _seed_demo_data(datasource: DuckDBDataSource) -> None:
    connection = datasource.connection
    if connection is None:
        return
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS customers (
            id INTEGER,
            name VARCHAR,
            region VARCHAR,
            active INTEGER
        )
        """
    )
    connection.execute(
        """
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER,
            customer_id INTEGER,
            total DECIMAL(10, 2),
            status VARCHAR,
            created_at DATE
        )
        """
    )
    connection.execute("DELETE FROM customers")
    connection.execute("DELETE FROM orders")
    connection.execute(
        """
        INSERT INTO customers VALUES
        (1, 'Alice', 'west', 1),
        (2, 'Bob', 'east', 1),
        (3, 'Carlos', 'west', 0)
        """
    )
    connection.execute(
        """
        INSERT INTO orders VALUES
        (1, 1, 1250.50, 'paid', DATE '2024-01-03'),
        (2, 2, 80.00, 'pending', DATE '2024-01-04'),
        (3, 1, 15.25, 'paid', DATE '2024-01-07'),
        (4, 3, 3400.00, 'cancelled', DATE '2024-02-11'),
        (5, 2, 99.99, 'paid', DATE '2024-02-12')
        """
    )


@click.command()
@click.option(
    "-c",
    "--config",
    "config_path",
    type=click.Path(exists=True, dir_okay=False, readable=True),
    help="Path to YAML config file. Defaults to an in-memory DuckDB demo.",
)
@click.option("-t", "--table", "table", help="Logical table for a one-shot request.")
@click.option(
    "-r",
    "--request",
    "request",
    help="Request parameters as a JSON file path or inline JSON object.",
)
@click.option("--log-level", default="WARNING", show_default=True, help="Logging level.")
def cli(
    config_path: Optional[str], table: Optional[str], request: Optional[str], log_level: str
) -> None:
    """Entry point for the dtq CLI."""
    setup_logging(level=log_level)
    service, note = _prepare_service(config_path)
    if table or request:
        params = load_request(request)
        try:
            envelope = service.process(params, table=table)
        except DatatableError as exc:
            raise click.ClickException(str(exc)) from exc
        click.echo(json.dumps(envelope.to_dict(), indent=2, default=str))
        return
    if note:
        click.echo(note)
    click.echo("Type '<table> key=value ...' to request a page. Use \\q to exit.")
    click.echo("Use .tables to list tables; order=<column>:<asc|desc> sets the order.")
    repl = DtqRepl(service, ResultPrinter(click.echo))
    repl.run()
