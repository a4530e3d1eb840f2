"""Logging configuration with structured logging support."""

import logging
import sys
import json
from typing import Optional, Dict, Any
from datetime import datetime, timezone

SQL_FINGERPRINT_LENGTH = 100
TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter; merges ``extra_fields`` from adapters."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_data.update(record.extra_fields)

        return json.dumps(log_data, default=str)


def setup_logging(
    level: str = "INFO",
    structured: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """Set up logging for the engine and its drivers.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        structured: Use structured JSON logging if True
        log_file: Optional log file path
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    if structured:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(fmt=TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    console_handler.setLevel(log_level)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        file_handler.setLevel(log_level)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        force=True,
    )

    logging.getLogger("psycopg2").setLevel(logging.WARNING)
    logging.getLogger("sqlglot").setLevel(logging.WARNING)


def fingerprint_sql(sql: str, limit: int = SQL_FINGERPRINT_LENGTH) -> str:
    """Collapse whitespace and truncate SQL text for log output.

    Generated SQL only carries placeholders, so the fingerprint never
    contains bound values.
    """
    collapsed = " ".join(sql.split())
    if len(collapsed) <= limit:
        return collapsed
    return collapsed[:limit] + "..."


class LoggerAdapter(logging.LoggerAdapter):
    """Logger adapter for adding contextual information."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        """Attach the adapter context (plus any per-call fields) as ``extra_fields``.

        Args:
            msg: Log message
            kwargs: Keyword arguments

        Returns:
            Tuple of (message, kwargs)
        """
        if "extra" not in kwargs:
            kwargs["extra"] = {}

        fields = dict(self.extra)
        call_fields = kwargs["extra"].get("extra_fields")
        if call_fields:
            fields.update(call_fields)
        kwargs["extra"]["extra_fields"] = fields

        return msg, kwargs


def get_contextual_logger(name: str, context: Dict[str, Any]) -> LoggerAdapter:
    """Get a logger with contextual information.

    Args:
        name: Logger name
        context: Context dictionary to include in all logs

    Returns:
        Logger adapter with context

    Example:
        >>> logger = get_contextual_logger(__name__, {"table": "orders"})
        >>> logger.info("Request processed")  # Will include table in log
    """
    return LoggerAdapter(logging.getLogger(name), context)
