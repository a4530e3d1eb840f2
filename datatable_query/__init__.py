"""Paged, filtered and sorted table queries for DataTables-style clients."""

from .config import Config, load_config
from .catalog import Catalog
from .errors import (
    DatatableError,
    ConfigurationError,
    InvalidIdentifier,
    SecurityViolation,
    NoSourceResolved,
    PipelineAbort,
    ExecutionFailure,
    StageError,
)
from .protocol import ResponseEnvelope
from .service import DatatableService, build_validator

__version__ = "0.1.0"

__all__ = [
    "Config",
    "load_config",
    "Catalog",
    "DatatableError",
    "ConfigurationError",
    "InvalidIdentifier",
    "SecurityViolation",
    "NoSourceResolved",
    "PipelineAbort",
    "ExecutionFailure",
    "StageError",
    "ResponseEnvelope",
    "DatatableService",
    "build_validator",
]
