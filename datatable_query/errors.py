"""Error taxonomy for the datatable query engine."""

from typing import List, Optional


class DatatableError(Exception):
    """Base class for all engine errors."""

    status_code = 500


class ConfigurationError(DatatableError):
    """Raised when a table or engine configuration is invalid."""

    pass


class InvalidIdentifier(DatatableError):
    """Raised when a table or column name fails structural validation."""

    status_code = 400

    def __init__(self, kind: str, name: str, reason: str):
        self.kind = kind
        self.name = name
        self.reason = reason
        super().__init__(f"Invalid {kind} identifier: {reason}")


class SecurityViolation(InvalidIdentifier):
    """Raised when an identifier hits the denylist or misses the allow-list."""

    status_code = 403


class NoSourceResolved(DatatableError):
    """Raised when no resolver strategy produced a usable data source."""

    def __init__(self, table: Optional[str], attempts: Optional[List[str]] = None):
        self.table = table
        if attempts is None:
            attempts = []
        self.attempts = attempts
        label = table if table else "<unnamed>"
        super().__init__(f"No data source resolved for table '{label}'")


class PipelineAbort(DatatableError):
    """Raised when the pipeline cannot continue without guessing."""

    pass


class ExecutionFailure(DatatableError):
    """Raised when the data source rejects a query.

    The message is always generic; diagnostic detail is logged instead.
    """

    def __init__(self, message: str = "query failed"):
        super().__init__(message)


class StageError(DatatableError):
    """A single pipeline stage failed but an earlier plan is still usable."""

    def __init__(self, stage: str, message: str, cause: Optional[BaseException] = None):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage}: {message}")
