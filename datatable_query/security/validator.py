"""Identifier validation for every table and column name that reaches SQL text."""

from __future__ import annotations

import re
from typing import Iterable, Optional, Set, Tuple
import logging

from ..errors import InvalidIdentifier, SecurityViolation
from .audit import (
    ClientInfo,
    SecurityAuditSink,
    SecurityEvent,
    SecurityEventType,
    Severity,
)

logger = logging.getLogger(__name__)

TABLE = "table"
COLUMN = "column"

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
MAX_IDENTIFIER_LENGTH = 64

DENYLIST_PATTERNS = (
    re.compile(r"\s*(DROP|DELETE|UPDATE|INSERT|CREATE|ALTER|TRUNCATE)\s+", re.IGNORECASE),
    re.compile(r"--"),
    re.compile(r"/\*.*\*/", re.DOTALL),
    re.compile(r";"),
    re.compile(r"\s+(OR|AND)\s+", re.IGNORECASE),
    re.compile(r"UNION\s+SELECT", re.IGNORECASE),
)


class IdentifierValidator:
    """Whitelists table and column names.

    A name is valid when it matches ``^[A-Za-z_][A-Za-z0-9_]*$``, is at most
    64 characters long, contains none of the denylisted keyword/operator
    patterns and, when an allow-list is configured for its kind, appears in
    that allow-list.

    Denylist hits and allow-list misses raise ``SecurityViolation`` and emit
    an audit event; plain structural failures raise ``InvalidIdentifier``.
    """

    def __init__(
        self,
        allowed_tables: Optional[Iterable[str]] = None,
        allowed_columns: Optional[Iterable[str]] = None,
        audit_sink: Optional[SecurityAuditSink] = None,
        client: Optional[ClientInfo] = None,
        max_length: int = MAX_IDENTIFIER_LENGTH,
    ):
        """Initialize validator.

        Args:
            allowed_tables: Known table names; empty or None disables the check
            allowed_columns: Known column names; empty or None disables the check
            audit_sink: Receives security events
            client: Caller details attached to audit events
            max_length: Maximum identifier length
        """
        self.allowed_tables = _normalize(allowed_tables)
        self.allowed_columns = _normalize(allowed_columns)
        self.audit_sink = audit_sink
        self.client = client if client is not None else ClientInfo()
        self.max_length = max_length

    def for_client(self, client: ClientInfo) -> "IdentifierValidator":
        """Return a copy that attributes audit events to ``client``."""
        copy = IdentifierValidator(
            audit_sink=self.audit_sink,
            client=client,
            max_length=self.max_length,
        )
        copy.allowed_tables = self.allowed_tables
        copy.allowed_columns = self.allowed_columns
        return copy

    def allow(self, tables: Iterable[str] = (), columns: Iterable[str] = ()) -> None:
        """Extend the allow-lists (only when they are already active)."""
        if self.allowed_tables:
            for table in tables:
                self.allowed_tables.add(table.lower())
        if self.allowed_columns:
            for column in columns:
                self.allowed_columns.add(column.lower())

    def validate(self, kind: str, name: str) -> str:
        """Validate a single identifier.

        Args:
            kind: ``"table"`` or ``"column"``
            name: Identifier to check

        Returns:
            The identifier, unchanged

        Raises:
            InvalidIdentifier: Structural failure
            SecurityViolation: Denylist hit or allow-list miss
        """
        if kind not in (TABLE, COLUMN):
            raise ValueError(f"Unknown identifier kind: {kind}")
        if not isinstance(name, str) or name == "":
            raise InvalidIdentifier(kind, str(name), "empty name")

        pattern = self._match_denylist(name)
        if pattern is not None:
            self._audit(
                SecurityEventType.SQL_INJECTION_ATTEMPT,
                Severity.CRITICAL,
                kind,
                name,
                {"pattern": pattern},
            )
            raise SecurityViolation(kind, name, "dangerous pattern")

        if len(name) > self.max_length:
            raise InvalidIdentifier(kind, name, f"longer than {self.max_length} characters")

        if not IDENTIFIER_PATTERN.match(name):
            raise InvalidIdentifier(kind, name, "illegal characters")

        allowed = self._allow_list(kind)
        if allowed and name.lower() not in allowed:
            self._audit(
                SecurityEventType.AUTHORIZATION_FAILURE,
                Severity.HIGH,
                kind,
                name,
                {"reason": "not in allow-list"},
            )
            raise SecurityViolation(kind, name, "not in allow-list")

        return name

    def validate_table(self, name: str) -> str:
        return self.validate(TABLE, name)

    def validate_column(self, name: str) -> str:
        return self.validate(COLUMN, name)

    def validate_qualified(self, name: str) -> Tuple[Optional[str], str]:
        """Validate ``column`` or ``table.column``.

        Returns:
            Tuple of (table or None, column)
        """
        if not isinstance(name, str):
            raise InvalidIdentifier(COLUMN, str(name), "not a string")
        parts = name.split(".")
        if len(parts) == 1:
            return None, self.validate(COLUMN, parts[0])
        if len(parts) == 2:
            table = self.validate(TABLE, parts[0])
            column = self.validate(COLUMN, parts[1])
            return table, column
        raise InvalidIdentifier(COLUMN, name, "too many qualifiers")

    def is_valid(self, kind: str, name: str) -> bool:
        """Structural and denylist check only; never audits."""
        if not isinstance(name, str) or name == "":
            return False
        if len(name) > self.max_length:
            return False
        if not IDENTIFIER_PATTERN.match(name):
            return False
        return self._match_denylist(name) is None

    def _allow_list(self, kind: str) -> Set[str]:
        if kind == TABLE:
            return self.allowed_tables
        return self.allowed_columns

    def _match_denylist(self, name: str) -> Optional[str]:
        for pattern in DENYLIST_PATTERNS:
            if pattern.search(name):
                return pattern.pattern
        return None

    def _audit(
        self,
        event_type: SecurityEventType,
        severity: Severity,
        kind: str,
        name: str,
        details: dict,
    ) -> None:
        logger.warning(f"Rejected {kind} identifier ({event_type.value})")
        if self.audit_sink is None:
            return
        event = SecurityEvent(
            event_type=event_type,
            severity=severity,
            subject=kind,
            value=name,
            client=self.client,
            details=details,
        )
        self.audit_sink.emit(event)


def _normalize(names: Optional[Iterable[str]]) -> Set[str]:
    normalized: Set[str] = set()
    if names is None:
        return normalized
    for name in names:
        normalized.add(str(name).lower())
    return normalized
