"""Identifier validation, audit events and output sanitization."""

from .audit import (
    ClientInfo,
    SecurityEvent,
    SecurityEventType,
    Severity,
    SecurityAuditSink,
    LoggingAuditSink,
    MemoryAuditSink,
    CompositeAuditSink,
)
from .validator import IdentifierValidator, TABLE, COLUMN
from .sanitizer import HtmlSanitizer, SanitizationCache

__all__ = [
    "ClientInfo",
    "SecurityEvent",
    "SecurityEventType",
    "Severity",
    "SecurityAuditSink",
    "LoggingAuditSink",
    "MemoryAuditSink",
    "CompositeAuditSink",
    "IdentifierValidator",
    "TABLE",
    "COLUMN",
    "HtmlSanitizer",
    "SanitizationCache",
]
