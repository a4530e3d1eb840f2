"""Security audit events and sinks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol
import logging
import threading

from ..utils.logging import get_contextual_logger

AUDIT_LOGGER_NAME = "datatable_query.security"
MAX_AUDITED_VALUE_LENGTH = 500


class SecurityEventType(Enum):
    """Kinds of security events emitted by the engine."""

    AUTHORIZATION_FAILURE = "authorization_failure"
    SQL_INJECTION_ATTEMPT = "sql_injection_attempt"
    XSS_ATTEMPT = "xss_attempt"
    INVALID_IDENTIFIER = "invalid_identifier"
    RATE_LIMIT_VIOLATION = "rate_limit_violation"


class Severity(Enum):
    """Severity attached to a security event."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


@dataclass(frozen=True)
class ClientInfo:
    """Who made the request, as far as the host application knows."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None
    actor: Optional[str] = None
    url: Optional[str] = None
    session_id: Optional[str] = None


@dataclass
class SecurityEvent:
    """A single structured security event."""

    event_type: SecurityEventType
    severity: Severity
    subject: str
    value: str
    client: ClientInfo = field(default_factory=ClientInfo)
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()
        if len(self.value) > MAX_AUDITED_VALUE_LENGTH:
            self.value = self.value[:MAX_AUDITED_VALUE_LENGTH]

    def to_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured log output."""
        data = {
            "event": self.event_type.value,
            "severity": self.severity.value,
            "subject": self.subject,
            "value": self.value,
            "timestamp": self.timestamp,
            "user_id": self.client.actor,
            "ip_address": self.client.ip,
            "user_agent": self.client.user_agent,
            "url": self.client.url,
            "session_id": self.client.session_id,
        }
        for key, value in self.details.items():
            data[key] = value
        return data


class SecurityAuditSink(Protocol):
    """Receives security events from the validator and filter builder."""

    def emit(self, event: SecurityEvent) -> None:
        """Record one event."""
        ...


class LoggingAuditSink:
    """Writes security events to the ``datatable_query.security`` logger."""

    _LEVELS = {
        Severity.LOW: logging.INFO,
        Severity.MEDIUM: logging.WARNING,
        Severity.HIGH: logging.ERROR,
        Severity.CRITICAL: logging.CRITICAL,
    }

    def __init__(self, logger_name: str = AUDIT_LOGGER_NAME):
        self.logger = get_contextual_logger(logger_name, {"channel": "security"})

    def emit(self, event: SecurityEvent) -> None:
        level = self._LEVELS.get(event.severity, logging.WARNING)
        self.logger.log(
            level,
            f"Security event {event.event_type.value} on {event.subject}",
            extra={"extra_fields": event.to_dict()},
        )


class MemoryAuditSink:
    """Keeps events in memory; used by tests and the CLI."""

    def __init__(self):
        self.events: List[SecurityEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: SecurityEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: SecurityEventType) -> List[SecurityEvent]:
        with self._lock:
            matches = []
            for event in self.events:
                if event.event_type == event_type:
                    matches.append(event)
            return matches

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


class CompositeAuditSink:
    """Fans an event out to several sinks."""

    def __init__(self, sinks: List[SecurityAuditSink]):
        self.sinks = sinks

    def emit(self, event: SecurityEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)
