"""HTML escaping of shaped values with an injectable memoization cache."""

from __future__ import annotations

from collections import OrderedDict
from typing import Optional, Tuple
import html
import re
import threading

from .audit import (
    ClientInfo,
    SecurityAuditSink,
    SecurityEvent,
    SecurityEventType,
    Severity,
)

XSS_PATTERNS = (
    re.compile(r"<\s*script\b", re.IGNORECASE),
    re.compile(r"javascript\s*:", re.IGNORECASE),
    re.compile(r"\bon[a-z]+\s*=", re.IGNORECASE),
    re.compile(r"<\s*(iframe|object|embed)\b", re.IGNORECASE),
)


class SanitizationCache:
    """Bounded LRU map from raw string to (escaped, suspicious).

    Safe for concurrent use from several threads.
    """

    def __init__(self, max_size: int = 4096):
        self.max_size = max_size
        self._entries: "OrderedDict[str, Tuple[str, bool]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[Tuple[str, bool]]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return entry

    def put(self, key: str, value: Tuple[str, bool]) -> None:
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class HtmlSanitizer:
    """Escapes plain-text values and reports script-like payloads."""

    def __init__(
        self,
        cache: Optional[SanitizationCache] = None,
        audit_sink: Optional[SecurityAuditSink] = None,
    ):
        if cache is None:
            cache = SanitizationCache()
        self.cache = cache
        self.audit_sink = audit_sink

    def escape(self, value: str, field: str = "", client: Optional[ClientInfo] = None) -> str:
        """Return the HTML-escaped form of ``value``.

        A value that looks like a script injection is still escaped, and an
        ``XSS_ATTEMPT`` event is emitted for it.
        """
        cached = self.cache.get(value)
        if cached is None:
            cached = (html.escape(value, quote=True), self.is_suspicious(value))
            self.cache.put(value, cached)
        escaped, suspicious = cached
        if suspicious:
            self._report(value, field, client)
        return escaped

    def is_suspicious(self, value: str) -> bool:
        for pattern in XSS_PATTERNS:
            if pattern.search(value):
                return True
        return False

    def _report(self, value: str, field: str, client: Optional[ClientInfo]) -> None:
        if self.audit_sink is None:
            return
        event = SecurityEvent(
            event_type=SecurityEventType.XSS_ATTEMPT,
            severity=Severity.HIGH,
            subject=field or "value",
            value=value,
            client=client if client is not None else ClientInfo(),
        )
        self.audit_sink.emit(event)
