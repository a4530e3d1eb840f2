"""Tests for identifier validation, audit sinks and output sanitization."""

import threading

import pytest

from datatable_query.errors import InvalidIdentifier, SecurityViolation
from datatable_query.security import (
    ClientInfo,
    CompositeAuditSink,
    HtmlSanitizer,
    IdentifierValidator,
    MemoryAuditSink,
    SanitizationCache,
    SecurityEvent,
    SecurityEventType,
    Severity,
)

VALID_NAMES = ["id", "orders", "_private", "created_at", "Column9", "update_status", "a" * 64]

STRUCTURALLY_INVALID = ["", "9lives", "has space", "dash-name", "dotted.name", "a" * 65, "café"]

DANGEROUS = ["x;y", "name--", "a/*b*/c", "x OR y", "a AND b", "DROP TABLE users", "x UNION SELECT y"]


@pytest.fixture
def sink():
    return MemoryAuditSink()


@pytest.mark.parametrize("name", VALID_NAMES)
def test_valid_identifiers_pass(name):
    assert IdentifierValidator().validate("column", name) == name


@pytest.mark.parametrize("name", STRUCTURALLY_INVALID)
def test_structural_failures_are_not_security_violations(name, sink):
    validator = IdentifierValidator(audit_sink=sink)

    with pytest.raises(InvalidIdentifier) as exc_info:
        validator.validate("column", name)

    assert not isinstance(exc_info.value, SecurityViolation)
    assert exc_info.value.status_code == 400
    assert sink.events == []


@pytest.mark.parametrize("name", DANGEROUS)
def test_denylisted_patterns_raise_security_violation(name, sink):
    validator = IdentifierValidator(audit_sink=sink)

    with pytest.raises(SecurityViolation) as exc_info:
        validator.validate("table", name)

    assert exc_info.value.status_code == 403
    events = sink.of_type(SecurityEventType.SQL_INJECTION_ATTEMPT)
    assert len(events) == 1
    assert events[0].severity == Severity.CRITICAL


def test_allow_list_is_case_insensitive_and_audited(sink):
    validator = IdentifierValidator(allowed_tables=["Orders"], audit_sink=sink)

    assert validator.validate_table("orders") == "orders"
    with pytest.raises(SecurityViolation):
        validator.validate_table("payroll")

    events = sink.of_type(SecurityEventType.AUTHORIZATION_FAILURE)
    assert len(events) == 1
    assert events[0].severity == Severity.HIGH


def test_empty_allow_list_disables_check():
    validator = IdentifierValidator(allowed_tables=[], allowed_columns=None)

    assert validator.validate_table("anything") == "anything"


def test_allow_extends_only_active_lists():
    validator = IdentifierValidator(allowed_tables=["orders"])
    validator.allow(tables=["customers"], columns=["secret"])

    assert validator.validate_table("customers") == "customers"
    assert validator.validate_column("secret") == "secret"
    assert validator.allowed_columns == set()


def test_validate_qualified():
    validator = IdentifierValidator()

    assert validator.validate_qualified("orders.id") == ("orders", "id")
    assert validator.validate_qualified("id") == (None, "id")
    with pytest.raises(InvalidIdentifier):
        validator.validate_qualified("a.b.c")


def test_is_valid_never_audits(sink):
    validator = IdentifierValidator(allowed_columns=["id"], audit_sink=sink)

    assert validator.is_valid("column", "not_listed") is True
    assert validator.is_valid("column", "x;y") is False
    assert sink.events == []


def test_for_client_attributes_events(sink):
    validator = IdentifierValidator(audit_sink=sink)
    client = ClientInfo(ip="10.1.1.1", user_agent="pytest", actor="alice")

    with pytest.raises(SecurityViolation):
        validator.for_client(client).validate_column("id;")

    event = sink.events[0].to_dict()
    assert event["ip_address"] == "10.1.1.1"
    assert event["user_agent"] == "pytest"
    assert event["user_id"] == "alice"
    assert event["event"] == "sql_injection_attempt"


def test_security_event_value_is_truncated():
    event = SecurityEvent(
        event_type=SecurityEventType.XSS_ATTEMPT,
        severity=Severity.HIGH,
        subject="name",
        value="x" * 600,
    )

    assert len(event.value) == 500
    assert event.timestamp != ""


def test_composite_sink_fans_out():
    first = MemoryAuditSink()
    second = MemoryAuditSink()
    composite = CompositeAuditSink([first, second])
    event = SecurityEvent(SecurityEventType.INVALID_IDENTIFIER, Severity.LOW, "column", "x")

    composite.emit(event)

    assert first.events == [event]
    assert second.events == [event]


def test_sanitizer_escapes_and_reports_scripts(sink):
    sanitizer = HtmlSanitizer(audit_sink=sink)

    escaped = sanitizer.escape("<script>alert(1)</script>", field="name")

    assert escaped == "&lt;script&gt;alert(1)&lt;/script&gt;"
    events = sink.of_type(SecurityEventType.XSS_ATTEMPT)
    assert len(events) == 1
    assert events[0].subject == "name"


def test_sanitizer_plain_text_is_not_reported(sink):
    sanitizer = HtmlSanitizer(audit_sink=sink)

    assert sanitizer.escape('Tom & "Jerry"') == "Tom &amp; &quot;Jerry&quot;"
    assert sink.events == []


def test_sanitizer_uses_cache():
    cache = SanitizationCache(max_size=8)
    sanitizer = HtmlSanitizer(cache=cache)

    sanitizer.escape("a<b")
    sanitizer.escape("a<b")

    assert cache.hits == 1
    assert cache.misses == 1
    assert len(cache) == 1


def test_cache_evicts_least_recently_used():
    cache = SanitizationCache(max_size=2)
    cache.put("a", ("a", False))
    cache.put("b", ("b", False))
    cache.get("a")
    cache.put("c", ("c", False))

    assert cache.get("b") is None
    assert cache.get("a") == ("a", False)
    assert cache.get("c") == ("c", False)


def test_cache_is_safe_across_threads():
    cache = SanitizationCache(max_size=50)
    sanitizer = HtmlSanitizer(cache=cache)

    def worker(offset):
        for index in range(200):
            sanitizer.escape(f"<v{(index + offset) % 80}>")

    threads = []
    for offset in range(8):
        threads.append(threading.Thread(target=worker, args=(offset,)))
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(cache) <= 50
    assert cache.hits + cache.misses == 8 * 200
