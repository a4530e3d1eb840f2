"""Shared utilities."""

from .logging import (
    setup_logging,
    get_contextual_logger,
    fingerprint_sql,
)

__all__ = [
    "setup_logging",
    "get_contextual_logger",
    "fingerprint_sql",
]
