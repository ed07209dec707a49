"""Shared test fixtures and builders for timeline_ledger tests."""

from .builders import add_session, utc

__all__ = [
    "add_session",
    "utc",
]
