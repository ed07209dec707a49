"""Custom exceptions for timeline_ledger with structured error information."""

from __future__ import annotations


class TimelineLedgerError(Exception):
    """Base exception for all timeline_ledger errors.

    Provides structured error information with actionable messages.
    """

    status_code = 500

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.details = details or {}


class ValidationError(TimelineLedgerError):
    """Raised when input is missing or out of range."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None, details: dict = None):
        merged = {"field": field}
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.field = field


class NotFoundError(TimelineLedgerError):
    """Raised when a referenced session, move, card or player is absent."""

    status_code = 404

    def __init__(self, resource: str, identifier: object = None):
        if identifier is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} not found: {identifier}"
        details = {
            "resource": resource,
            "identifier": None if identifier is None else str(identifier),
        }
        super().__init__(message, details)
        self.resource = resource
        self.identifier = identifier


class DatabaseError(TimelineLedgerError):
    """Raised when the storage layer fails or rejects a write."""

    def __init__(self, operation: str, original_error: Exception):
        message = f"Database operation failed: {operation} ({original_error})"
        details = {
            "operation": operation,
            "original_error": str(original_error),
            "error_type": type(original_error).__name__,
            "suggested_action": "Check database connectivity and constraints",
        }
        super().__init__(message, details)
        self.operation = operation
        self.original_error = original_error
