"""Exceptions raised by the student import engine.

Whole-call rejections (structure, no valid rows, internal duplicates, bad
strategy) derive from RosterImportError and carry a stable ``code`` the API
layer returns to the client. PersistenceError and AllocationExhausted are
per-row failures: the orchestrator rolls the row back and moves on.
"""
from typing import Any


class RosterImportError(Exception):
    """Base class for errors that reject an entire import call."""

    code = "IMPORT_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class CsvStructureError(RosterImportError):
    code = "CSV_PARSE_ERROR"


class NoValidRowsError(RosterImportError):
    code = "NO_VALID_RECORDS"


class InternalDuplicatesError(RosterImportError):
    code = "INTERNAL_DUPLICATES"


class InvalidStrategyError(RosterImportError):
    code = "INVALID_STRATEGY"


class PersistenceError(Exception):
    """A store operation failed; the current row's transaction must be rolled back."""


class AllocationExhausted(Exception):
    """No free suffixed email was found within the attempt limit."""

    def __init__(self, base_email: str, limit: int):
        super().__init__(f"Could not find available email for {base_email} (tried {limit} suffixes)")
        self.base_email = base_email
        self.limit = limit
