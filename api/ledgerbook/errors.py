"""
Domain errors for the ledger and the checkpoint reconciliation engine.

Every error renders to the same JSON body:

    {"error": "conflict", "message": "...", "details": {...}}

so the UI can tell a refused operation apart from a broken connection.
"""

from typing import Any, Optional


class LedgerError(Exception):
    error = "ledger_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.error,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Input was rejected before anything was written."""

    error = "validation_error"
    status_code = 400


class NotFoundError(LedgerError):
    error = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    """The write collides with existing state.

    ``details["retryable"]`` is set when the collision came from a
    concurrent writer and the same request may simply be sent again.
    """

    error = "conflict"
    status_code = 409


class DependencyError(LedgerError):
    """The database failed underneath an otherwise valid operation."""

    error = "dependency_error"
    status_code = 503
