"""Error taxonomy surfaced to callers of the ledger core.

Every failure raised by the services derives from :class:`LedgerError` so the
API layer can turn it into a structured response with :meth:`LedgerError.to_dict`.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all ledger failures."""

    code = "ledger_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": dict(self.details)}


class ValidationError(LedgerError, ValueError):
    """Malformed input: missing references, non-positive amount, bad enum value."""

    code = "validation_error"


class NotFoundError(ValidationError):
    """Referenced entity does not exist or belongs to another user."""

    code = "not_found"


class InvalidStateError(LedgerError):
    """Transition not allowed from the entity's current state."""

    code = "invalid_state"


class NotDueError(LedgerError):
    """Recurring item is not due yet, is paused, or the period was already claimed."""

    code = "not_due"


class ConcurrencyConflictError(LedgerError):
    """A compare-and-set lost against a concurrent writer; retry from fresh state."""

    code = "concurrency_conflict"


class PersistenceError(LedgerError):
    """The backing store failed; nothing from the unit of work was committed."""

    code = "persistence_error"


__all__ = [
    "ConcurrencyConflictError",
    "InvalidStateError",
    "LedgerError",
    "NotDueError",
    "NotFoundError",
    "PersistenceError",
    "ValidationError",
]
