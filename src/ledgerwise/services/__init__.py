"""Service module exports."""

from . import (
    invoices,
    ledger_service,
    recurrence,
    recurring_income,
    transaction_processor,
    users,
)

__all__ = [
    "invoices",
    "ledger_service",
    "recurrence",
    "recurring_income",
    "transaction_processor",
    "users",
]
