"""Concrete repository implementations using SQLModel."""

from .account import SQLModelAccountRepository
from .budget import SQLModelBudgetRepository
from .card import SQLModelCardRepository
from .invoice import SQLModelInvoiceRepository
from .subscription import SQLModelRecurringIncomeRepository, SQLModelSubscriptionRepository
from .transaction import SQLModelTransactionRepository

__all__ = [
    "SQLModelAccountRepository",
    "SQLModelBudgetRepository",
    "SQLModelCardRepository",
    "SQLModelInvoiceRepository",
    "SQLModelRecurringIncomeRepository",
    "SQLModelSubscriptionRepository",
    "SQLModelTransactionRepository",
]
