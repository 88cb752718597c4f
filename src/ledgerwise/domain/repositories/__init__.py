"""Repository protocol definitions for domain layer."""

from .account import AccountRepository, CardRepository
from .budget import BudgetRepository
from .schedule import InvoiceRepository, SubscriptionRepository
from .transaction import TransactionRepository

__all__ = [
    "AccountRepository",
    "BudgetRepository",
    "CardRepository",
    "InvoiceRepository",
    "SubscriptionRepository",
    "TransactionRepository",
]
