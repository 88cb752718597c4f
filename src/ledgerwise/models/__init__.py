"""SQLModel table exports."""

from .account import Account
from .budget import Budget
from .card import Card
from .category import Category, Merchant
from .invoice import Invoice
from .subscription import RecurringIncome, Subscription
from .transaction import Transaction
from .user import User

__all__ = [
    "Account",
    "Budget",
    "Card",
    "Category",
    "Invoice",
    "Merchant",
    "RecurringIncome",
    "Subscription",
    "Transaction",
    "User",
]
