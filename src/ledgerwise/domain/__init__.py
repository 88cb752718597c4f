"""Framework-free ledger rules: money, calendar cycles, entry variants."""

from .clock import Clock, FixedClock, SystemClock
from .cycles import BillingCycle, advance_by_cycle, days_between
from .entries import CardPayment, Expense, Income, LedgerEntry, TransactionType, Transfer
from .money import format_money, to_money

__all__ = [
    "BillingCycle",
    "CardPayment",
    "Clock",
    "Expense",
    "FixedClock",
    "Income",
    "LedgerEntry",
    "SystemClock",
    "TransactionType",
    "Transfer",
    "advance_by_cycle",
    "days_between",
    "format_money",
    "to_money",
]
