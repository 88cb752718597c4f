"""Ledger-specific helpers for filtering, summaries, and the caller-facing actions."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from ..domain.clock import Clock, SystemClock
from ..domain.entries import TransactionType
from ..domain.money import ZERO, money_sum, to_money
from ..domain.repositories.transaction import TransactionRepository
from ..errors import ValidationError
from ..logging_config import get_logger
from ..models.category import Category
from ..models.transaction import Transaction
from .budgets import BudgetManager
from .invoices import InvoiceManager, PaymentOutcome
from .recurrence import ProcessOutcome, RunReport, SubscriptionScheduler
from .recurring_income import RecurringIncomeScheduler
from .transaction_processor import LedgerResult, TransactionProcessor, check_writable_fields

logger = get_logger("services.ledger")

ACTIONS = ("create", "update", "delete")
_DATE_FIELDS = ("transaction_date",)


@dataclass
class LedgerFilters:
    """Criteria for a ledger listing; ``None`` leaves a dimension unfiltered."""

    user_id: int
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    account_id: Optional[int] = None
    card_id: Optional[int] = None
    category_id: Optional[int] = None
    merchant_id: Optional[int] = None
    text: Optional[str] = None
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    txn_type: str = "all"  # income | expense | transfer | card_payment | all

    def type_value(self) -> Optional[str]:
        if self.txn_type in ("", "all"):
            return None
        return TransactionType.parse(self.txn_type).value


@dataclass
class Pagination:
    page: int = 1
    per_page: int = 25

    @property
    def size(self) -> int:
        return max(1, self.per_page)

    @property
    def offset(self) -> int:
        return (max(1, self.page) - 1) * self.size


_NO_CATEGORY = frozenset({"all", "any", "none"})


def normalize_category_value(raw_value: Optional[str]) -> Optional[int]:
    """Parse a category picker value; blanks, wildcards and junk mean "no filter"."""

    value = (raw_value or "").strip()
    if not value or value.lower() in _NO_CATEGORY:
        return None
    return int(value) if value.isdigit() else None


def filtered_transactions(repo: TransactionRepository, filters: LedgerFilters) -> list[Transaction]:
    """Newest first; rows booked on the same day keep their insertion order reversed."""

    rows = repo.search(
        user_id=filters.user_id,
        txn_type=filters.type_value(),
        start_date=filters.start_date,
        end_date=filters.end_date,
        account_id=filters.account_id,
        card_id=filters.card_id,
        category_id=filters.category_id,
        merchant_id=filters.merchant_id,
        text=filters.text,
        min_amount=filters.min_amount,
        max_amount=filters.max_amount,
    )
    rows.sort(key=lambda row: (row.transaction_date, row.id or 0), reverse=True)
    return rows


def paginate_transactions(
    transactions: list[Transaction], pagination: Pagination
) -> tuple[list[Transaction], int]:
    """Slice one page out of ``transactions``; also returns the unpaged count."""

    window = transactions[pagination.offset : pagination.offset + pagination.size]
    return window, len(transactions)


def compute_summary(transactions: Iterable[Transaction]) -> dict[str, Decimal]:
    """Income, expenses and net; transfers and card payments only move money between instruments."""

    by_type: dict[str, list[Decimal]] = defaultdict(list)
    for txn in transactions:
        by_type[txn.type].append(txn.amount)
    income = money_sum(by_type[TransactionType.INCOME.value])
    expenses = money_sum(by_type[TransactionType.EXPENSE.value])
    return {"income": income, "expenses": expenses, "net": income - expenses}


def compute_spending_by_category(
    transactions: Iterable[Transaction], categories: Iterable[Category]
) -> list[dict[str, object]]:
    """Expense totals per category, largest first; uncategorized spend is grouped under ``None``."""

    names = {category.id: category.name for category in categories}
    spent: dict[Optional[int], Decimal] = defaultdict(lambda: ZERO)
    for txn in transactions:
        if txn.type == TransactionType.EXPENSE.value:
            spent[txn.category_id] += to_money(txn.amount)

    rows = [
        {"category_id": category_id, "name": names.get(category_id, "Uncategorized"), "amount": amount}
        for category_id, amount in spent.items()
    ]
    return sorted(rows, key=lambda row: row["amount"], reverse=True)  # type: ignore[arg-type, return-value]


def _coerce_dates(data: Mapping[str, Any]) -> dict[str, Any]:
    values = dict(data)
    for name in _DATE_FIELDS:
        raw = values.get(name)
        if isinstance(raw, str):
            try:
                values[name] = date.fromisoformat(raw)
            except ValueError as exc:
                raise ValidationError(f"Invalid date for {name}: {raw!r}", field=name) from exc
        elif isinstance(raw, datetime):
            values[name] = raw.date()
    return values


class LedgerService:
    """Entry points the UI/API layer calls.

    Every method runs its own unit of work and lets ledger errors propagate;
    callers render them with ``LedgerError.to_dict()``.
    """

    def __init__(
        self,
        processor: TransactionProcessor,
        invoices: InvoiceManager,
        subscriptions: SubscriptionScheduler,
        incomes: Optional[RecurringIncomeScheduler] = None,
        budgets: Optional[BudgetManager] = None,
        *,
        clock: Optional[Clock] = None,
    ):
        self.processor = processor
        self.invoices = invoices
        self.subscriptions = subscriptions
        self.incomes = incomes
        self.budgets = budgets
        self.clock = clock or SystemClock()

    def process_transaction(
        self,
        action: str,
        *,
        user_id: int,
        data: Optional[Mapping[str, Any]] = None,
        transaction_id: Optional[int] = None,
    ) -> LedgerResult:
        if action not in ACTIONS:
            raise ValidationError(f"Unknown action: {action!r}", action=action)
        if action == "create":
            values = _coerce_dates(data or {})
            check_writable_fields(values)
            return self.processor.create(Transaction(**values, user_id=user_id))
        if transaction_id is None:
            raise ValidationError(f"{action} needs a transaction_id", field="transaction_id")
        if action == "update":
            return self.processor.update(transaction_id, _coerce_dates(data or {}), user_id=user_id)
        return self.processor.delete(transaction_id, user_id=user_id)

    def pay_invoice(
        self,
        invoice_id: int,
        *,
        user_id: int,
        account_id: Optional[int] = None,
        card_id: Optional[int] = None,
        create_transaction: bool = True,
        paid_on: Optional[date] = None,
    ) -> PaymentOutcome:
        return self.invoices.pay(
            invoice_id,
            user_id=user_id,
            account_id=account_id,
            card_id=card_id,
            create_transaction=create_transaction,
            paid_on=paid_on,
        )

    def update_invoice(self, invoice_id: int, changes: Mapping[str, Any], *, user_id: int):
        return self.invoices.update_invoice(invoice_id, changes, user_id=user_id)

    def cancel_invoice(self, invoice_id: int, *, user_id: int):
        return self.invoices.cancel(invoice_id, user_id=user_id)

    def update_subscription(self, subscription_id: int, changes: Mapping[str, Any], *, user_id: int):
        return self.subscriptions.update_subscription(subscription_id, changes, user_id=user_id)

    def toggle_subscription(self, subscription_id: int, *, user_id: int):
        return self.subscriptions.toggle(subscription_id, user_id=user_id)

    def process_subscription_payment(self, subscription_id: int, *, user_id: int) -> ProcessOutcome:
        """Manual "Pay Now"."""
        return self.subscriptions.pay_now(subscription_id, user_id=user_id)

    def run_due_subscriptions(self, today: Optional[date] = None) -> RunReport:
        return self.subscriptions.run_due_subscriptions(today or self.clock.today())

    def run_scheduler_tick(self, today: Optional[date] = None) -> dict[str, Any]:
        """One scheduler pass: due subscriptions, expected incomes, overdue invoices, budget periods.

        Budgets roll last so a new period already counts the charges booked in this pass.
        """

        today = today or self.clock.today()
        subscriptions = self.subscriptions.run_due_subscriptions(today)
        incomes = self.incomes.run_expected_incomes(today) if self.incomes else None
        overdue = self.invoices.mark_overdue_invoices(today)
        budgets = self.budgets.process_rollovers(today) if self.budgets else None
        summary = {
            "run_date": today.isoformat(),
            "subscriptions": subscriptions.as_dict(),
            "incomes": incomes.as_dict() if incomes else None,
            "invoices_marked_overdue": overdue,
            "budgets": budgets.as_dict() if budgets else None,
        }
        logger.info("Scheduler tick finished", extra={"summary": summary})
        return summary


__all__ = [
    "LedgerFilters",
    "LedgerService",
    "Pagination",
    "compute_spending_by_category",
    "compute_summary",
    "filtered_transactions",
    "normalize_category_value",
    "paginate_transactions",
]
