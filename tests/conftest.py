"""Pytest configuration and shared fixtures for Ledgerwise tests.

This module provides database fixtures, test data factories, and helper utilities
for testing domain logic, repositories, and services without touching the real app database.
"""

from __future__ import annotations

import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest
from sqlmodel import SQLModel, create_engine

# Import all models to ensure they're registered with SQLModel metadata
from ledgerwise.models import Account, Card, Category, User
from ledgerwise.domain.clock import FixedClock
from ledgerwise.infra.database import create_session_factory
from ledgerwise.infra.repositories import (
    SQLModelBudgetRepository,
    SQLModelRecurringIncomeRepository,
    SQLModelSubscriptionRepository,
    SQLModelTransactionRepository,
)
from ledgerwise.services.budgets import BudgetManager
from ledgerwise.services.invoices import InvoiceManager
from ledgerwise.services.ledger_service import LedgerService
from ledgerwise.services.recurrence import SubscriptionScheduler
from ledgerwise.services.recurring_income import RecurringIncomeScheduler
from ledgerwise.services.transaction_processor import TransactionProcessor
from ledgerwise.services.users import ensure_user

# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    """Create an isolated SQLite database file for each test.

    Yields:
        Engine: SQLModel engine connected to test database
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    engine = create_engine(f"sqlite:///{db_path}", echo=False)
    SQLModel.metadata.create_all(engine)

    yield engine

    engine.dispose()
    db_path.unlink(missing_ok=True)


@pytest.fixture(scope="function")
def session_factory(db_engine):
    """Transactional session factory matching the one the app uses."""

    return create_session_factory(db_engine)


@pytest.fixture
def user(session_factory) -> User:
    """Create a default user for scoping data."""

    return ensure_user(session_factory, "tester")


@pytest.fixture
def other_user(session_factory) -> User:
    return ensure_user(session_factory, "someone-else")


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(date(2024, 1, 15))


@pytest.fixture
def fetch(session_factory):
    """Fetch a fresh copy of a row from its own session."""

    def _fetch(model, row_id):
        with session_factory() as session:
            return session.get(model, row_id)

    return _fetch


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def processor(session_factory, clock) -> TransactionProcessor:
    return TransactionProcessor(session_factory, clock=clock)


@pytest.fixture
def invoices(session_factory, processor, clock) -> InvoiceManager:
    return InvoiceManager(session_factory, processor, clock=clock)


@pytest.fixture
def subscriptions(session_factory, processor, clock) -> SubscriptionScheduler:
    return SubscriptionScheduler(
        session_factory, processor, SQLModelSubscriptionRepository(session_factory), clock=clock
    )


@pytest.fixture
def incomes(session_factory, processor, clock) -> RecurringIncomeScheduler:
    return RecurringIncomeScheduler(
        session_factory, processor, SQLModelRecurringIncomeRepository(session_factory), clock=clock
    )


@pytest.fixture
def budgets(session_factory, clock) -> BudgetManager:
    return BudgetManager(session_factory, SQLModelBudgetRepository(session_factory), clock=clock)


@pytest.fixture
def ledger(processor, invoices, subscriptions, incomes, budgets, clock) -> LedgerService:
    return LedgerService(processor, invoices, subscriptions, incomes, budgets, clock=clock)


@pytest.fixture
def transaction_repo(session_factory) -> SQLModelTransactionRepository:
    return SQLModelTransactionRepository(session_factory)


# =============================================================================
# Test Data Factories
# =============================================================================


@pytest.fixture
def account_factory(session_factory, user):
    """Factory for creating test accounts.

    Returns:
        Callable: Function that creates and persists Account instances
    """

    def _create_account(
        name: str = "Checking",
        balance: str = "0.00",
        currency: str = "CHF",
        owner: User | None = None,
        is_default: bool = False,
    ) -> Account:
        owner = owner or user
        with session_factory() as session:
            account = Account(
                user_id=owner.id,
                name=name,
                balance=Decimal(balance),
                currency=currency,
                is_default=is_default,
            )
            session.add(account)
            session.flush()
            session.refresh(account)
            return account

    return _create_account


@pytest.fixture
def card_factory(session_factory, user):
    """Factory for creating test cards.

    Credit cards default to a 1000.00 limit; debit cards need ``account_id``.
    """

    def _create_card(
        name: str = "Visa",
        kind: str = "credit",
        account_id: int | None = None,
        credit_limit: str | None = "1000.00",
        current_balance: str = "0.00",
        currency: str = "CHF",
        owner: User | None = None,
    ) -> Card:
        owner = owner or user
        with session_factory() as session:
            card = Card(
                user_id=owner.id,
                name=name,
                kind=kind,
                account_id=account_id,
                credit_limit=Decimal(credit_limit) if kind == "credit" and credit_limit is not None else None,
                current_balance=Decimal(current_balance),
                currency=currency,
            )
            session.add(card)
            session.flush()
            session.refresh(card)
            return card

    return _create_card


@pytest.fixture
def category_factory(session_factory, user):
    """Factory for creating test categories."""

    def _create_category(
        name: str = "Groceries",
        slug: str | None = None,
        category_type: str = "expense",
        color: str = "#FF5733",
    ) -> Category:
        if slug is None:
            slug = name.lower().replace(" ", "-")
        with session_factory() as session:
            category = Category(
                user_id=user.id,
                name=name,
                slug=slug,
                category_type=category_type,
                color=color,
            )
            session.add(category)
            session.flush()
            session.refresh(category)
            return category

    return _create_category
