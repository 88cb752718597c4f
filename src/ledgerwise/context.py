"""Application context for dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .config import BaseConfig
from .domain.clock import Clock, SystemClock
from .infra.database import SessionFactory, create_db_engine, create_session_factory, init_database
from .infra.repositories import (
    SQLModelAccountRepository,
    SQLModelBudgetRepository,
    SQLModelCardRepository,
    SQLModelInvoiceRepository,
    SQLModelRecurringIncomeRepository,
    SQLModelSubscriptionRepository,
    SQLModelTransactionRepository,
)
from .models.user import User
from .services.budgets import BudgetManager
from .services.invoices import InvoiceManager
from .services.ledger_service import LedgerService
from .services.recurrence import SubscriptionScheduler
from .services.recurring_income import RecurringIncomeScheduler
from .services.transaction_processor import TransactionProcessor


@dataclass
class AppContext:
    """Centralized application context with services and state."""

    # Configuration
    config: BaseConfig
    clock: Clock

    # Session factory
    session_factory: SessionFactory

    # Repositories
    account_repo: SQLModelAccountRepository
    card_repo: SQLModelCardRepository
    transaction_repo: SQLModelTransactionRepository
    invoice_repo: SQLModelInvoiceRepository
    subscription_repo: SQLModelSubscriptionRepository
    income_repo: SQLModelRecurringIncomeRepository
    budget_repo: SQLModelBudgetRepository

    # Services
    processor: TransactionProcessor
    invoices: InvoiceManager
    subscriptions: SubscriptionScheduler
    incomes: RecurringIncomeScheduler
    budgets: BudgetManager
    ledger: LedgerService

    current_user: Optional[User] = None

    def require_user_id(self) -> int:
        """Return the current user id or raise if not set."""

        if self.current_user is None or self.current_user.id is None:
            raise RuntimeError("No ledger owner is loaded")
        return self.current_user.id


def create_app_context(
    config: Optional[BaseConfig] = None,
    *,
    clock: Optional[Clock] = None,
    username: Optional[str] = None,
) -> AppContext:
    """Create and initialize the application context."""

    if config is None:
        config = BaseConfig()
    clock = clock or SystemClock()

    engine = create_db_engine(config)
    init_database(engine)
    session_factory = create_session_factory(engine)

    from .services.users import LOCAL_USERNAME, ensure_user

    owner = ensure_user(
        session_factory, username or LOCAL_USERNAME, default_currency=config.DEFAULT_CURRENCY
    )

    subscription_repo = SQLModelSubscriptionRepository(session_factory)
    income_repo = SQLModelRecurringIncomeRepository(session_factory)
    budget_repo = SQLModelBudgetRepository(session_factory)

    processor = TransactionProcessor(session_factory, clock=clock)
    invoices = InvoiceManager(session_factory, processor, clock=clock)
    subscriptions = SubscriptionScheduler(session_factory, processor, subscription_repo, clock=clock)
    incomes = RecurringIncomeScheduler(session_factory, processor, income_repo, clock=clock)
    budgets = BudgetManager(session_factory, budget_repo, clock=clock)
    ledger = LedgerService(processor, invoices, subscriptions, incomes, budgets, clock=clock)

    return AppContext(
        config=config,
        clock=clock,
        session_factory=session_factory,
        account_repo=SQLModelAccountRepository(session_factory),
        card_repo=SQLModelCardRepository(session_factory),
        transaction_repo=SQLModelTransactionRepository(session_factory),
        invoice_repo=SQLModelInvoiceRepository(session_factory),
        subscription_repo=subscription_repo,
        income_repo=income_repo,
        budget_repo=budget_repo,
        processor=processor,
        invoices=invoices,
        subscriptions=subscriptions,
        incomes=incomes,
        budgets=budgets,
        ledger=ledger,
        current_user=owner,
    )
