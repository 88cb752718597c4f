"""SQLModel implementation of Subscription and RecurringIncome repositories."""

from __future__ import annotations

from datetime import date, timedelta
from typing import Optional

from sqlmodel import select

from ...models.subscription import RecurringIncome, Subscription
from ..database import SessionFactory


class SQLModelSubscriptionRepository:
    """Subscription queries. Scheduling state changes go through the scheduler."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_by_id(self, subscription_id: int, *, user_id: Optional[int] = None) -> Optional[Subscription]:
        with self.session_factory() as session:
            statement = select(Subscription).where(Subscription.id == subscription_id)
            if user_id is not None:
                statement = statement.where(Subscription.user_id == user_id)
            return session.exec(statement).first()

    def list_all(self, *, user_id: int, active_only: bool = False) -> list[Subscription]:
        with self.session_factory() as session:
            statement = select(Subscription).where(Subscription.user_id == user_id)
            if active_only:
                statement = statement.where(Subscription.is_active == True)  # noqa: E712
            statement = statement.order_by(Subscription.next_billing_date, Subscription.name)
            return list(session.exec(statement).all())

    def list_due(self, today: date, *, user_id: Optional[int] = None) -> list[Subscription]:
        """Active subscriptions whose next billing date is today or earlier."""
        with self.session_factory() as session:
            statement = (
                select(Subscription)
                .where(Subscription.is_active == True)  # noqa: E712
                .where(Subscription.next_billing_date != None)  # noqa: E711
                .where(Subscription.next_billing_date <= today)
            )
            if user_id is not None:
                statement = statement.where(Subscription.user_id == user_id)
            statement = statement.order_by(Subscription.next_billing_date, Subscription.id)
            return list(session.exec(statement).all())

    def list_due_soon(self, today: date, days: int, *, user_id: int) -> list[Subscription]:
        with self.session_factory() as session:
            statement = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .where(Subscription.is_active == True)  # noqa: E712
                .where(Subscription.next_billing_date >= today)
                .where(Subscription.next_billing_date <= today + timedelta(days=days))
                .order_by(Subscription.next_billing_date)
            )
            return list(session.exec(statement).all())

    def delete(self, subscription_id: int, *, user_id: int) -> None:
        """Remove a subscription; transactions it already produced are kept."""
        with self.session_factory() as session:
            subscription = session.exec(
                select(Subscription)
                .where(Subscription.id == subscription_id)
                .where(Subscription.user_id == user_id)
            ).first()
            if subscription:
                session.delete(subscription)
                session.commit()


class SQLModelRecurringIncomeRepository:
    """Recurring income queries."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_by_id(self, income_id: int, *, user_id: Optional[int] = None) -> Optional[RecurringIncome]:
        with self.session_factory() as session:
            statement = select(RecurringIncome).where(RecurringIncome.id == income_id)
            if user_id is not None:
                statement = statement.where(RecurringIncome.user_id == user_id)
            return session.exec(statement).first()

    def list_all(self, *, user_id: int) -> list[RecurringIncome]:
        with self.session_factory() as session:
            statement = (
                select(RecurringIncome)
                .where(RecurringIncome.user_id == user_id)
                .order_by(RecurringIncome.next_expected_date, RecurringIncome.name)
            )
            return list(session.exec(statement).all())

    def list_expected(self, today: date) -> list[RecurringIncome]:
        """Active incomes due today or earlier that create transactions automatically."""
        with self.session_factory() as session:
            statement = (
                select(RecurringIncome)
                .where(RecurringIncome.is_active == True)  # noqa: E712
                .where(RecurringIncome.auto_create_transaction == True)  # noqa: E712
                .where(RecurringIncome.next_expected_date != None)  # noqa: E711
                .where(RecurringIncome.next_expected_date <= today)
                .order_by(RecurringIncome.next_expected_date, RecurringIncome.id)
            )
            return list(session.exec(statement).all())

    def delete(self, income_id: int, *, user_id: int) -> None:
        with self.session_factory() as session:
            income = session.exec(
                select(RecurringIncome)
                .where(RecurringIncome.id == income_id)
                .where(RecurringIncome.user_id == user_id)
            ).first()
            if income:
                session.delete(income)
                session.commit()
