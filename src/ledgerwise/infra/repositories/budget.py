"""SQLModel implementation of the budget repository."""

from __future__ import annotations

from datetime import date
from typing import Optional

from sqlmodel import select

from ...models.budget import Budget
from ..database import SessionFactory


class SQLModelBudgetRepository:
    """Budget queries. Period and spending state changes go through the budget manager."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_by_id(self, budget_id: int, *, user_id: int) -> Optional[Budget]:
        with self.session_factory() as session:
            return session.exec(
                select(Budget).where(Budget.id == budget_id).where(Budget.user_id == user_id)
            ).first()

    def list_all(self, *, user_id: int, active_only: bool = False) -> list[Budget]:
        with self.session_factory() as session:
            statement = select(Budget).where(Budget.user_id == user_id)
            if active_only:
                statement = statement.where(Budget.is_active == True)  # noqa: E712
            return list(session.exec(statement.order_by(Budget.name, Budget.id)).all())

    def list_for_category(self, category_id: Optional[int], *, user_id: int) -> list[Budget]:
        with self.session_factory() as session:
            statement = (
                select(Budget)
                .where(Budget.user_id == user_id)
                .where(Budget.is_active == True)  # noqa: E712
            )
            if category_id is None:
                statement = statement.where(Budget.category_id == None)  # noqa: E711
            else:
                statement = statement.where(Budget.category_id == category_id)
            return list(session.exec(statement.order_by(Budget.id)).all())

    def list_needing_rollover(self, today: date) -> list[Budget]:
        with self.session_factory() as session:
            statement = (
                select(Budget)
                .where(Budget.is_active == True)  # noqa: E712
                .where(Budget.current_period_end != None)  # noqa: E711
                .where(Budget.current_period_end < today)
                .order_by(Budget.current_period_end, Budget.id)
            )
            return list(session.exec(statement).all())

    def delete(self, budget_id: int, *, user_id: int) -> None:
        with self.session_factory() as session:
            budget = session.exec(
                select(Budget).where(Budget.id == budget_id).where(Budget.user_id == user_id)
            ).first()
            if budget:
                session.delete(budget)
