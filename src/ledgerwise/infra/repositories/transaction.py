"""SQLModel implementation of Transaction repository.

Reads only: creating, editing and deleting transactions changes balances and
therefore goes through ``TransactionProcessor``.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_
from sqlmodel import select

from ...models.transaction import Transaction
from ..database import SessionFactory


class SQLModelTransactionRepository:
    """SQLModel-based transaction repository implementation."""

    def __init__(self, session_factory: SessionFactory):
        """Initialize with a session factory."""
        self.session_factory = session_factory

    def get_by_id(self, transaction_id: int, *, user_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by ID."""
        with self.session_factory() as session:
            return session.exec(
                select(Transaction)
                .where(Transaction.id == transaction_id)
                .where(Transaction.user_id == user_id)
            ).first()

    def list_all(self, *, user_id: int, limit: int = 100, offset: int = 0) -> list[Transaction]:
        """List transactions newest first."""
        with self.session_factory() as session:
            statement = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .order_by(Transaction.transaction_date.desc(), Transaction.id.desc())  # type: ignore[union-attr]
                .offset(offset)
                .limit(limit)
            )
            return list(session.exec(statement).all())

    def list_for_source(self, source_type: str, source_id: int, *, user_id: int) -> list[Transaction]:
        """Transactions generated by a subscription, invoice or recurring income."""
        with self.session_factory() as session:
            statement = (
                select(Transaction)
                .where(Transaction.user_id == user_id)
                .where(Transaction.source_type == source_type)
                .where(Transaction.source_id == source_id)
                .order_by(Transaction.transaction_date)
            )
            return list(session.exec(statement).all())

    def search(
        self,
        *,
        user_id: int,
        txn_type: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        account_id: Optional[int] = None,
        card_id: Optional[int] = None,
        category_id: Optional[int] = None,
        merchant_id: Optional[int] = None,
        text: Optional[str] = None,
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
    ) -> list[Transaction]:
        """Advanced search with multiple filters."""
        with self.session_factory() as session:
            statement = select(Transaction).where(Transaction.user_id == user_id)

            if txn_type:
                statement = statement.where(Transaction.type == txn_type)
            if start_date:
                statement = statement.where(Transaction.transaction_date >= start_date)
            if end_date:
                statement = statement.where(Transaction.transaction_date <= end_date)
            if account_id:
                statement = statement.where(
                    or_(Transaction.from_account_id == account_id, Transaction.to_account_id == account_id)
                )
            if card_id:
                statement = statement.where(
                    or_(Transaction.from_card_id == card_id, Transaction.to_card_id == card_id)
                )
            if category_id:
                statement = statement.where(Transaction.category_id == category_id)
            if merchant_id:
                statement = statement.where(Transaction.merchant_id == merchant_id)
            if text:
                statement = statement.where(
                    or_(
                        Transaction.title.contains(text),  # type: ignore[attr-defined]
                        Transaction.description.contains(text),  # type: ignore[union-attr]
                    )
                )
            if min_amount is not None:
                statement = statement.where(Transaction.amount >= min_amount)
            if max_amount is not None:
                statement = statement.where(Transaction.amount <= max_amount)

            statement = statement.order_by(
                Transaction.transaction_date.desc(), Transaction.id.desc()  # type: ignore[union-attr]
            )
            return list(session.exec(statement).all())
