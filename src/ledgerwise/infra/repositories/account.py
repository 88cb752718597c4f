"""SQLModel implementation of Account repository."""

from __future__ import annotations

from typing import Optional

from sqlmodel import select

from ...errors import NotFoundError, ValidationError
from ...models.account import ACCOUNT_TYPES, Account
from ..database import SessionFactory
from ._defaults import clear_other_defaults

# Balance and version only change through the transaction processor.
_EDITABLE = ("name", "account_type", "bank_name", "currency")


class SQLModelAccountRepository:
    """SQLModel-based account repository implementation."""

    def __init__(self, session_factory: SessionFactory):
        """Initialize with a session factory."""
        self.session_factory = session_factory

    def get_by_id(self, account_id: int, *, user_id: int) -> Optional[Account]:
        """Retrieve an account by ID."""
        with self.session_factory() as session:
            return session.exec(
                select(Account).where(Account.id == account_id).where(Account.user_id == user_id)
            ).first()

    def get_default(self, *, user_id: int) -> Optional[Account]:
        with self.session_factory() as session:
            return session.exec(
                select(Account)
                .where(Account.user_id == user_id)
                .where(Account.is_default == True)  # noqa: E712
            ).first()

    def list_all(self, *, user_id: int) -> list[Account]:
        """List accounts, default first."""
        with self.session_factory() as session:
            statement = (
                select(Account)
                .where(Account.user_id == user_id)
                .order_by(Account.is_default.desc(), Account.name)  # type: ignore[union-attr]
            )
            return list(session.exec(statement).all())

    def create(self, account: Account, *, user_id: int) -> Account:
        """Create a new account, taking over the default flag if requested."""
        if account.account_type not in ACCOUNT_TYPES:
            raise ValidationError("Unknown account type", account_type=account.account_type)
        with self.session_factory() as session:
            account.user_id = user_id
            account.currency = (account.currency or "CHF").upper()
            session.add(account)
            session.flush()
            if account.is_default:
                clear_other_defaults(session, Account, user_id=user_id, keep_id=account.id)
            session.commit()
            session.refresh(account)
            return account

    def update(self, account: Account, *, user_id: int) -> Account:
        """Copy descriptive fields onto the stored row."""
        with self.session_factory() as session:
            stored = session.exec(
                select(Account).where(Account.id == account.id).where(Account.user_id == user_id)
            ).first()
            if stored is None:
                raise NotFoundError("Account not found", account_id=account.id)
            for field in _EDITABLE:
                setattr(stored, field, getattr(account, field))
            if account.is_default and not stored.is_default:
                clear_other_defaults(session, Account, user_id=user_id, keep_id=stored.id)
                stored.is_default = True
            session.add(stored)
            session.commit()
            session.refresh(stored)
            return stored

    def set_default(self, account_id: int, *, user_id: int) -> Account:
        """Make ``account_id`` the user's only default account."""
        with self.session_factory() as session:
            account = session.exec(
                select(Account).where(Account.id == account_id).where(Account.user_id == user_id)
            ).first()
            if account is None:
                raise NotFoundError("Account not found", account_id=account_id)
            clear_other_defaults(session, Account, user_id=user_id, keep_id=account.id)
            account.is_default = True
            session.add(account)
            session.commit()
            session.refresh(account)
            return account

    def delete(self, account_id: int, *, user_id: int) -> None:
        """Delete an account by ID."""
        with self.session_factory() as session:
            account = session.exec(
                select(Account).where(Account.id == account_id).where(Account.user_id == user_id)
            ).first()
            if account:
                session.delete(account)
                session.commit()
