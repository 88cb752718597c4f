"""SQLModel implementation of Card repository."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlmodel import Session, select

from ...domain.money import to_money
from ...errors import NotFoundError, ValidationError
from ...models.account import Account
from ...models.card import CARD_KINDS, CREDIT, DEBIT, Card
from ..database import SessionFactory
from ._defaults import clear_other_defaults

_EDITABLE = ("name", "network", "last_four", "currency", "credit_limit", "payment_due_day", "account_id")


def _validate_card(session: Session, card: Card, *, user_id: int) -> None:
    if card.kind not in CARD_KINDS:
        raise ValidationError("Card kind must be debit or credit", kind=card.kind)
    if card.account_id is not None:
        account = session.get(Account, card.account_id)
        if account is None or account.user_id != user_id:
            raise NotFoundError("Linked account not found", account_id=card.account_id)
    if card.kind == DEBIT:
        if card.account_id is None:
            raise ValidationError("Debit cards require a linked account")
        if card.credit_limit is not None:
            raise ValidationError("Debit cards do not carry a credit limit")
    if card.kind == CREDIT:
        if card.credit_limit is None or to_money(card.credit_limit) < Decimal("0"):
            raise ValidationError("Credit cards require a non-negative credit limit")
        card.credit_limit = to_money(card.credit_limit)


class SQLModelCardRepository:
    """SQLModel-based card repository implementation."""

    def __init__(self, session_factory: SessionFactory):
        self.session_factory = session_factory

    def get_by_id(self, card_id: int, *, user_id: int) -> Optional[Card]:
        with self.session_factory() as session:
            return session.exec(
                select(Card).where(Card.id == card_id).where(Card.user_id == user_id)
            ).first()

    def get_default(self, *, user_id: int) -> Optional[Card]:
        with self.session_factory() as session:
            return session.exec(
                select(Card).where(Card.user_id == user_id).where(Card.is_default == True)  # noqa: E712
            ).first()

    def list_all(self, *, user_id: int, kind: Optional[str] = None) -> list[Card]:
        with self.session_factory() as session:
            statement = select(Card).where(Card.user_id == user_id)
            if kind:
                statement = statement.where(Card.kind == kind)
            statement = statement.order_by(Card.is_default.desc(), Card.name)  # type: ignore[union-attr]
            return list(session.exec(statement).all())

    def create(self, card: Card, *, user_id: int) -> Card:
        with self.session_factory() as session:
            card.user_id = user_id
            _validate_card(session, card, user_id=user_id)
            card.current_balance = to_money(card.current_balance or 0)
            session.add(card)
            session.flush()
            if card.is_default:
                clear_other_defaults(session, Card, user_id=user_id, keep_id=card.id)
            session.commit()
            session.refresh(card)
            return card

    def update(self, card: Card, *, user_id: int) -> Card:
        with self.session_factory() as session:
            stored = session.exec(
                select(Card).where(Card.id == card.id).where(Card.user_id == user_id)
            ).first()
            if stored is None:
                raise NotFoundError("Card not found", card_id=card.id)
            for field in _EDITABLE:
                setattr(stored, field, getattr(card, field))
            _validate_card(session, stored, user_id=user_id)
            if card.is_default and not stored.is_default:
                clear_other_defaults(session, Card, user_id=user_id, keep_id=stored.id)
                stored.is_default = True
            session.add(stored)
            session.commit()
            session.refresh(stored)
            return stored

    def set_default(self, card_id: int, *, user_id: int) -> Card:
        with self.session_factory() as session:
            card = session.exec(
                select(Card).where(Card.id == card_id).where(Card.user_id == user_id)
            ).first()
            if card is None:
                raise NotFoundError("Card not found", card_id=card_id)
            clear_other_defaults(session, Card, user_id=user_id, keep_id=card.id)
            card.is_default = True
            session.add(card)
            session.commit()
            session.refresh(card)
            return card

    def delete(self, card_id: int, *, user_id: int) -> None:
        with self.session_factory() as session:
            card = session.exec(
                select(Card).where(Card.id == card_id).where(Card.user_id == user_id)
            ).first()
            if card:
                session.delete(card)
                session.commit()
