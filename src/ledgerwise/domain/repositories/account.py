"""Account and card repository protocols."""

from __future__ import annotations

from typing import Optional, Protocol

from ...models.account import Account
from ...models.card import Card


class AccountRepository(Protocol):
    """Repository for managing account entities."""

    def get_by_id(self, account_id: int, *, user_id: int) -> Optional[Account]:
        """Retrieve an account by ID."""
        ...

    def get_default(self, *, user_id: int) -> Optional[Account]:
        """Return the user's default account, if one is set."""
        ...

    def list_all(self, *, user_id: int) -> list[Account]:
        ...

    def create(self, account: Account, *, user_id: int) -> Account:
        ...

    def update(self, account: Account, *, user_id: int) -> Account:
        ...

    def set_default(self, account_id: int, *, user_id: int) -> Account:
        """Make the account the only default for its owner."""
        ...

    def delete(self, account_id: int, *, user_id: int) -> None:
        ...


class CardRepository(Protocol):
    """Repository for managing card entities."""

    def get_by_id(self, card_id: int, *, user_id: int) -> Optional[Card]:
        ...

    def get_default(self, *, user_id: int) -> Optional[Card]:
        ...

    def list_all(self, *, user_id: int, kind: Optional[str] = None) -> list[Card]:
        ...

    def create(self, card: Card, *, user_id: int) -> Card:
        ...

    def update(self, card: Card, *, user_id: int) -> Card:
        ...

    def set_default(self, card_id: int, *, user_id: int) -> Card:
        ...

    def delete(self, card_id: int, *, user_id: int) -> None:
        ...
