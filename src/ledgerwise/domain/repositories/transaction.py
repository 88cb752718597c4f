"""Transaction repository protocol."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional, Protocol

from ...models.transaction import Transaction


class TransactionRepository(Protocol):
    """Read access to ledger transactions."""

    def get_by_id(self, transaction_id: int, *, user_id: int) -> Optional[Transaction]:
        """Retrieve a transaction by ID."""
        ...

    def list_all(self, *, user_id: int, limit: int = 100, offset: int = 0) -> list[Transaction]:
        ...

    def list_for_source(self, source_type: str, source_id: int, *, user_id: int) -> list[Transaction]:
        """Transactions generated by one subscription, invoice or income."""
        ...

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
        ...
