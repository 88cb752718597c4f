"""SQLModel definition for ledger transactions."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel


class Transaction(SQLModel, table=True):
    """A single ledger movement.

    ``amount`` is always positive; direction comes from ``type`` and which of
    the four instrument slots are filled (see ``ledgerwise.domain.entries``).
    """

    __tablename__: ClassVar[str] = "transaction"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    type: str = Field(nullable=False, max_length=16, index=True)
    amount: Decimal = Field(nullable=False, max_digits=14, decimal_places=2)
    currency: str = Field(default="CHF", max_length=3, description="ISO-4217 currency code")
    title: str = Field(default="", max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    transaction_date: date = Field(nullable=False, index=True)

    from_account_id: Optional[int] = Field(default=None, foreign_key="account.id", index=True)
    from_card_id: Optional[int] = Field(default=None, foreign_key="card.id", index=True)
    to_account_id: Optional[int] = Field(default=None, foreign_key="account.id", index=True)
    to_card_id: Optional[int] = Field(default=None, foreign_key="card.id", index=True)

    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    merchant_id: Optional[int] = Field(default=None, foreign_key="merchant.id")

    # Account a debit-card movement actually hit when applied; reversal targets it.
    settled_account_id: Optional[int] = Field(default=None, foreign_key="account.id")

    # What generated the row: subscription, invoice or recurring_income.
    source_type: Optional[str] = Field(default=None, max_length=32, index=True)
    source_id: Optional[int] = Field(default=None, index=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def snapshot(self) -> "Transaction":
        """Detached copy holding the current field values."""

        return Transaction(**self.model_dump())
