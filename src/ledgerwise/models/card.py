"""Debit and credit cards."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .account import Account
    from .user import User

DEBIT = "debit"
CREDIT = "credit"
CARD_KINDS = (DEBIT, CREDIT)


class Card(SQLModel, table=True):
    """A payment card.

    Debit cards have no balance of their own: spending goes through the linked
    account. Credit cards track ``current_balance`` as the amount owed.
    """

    __tablename__: ClassVar[str] = "card"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    account_id: Optional[int] = Field(default=None, foreign_key="account.id")
    kind: str = Field(default=DEBIT, nullable=False, max_length=16)
    name: str = Field(nullable=False, max_length=128)
    network: Optional[str] = Field(default=None, max_length=32)
    last_four: Optional[str] = Field(default=None, max_length=4)
    currency: str = Field(default="CHF", max_length=3)
    credit_limit: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    current_balance: Decimal = Field(
        default=Decimal("0.00"), max_digits=14, decimal_places=2, nullable=False
    )
    payment_due_day: Optional[int] = Field(default=None, ge=1, le=31)
    is_default: bool = Field(default=False, nullable=False, index=True)
    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    account: Optional["Account"] = Relationship(
        back_populates="cards",
        sa_relationship=relationship("Account", back_populates="cards"),
    )
    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="cards"))

    @property
    def is_credit(self) -> bool:
        return self.kind == CREDIT

    @property
    def is_debit(self) -> bool:
        return self.kind == DEBIT

    @property
    def available_credit(self) -> Optional[Decimal]:
        """Remaining credit; ``None`` for debit cards or cards without a limit."""

        if not self.is_credit or self.credit_limit is None:
            return None
        return Decimal(self.credit_limit) - Decimal(self.current_balance)

    @property
    def is_over_limit(self) -> bool:
        available = self.available_credit
        return available is not None and available < 0
