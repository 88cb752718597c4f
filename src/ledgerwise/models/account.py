"""Bank account holding a signed balance."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:  # pragma: no cover
    from .card import Card
    from .user import User

ACCOUNT_TYPES = ("checking", "savings", "cash", "investment", "other")


class Account(SQLModel, table=True):
    """Balance increases on incoming transactions and decreases on outgoing ones."""

    __tablename__: ClassVar[str] = "account"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=128)
    account_type: str = Field(default="checking", max_length=32)
    bank_name: Optional[str] = Field(default=None, max_length=128)
    currency: str = Field(default="CHF", max_length=3, description="ISO-4217 currency code")
    balance: Decimal = Field(default=Decimal("0.00"), max_digits=14, decimal_places=2, nullable=False)
    is_default: bool = Field(default=False, nullable=False, index=True)
    # Bumped on every balance write; writes compare-and-set against it.
    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    cards: list["Card"] = Relationship(
        back_populates="account",
        sa_relationship=relationship("Card", back_populates="account"),
    )
    user: "User" = Relationship(sa_relationship=relationship("User", back_populates="accounts"))
