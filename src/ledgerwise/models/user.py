"""Owner of ledger data."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import ClassVar, Optional

from sqlalchemy.orm import relationship
from sqlmodel import Field, Relationship, SQLModel


class User(SQLModel, table=True):
    """Account holder; every ledger row is scoped to one user."""

    __tablename__: ClassVar[str] = "user"

    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(nullable=False, unique=True, index=True, max_length=64)
    default_currency: str = Field(default="CHF", max_length=3)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    accounts = Relationship(
        back_populates="user",
        sa_relationship=relationship("Account", back_populates="user"),
    )
    cards = Relationship(
        back_populates="user",
        sa_relationship=relationship("Card", back_populates="user"),
    )
