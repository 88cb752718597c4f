"""Spending budgets."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel


class Budget(SQLModel, table=True):
    """A spending limit per period, for one category or for all expenses.

    ``current_period_start``/``current_period_end`` bound the period being
    tracked; ``current_period_spent`` caches the expenses booked inside it.
    """

    __tablename__: ClassVar[str] = "budget"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    # None budgets every expense of the user.
    category_id: Optional[int] = Field(default=None, foreign_key="category.id", index=True)
    name: str = Field(nullable=False, max_length=128)
    description: Optional[str] = Field(default=None, max_length=1000)
    amount: Decimal = Field(nullable=False, max_digits=14, decimal_places=2)
    currency: str = Field(default="CHF", max_length=3)

    period: str = Field(default="monthly", nullable=False, max_length=16)
    start_date: date = Field(nullable=False)
    end_date: Optional[date] = Field(default=None)
    current_period_start: Optional[date] = Field(default=None)
    current_period_end: Optional[date] = Field(default=None, index=True)
    current_period_spent: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)

    rollover_unused: bool = Field(default=False, nullable=False)
    rollover_amount: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)
    # Percent of the effective budget at which spending counts as near the limit.
    alert_threshold: int = Field(default=80, nullable=False)

    is_active: bool = Field(default=True, nullable=False, index=True)
    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
