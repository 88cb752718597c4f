"""Recurring charges and recurring incomes."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

PAYMENT_ACCOUNT = "account"
PAYMENT_CARD = "card"


class Subscription(SQLModel, table=True):
    """A charge that repeats on a billing cycle.

    ``next_billing_date`` is the period waiting to be charged; it only moves
    forward after a successful charge or an explicit skip.
    """

    __tablename__: ClassVar[str] = "subscription"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=128)
    description: Optional[str] = Field(default=None, max_length=500)
    amount: Decimal = Field(nullable=False, max_digits=14, decimal_places=2)
    currency: str = Field(default="CHF", max_length=3)

    billing_cycle: str = Field(default="monthly", nullable=False, max_length=16)
    # Day of month (1-31), or day of week (0=Sunday..6) for weekly cycles.
    billing_day: Optional[int] = Field(default=None)
    start_date: date = Field(nullable=False)
    end_date: Optional[date] = Field(default=None)
    next_billing_date: Optional[date] = Field(default=None, index=True)
    last_processed_date: Optional[date] = Field(default=None)

    is_active: bool = Field(default=True, nullable=False, index=True)
    auto_create_transaction: bool = Field(default=True, nullable=False)
    reminder_days_before: int = Field(default=3, nullable=False)

    payment_method_type: Optional[str] = Field(default=None, max_length=16)
    payment_method_id: Optional[int] = Field(default=None)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    merchant_id: Optional[int] = Field(default=None, foreign_key="merchant.id")

    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class RecurringIncome(SQLModel, table=True):
    """Salary, rent received or other income expected on a cycle."""

    __tablename__: ClassVar[str] = "recurring_income"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    name: str = Field(nullable=False, max_length=128)
    source: Optional[str] = Field(default=None, max_length=128)
    amount: Decimal = Field(nullable=False, max_digits=14, decimal_places=2)
    currency: str = Field(default="CHF", max_length=3)

    frequency: str = Field(default="monthly", nullable=False, max_length=16)
    payment_day: Optional[int] = Field(default=None)
    start_date: date = Field(nullable=False)
    end_date: Optional[date] = Field(default=None)
    next_expected_date: Optional[date] = Field(default=None, index=True)
    last_received_date: Optional[date] = Field(default=None)

    is_active: bool = Field(default=True, nullable=False, index=True)
    auto_create_transaction: bool = Field(default=True, nullable=False)
    to_account_id: Optional[int] = Field(default=None, foreign_key="account.id")
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")

    version: int = Field(default=1, nullable=False)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
