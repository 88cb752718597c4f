"""Invoices (bills to pay), one-off or recurring."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import ClassVar, Optional

from sqlmodel import Field, SQLModel

PENDING = "pending"
PAID = "paid"
OVERDUE = "overdue"
CANCELLED = "cancelled"
INVOICE_STATUSES = (PENDING, PAID, OVERDUE, CANCELLED)


class Invoice(SQLModel, table=True):
    """A bill tracked from issue to payment.

    A recurring invoice is a single row that advances to the next cycle each
    time it is paid; ``times_paid`` counts completed cycles.
    """

    __tablename__: ClassVar[str] = "invoice"

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", nullable=False, index=True)
    invoice_number: Optional[str] = Field(default=None, max_length=64)
    creditor_name: Optional[str] = Field(default=None, max_length=128)
    creditor_iban: Optional[str] = Field(default=None, max_length=34)
    payment_reference: Optional[str] = Field(default=None, max_length=64)
    notes: Optional[str] = Field(default=None, max_length=1000)
    amount: Decimal = Field(nullable=False, max_digits=14, decimal_places=2)
    currency: str = Field(default="CHF", max_length=3)

    status: str = Field(default=PENDING, nullable=False, max_length=16, index=True)
    issue_date: date = Field(nullable=False)
    due_date: Optional[date] = Field(default=None, index=True)
    paid_date: Optional[date] = Field(default=None)
    last_paid_date: Optional[date] = Field(default=None)

    is_recurring: bool = Field(default=False, nullable=False)
    frequency: Optional[str] = Field(default=None, max_length=16)
    billing_day: Optional[int] = Field(default=None, ge=1, le=31)
    next_due_date: Optional[date] = Field(default=None)
    times_paid: int = Field(default=0, nullable=False)

    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    merchant_id: Optional[int] = Field(default=None, foreign_key="merchant.id")
    # Set when the invoice is a card statement; paying it settles that card.
    settles_card_id: Optional[int] = Field(default=None, foreign_key="card.id")

    # Bumped by every state change; transitions compare-and-set against it.
    version: int = Field(default=1, nullable=False)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
