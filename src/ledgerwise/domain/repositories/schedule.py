"""Invoice and subscription repository protocols."""

from __future__ import annotations

from datetime import date
from typing import Optional, Protocol

from ...models.invoice import Invoice
from ...models.subscription import Subscription


class InvoiceRepository(Protocol):
    def get_by_id(self, invoice_id: int, *, user_id: int) -> Optional[Invoice]:
        ...

    def list_all(self, *, user_id: int, status: Optional[str] = None) -> list[Invoice]:
        ...

    def list_unpaid(self, *, user_id: int) -> list[Invoice]:
        ...

    def list_due_soon(self, today: date, days: int, *, user_id: int) -> list[Invoice]:
        """Unpaid invoices due within ``days`` of ``today``."""
        ...


class SubscriptionRepository(Protocol):
    def get_by_id(self, subscription_id: int, *, user_id: Optional[int] = None) -> Optional[Subscription]:
        ...

    def list_all(self, *, user_id: int, active_only: bool = False) -> list[Subscription]:
        ...

    def list_due(self, today: date, *, user_id: Optional[int] = None) -> list[Subscription]:
        """Active subscriptions whose next billing date is on or before ``today``."""
        ...

    def list_due_soon(self, today: date, days: int, *, user_id: int) -> list[Subscription]:
        ...
