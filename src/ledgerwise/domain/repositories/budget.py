"""Budget repository protocol."""

from __future__ import annotations

from datetime import date
from typing import Optional, Protocol

from ...models.budget import Budget


class BudgetRepository(Protocol):
    def get_by_id(self, budget_id: int, *, user_id: int) -> Optional[Budget]:
        ...

    def list_all(self, *, user_id: int, active_only: bool = False) -> list[Budget]:
        ...

    def list_for_category(self, category_id: Optional[int], *, user_id: int) -> list[Budget]:
        """Active budgets tracking ``category_id``; None selects the overall budgets."""
        ...

    def list_needing_rollover(self, today: date) -> list[Budget]:
        """Active budgets whose current period ended before ``today``."""
        ...
