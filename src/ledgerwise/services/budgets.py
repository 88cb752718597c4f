"""Budgeting domain services.

A budget tracks one period at a time. ``current_period_spent`` caches the
expenses booked inside the period; it is recomputed from the ledger whenever
the period moves or the budget's scope changes, and on demand through
:meth:`BudgetManager.refresh_spending`. Rolling over to the next period is a
claim on the period end the caller observed, so two ticks cannot both roll the
same budget.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional

from sqlalchemy import func
from sqlmodel import Session, select

from ..domain.clock import Clock, SystemClock
from ..domain.cycles import BillingCycle, advance_by_cycle
from ..domain.entries import TransactionType
from ..domain.money import ZERO, money_sum, require_positive, to_money
from ..domain.repositories.budget import BudgetRepository
from ..errors import ConcurrencyConflictError, LedgerError, NotDueError, NotFoundError, ValidationError
from ..infra.database import SessionFactory, compare_and_set
from ..logging_config import get_logger
from ..models.budget import Budget
from ..models.category import Category
from ..models.transaction import Transaction
from .recurrence import RunReport, claim_period

logger = get_logger("services.budgets")

BUDGET_PERIODS = frozenset({BillingCycle.MONTHLY, BillingCycle.QUARTERLY, BillingCycle.YEARLY})

EXCEEDED = "exceeded"
DANGER = "danger"
WARNING = "warning"
HEALTHY = "healthy"

# Points below the alert threshold where a budget starts to count as a warning.
_WARNING_MARGIN = 20

_PERIOD_FIELDS = frozenset({"period", "start_date"})
_BUDGET_EDITABLE = _PERIOD_FIELDS | {
    "name",
    "description",
    "amount",
    "currency",
    "end_date",
    "category_id",
    "rollover_unused",
    "alert_threshold",
}
_TRACKING_FIELDS = frozenset({"current_period_start", "current_period_end", "current_period_spent"})


# ----------------------------------------------------------------------
# Periods
# ----------------------------------------------------------------------


def parse_period(value: str) -> BillingCycle:
    period = BillingCycle.parse(value)
    if period not in BUDGET_PERIODS:
        raise ValidationError("Budgets run monthly, quarterly or yearly", field="period", value=value)
    return period


def period_bounds(period_start: date, period: str, anchor_day: int) -> tuple[date, date]:
    """First and last day of the period opening on ``period_start``."""

    following = advance_by_cycle(period_start, period, anchor_day)
    return period_start, following - timedelta(days=1)


def current_period(start_date: date, period: str, today: date) -> tuple[date, date]:
    """Bounds of the period containing ``today``; a future budget starts with its first period.

    Periods are anchored on the start date's day of month, so a budget that
    starts on the 31st opens its February period on the 29th/28th and its
    March period on the 31st again.
    """

    anchor = start_date.day
    opening = start_date
    if start_date <= today:
        following = advance_by_cycle(opening, period, anchor)
        while following <= today:
            opening = following
            following = advance_by_cycle(opening, period, anchor)
    return period_bounds(opening, period, anchor)


# ----------------------------------------------------------------------
# Health
# ----------------------------------------------------------------------


def effective_budget(budget: Budget) -> Decimal:
    """Base amount plus what the previous period carried over."""
    return to_money(budget.amount) + to_money(budget.rollover_amount or ZERO)


def remaining_amount(budget: Budget) -> Decimal:
    return effective_budget(budget) - to_money(budget.current_period_spent or ZERO)


def spent_percentage(budget: Budget) -> Decimal:
    limit = effective_budget(budget)
    if limit <= ZERO:
        return Decimal("0.0")
    spent = to_money(budget.current_period_spent or ZERO)
    return (spent * 100 / limit).quantize(Decimal("0.1"))


def is_over_budget(budget: Budget) -> bool:
    return to_money(budget.current_period_spent or ZERO) >= effective_budget(budget)


def budget_health(budget: Budget) -> str:
    percentage = spent_percentage(budget)
    if percentage >= 100:
        return EXCEEDED
    if percentage >= budget.alert_threshold:
        return DANGER
    if percentage >= budget.alert_threshold - _WARNING_MARGIN:
        return WARNING
    return HEALTHY


@dataclass(slots=True)
class BudgetVariance:
    """Lightweight DTO for reporting variance."""

    budget_id: int
    category_id: Optional[int]
    planned: Decimal
    actual: Decimal

    @property
    def delta(self) -> Decimal:
        return self.actual - self.planned


def compute_variances(budgets: Iterable[Budget]) -> list[BudgetVariance]:
    """Planned (effective) versus actual spend per budget, worst overrun first."""

    variances = [
        BudgetVariance(
            budget_id=budget.id,  # type: ignore[arg-type]
            category_id=budget.category_id,
            planned=effective_budget(budget),
            actual=to_money(budget.current_period_spent or ZERO),
        )
        for budget in budgets
    ]
    variances.sort(key=lambda item: (-item.delta, item.budget_id))
    return variances


def budget_stats(budgets: Iterable[Budget]) -> dict[str, Any]:
    """Totals over the active budgets of one user."""

    active = [budget for budget in budgets if budget.is_active]
    total_budgeted = money_sum(effective_budget(budget) for budget in active)
    total_spent = money_sum(budget.current_period_spent or ZERO for budget in active)
    overall = Decimal("0.0")
    if total_budgeted > ZERO:
        overall = (total_spent * 100 / total_budgeted).quantize(Decimal("0.1"))
    health = [budget_health(budget) for budget in active]
    return {
        "active_count": len(active),
        "total_budgeted": total_budgeted,
        "total_spent": total_spent,
        "total_remaining": total_budgeted - total_spent,
        "over_budget_count": health.count(EXCEEDED),
        "warning_count": health.count(DANGER),
        "overall_percentage": overall,
    }


def calculate_spending(session: Session, budget: Budget, start: Optional[date], end: Optional[date]) -> Decimal:
    """Expenses the budget's owner booked in ``[start, end]``, limited to its category if it has one."""

    if start is None or end is None:
        return ZERO
    statement = (
        select(func.coalesce(func.sum(Transaction.amount), 0))
        .where(Transaction.user_id == budget.user_id)
        .where(Transaction.type == TransactionType.EXPENSE.value)
        .where(Transaction.transaction_date >= start)
        .where(Transaction.transaction_date <= end)
    )
    if budget.category_id is not None:
        statement = statement.where(Transaction.category_id == budget.category_id)
    return to_money(session.exec(statement).one())


# ----------------------------------------------------------------------
# Manager
# ----------------------------------------------------------------------


class BudgetManager:
    """Creates budgets and moves them from period to period."""

    def __init__(
        self,
        session_factory: SessionFactory,
        repository: BudgetRepository,
        *,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.repository = repository
        self.clock = clock or SystemClock()

    def create_budget(
        self,
        *,
        user_id: int,
        name: str,
        amount: Any,
        period: str = BillingCycle.MONTHLY.value,
        start_date: Optional[date] = None,
        category_id: Optional[int] = None,
        **details: Any,
    ) -> Budget:
        today = self.clock.today()
        budget = Budget(
            user_id=user_id,
            name=name,
            amount=amount,
            period=period,
            start_date=start_date or today,
            category_id=category_id,
            **details,
        )
        _validate(budget)
        budget.current_period_start, budget.current_period_end = current_period(
            budget.start_date, budget.period, today
        )

        with self.session_factory() as session:
            self._check_category(session, budget)
            budget.current_period_spent = calculate_spending(
                session, budget, budget.current_period_start, budget.current_period_end
            )
            session.add(budget)
            session.flush()
            session.refresh(budget)
            logger.info(
                "Budget created",
                extra={
                    "budget_id": budget.id,
                    "period": budget.period,
                    "period_end": budget.current_period_end,
                    "spent": budget.current_period_spent,
                },
            )
            return budget

    def update_budget(self, budget_id: int, changes: Mapping[str, Any], *, user_id: int) -> Budget:
        """Edit a budget; a new period or start date re-derives the tracked period and its spend."""

        unknown = sorted(set(changes) - _BUDGET_EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(unknown)}", fields=unknown)

        today = self.clock.today()
        with self.session_factory() as session:
            budget = self._load(session, budget_id, user_id)
            draft = Budget(**budget.model_dump())
            for name, value in changes.items():
                setattr(draft, name, value)
            _validate(draft)

            if "category_id" in changes:
                self._check_category(session, draft)
            if set(changes) & _PERIOD_FIELDS:
                draft.current_period_start, draft.current_period_end = current_period(
                    draft.start_date, draft.period, today
                )
            if set(changes) & (_PERIOD_FIELDS | {"category_id"}):
                draft.current_period_spent = calculate_spending(
                    session, draft, draft.current_period_start, draft.current_period_end
                )

            values = {
                name: getattr(draft, name)
                for name in sorted(_BUDGET_EDITABLE | _TRACKING_FIELDS)
                if getattr(draft, name) != getattr(budget, name)
            }
            if values and not compare_and_set(session, budget, values):
                raise ConcurrencyConflictError("Budget was modified concurrently", budget_id=budget_id)
            logger.info("Budget updated", extra={"budget_id": budget.id, "fields": sorted(values)})
            return budget

    def toggle(self, budget_id: int, *, user_id: int) -> Budget:
        """Pause or resume. Resuming tracks the period containing today and drops any carry-over."""

        today = self.clock.today()
        with self.session_factory() as session:
            budget = self._load(session, budget_id, user_id)
            values: dict[str, Any] = {"is_active": not budget.is_active}
            if values["is_active"]:
                if budget.end_date is not None and today > budget.end_date:
                    raise ValidationError("Budget has ended and cannot be resumed", budget_id=budget_id)
                start, end = current_period(budget.start_date, budget.period, today)
                values.update(
                    current_period_start=start,
                    current_period_end=end,
                    current_period_spent=calculate_spending(session, budget, start, end),
                    rollover_amount=ZERO,
                )
            if not compare_and_set(session, budget, values):
                raise ConcurrencyConflictError("Budget was modified concurrently", budget_id=budget_id)
            logger.info("Budget toggled", extra={"budget_id": budget.id, "is_active": budget.is_active})
            return budget

    def refresh_spending(self, budget_id: int, *, user_id: int) -> Budget:
        """Recompute the cached spend of the current period from the ledger."""

        with self.session_factory() as session:
            budget = self._load(session, budget_id, user_id)
            spent = calculate_spending(session, budget, budget.current_period_start, budget.current_period_end)
            if spent != budget.current_period_spent and not compare_and_set(
                session, budget, {"current_period_spent": spent}
            ):
                raise ConcurrencyConflictError("Budget was modified concurrently", budget_id=budget_id)
            return budget

    def rollover_period(
        self, budget_id: int, today: Optional[date] = None, *, user_id: Optional[int] = None
    ) -> Budget:
        """Close the ended period and open the one containing ``today``.

        With ``rollover_unused`` the unspent part of the closed period (never
        negative) is carried into the new one. A budget past its end date is
        deactivated instead. Raises :class:`NotDueError` while the current
        period is still running or when another run rolled it first.
        """

        today = today or self.clock.today()
        with self.session_factory() as session:
            budget = self._load(session, budget_id, user_id)
            closing_end = budget.current_period_end
            if not budget.is_active or closing_end is None or closing_end >= today:
                raise NotDueError("Budget period has not ended", budget_id=budget_id, period_end=closing_end)

            values: dict[str, Any]
            if budget.end_date is not None and today > budget.end_date:
                values = {"is_active": False}
            else:
                closing_spent = calculate_spending(session, budget, budget.current_period_start, closing_end)
                carry = ZERO
                if budget.rollover_unused:
                    carry = max(ZERO, effective_budget(budget) - closing_spent)
                start, end = current_period(budget.start_date, budget.period, today)
                values = {
                    "current_period_start": start,
                    "current_period_end": end,
                    "current_period_spent": calculate_spending(session, budget, start, end),
                    "rollover_amount": carry,
                }
            if not claim_period(
                session, budget, date_field="current_period_end", period=closing_end, values=values
            ):
                raise NotDueError("Budget period was already rolled over", budget_id=budget_id)

            logger.info(
                "Budget period rolled over" if budget.is_active else "Budget ended",
                extra={
                    "budget_id": budget.id,
                    "closed_period_end": closing_end,
                    "period_end": budget.current_period_end,
                    "rollover_amount": budget.rollover_amount,
                },
            )
            return budget

    def process_rollovers(self, today: Optional[date] = None) -> RunReport:
        """Roll every budget whose period ended; failures are isolated per budget.

        Budgets that reached their end date are deactivated and reported as
        skipped, like budgets another run rolled first.
        """

        today = today or self.clock.today()
        report = RunReport(run_date=today)
        for budget in self.repository.list_needing_rollover(today):
            budget_id = budget.id
            try:
                rolled = self.rollover_period(budget_id, today)  # type: ignore[arg-type]
            except NotDueError:
                report.skipped.append(budget_id)  # type: ignore[arg-type]
            except LedgerError as exc:
                report.failed[budget_id] = exc.code  # type: ignore[index]
                logger.error(
                    "Budget rollover failed",
                    extra={"budget_id": budget_id, "error": exc.code, "reason": exc.message},
                )
            except Exception as exc:  # noqa: BLE001
                report.failed[budget_id] = type(exc).__name__  # type: ignore[index]
                logger.exception("Unexpected error rolling over budget", extra={"budget_id": budget_id})
            else:
                if rolled.is_active:
                    report.processed.append(budget_id)  # type: ignore[arg-type]
                else:
                    report.skipped.append(budget_id)  # type: ignore[arg-type]

        logger.info(
            "Budget rollovers run",
            extra={
                "run_date": today,
                "processed": len(report.processed),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
            },
        )
        return report

    def _check_category(self, session: Session, budget: Budget) -> None:
        if budget.category_id is None:
            return
        category = session.get(Category, budget.category_id)
        if category is None or category.user_id != budget.user_id:
            raise NotFoundError("Category not found", category_id=budget.category_id)

    def _load(self, session: Session, budget_id: int, user_id: Optional[int]) -> Budget:
        statement = select(Budget).where(Budget.id == budget_id)
        if user_id is not None:
            statement = statement.where(Budget.user_id == user_id)
        budget = session.exec(statement.with_for_update()).first()
        if budget is None:
            raise NotFoundError("Budget not found", budget_id=budget_id)
        return budget


def _validate(budget: Budget) -> None:
    if not budget.name or not budget.name.strip():
        raise ValidationError("Budget name is required", field="name")
    budget.name = budget.name.strip()
    budget.amount = require_positive(budget.amount)
    budget.currency = (budget.currency or "CHF").upper()
    budget.period = parse_period(budget.period).value
    if budget.end_date is not None and budget.end_date <= budget.start_date:
        raise ValidationError("End date must be after the start date", field="end_date")
    if not 0 <= budget.alert_threshold <= 100:
        raise ValidationError("Alert threshold must be between 0 and 100", field="alert_threshold")


__all__ = [
    "BUDGET_PERIODS",
    "BudgetManager",
    "BudgetVariance",
    "budget_health",
    "budget_stats",
    "calculate_spending",
    "compute_variances",
    "current_period",
    "effective_budget",
    "is_over_budget",
    "period_bounds",
    "remaining_amount",
    "spent_percentage",
]
