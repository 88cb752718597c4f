"""Expected income on a cycle (salary, rent received)."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Mapping, Optional

from sqlmodel import Session, select

from ..domain.clock import Clock, SystemClock
from ..domain.cycles import BillingCycle, default_billing_day, roll_forward, validate_billing_day
from ..domain.entries import TransactionType
from ..domain.money import require_positive
from ..errors import ConcurrencyConflictError, LedgerError, NotDueError, NotFoundError, ValidationError
from ..infra.database import SessionFactory, compare_and_set
from ..infra.repositories.subscription import SQLModelRecurringIncomeRepository
from ..logging_config import get_logger
from ..models.account import Account
from ..models.subscription import RecurringIncome
from ..models.transaction import Transaction
from .recurrence import RunReport, claim_period, next_period, resume_date
from .transaction_processor import LedgerResult, TransactionProcessor

logger = get_logger("services.recurring_income")

INCOME_SOURCE = "recurring_income"

_SCHEDULE_FIELDS = frozenset({"frequency", "payment_day", "start_date", "end_date"})
_INCOME_EDITABLE = _SCHEDULE_FIELDS | {
    "name",
    "source",
    "amount",
    "currency",
    "auto_create_transaction",
    "to_account_id",
    "category_id",
}


@dataclass(slots=True)
class IncomeOutcome:
    income: RecurringIncome
    period: date
    transaction: Optional[Transaction] = None
    ledger: Optional[LedgerResult] = None


def is_expected(income: RecurringIncome, today: date) -> bool:
    return (
        bool(income.is_active)
        and income.next_expected_date is not None
        and income.next_expected_date <= today
    )


class RecurringIncomeScheduler:
    """Books recurring incomes once per period, mirroring subscription charges."""

    def __init__(
        self,
        session_factory: SessionFactory,
        processor: TransactionProcessor,
        repository: SQLModelRecurringIncomeRepository,
        *,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.processor = processor
        self.repository = repository
        self.clock = clock or SystemClock()

    def create_income(
        self,
        *,
        user_id: int,
        name: str,
        amount: Any,
        frequency: str = BillingCycle.MONTHLY.value,
        start_date: Optional[date] = None,
        payment_day: Optional[int] = None,
        to_account_id: Optional[int] = None,
        **details: Any,
    ) -> RecurringIncome:
        today = self.clock.today()
        cycle = BillingCycle.parse(frequency)
        start = start_date or today
        if payment_day is None:
            payment_day = default_billing_day(cycle, start)
        validate_billing_day(cycle, payment_day)

        income = RecurringIncome(
            user_id=user_id,
            name=name,
            amount=require_positive(amount),
            frequency=cycle.value,
            payment_day=payment_day,
            start_date=start,
            to_account_id=to_account_id,
            **details,
        )
        income.next_expected_date = start if start >= today else roll_forward(start, cycle, payment_day, today)

        with self.session_factory() as session:
            self._check_destination(session, income)
            session.add(income)
            session.flush()
            session.refresh(income)
            logger.info("Recurring income created", extra={"income_id": income.id, "frequency": income.frequency})
            return income

    def toggle(self, income_id: int, *, user_id: int) -> RecurringIncome:
        today = self.clock.today()
        with self.session_factory() as session:
            income = self._load(session, income_id, user_id)
            values: dict[str, Any] = {"is_active": not income.is_active}
            if values["is_active"]:
                resumed = resume_date(
                    income.start_date, income.last_received_date, income.frequency, income.payment_day, today
                )
                if income.end_date is not None and resumed > income.end_date:
                    raise ValidationError("Recurring income has ended and cannot be resumed", income_id=income_id)
                values["next_expected_date"] = resumed
            if not compare_and_set(session, income, values):
                raise ConcurrencyConflictError("Recurring income was modified concurrently", income_id=income_id)
            logger.info("Recurring income toggled", extra={"income_id": income.id, "is_active": income.is_active})
            return income

    def update_income(self, income_id: int, changes: Mapping[str, Any], *, user_id: int) -> RecurringIncome:
        """Edit an income; schedule changes re-derive ``next_expected_date`` like subscriptions do."""

        unknown = sorted(set(changes) - _INCOME_EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(unknown)}", fields=unknown)

        today = self.clock.today()
        with self.session_factory() as session:
            income = self._load(session, income_id, user_id)
            draft = RecurringIncome(**income.model_dump())
            for name, value in changes.items():
                setattr(draft, name, value)

            if not draft.name or not draft.name.strip():
                raise ValidationError("Income name is required", field="name")
            draft.name = draft.name.strip()
            draft.amount = require_positive(draft.amount)
            draft.currency = (draft.currency or "CHF").upper()
            cycle = BillingCycle.parse(draft.frequency)
            draft.frequency = cycle.value
            if "frequency" in changes and "payment_day" not in changes:
                draft.payment_day = default_billing_day(cycle, draft.start_date)
            validate_billing_day(cycle, draft.payment_day)
            if draft.end_date is not None and draft.end_date < draft.start_date:
                raise ValidationError("End date is before the start date", field="end_date")
            if {"to_account_id", "auto_create_transaction"} & set(changes):
                self._check_destination(session, draft)

            if set(changes) & _SCHEDULE_FIELDS and draft.is_active:
                upcoming = resume_date(draft.start_date, draft.last_received_date, cycle.value, draft.payment_day, today)
                if draft.end_date is not None and upcoming > draft.end_date:
                    draft.next_expected_date = None
                    draft.is_active = False
                else:
                    draft.next_expected_date = upcoming

            values = {
                name: getattr(draft, name)
                for name in sorted(_INCOME_EDITABLE | {"next_expected_date", "is_active"})
                if getattr(draft, name) != getattr(income, name)
            }
            if values and not compare_and_set(session, income, values):
                raise ConcurrencyConflictError("Recurring income was modified concurrently", income_id=income_id)
            logger.info(
                "Recurring income updated",
                extra={"income_id": income.id, "fields": sorted(values), "next_expected_date": income.next_expected_date},
            )
            return income

    def mark_received(
        self,
        income_id: int,
        today: Optional[date] = None,
        *,
        user_id: Optional[int] = None,
        create_transaction: bool = True,
    ) -> IncomeOutcome:
        """Book the pending period as received and move to the next one."""

        today = today or self.clock.today()
        with self.session_factory() as session:
            income = self._load(session, income_id, user_id)
            if not is_expected(income, today):
                raise NotDueError(
                    "Income is not expected yet", income_id=income_id, next_expected_date=income.next_expected_date
                )
            period: date = income.next_expected_date  # type: ignore[assignment]
            upcoming = next_period(period, income.frequency, income.payment_day, income.end_date)
            values: dict[str, Any] = {"next_expected_date": upcoming, "last_received_date": period}
            if upcoming is None:
                values["is_active"] = False
            if not claim_period(session, income, date_field="next_expected_date", period=period, values=values):
                raise NotDueError("Period was already received", income_id=income_id, period=period)

            outcome = IncomeOutcome(income=income, period=period)
            if create_transaction:
                if income.to_account_id is None:
                    raise ValidationError("Income has no destination account", income_id=income_id)
                transaction = Transaction(
                    user_id=income.user_id,
                    type=TransactionType.INCOME.value,
                    amount=income.amount,
                    currency=income.currency,
                    title=income.name,
                    description=f"Recurring income: {income.source or income.name}",
                    transaction_date=period,
                    to_account_id=income.to_account_id,
                    category_id=income.category_id,
                    source_type=INCOME_SOURCE,
                    source_id=income.id,
                )
                outcome.ledger = self.processor.create(transaction, session=session)
                outcome.transaction = transaction
            logger.info(
                "Recurring income received",
                extra={"income_id": income.id, "period": period, "next_expected_date": upcoming},
            )
            return outcome

    def run_expected_incomes(self, today: Optional[date] = None) -> RunReport:
        today = today or self.clock.today()
        report = RunReport(run_date=today)
        for income in self.repository.list_expected(today):
            income_id = income.id
            try:
                self.mark_received(income_id, today)  # type: ignore[arg-type]
            except NotDueError:
                report.skipped.append(income_id)  # type: ignore[arg-type]
            except LedgerError as exc:
                report.failed[income_id] = exc.code  # type: ignore[index]
                logger.error(
                    "Recurring income booking failed",
                    extra={"income_id": income_id, "error": exc.code, "reason": exc.message},
                )
            except Exception as exc:  # noqa: BLE001
                report.failed[income_id] = type(exc).__name__  # type: ignore[index]
                logger.exception("Unexpected error booking recurring income", extra={"income_id": income_id})
            else:
                report.processed.append(income_id)  # type: ignore[arg-type]
        logger.info(
            "Expected incomes run",
            extra={"run_date": today, "processed": len(report.processed), "failed": len(report.failed)},
        )
        return report

    def _check_destination(self, session: Session, income: RecurringIncome) -> None:
        if income.to_account_id is not None:
            account = session.get(Account, income.to_account_id)
            if account is None or account.user_id != income.user_id:
                raise NotFoundError("Destination account not found", account_id=income.to_account_id)
        elif income.auto_create_transaction:
            raise ValidationError("Automatic income needs a destination account", field="to_account_id")

    def _load(self, session: Session, income_id: int, user_id: Optional[int]) -> RecurringIncome:
        statement = select(RecurringIncome).where(RecurringIncome.id == income_id)
        if user_id is not None:
            statement = statement.where(RecurringIncome.user_id == user_id)
        income = session.exec(statement.with_for_update()).first()
        if income is None:
            raise NotFoundError("Recurring income not found", income_id=income_id)
        return income


__all__ = ["INCOME_SOURCE", "IncomeOutcome", "RecurringIncomeScheduler", "is_expected"]
