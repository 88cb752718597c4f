"""Recurrence scheduler for subscriptions.

A subscription's ``next_billing_date`` is the period waiting to be charged.
It only moves forward through :func:`claim_period`, a compare-and-set on the
period the caller observed, so two ticks racing on the same subscription can
never both charge it. The claim and the charge share one unit of work: a
failed charge rolls the claim back and the next tick retries the same period.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, SQLModel, select

from ..domain.clock import Clock, SystemClock
from ..domain.cycles import (
    BillingCycle,
    advance_by_cycle,
    days_between,
    default_billing_day,
    occurrences_between,
    roll_forward,
    validate_billing_day,
)
from ..domain.entries import TransactionType
from ..domain.money import require_positive, to_money
from ..domain.repositories.schedule import SubscriptionRepository
from ..errors import ConcurrencyConflictError, LedgerError, NotDueError, NotFoundError, ValidationError
from ..infra.database import SessionFactory, compare_and_set
from ..logging_config import get_logger
from ..models.account import Account
from ..models.card import Card
from ..models.subscription import PAYMENT_ACCOUNT, PAYMENT_CARD, Subscription
from ..models.transaction import Transaction
from .transaction_processor import LedgerResult, TransactionProcessor

logger = get_logger("services.recurrence")

SUBSCRIPTION_SOURCE = "subscription"

# Days past the billing date before a period counts as overdue.
GRACE_WINDOW_DAYS = 0

_PERIODS_PER_YEAR = {
    BillingCycle.DAILY: Decimal(365),
    BillingCycle.WEEKLY: Decimal(52),
    BillingCycle.MONTHLY: Decimal(12),
    BillingCycle.QUARTERLY: Decimal(4),
    BillingCycle.YEARLY: Decimal(1),
}

_SCHEDULE_FIELDS = frozenset({"billing_cycle", "billing_day", "start_date", "end_date"})
_PAYMENT_FIELDS = frozenset({"payment_method_type", "payment_method_id", "auto_create_transaction"})
_SUBSCRIPTION_EDITABLE = (
    _SCHEDULE_FIELDS
    | _PAYMENT_FIELDS
    | {"name", "description", "amount", "currency", "reminder_days_before", "category_id", "merchant_id"}
)


# ----------------------------------------------------------------------
# Pure predicates
# ----------------------------------------------------------------------


def is_due(subscription: Subscription, today: date) -> bool:
    return (
        bool(subscription.is_active)
        and subscription.next_billing_date is not None
        and subscription.next_billing_date <= today
    )


def is_overdue(subscription: Subscription, today: date) -> bool:
    if not is_due(subscription, today):
        return False
    return days_between(subscription.next_billing_date, today) > GRACE_WINDOW_DAYS  # type: ignore[arg-type]


def is_due_soon(subscription: Subscription, today: date, reminder_days: int) -> bool:
    if not subscription.is_active or subscription.next_billing_date is None:
        return False
    return 0 <= days_between(today, subscription.next_billing_date) <= reminder_days


def yearly_total(subscription: Subscription) -> Decimal:
    cycle = BillingCycle.parse(subscription.billing_cycle)
    return to_money(Decimal(subscription.amount) * _PERIODS_PER_YEAR[cycle])


def monthly_equivalent(subscription: Subscription) -> Decimal:
    return to_money(yearly_total(subscription) / Decimal(12))


@dataclass(frozen=True, slots=True)
class UpcomingBilling:
    subscription_id: int
    name: str
    billing_date: date
    amount: Decimal
    currency: str


def upcoming_billings(
    subscriptions: Sequence[Subscription], start: date, end: date
) -> list[UpcomingBilling]:
    """Every billing of the active subscriptions falling in ``[start, end]``, by date."""

    billings: list[UpcomingBilling] = []
    for subscription in subscriptions:
        if not subscription.is_active or subscription.next_billing_date is None:
            continue
        last_day = min(end, subscription.end_date) if subscription.end_date else end
        for billing_date in occurrences_between(
            subscription.next_billing_date,
            subscription.billing_cycle,
            subscription.billing_day,
            start,
            last_day,
        ):
            billings.append(
                UpcomingBilling(
                    subscription_id=subscription.id,  # type: ignore[arg-type]
                    name=subscription.name,
                    billing_date=billing_date,
                    amount=to_money(subscription.amount),
                    currency=subscription.currency,
                )
            )
    billings.sort(key=lambda item: (item.billing_date, item.name))
    return billings


# ----------------------------------------------------------------------
# Period claim
# ----------------------------------------------------------------------


def claim_period(
    session: Session,
    row: SQLModel,
    *,
    date_field: str,
    period: date,
    values: Mapping[str, Any],
) -> bool:
    """Move a schedule row off ``period`` if nobody else has yet.

    The update only matches while the row is still active and still waiting
    on ``period``. Returns False when another writer claimed it first.
    """

    table = type(row).__table__  # type: ignore[attr-defined]
    version = row.version  # type: ignore[attr-defined]
    session.flush()
    result = session.connection().execute(
        update(table)
        .where(table.c.id == row.id)  # type: ignore[attr-defined]
        .where(table.c[date_field] == period)
        .where(table.c.is_active == True)  # noqa: E712
        .values({**values, "version": version + 1})
    )
    if result.rowcount != 1:
        return False
    for name, value in values.items():
        set_committed_value(row, name, value)
    set_committed_value(row, "version", version + 1)
    return True


def resume_date(
    first: date, last_done: Optional[date], cycle: str, billing_day: Optional[int], today: date
) -> date:
    """First period on or after ``today`` following ``last_done``, or the schedule's start."""

    if last_done is not None and last_done >= first:
        base = advance_by_cycle(last_done, cycle, billing_day)
    else:
        base = first
    return roll_forward(base, cycle, billing_day, today)


def next_period(current: date, cycle: str, billing_day: Optional[int], end_date: Optional[date]) -> Optional[date]:
    """Cycle date after ``current``, or None once it would pass ``end_date``."""

    upcoming = advance_by_cycle(current, cycle, billing_day)
    if end_date is not None and upcoming > end_date:
        return None
    return upcoming


# ----------------------------------------------------------------------
# Scheduler
# ----------------------------------------------------------------------


@dataclass(slots=True)
class ProcessOutcome:
    subscription: Subscription
    period: date
    transaction: Optional[Transaction] = None
    ledger: Optional[LedgerResult] = None


@dataclass(slots=True)
class RunReport:
    """Per-item results of one batch run."""

    run_date: date
    processed: list[int] = field(default_factory=list)
    skipped: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_date": self.run_date.isoformat(),
            "processed": list(self.processed),
            "skipped": list(self.skipped),
            "failed": dict(self.failed),
        }


class SubscriptionScheduler:
    """Creates subscriptions and charges them period by period."""

    def __init__(
        self,
        session_factory: SessionFactory,
        processor: TransactionProcessor,
        repository: SubscriptionRepository,
        *,
        clock: Optional[Clock] = None,
    ):
        self.session_factory = session_factory
        self.processor = processor
        self.repository = repository
        self.clock = clock or SystemClock()

    def create_subscription(
        self,
        *,
        user_id: int,
        name: str,
        amount: Any,
        billing_cycle: str = BillingCycle.MONTHLY.value,
        start_date: Optional[date] = None,
        billing_day: Optional[int] = None,
        payment_method_type: Optional[str] = None,
        payment_method_id: Optional[int] = None,
        **details: Any,
    ) -> Subscription:
        today = self.clock.today()
        cycle = BillingCycle.parse(billing_cycle)
        start = start_date or today
        if billing_day is None:
            billing_day = default_billing_day(cycle, start)
        validate_billing_day(cycle, billing_day)
        if not name or not name.strip():
            raise ValidationError("Subscription name is required", field="name")

        subscription = Subscription(
            user_id=user_id,
            name=name.strip(),
            amount=require_positive(amount),
            billing_cycle=cycle.value,
            billing_day=billing_day,
            start_date=start,
            payment_method_type=payment_method_type,
            payment_method_id=payment_method_id,
            **details,
        )
        subscription.currency = (subscription.currency or "CHF").upper()
        if subscription.end_date is not None and subscription.end_date < start:
            raise ValidationError("End date is before the start date", field="end_date")
        subscription.next_billing_date = (
            start if start >= today else roll_forward(start, cycle, billing_day, today)
        )

        with self.session_factory() as session:
            self._check_payment_method(session, subscription)
            session.add(subscription)
            session.flush()
            session.refresh(subscription)
            logger.info(
                "Subscription created",
                extra={
                    "subscription_id": subscription.id,
                    "cycle": subscription.billing_cycle,
                    "next_billing_date": subscription.next_billing_date,
                },
            )
            return subscription

    def toggle(self, subscription_id: int, *, user_id: int) -> Subscription:
        """Pause or resume. Resuming never back-charges missed periods."""

        today = self.clock.today()
        with self.session_factory() as session:
            subscription = self._load(session, subscription_id, user_id)
            values: dict[str, Any] = {"is_active": not subscription.is_active}
            if values["is_active"]:
                resumed = resume_date(
                    subscription.start_date,
                    subscription.last_processed_date,
                    subscription.billing_cycle,
                    subscription.billing_day,
                    today,
                )
                if subscription.end_date is not None and resumed > subscription.end_date:
                    raise ValidationError(
                        "Subscription has ended and cannot be resumed", subscription_id=subscription_id
                    )
                values["next_billing_date"] = resumed
            if not compare_and_set(session, subscription, values):
                raise ConcurrencyConflictError(
                    "Subscription was modified concurrently", subscription_id=subscription_id
                )
            logger.info(
                "Subscription toggled",
                extra={"subscription_id": subscription.id, "is_active": subscription.is_active},
            )
            return subscription

    def update_subscription(
        self, subscription_id: int, changes: Mapping[str, Any], *, user_id: int
    ) -> Subscription:
        """Edit a subscription in one unit of work.

        A change to cycle, billing day, start or end date re-derives
        ``next_billing_date`` as the first period on or after today that
        follows the last processed one. Changing the cycle without a billing
        day re-anchors it on the start date. Paused subscriptions keep their
        date until resumed.
        """

        unknown = sorted(set(changes) - _SUBSCRIPTION_EDITABLE)
        if unknown:
            raise ValidationError(f"Cannot change {', '.join(unknown)}", fields=unknown)

        today = self.clock.today()
        with self.session_factory() as session:
            subscription = self._load(session, subscription_id, user_id)
            draft = Subscription(**subscription.model_dump())
            for name, value in changes.items():
                setattr(draft, name, value)

            if not draft.name or not draft.name.strip():
                raise ValidationError("Subscription name is required", field="name")
            draft.name = draft.name.strip()
            draft.amount = require_positive(draft.amount)
            draft.currency = (draft.currency or "CHF").upper()
            cycle = BillingCycle.parse(draft.billing_cycle)
            draft.billing_cycle = cycle.value
            if "billing_cycle" in changes and "billing_day" not in changes:
                draft.billing_day = default_billing_day(cycle, draft.start_date)
            validate_billing_day(cycle, draft.billing_day)
            if draft.end_date is not None and draft.end_date < draft.start_date:
                raise ValidationError("End date is before the start date", field="end_date")
            if set(changes) & _PAYMENT_FIELDS:
                self._check_payment_method(session, draft)

            if set(changes) & _SCHEDULE_FIELDS and draft.is_active:
                upcoming = resume_date(
                    draft.start_date, draft.last_processed_date, cycle.value, draft.billing_day, today
                )
                if draft.end_date is not None and upcoming > draft.end_date:
                    draft.next_billing_date = None
                    draft.is_active = False
                else:
                    draft.next_billing_date = upcoming

            values = {
                name: getattr(draft, name)
                for name in sorted(_SUBSCRIPTION_EDITABLE | {"next_billing_date", "is_active"})
                if getattr(draft, name) != getattr(subscription, name)
            }
            if values and not compare_and_set(session, subscription, values):
                raise ConcurrencyConflictError(
                    "Subscription was modified concurrently", subscription_id=subscription_id
                )
            logger.info(
                "Subscription updated",
                extra={
                    "subscription_id": subscription.id,
                    "fields": sorted(values),
                    "next_billing_date": subscription.next_billing_date,
                },
            )
            return subscription

    def skip(self, subscription_id: int, *, user_id: int) -> Subscription:
        """Move past the pending period without charging it."""

        with self.session_factory() as session:
            subscription = self._load(session, subscription_id, user_id)
            period = subscription.next_billing_date
            if not subscription.is_active or period is None:
                raise NotDueError("Subscription has no pending period to skip", subscription_id=subscription_id)
            upcoming = next_period(
                period, subscription.billing_cycle, subscription.billing_day, subscription.end_date
            )
            values: dict[str, Any] = {"next_billing_date": upcoming}
            if upcoming is None:
                values["is_active"] = False
            if not claim_period(session, subscription, date_field="next_billing_date", period=period, values=values):
                raise NotDueError("Period was already handled", subscription_id=subscription_id)
            logger.info(
                "Subscription period skipped",
                extra={"subscription_id": subscription.id, "period": period, "next_billing_date": upcoming},
            )
            return subscription

    def process(
        self,
        subscription_id: int,
        today: Optional[date] = None,
        *,
        charge: Optional[bool] = None,
        user_id: Optional[int] = None,
        booked_on: Optional[date] = None,
    ) -> ProcessOutcome:
        """Charge the pending period and advance to the next one.

        ``charge=None`` follows ``auto_create_transaction``. Raises
        :class:`NotDueError` without touching anything when the subscription
        is inactive, not yet due, or its period was taken by a concurrent run.
        """

        today = today or self.clock.today()
        with self.session_factory() as session:
            subscription = self._load(session, subscription_id, user_id)
            if not is_due(subscription, today):
                raise NotDueError(
                    "Subscription is not due" if subscription.is_active else "Subscription is paused",
                    subscription_id=subscription_id,
                    next_billing_date=subscription.next_billing_date,
                    is_active=subscription.is_active,
                )

            period: date = subscription.next_billing_date  # type: ignore[assignment]
            upcoming = next_period(
                period, subscription.billing_cycle, subscription.billing_day, subscription.end_date
            )
            values: dict[str, Any] = {"next_billing_date": upcoming, "last_processed_date": period}
            if upcoming is None:
                values["is_active"] = False
            if not claim_period(session, subscription, date_field="next_billing_date", period=period, values=values):
                raise NotDueError("Period was already processed", subscription_id=subscription_id, period=period)

            outcome = ProcessOutcome(subscription=subscription, period=period)
            should_charge = subscription.auto_create_transaction if charge is None else charge
            if should_charge:
                transaction = self._charge_transaction(subscription, booked_on or period)
                outcome.ledger = self.processor.create(transaction, session=session)
                outcome.transaction = transaction

            logger.info(
                "Subscription processed",
                extra={
                    "subscription_id": subscription.id,
                    "period": period,
                    "charged": bool(should_charge),
                    "next_billing_date": upcoming,
                    "ended": upcoming is None,
                },
            )
            return outcome

    def pay_now(self, subscription_id: int, *, user_id: int) -> ProcessOutcome:
        """Manual payment of the pending period, booked today."""

        today = self.clock.today()
        return self.process(subscription_id, today, charge=True, user_id=user_id, booked_on=today)

    def run_due_subscriptions(self, today: Optional[date] = None) -> RunReport:
        """Process every due subscription once; failures are isolated per subscription."""

        today = today or self.clock.today()
        report = RunReport(run_date=today)
        for subscription in self.repository.list_due(today):
            subscription_id = subscription.id
            try:
                self.process(subscription_id, today)  # type: ignore[arg-type]
            except NotDueError:
                report.skipped.append(subscription_id)  # type: ignore[arg-type]
            except LedgerError as exc:
                report.failed[subscription_id] = exc.code  # type: ignore[index]
                logger.error(
                    "Subscription charge failed",
                    extra={"subscription_id": subscription_id, "error": exc.code, "reason": exc.message},
                )
            except Exception as exc:  # noqa: BLE001
                report.failed[subscription_id] = type(exc).__name__  # type: ignore[index]
                logger.exception("Unexpected error processing subscription", extra={"subscription_id": subscription_id})
            else:
                report.processed.append(subscription_id)  # type: ignore[arg-type]

        logger.info(
            "Due subscriptions run",
            extra={
                "run_date": today,
                "processed": len(report.processed),
                "skipped": len(report.skipped),
                "failed": len(report.failed),
            },
        )
        return report

    def _charge_transaction(self, subscription: Subscription, booked_on: date) -> Transaction:
        transaction = Transaction(
            user_id=subscription.user_id,
            type=TransactionType.EXPENSE.value,
            amount=subscription.amount,
            currency=subscription.currency,
            title=subscription.name,
            description=f"Subscription payment: {subscription.name}",
            transaction_date=booked_on,
            category_id=subscription.category_id,
            merchant_id=subscription.merchant_id,
            source_type=SUBSCRIPTION_SOURCE,
            source_id=subscription.id,
        )
        if subscription.payment_method_type == PAYMENT_ACCOUNT:
            transaction.from_account_id = subscription.payment_method_id
        elif subscription.payment_method_type == PAYMENT_CARD:
            transaction.from_card_id = subscription.payment_method_id
        else:
            raise ValidationError(
                "Subscription has no payment method to charge", subscription_id=subscription.id
            )
        return transaction

    def _check_payment_method(self, session: Session, subscription: Subscription) -> None:
        kind = subscription.payment_method_type
        if kind is None and subscription.payment_method_id is None:
            if subscription.auto_create_transaction:
                raise ValidationError(
                    "Automatic charges need a payment method", field="payment_method_type"
                )
            return
        model = {PAYMENT_ACCOUNT: Account, PAYMENT_CARD: Card}.get(kind)  # type: ignore[arg-type]
        if model is None:
            raise ValidationError(f"Unknown payment method type: {kind!r}", field="payment_method_type")
        target = session.get(model, subscription.payment_method_id)
        if target is None or target.user_id != subscription.user_id:
            raise NotFoundError(
                f"Payment {kind} not found", payment_method_id=subscription.payment_method_id
            )

    def _load(self, session: Session, subscription_id: int, user_id: Optional[int]) -> Subscription:
        statement = select(Subscription).where(Subscription.id == subscription_id)
        if user_id is not None:
            statement = statement.where(Subscription.user_id == user_id)
        subscription = session.exec(statement.with_for_update()).first()
        if subscription is None:
            raise NotFoundError("Subscription not found", subscription_id=subscription_id)
        return subscription


__all__ = [
    "GRACE_WINDOW_DAYS",
    "ProcessOutcome",
    "RunReport",
    "SubscriptionScheduler",
    "UpcomingBilling",
    "claim_period",
    "is_due",
    "is_due_soon",
    "is_overdue",
    "monthly_equivalent",
    "next_period",
    "resume_date",
    "upcoming_billings",
    "yearly_total",
]
