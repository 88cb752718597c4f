"""Transaction processor: the only writer of account and card balances.

Each public call runs as one unit of work. Callers that already hold a
session (invoice payments, scheduled charges) pass it in so the balance
writes commit or roll back together with their own row changes.

Balance writes are compare-and-set on ``(id, version)``: a concurrent writer
that got there first makes the update match zero rows, which surfaces as
:class:`ConcurrencyConflictError` and rolls back the whole unit of work.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Iterator, Mapping, Optional, Union

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value
from sqlmodel import Session, select

from ..domain.clock import Clock, SystemClock
from ..domain.cycles import as_date
from ..domain.entries import (
    ACCOUNT,
    CARD,
    CardPayment,
    Effect,
    LedgerEntry,
    entry_from_transaction,
)
from ..domain.money import ZERO, to_money
from ..errors import ConcurrencyConflictError, NotFoundError, ValidationError
from ..infra.database import SessionFactory
from ..logging_config import get_logger
from ..models.account import Account
from ..models.card import Card
from ..models.transaction import Transaction

logger = get_logger("services.transaction_processor")

Instrument = Union[Account, Card]

_BALANCE_FIELDS = {ACCOUNT: (Account, "balance"), CARD: (Card, "current_balance")}

# Fields callers never set; the ledger and the recurrence services own them.
_IMMUTABLE = frozenset({"id", "user_id", "source_type", "source_id", "settled_account_id", "created_at"})


@dataclass(slots=True)
class AppliedEffect:
    """A balance write that was performed."""

    instrument: str
    instrument_id: int
    delta: Decimal
    balance_after: Decimal


@dataclass(slots=True)
class LedgerResult:
    """Outcome of apply/reverse/edit."""

    transaction: Optional[Transaction]
    effects: list[AppliedEffect] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def delta_for(self, instrument: str, instrument_id: int) -> Decimal:
        """Net change applied to one instrument across all effects."""

        return sum(
            (e.delta for e in self.effects if e.instrument == instrument and e.instrument_id == instrument_id),
            ZERO,
        )

    def merge(self, other: "LedgerResult") -> "LedgerResult":
        self.effects.extend(other.effects)
        self.warnings.extend(other.warnings)
        return self


@dataclass(slots=True)
class _Write:
    instrument: str
    row: Instrument
    delta: Decimal


def write_balance(session: Session, instrument: str, row: Instrument, delta: Decimal) -> Decimal:
    """Add ``delta`` to the instrument's balance field with a version check.

    Returns the new balance. Raises :class:`ConcurrencyConflictError` when the
    row's version no longer matches what this session read.
    """

    model, column = _BALANCE_FIELDS[instrument]
    table = model.__table__  # type: ignore[attr-defined]
    expected_version = row.version
    new_value = to_money(Decimal(getattr(row, column)) + delta)

    session.flush()
    result = session.connection().execute(
        update(table)
        .where(table.c.id == row.id)
        .where(table.c.version == expected_version)
        .values({column: new_value, "version": expected_version + 1})
    )
    if result.rowcount != 1:
        raise ConcurrencyConflictError(
            f"{instrument} {row.id} was modified concurrently",
            instrument=instrument,
            instrument_id=row.id,
            expected_version=expected_version,
        )
    set_committed_value(row, column, new_value)
    set_committed_value(row, "version", expected_version + 1)
    return new_value


def check_writable_fields(names: Iterable[str]) -> None:
    """Reject fields callers may not set and names the transaction table does not have."""

    names = set(names)
    blocked = sorted(names & _IMMUTABLE)
    if blocked:
        raise ValidationError(f"Cannot change {', '.join(blocked)}", fields=blocked)
    unknown = sorted(name for name in names if name not in Transaction.model_fields)
    if unknown:
        raise ValidationError(f"Unknown transaction fields: {', '.join(unknown)}", fields=unknown)


class TransactionProcessor:
    """Applies, reverses and edits the balance effects of transactions."""

    def __init__(self, session_factory: SessionFactory, *, clock: Optional[Clock] = None):
        self.session_factory = session_factory
        self.clock = clock or SystemClock()

    @contextmanager
    def _unit_of_work(self, session: Optional[Session]) -> Iterator[Session]:
        if session is not None:
            yield session
            return
        with self.session_factory() as own:
            yield own

    # ------------------------------------------------------------------
    # Balance effects
    # ------------------------------------------------------------------

    def apply(self, transaction: Transaction, *, session: Optional[Session] = None) -> LedgerResult:
        """Apply the type-specific balance effects of ``transaction``."""

        entry = entry_from_transaction(transaction)
        with self._unit_of_work(session) as active:
            return self._execute(active, transaction, entry, reverse=False)

    def reverse(self, transaction: Transaction, *, session: Optional[Session] = None) -> LedgerResult:
        """Apply the exact negation of ``transaction``'s effects."""

        entry = entry_from_transaction(transaction)
        with self._unit_of_work(session) as active:
            return self._execute(active, transaction, entry, reverse=True)

    def edit(
        self, old: Transaction, new: Transaction, *, session: Optional[Session] = None
    ) -> LedgerResult:
        """Reverse ``old`` then apply ``new`` as one unit of work."""

        old_entry = entry_from_transaction(old)
        new_entry = entry_from_transaction(new)
        with self._unit_of_work(session) as active:
            result = self._execute(active, old, old_entry, reverse=True)
            result.merge(self._execute(active, new, new_entry, reverse=False))
            result.transaction = new
            return result

    # ------------------------------------------------------------------
    # Row lifecycle
    # ------------------------------------------------------------------

    def create(self, transaction: Transaction, *, session: Optional[Session] = None) -> LedgerResult:
        """Persist a new transaction and apply its effects."""

        if transaction.user_id is None:
            raise ValidationError("Transaction requires an owner", field="user_id")
        entry = entry_from_transaction(transaction)
        transaction.type = entry.type.value
        transaction.amount = entry.amount
        transaction.currency = (transaction.currency or "CHF").upper()
        transaction.transaction_date = as_date(transaction.transaction_date or self.clock.today())

        with self._unit_of_work(session) as active:
            active.add(transaction)
            active.flush()
            result = self._execute(active, transaction, entry, reverse=False)
            logger.info(
                "Transaction recorded",
                extra={"transaction_id": transaction.id, "type": transaction.type, "amount": str(entry.amount)},
            )
            return result

    def update(
        self,
        transaction_id: int,
        changes: Mapping[str, Any],
        *,
        user_id: int,
        session: Optional[Session] = None,
    ) -> LedgerResult:
        """Change a stored transaction, moving its balance effects accordingly."""

        check_writable_fields(changes)

        with self._unit_of_work(session) as active:
            row = self._load_transaction(active, transaction_id, user_id)
            previous = row.snapshot()
            for name, value in changes.items():
                setattr(row, name, value)
            entry = entry_from_transaction(row)
            row.amount = entry.amount
            row.transaction_date = as_date(row.transaction_date)
            active.add(row)
            result = self.edit(previous, row, session=active)
            logger.info(
                "Transaction edited",
                extra={"transaction_id": row.id, "fields": sorted(changes)},
            )
            return result

    def delete(
        self, transaction_id: int, *, user_id: int, session: Optional[Session] = None
    ) -> LedgerResult:
        """Reverse a transaction's effects and remove the row."""

        with self._unit_of_work(session) as active:
            row = self._load_transaction(active, transaction_id, user_id)
            result = self.reverse(row, session=active)
            active.delete(row)
            logger.info("Transaction deleted", extra={"transaction_id": transaction_id})
            return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _execute(
        self, session: Session, transaction: Transaction, entry: LedgerEntry, *, reverse: bool
    ) -> LedgerResult:
        effects = entry.effects()
        if reverse:
            effects = tuple(effect.negated() for effect in effects)
        else:
            transaction.settled_account_id = None

        # Resolve every instrument before the first write so bad references fail cleanly.
        writes = [
            write
            for effect in effects
            if (write := self._resolve(session, transaction, entry, effect, reverse=reverse)) is not None
        ]

        result = LedgerResult(transaction=transaction)
        for write in writes:
            balance = write_balance(session, write.instrument, write.row, write.delta)
            result.effects.append(
                AppliedEffect(write.instrument, write.row.id, write.delta, balance)  # type: ignore[arg-type]
            )
            logger.info(
                "Balance updated",
                extra={
                    "transaction_id": transaction.id,
                    "type": entry.type.value,
                    "instrument": write.instrument,
                    "instrument_id": write.row.id,
                    "delta": str(write.delta),
                    "reverse": reverse,
                },
            )
            if isinstance(write.row, Card) and write.row.is_over_limit:
                message = (
                    f"Card {write.row.id} is over its credit limit by {-write.row.available_credit:.2f}"  # type: ignore[operator]
                )
                result.warnings.append(message)
                logger.warning(message, extra={"card_id": write.row.id})
        return result

    def _resolve(
        self,
        session: Session,
        transaction: Transaction,
        entry: LedgerEntry,
        effect: Effect,
        *,
        reverse: bool,
    ) -> Optional[_Write]:
        if effect.instrument == ACCOUNT:
            account = self._load_instrument(session, Account, effect.instrument_id, transaction, reverse)
            return _Write(ACCOUNT, account, effect.delta) if account is not None else None

        if reverse and transaction.settled_account_id is not None:
            # The debit card may have been relinked since; undo against the account it hit.
            account = self._load_instrument(session, Account, transaction.settled_account_id, transaction, True)
            return _Write(ACCOUNT, account, -effect.delta) if account is not None else None

        card = self._load_instrument(session, Card, effect.instrument_id, transaction, reverse)
        if card is None:
            return None
        if card.is_credit:
            return _Write(CARD, card, effect.delta)

        # Debit card: the linked account carries the money, with the opposite sign.
        if isinstance(entry, CardPayment):
            raise ValidationError("card_payment must target a credit card", card_id=card.id)
        if card.account_id is None:
            raise ValidationError("Debit card has no linked account", card_id=card.id)
        account = self._load_instrument(session, Account, card.account_id, transaction, reverse)
        if account is None:
            return None
        if not reverse:
            transaction.settled_account_id = account.id
        return _Write(ACCOUNT, account, -effect.delta)

    def _load_instrument(
        self,
        session: Session,
        model: type,
        instrument_id: int,
        transaction: Transaction,
        missing_ok: bool,
    ) -> Optional[Instrument]:
        row = session.exec(
            select(model).where(model.id == instrument_id).with_for_update()  # type: ignore[attr-defined]
        ).first()
        if row is None or row.user_id != transaction.user_id:
            if missing_ok:
                logger.warning(
                    "Instrument gone while reversing; skipping its effect",
                    extra={"instrument": model.__name__, "instrument_id": instrument_id},
                )
                return None
            raise NotFoundError(
                f"{model.__name__} {instrument_id} not found", instrument_id=instrument_id
            )
        if transaction.currency and row.currency and row.currency != transaction.currency:
            logger.warning(
                "Currency mismatch; amount applied without conversion",
                extra={
                    "transaction_currency": transaction.currency,
                    "instrument_currency": row.currency,
                    "instrument_id": instrument_id,
                },
            )
        return row

    def _load_transaction(self, session: Session, transaction_id: int, user_id: int) -> Transaction:
        row = session.exec(
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .where(Transaction.user_id == user_id)
            .with_for_update()
        ).first()
        if row is None:
            raise NotFoundError("Transaction not found", transaction_id=transaction_id)
        return row


__all__ = ["AppliedEffect", "LedgerResult", "TransactionProcessor", "check_writable_fields", "write_balance"]
