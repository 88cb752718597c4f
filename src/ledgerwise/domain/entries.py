"""Ledger entry variants and the balance effects each one produces.

A persisted ``Transaction`` row has four optional instrument slots. Which of
them may be filled depends on the type, so each type is modelled as its own
frozen variant carrying only the slots it needs. Constructing a variant
validates it; ``effects()`` describes the balance writes it implies.

Sign conventions for :class:`Effect.delta`:

* ``account`` effects change ``Account.balance`` (money held).
* ``card`` effects change ``Card.current_balance`` (money owed on a credit card).
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, ClassVar, Optional, Union

from ..errors import ValidationError
from .money import require_positive

if TYPE_CHECKING:  # pragma: no cover
    from ..models.transaction import Transaction

ACCOUNT = "account"
CARD = "card"


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"
    CARD_PAYMENT = "card_payment"

    @classmethod
    def parse(cls, value: "str | TransactionType") -> "TransactionType":
        try:
            return cls(value)
        except ValueError as exc:
            raise ValidationError(f"Unknown transaction type: {value!r}", type=value) from exc


@dataclass(frozen=True, slots=True)
class Effect:
    """A signed change to one instrument's balance field."""

    instrument: str
    instrument_id: int
    delta: Decimal

    def negated(self) -> "Effect":
        return Effect(self.instrument, self.instrument_id, -self.delta)


def _one_of(kind: "TransactionType", side: str, **slots: Optional[int]) -> None:
    filled = [name for name, value in slots.items() if value is not None]
    if len(filled) != 1:
        raise ValidationError(
            f"{kind.value} requires exactly one {side} ({' or '.join(slots)})",
            type=kind.value,
            side=side,
            provided=filled,
        )


@dataclass(frozen=True, slots=True)
class Income:
    amount: Decimal
    to_account_id: Optional[int] = None
    to_card_id: Optional[int] = None

    type: ClassVar[TransactionType] = TransactionType.INCOME

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", require_positive(self.amount))
        _one_of(self.type, "destination", to_account_id=self.to_account_id, to_card_id=self.to_card_id)

    def effects(self) -> tuple[Effect, ...]:
        if self.to_account_id is not None:
            return (Effect(ACCOUNT, self.to_account_id, self.amount),)
        # cashback / refund reduces what is owed
        return (Effect(CARD, self.to_card_id, -self.amount),)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Expense:
    amount: Decimal
    from_account_id: Optional[int] = None
    from_card_id: Optional[int] = None

    type: ClassVar[TransactionType] = TransactionType.EXPENSE

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", require_positive(self.amount))
        _one_of(self.type, "source", from_account_id=self.from_account_id, from_card_id=self.from_card_id)

    def effects(self) -> tuple[Effect, ...]:
        if self.from_account_id is not None:
            return (Effect(ACCOUNT, self.from_account_id, -self.amount),)
        return (Effect(CARD, self.from_card_id, self.amount),)  # type: ignore[arg-type]


@dataclass(frozen=True, slots=True)
class Transfer:
    amount: Decimal
    from_account_id: int
    to_account_id: int

    type: ClassVar[TransactionType] = TransactionType.TRANSFER

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", require_positive(self.amount))
        if self.from_account_id is None or self.to_account_id is None:
            raise ValidationError(
                "transfer requires both from_account_id and to_account_id", type=self.type.value
            )
        if self.from_account_id == self.to_account_id:
            raise ValidationError(
                "transfer source and destination must differ", account_id=self.from_account_id
            )

    def effects(self) -> tuple[Effect, ...]:
        return (
            Effect(ACCOUNT, self.from_account_id, -self.amount),
            Effect(ACCOUNT, self.to_account_id, self.amount),
        )


@dataclass(frozen=True, slots=True)
class CardPayment:
    amount: Decimal
    from_account_id: int
    to_card_id: int

    type: ClassVar[TransactionType] = TransactionType.CARD_PAYMENT

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", require_positive(self.amount))
        if self.from_account_id is None or self.to_card_id is None:
            raise ValidationError(
                "card_payment requires from_account_id and to_card_id", type=self.type.value
            )

    def effects(self) -> tuple[Effect, ...]:
        return (
            Effect(ACCOUNT, self.from_account_id, -self.amount),
            Effect(CARD, self.to_card_id, -self.amount),
        )


LedgerEntry = Union[Income, Expense, Transfer, CardPayment]

ENTRY_TYPES: dict[TransactionType, type] = {
    TransactionType.INCOME: Income,
    TransactionType.EXPENSE: Expense,
    TransactionType.TRANSFER: Transfer,
    TransactionType.CARD_PAYMENT: CardPayment,
}

_SLOTS = ("from_account_id", "from_card_id", "to_account_id", "to_card_id")


def build_entry(
    type: "str | TransactionType",
    amount,
    *,
    from_account_id: Optional[int] = None,
    from_card_id: Optional[int] = None,
    to_account_id: Optional[int] = None,
    to_card_id: Optional[int] = None,
) -> LedgerEntry:
    """Validate raw slot values against ``type`` and return the matching variant."""

    kind = TransactionType.parse(type)
    entry_cls = ENTRY_TYPES[kind]
    allowed = {f.name for f in fields(entry_cls)} - {"amount"}
    provided = {
        "from_account_id": from_account_id,
        "from_card_id": from_card_id,
        "to_account_id": to_account_id,
        "to_card_id": to_card_id,
    }
    stray = sorted(name for name, value in provided.items() if value is not None and name not in allowed)
    if stray:
        raise ValidationError(f"{kind.value} does not accept {', '.join(stray)}", type=kind.value, fields=stray)
    return entry_cls(amount=amount, **{name: provided[name] for name in allowed})


def entry_from_transaction(transaction: "Transaction") -> LedgerEntry:
    return build_entry(
        transaction.type,
        transaction.amount,
        **{slot: getattr(transaction, slot) for slot in _SLOTS},
    )


__all__ = [
    "ACCOUNT",
    "CARD",
    "CardPayment",
    "Effect",
    "Expense",
    "Income",
    "LedgerEntry",
    "Transfer",
    "TransactionType",
    "build_entry",
    "entry_from_transaction",
]
