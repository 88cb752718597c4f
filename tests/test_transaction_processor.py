"""Tests for applying, reversing and editing balance effects."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerwise.errors import ConcurrencyConflictError, NotFoundError, ValidationError
from ledgerwise.infra.repositories import SQLModelCardRepository
from ledgerwise.models import Account, Card, Transaction
from ledgerwise.services.transaction_processor import write_balance


def _txn(user, **values) -> Transaction:
    values.setdefault("transaction_date", date(2024, 1, 15))
    return Transaction(user_id=user.id, **values)


def test_transfers_conserve_total_balance(processor, account_factory, fetch, user):
    a = account_factory("A", balance="500.00")
    b = account_factory("B", balance="200.00")

    for amount, source, target in [("75.25", a, b), ("10", b, a), ("300.10", a, b)]:
        processor.create(
            _txn(user, type="transfer", amount=Decimal(amount), from_account_id=source.id, to_account_id=target.id)
        )

    total = fetch(Account, a.id).balance + fetch(Account, b.id).balance
    assert total == Decimal("700.00")
    assert fetch(Account, a.id).balance == Decimal("134.65")


@pytest.mark.parametrize(
    "values",
    [
        {"type": "income", "to_account_id": "acct"},
        {"type": "income", "to_card_id": "credit"},
        {"type": "expense", "from_account_id": "acct"},
        {"type": "expense", "from_card_id": "credit"},
        {"type": "expense", "from_card_id": "debit"},
        {"type": "transfer", "from_account_id": "acct", "to_account_id": "other"},
        {"type": "card_payment", "from_account_id": "acct", "to_card_id": "credit"},
    ],
)
def test_reverse_restores_every_balance(processor, account_factory, card_factory, fetch, user, values):
    acct = account_factory("Main", balance="500.00")
    other = account_factory("Savings", balance="40.00")
    credit = card_factory("Visa", current_balance="250.00")
    debit = card_factory("Maestro", kind="debit", account_id=acct.id, credit_limit=None)
    ids = {"acct": acct.id, "other": other.id, "credit": credit.id, "debit": debit.id}

    txn = _txn(user, amount=Decimal("33.30"), **{k: ids.get(v, v) for k, v in values.items()})
    before = (fetch(Account, acct.id).balance, fetch(Account, other.id).balance, fetch(Card, credit.id).current_balance)

    applied = processor.apply(txn)
    assert applied.effects
    processor.reverse(txn)

    after = (fetch(Account, acct.id).balance, fetch(Account, other.id).balance, fetch(Card, credit.id).current_balance)
    assert after == before


def test_edit_changes_net_effect_by_difference(processor, account_factory, fetch, user):
    acct = account_factory(balance="500.00")
    result = processor.create(_txn(user, type="expense", amount=Decimal("50"), from_account_id=acct.id))
    assert fetch(Account, acct.id).balance == Decimal("450.00")

    edited = processor.update(result.transaction.id, {"amount": Decimal("80")}, user_id=user.id)

    assert fetch(Account, acct.id).balance == Decimal("420.00")
    assert edited.delta_for("account", acct.id) == Decimal("-30.00")
    assert fetch(Transaction, result.transaction.id).amount == Decimal("80.00")


def test_edit_can_change_type_and_instrument(processor, account_factory, fetch, user):
    acct = account_factory(balance="500.00")
    savings = account_factory("Savings", balance="0.00")
    result = processor.create(_txn(user, type="expense", amount=Decimal("50"), from_account_id=acct.id))

    processor.update(
        result.transaction.id,
        {"type": "income", "from_account_id": None, "to_account_id": savings.id},
        user_id=user.id,
    )

    assert fetch(Account, acct.id).balance == Decimal("500.00")
    assert fetch(Account, savings.id).balance == Decimal("50.00")


def test_update_rejects_immutable_and_unknown_fields(processor, account_factory, user):
    acct = account_factory(balance="10.00")
    result = processor.create(_txn(user, type="income", amount=Decimal("5"), to_account_id=acct.id))

    with pytest.raises(ValidationError):
        processor.update(result.transaction.id, {"user_id": 99}, user_id=user.id)
    with pytest.raises(ValidationError):
        processor.update(result.transaction.id, {"colour": "red"}, user_id=user.id)


def test_credit_card_payment(processor, account_factory, card_factory, fetch, user):
    acct = account_factory(balance="0.00")
    card = card_factory(current_balance="250.00", credit_limit="1000.00")

    processor.create(_txn(user, type="card_payment", amount=Decimal("100"), from_account_id=acct.id, to_card_id=card.id))

    card = fetch(Card, card.id)
    assert fetch(Account, acct.id).balance == Decimal("-100.00")
    assert card.current_balance == Decimal("150.00")
    assert card.available_credit == Decimal("850.00")


def test_grocery_expense_then_delete_restores_balance(
    processor, account_factory, category_factory, fetch, user
):
    acct = account_factory("Account A", balance="500.00")
    groceries = category_factory("Groceries")

    result = processor.create(
        _txn(user, type="expense", amount=Decimal("50"), from_account_id=acct.id, category_id=groceries.id, title="Migros")
    )
    assert fetch(Account, acct.id).balance == Decimal("450.00")

    processor.delete(result.transaction.id, user_id=user.id)

    assert fetch(Account, acct.id).balance == Decimal("500.00")
    assert fetch(Transaction, result.transaction.id) is None


def test_debit_card_spending_hits_linked_account(processor, account_factory, card_factory, fetch, user):
    acct = account_factory(balance="100.00")
    debit = card_factory("Maestro", kind="debit", account_id=acct.id, credit_limit=None)

    result = processor.create(_txn(user, type="expense", amount=Decimal("20"), from_card_id=debit.id))

    assert fetch(Account, acct.id).balance == Decimal("80.00")
    assert fetch(Card, debit.id).current_balance == Decimal("0.00")
    assert result.delta_for("account", acct.id) == Decimal("-20.00")


def test_relinked_debit_card_reverses_against_original_account(
    processor, session_factory, account_factory, card_factory, fetch, user
):
    first = account_factory("First", balance="500.00")
    second = account_factory("Second", balance="500.00")
    debit = card_factory("Maestro", kind="debit", account_id=first.id, credit_limit=None)
    result = processor.create(_txn(user, type="expense", amount=Decimal("50"), from_card_id=debit.id))
    assert fetch(Transaction, result.transaction.id).settled_account_id == first.id

    debit.account_id = second.id
    SQLModelCardRepository(session_factory).update(debit, user_id=user.id)
    processor.delete(result.transaction.id, user_id=user.id)

    assert fetch(Account, first.id).balance == Decimal("500.00")
    assert fetch(Account, second.id).balance == Decimal("500.00")


def test_edit_after_relink_moves_spend_to_current_account(
    processor, session_factory, account_factory, card_factory, fetch, user
):
    first = account_factory("First", balance="500.00")
    second = account_factory("Second", balance="500.00")
    debit = card_factory("Maestro", kind="debit", account_id=first.id, credit_limit=None)
    result = processor.create(_txn(user, type="expense", amount=Decimal("50"), from_card_id=debit.id))

    debit.account_id = second.id
    SQLModelCardRepository(session_factory).update(debit, user_id=user.id)
    processor.update(result.transaction.id, {"amount": Decimal("30")}, user_id=user.id)

    assert fetch(Account, first.id).balance == Decimal("500.00")
    assert fetch(Account, second.id).balance == Decimal("470.00")
    assert fetch(Transaction, result.transaction.id).settled_account_id == second.id


def test_card_payment_to_debit_card_is_rejected(processor, account_factory, card_factory, user):
    acct = account_factory(balance="100.00")
    debit = card_factory("Maestro", kind="debit", account_id=acct.id, credit_limit=None)

    with pytest.raises(ValidationError):
        processor.create(_txn(user, type="card_payment", amount=Decimal("5"), from_account_id=acct.id, to_card_id=debit.id))


def test_failed_transfer_leaves_no_trace(processor, account_factory, fetch, transaction_repo, user):
    acct = account_factory(balance="100.00")

    with pytest.raises(NotFoundError):
        processor.create(_txn(user, type="transfer", amount=Decimal("5"), from_account_id=acct.id, to_account_id=9999))

    assert fetch(Account, acct.id).balance == Decimal("100.00")
    assert transaction_repo.list_all(user_id=user.id) == []


def test_instruments_of_other_users_are_invisible(processor, account_factory, other_user, user):
    foreign = account_factory("Theirs", balance="100.00", owner=other_user)

    with pytest.raises(NotFoundError):
        processor.create(_txn(user, type="income", amount=Decimal("5"), to_account_id=foreign.id))


def test_credit_limit_overrun_is_a_warning(processor, card_factory, fetch, user):
    card = card_factory(credit_limit="100.00")

    result = processor.create(_txn(user, type="expense", amount=Decimal("150"), from_card_id=card.id))

    assert fetch(Card, card.id).current_balance == Decimal("150.00")
    assert result.warnings and "over its credit limit" in result.warnings[0]


def test_create_rejects_non_positive_amount(processor, account_factory, user):
    acct = account_factory()
    with pytest.raises(ValidationError):
        processor.create(_txn(user, type="income", amount=Decimal("0"), to_account_id=acct.id))


def test_stale_balance_write_conflicts(processor, session_factory, account_factory, fetch, user):
    acct = account_factory(balance="100.00")
    stale = fetch(Account, acct.id)

    processor.create(_txn(user, type="expense", amount=Decimal("10"), from_account_id=acct.id))

    with pytest.raises(ConcurrencyConflictError):
        with session_factory() as session:
            write_balance(session, "account", stale, Decimal("1.00"))

    fresh = fetch(Account, acct.id)
    assert fresh.balance == Decimal("90.00")
    assert fresh.version == stale.version + 1


def test_transaction_date_defaults_to_clock(processor, account_factory, clock, user):
    acct = account_factory()
    txn = Transaction(user_id=user.id, type="income", amount=Decimal("1"), to_account_id=acct.id)

    result = processor.create(txn)

    assert result.transaction.transaction_date == clock.today()
