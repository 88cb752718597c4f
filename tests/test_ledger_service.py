"""Tests for the caller-facing ledger facade and listing helpers."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerwise.errors import InvalidStateError, NotFoundError, ValidationError
from ledgerwise.models import Account, Transaction
from ledgerwise.services.ledger_service import (
    LedgerFilters,
    Pagination,
    compute_spending_by_category,
    compute_summary,
    filtered_transactions,
    normalize_category_value,
    paginate_transactions,
)


def test_process_transaction_lifecycle(ledger, account_factory, fetch, user):
    acct = account_factory(balance="500.00")

    created = ledger.process_transaction(
        "create",
        user_id=user.id,
        data={"type": "expense", "amount": "50", "from_account_id": acct.id, "transaction_date": "2024-01-12"},
    )
    txn_id = created.transaction.id
    assert fetch(Transaction, txn_id).transaction_date == date(2024, 1, 12)
    assert fetch(Account, acct.id).balance == Decimal("450.00")

    ledger.process_transaction("update", user_id=user.id, transaction_id=txn_id, data={"amount": "20"})
    assert fetch(Account, acct.id).balance == Decimal("480.00")

    ledger.process_transaction("delete", user_id=user.id, transaction_id=txn_id)
    assert fetch(Account, acct.id).balance == Decimal("500.00")


def test_process_transaction_rejects_bad_requests(ledger, user):
    with pytest.raises(ValidationError):
        ledger.process_transaction("archive", user_id=user.id)
    with pytest.raises(ValidationError):
        ledger.process_transaction("delete", user_id=user.id)
    with pytest.raises(ValidationError):
        ledger.process_transaction("create", user_id=user.id, data={"type": "income", "amount": "1", "transaction_date": "15.01.2024"})
    with pytest.raises(NotFoundError):
        ledger.process_transaction("delete", user_id=user.id, transaction_id=404)


def test_errors_render_for_api_layer(ledger, invoices, user):
    invoice = invoices.create_invoice(user_id=user.id, amount="10", due_date=date(2024, 2, 1))
    ledger.cancel_invoice(invoice.id, user_id=user.id)

    with pytest.raises(InvalidStateError) as excinfo:
        ledger.pay_invoice(invoice.id, user_id=user.id, create_transaction=False)

    body = excinfo.value.to_dict()
    assert body["error"] == "invalid_state"
    assert body["details"] == {"invoice_id": invoice.id}


def test_subscription_actions(ledger, subscriptions, account_factory, fetch, user):
    acct = account_factory(balance="50.00")
    sub = subscriptions.create_subscription(
        user_id=user.id, name="iCloud", amount="3", payment_method_type="account", payment_method_id=acct.id
    )

    outcome = ledger.process_subscription_payment(sub.id, user_id=user.id)
    assert outcome.transaction.amount == Decimal("3.00")
    assert fetch(Account, acct.id).balance == Decimal("47.00")

    assert ledger.toggle_subscription(sub.id, user_id=user.id).is_active is False


def test_scheduler_tick(ledger, subscriptions, incomes, invoices, account_factory, fetch, user):
    acct = account_factory(balance="100.00")
    subscriptions.create_subscription(
        user_id=user.id, name="Gym", amount="60", payment_method_type="account", payment_method_id=acct.id
    )
    incomes.create_income(user_id=user.id, name="Side gig", amount="40", to_account_id=acct.id)
    invoices.create_invoice(user_id=user.id, amount="10", due_date=date(2024, 1, 10))
    invoices.create_invoice(user_id=user.id, amount="10", due_date=date(2024, 1, 14))

    summary = ledger.run_scheduler_tick(date(2024, 1, 15))

    assert len(summary["subscriptions"]["processed"]) == 1
    assert len(summary["incomes"]["processed"]) == 1
    assert summary["invoices_marked_overdue"] == 0  # already overdue when created
    assert fetch(Account, acct.id).balance == Decimal("80.00")

    again = ledger.run_scheduler_tick(date(2024, 1, 15))
    assert again["subscriptions"]["processed"] == []
    assert again["incomes"]["processed"] == []


@pytest.fixture
def sample_ledger(processor, account_factory, card_factory, category_factory, user):
    acct = account_factory(balance="1000.00")
    savings = account_factory("Savings")
    card = card_factory()
    food = category_factory("Food")
    fun = category_factory("Fun")
    rows = [
        {"type": "income", "amount": "3000", "to_account_id": acct.id, "title": "Salary", "transaction_date": date(2024, 1, 1)},
        {"type": "expense", "amount": "120", "from_account_id": acct.id, "category_id": food.id, "title": "Coop", "transaction_date": date(2024, 1, 3)},
        {"type": "expense", "amount": "80", "from_card_id": card.id, "category_id": fun.id, "title": "Cinema", "transaction_date": date(2024, 1, 5)},
        {"type": "expense", "amount": "30", "from_account_id": acct.id, "category_id": food.id, "title": "Bakery", "transaction_date": date(2024, 1, 7)},
        {"type": "transfer", "amount": "500", "from_account_id": acct.id, "to_account_id": savings.id, "title": "Save", "transaction_date": date(2024, 1, 8)},
        {"type": "card_payment", "amount": "80", "from_account_id": acct.id, "to_card_id": card.id, "title": "Visa bill", "transaction_date": date(2024, 1, 9)},
    ]
    for row in rows:
        processor.create(Transaction(user_id=user.id, **row))
    return {"account": acct, "card": card, "food": food, "fun": fun}


def test_filtered_transactions(sample_ledger, transaction_repo, user):
    everything = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id))
    assert [t.title for t in everything][:2] == ["Visa bill", "Save"]

    expenses = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id, txn_type="expense"))
    assert {t.title for t in expenses} == {"Coop", "Cinema", "Bakery"}

    on_card = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id, card_id=sample_ledger["card"].id))
    assert {t.title for t in on_card} == {"Cinema", "Visa bill"}

    food = filtered_transactions(
        transaction_repo,
        LedgerFilters(user_id=user.id, category_id=sample_ledger["food"].id, min_amount=Decimal("50")),
    )
    assert [t.title for t in food] == ["Coop"]

    window = filtered_transactions(
        transaction_repo, LedgerFilters(user_id=user.id, start_date=date(2024, 1, 4), end_date=date(2024, 1, 7), text="a")
    )
    assert [t.title for t in window] == ["Bakery", "Cinema"]


def test_summary_ignores_internal_movements(sample_ledger, transaction_repo, user):
    txs = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id))

    assert compute_summary(txs) == {
        "income": Decimal("3000.00"),
        "expenses": Decimal("230.00"),
        "net": Decimal("2770.00"),
    }


def test_spending_by_category(sample_ledger, transaction_repo, user):
    txs = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id))
    categories = [sample_ledger["food"], sample_ledger["fun"]]

    breakdown = compute_spending_by_category(txs, categories)

    assert breakdown == [
        {"category_id": sample_ledger["food"].id, "name": "Food", "amount": Decimal("150.00")},
        {"category_id": sample_ledger["fun"].id, "name": "Fun", "amount": Decimal("80.00")},
    ]


def test_paginate_transactions(sample_ledger, transaction_repo, user):
    txs = filtered_transactions(transaction_repo, LedgerFilters(user_id=user.id))

    page, total = paginate_transactions(txs, Pagination(page=2, per_page=4))

    assert total == 6
    assert len(page) == 2


@pytest.mark.parametrize("raw,expected", [(None, None), ("all", None), (" Any ", None), ("7", 7), ("x", None)])
def test_normalize_category_value(raw, expected):
    assert normalize_category_value(raw) == expected


def test_create_rejects_fields_callers_cannot_set(ledger, account_factory, transaction_repo, fetch, user):
    acct = account_factory(balance="100.00")
    base = {"type": "expense", "amount": "10", "from_account_id": acct.id}

    with pytest.raises(ValidationError) as unknown:
        ledger.process_transaction("create", user_id=user.id, data={**base, "amout": "99"})
    assert unknown.value.details == {"fields": ["amout"]}
    for field, value in [("id", 7), ("user_id", 99), ("settled_account_id", acct.id), ("source_type", "invoice")]:
        with pytest.raises(ValidationError):
            ledger.process_transaction("create", user_id=user.id, data={**base, field: value})

    assert fetch(Account, acct.id).balance == Decimal("100.00")
    assert transaction_repo.search(user_id=user.id) == []


def test_pay_invoice_books_on_given_date(ledger, invoices, account_factory, fetch, user):
    acct = account_factory(balance="200.00")
    invoice = invoices.create_invoice(user_id=user.id, amount="80", due_date=date(2024, 1, 20))

    outcome = ledger.pay_invoice(invoice.id, user_id=user.id, account_id=acct.id, paid_on=date(2024, 1, 12))

    assert outcome.invoice.paid_date == date(2024, 1, 12)
    assert fetch(Transaction, outcome.transaction.id).transaction_date == date(2024, 1, 12)
    assert fetch(Account, acct.id).balance == Decimal("120.00")
