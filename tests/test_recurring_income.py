"""Tests for recurring income bookings."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerwise.errors import NotDueError, NotFoundError, ValidationError
from ledgerwise.models import Account, RecurringIncome


def test_salary_is_booked_once_per_period(incomes, account_factory, transaction_repo, fetch, user):
    acct = account_factory(balance="0.00")
    salary = incomes.create_income(
        user_id=user.id, name="Salary", source="ACME AG", amount="6500", payment_day=25,
        start_date=date(2024, 1, 25), to_account_id=acct.id,
    )

    outcome = incomes.mark_received(salary.id, date(2024, 1, 25))
    with pytest.raises(NotDueError):
        incomes.mark_received(salary.id, date(2024, 1, 26))

    stored = fetch(RecurringIncome, salary.id)
    assert outcome.transaction.type == "income"
    assert stored.last_received_date == date(2024, 1, 25)
    assert stored.next_expected_date == date(2024, 2, 25)
    assert fetch(Account, acct.id).balance == Decimal("6500.00")
    assert len(transaction_repo.list_for_source("recurring_income", salary.id, user_id=user.id)) == 1


def test_automatic_income_needs_an_account(incomes, user):
    with pytest.raises(ValidationError):
        incomes.create_income(user_id=user.id, name="Rent", amount="900")


def test_run_expected_incomes(incomes, account_factory, fetch, user):
    acct = account_factory(balance="0.00")
    due = incomes.create_income(user_id=user.id, name="Rent", amount="900", to_account_id=acct.id)
    incomes.create_income(
        user_id=user.id, name="Bonus", amount="100", frequency="yearly",
        start_date=date(2024, 6, 1), to_account_id=acct.id,
    )

    report = incomes.run_expected_incomes(date(2024, 1, 15))

    assert report.processed == [due.id]
    assert fetch(Account, acct.id).balance == Decimal("900.00")


def test_toggle_resumes_on_future_date(incomes, account_factory, clock, user):
    acct = account_factory()
    salary = incomes.create_income(user_id=user.id, name="Salary", amount="10", to_account_id=acct.id)

    incomes.toggle(salary.id, user_id=user.id)
    clock.set(date(2024, 3, 20))
    resumed = incomes.toggle(salary.id, user_id=user.id)

    assert resumed.is_active is True
    assert resumed.next_expected_date == date(2024, 4, 15)


def test_unexpected_error_is_isolated_per_income(incomes, account_factory, fetch, monkeypatch, user):
    acct = account_factory(balance="0.00")
    rent = incomes.create_income(user_id=user.id, name="Rent", amount="900", to_account_id=acct.id)
    broken = incomes.create_income(user_id=user.id, name="Broken", amount="50", to_account_id=acct.id)
    original = incomes.mark_received

    def flaky(income_id, today=None, **kwargs):
        if income_id == broken.id:
            raise RuntimeError("disk full")
        return original(income_id, today, **kwargs)

    monkeypatch.setattr(incomes, "mark_received", flaky)
    report = incomes.run_expected_incomes(date(2024, 1, 15))

    assert report.processed == [rent.id]
    assert report.failed == {broken.id: "RuntimeError"}
    assert fetch(Account, acct.id).balance == Decimal("900.00")
    assert fetch(RecurringIncome, broken.id).next_expected_date == date(2024, 1, 15)


def test_update_income_recomputes_schedule(incomes, account_factory, fetch, user):
    acct = account_factory(balance="0.00")
    salary = incomes.create_income(
        user_id=user.id, name="Salary", amount="6500", payment_day=25,
        start_date=date(2024, 1, 25), to_account_id=acct.id,
    )
    incomes.mark_received(salary.id, date(2024, 1, 25))

    moved = incomes.update_income(salary.id, {"payment_day": 28, "amount": "6600"}, user_id=user.id)
    assert moved.next_expected_date == date(2024, 2, 28)
    assert fetch(RecurringIncome, salary.id).amount == Decimal("6600.00")

    yearly = incomes.update_income(salary.id, {"frequency": "yearly"}, user_id=user.id)
    assert yearly.payment_day == 25
    assert yearly.next_expected_date == date(2025, 1, 25)

    ended = incomes.update_income(salary.id, {"end_date": date(2024, 6, 30)}, user_id=user.id)
    assert ended.is_active is False
    assert ended.next_expected_date is None


def test_update_income_guards(incomes, account_factory, other_user, fetch, user):
    acct = account_factory()
    foreign = account_factory("Theirs", owner=other_user)
    salary = incomes.create_income(user_id=user.id, name="Salary", amount="10", to_account_id=acct.id)

    with pytest.raises(ValidationError):
        incomes.update_income(salary.id, {"last_received_date": date(2024, 1, 1)}, user_id=user.id)
    with pytest.raises(ValidationError):
        incomes.update_income(salary.id, {"to_account_id": None}, user_id=user.id)
    with pytest.raises(NotFoundError):
        incomes.update_income(salary.id, {"to_account_id": foreign.id}, user_id=user.id)

    stored = fetch(RecurringIncome, salary.id)
    assert stored.to_account_id == acct.id
    assert stored.version == salary.version
