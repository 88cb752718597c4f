"""Tests for budgets: period tracking, spending and rollover."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from ledgerwise.errors import NotDueError, NotFoundError, ValidationError
from ledgerwise.models import Budget, Category, Transaction
from ledgerwise.services.budgets import (
    budget_health,
    budget_stats,
    compute_variances,
    current_period,
    remaining_amount,
)
from ledgerwise.services.recurrence import claim_period


@pytest.fixture
def spend(processor, account_factory, user):
    acct = account_factory(balance="5000.00")

    def _spend(amount, booked_on, category=None, txn_type="expense"):
        values = {"type": txn_type, "amount": amount, "transaction_date": booked_on}
        if txn_type == "income":
            values["to_account_id"] = acct.id
        else:
            values["from_account_id"] = acct.id
        if category is not None:
            values["category_id"] = category.id
        return processor.create(Transaction(user_id=user.id, **values))

    return _spend


@pytest.fixture
def food(category_factory):
    return category_factory("Food")


def test_current_period_anchors_on_start_day():
    assert current_period(date(2024, 1, 1), "monthly", date(2024, 1, 15)) == (date(2024, 1, 1), date(2024, 1, 31))
    assert current_period(date(2024, 1, 31), "monthly", date(2024, 2, 15)) == (date(2024, 1, 31), date(2024, 2, 28))
    assert current_period(date(2024, 1, 31), "monthly", date(2024, 3, 5)) == (date(2024, 2, 29), date(2024, 3, 30))
    assert current_period(date(2023, 11, 1), "quarterly", date(2024, 1, 15)) == (date(2023, 11, 1), date(2024, 1, 31))
    assert current_period(date(2024, 3, 1), "yearly", date(2024, 1, 15)) == (date(2024, 3, 1), date(2025, 2, 28))


def test_create_counts_spending_in_period(budgets, spend, food, category_factory, user):
    fun = category_factory("Fun")
    spend("40", date(2024, 1, 3), food)
    spend("25", date(2024, 1, 14), food)
    spend("100", date(2024, 1, 10), fun)
    spend("30", date(2023, 12, 30), food)
    spend("900", date(2024, 1, 5), txn_type="income")

    groceries = budgets.create_budget(
        user_id=user.id, name=" Groceries ", amount="200", category_id=food.id, start_date=date(2024, 1, 1)
    )
    overall = budgets.create_budget(user_id=user.id, name="Everything", amount="1000", start_date=date(2024, 1, 1))

    assert groceries.name == "Groceries"
    assert (groceries.current_period_start, groceries.current_period_end) == (date(2024, 1, 1), date(2024, 1, 31))
    assert groceries.current_period_spent == Decimal("65.00")
    assert remaining_amount(groceries) == Decimal("135.00")
    assert overall.current_period_spent == Decimal("165.00")


def test_create_validates_input(budgets, session_factory, other_user, user):
    with session_factory() as session:
        theirs = Category(user_id=other_user.id, name="Theirs", slug="theirs")
        session.add(theirs)
        session.flush()
        session.refresh(theirs)

    with pytest.raises(ValidationError):
        budgets.create_budget(user_id=user.id, name="Weekly", amount="50", period="weekly")
    with pytest.raises(ValidationError):
        budgets.create_budget(user_id=user.id, name="", amount="50")
    with pytest.raises(ValidationError):
        budgets.create_budget(user_id=user.id, name="Zero", amount="0")
    with pytest.raises(ValidationError):
        budgets.create_budget(
            user_id=user.id, name="Short", amount="50", start_date=date(2024, 1, 1), end_date=date(2024, 1, 1)
        )
    with pytest.raises(NotFoundError):
        budgets.create_budget(user_id=user.id, name="Foreign", amount="50", category_id=theirs.id)


def test_rollover_carries_unspent_amount(budgets, spend, food, fetch, user):
    spend("65", date(2024, 1, 10), food)
    budget = budgets.create_budget(
        user_id=user.id, name="Food", amount="200", category_id=food.id,
        start_date=date(2024, 1, 1), rollover_unused=True,
    )
    spend("10", date(2024, 2, 1), food)

    rolled = budgets.rollover_period(budget.id, date(2024, 2, 1))

    stored = fetch(Budget, budget.id)
    assert rolled.current_period_start == date(2024, 2, 1)
    assert stored.current_period_end == date(2024, 2, 29)
    assert stored.rollover_amount == Decimal("135.00")
    assert stored.current_period_spent == Decimal("10.00")
    assert remaining_amount(stored) == Decimal("325.00")


def test_overspent_period_carries_nothing(budgets, spend, food, fetch, user):
    spend("250", date(2024, 1, 10), food)
    budget = budgets.create_budget(
        user_id=user.id, name="Food", amount="200", category_id=food.id,
        start_date=date(2024, 1, 1), rollover_unused=True,
    )
    plain = budgets.create_budget(user_id=user.id, name="Plain", amount="5000", start_date=date(2024, 1, 1))

    budgets.rollover_period(budget.id, date(2024, 2, 1))
    budgets.rollover_period(plain.id, date(2024, 2, 1))

    assert fetch(Budget, budget.id).rollover_amount == Decimal("0.00")
    assert fetch(Budget, plain.id).rollover_amount == Decimal("0.00")


def test_rollover_waits_for_period_end(budgets, fetch, user):
    budget = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))

    with pytest.raises(NotDueError):
        budgets.rollover_period(budget.id, date(2024, 1, 31))
    assert fetch(Budget, budget.id).version == budget.version


def test_stale_rollover_claim_loses(budgets, session_factory, fetch, user):
    budget = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))
    stale = fetch(Budget, budget.id)

    budgets.rollover_period(budget.id, date(2024, 2, 1))

    with session_factory() as session:
        won = claim_period(
            session,
            stale,
            date_field="current_period_end",
            period=date(2024, 1, 31),
            values={"current_period_start": date(2024, 2, 1), "current_period_end": date(2024, 2, 29)},
        )
    assert won is False
    assert fetch(Budget, budget.id).version == stale.version + 1


def test_process_rollovers_ends_expired_budgets(budgets, fetch, user):
    monthly = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))
    expiring = budgets.create_budget(
        user_id=user.id, name="Trip", amount="800", start_date=date(2024, 1, 1), end_date=date(2024, 1, 20)
    )
    future = budgets.create_budget(user_id=user.id, name="Later", amount="50", start_date=date(2024, 3, 1))

    report = budgets.process_rollovers(date(2024, 2, 1))

    assert report.processed == [monthly.id]
    assert report.skipped == [expiring.id]
    assert future.id not in report.processed
    assert fetch(Budget, expiring.id).is_active is False
    assert fetch(Budget, monthly.id).current_period_end == date(2024, 2, 29)
    assert budgets.process_rollovers(date(2024, 2, 1)).processed == []


def test_rollover_skips_to_period_containing_today(budgets, fetch, user):
    budget = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))

    budgets.rollover_period(budget.id, date(2024, 4, 10))

    stored = fetch(Budget, budget.id)
    assert (stored.current_period_start, stored.current_period_end) == (date(2024, 4, 1), date(2024, 4, 30))


def test_update_budget_recomputes_tracking(budgets, spend, food, category_factory, fetch, user):
    fun = category_factory("Fun")
    spend("40", date(2024, 1, 3), food)
    spend("70", date(2024, 1, 9), fun)
    spend("15", date(2023, 12, 20), food)
    budget = budgets.create_budget(
        user_id=user.id, name="Food", amount="200", category_id=food.id, start_date=date(2024, 1, 1)
    )

    moved = budgets.update_budget(budget.id, {"category_id": fun.id}, user_id=user.id)
    assert moved.current_period_spent == Decimal("70.00")

    quarterly = budgets.update_budget(
        budget.id, {"category_id": food.id, "period": "quarterly", "start_date": date(2023, 12, 1)}, user_id=user.id
    )
    assert (quarterly.current_period_start, quarterly.current_period_end) == (date(2023, 12, 1), date(2024, 2, 29))
    assert quarterly.current_period_spent == Decimal("55.00")

    renamed = budgets.update_budget(budget.id, {"name": "Groceries", "amount": "250"}, user_id=user.id)
    stored = fetch(Budget, budget.id)
    assert renamed.current_period_spent == Decimal("55.00")
    assert stored.amount == Decimal("250.00")
    assert stored.version == budget.version + 3


def test_update_budget_guards(budgets, fetch, other_user, user):
    budget = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))

    with pytest.raises(ValidationError):
        budgets.update_budget(budget.id, {"current_period_spent": "0"}, user_id=user.id)
    with pytest.raises(ValidationError):
        budgets.update_budget(budget.id, {"alert_threshold": 120}, user_id=user.id)
    with pytest.raises(ValidationError):
        budgets.update_budget(budget.id, {"period": "daily"}, user_id=user.id)
    with pytest.raises(NotFoundError):
        budgets.update_budget(budget.id, {"name": "Mine now"}, user_id=other_user.id)

    assert fetch(Budget, budget.id).version == budget.version


def test_toggle_resumes_in_current_period_without_carry(budgets, spend, food, clock, user):
    budget = budgets.create_budget(
        user_id=user.id, name="Food", amount="200", category_id=food.id,
        start_date=date(2024, 1, 1), rollover_unused=True,
    )
    budgets.rollover_period(budget.id, date(2024, 2, 1))

    paused = budgets.toggle(budget.id, user_id=user.id)
    assert paused.is_active is False

    clock.set(date(2024, 3, 10))
    spend("20", date(2024, 3, 2), food)
    resumed = budgets.toggle(budget.id, user_id=user.id)

    assert resumed.is_active is True
    assert (resumed.current_period_start, resumed.current_period_end) == (date(2024, 3, 1), date(2024, 3, 31))
    assert resumed.rollover_amount == Decimal("0.00")
    assert resumed.current_period_spent == Decimal("20.00")


def test_refresh_spending_picks_up_new_expenses(budgets, spend, food, user):
    budget = budgets.create_budget(
        user_id=user.id, name="Food", amount="200", category_id=food.id, start_date=date(2024, 1, 1)
    )
    spend("42.50", date(2024, 1, 16), food)

    refreshed = budgets.refresh_spending(budget.id, user_id=user.id)

    assert refreshed.current_period_spent == Decimal("42.50")


@pytest.mark.parametrize(
    "spent,expected",
    [("10", "healthy"), ("65", "warning"), ("85", "danger"), ("100", "exceeded"), ("130", "exceeded")],
)
def test_budget_health(spent, expected):
    budget = Budget(user_id=1, name="Food", amount=Decimal("100.00"), start_date=date(2024, 1, 1),
                    current_period_spent=Decimal(spent))

    assert budget_health(budget) == expected


def test_stats_and_variances():
    budgets = [
        Budget(id=1, user_id=1, name="Food", amount=Decimal("200.00"), rollover_amount=Decimal("50.00"),
               start_date=date(2024, 1, 1), current_period_spent=Decimal("100.00")),
        Budget(id=2, user_id=1, name="Fun", amount=Decimal("100.00"), start_date=date(2024, 1, 1),
               current_period_spent=Decimal("120.00")),
        Budget(id=3, user_id=1, name="Paused", amount=Decimal("999.00"), start_date=date(2024, 1, 1),
               is_active=False),
    ]

    stats = budget_stats(budgets)
    variances = compute_variances(budgets[:2])

    assert stats["active_count"] == 2
    assert stats["total_budgeted"] == Decimal("350.00")
    assert stats["total_spent"] == Decimal("220.00")
    assert stats["total_remaining"] == Decimal("130.00")
    assert stats["over_budget_count"] == 1
    assert stats["overall_percentage"] == Decimal("62.9")
    assert [(v.budget_id, v.delta) for v in variances] == [(2, Decimal("20.00")), (1, Decimal("-150.00"))]


def test_scheduler_tick_rolls_budgets(ledger, budgets, user):
    budget = budgets.create_budget(user_id=user.id, name="Food", amount="200", start_date=date(2024, 1, 1))

    assert ledger.run_scheduler_tick(date(2024, 1, 20))["budgets"]["processed"] == []
    assert ledger.run_scheduler_tick(date(2024, 2, 1))["budgets"]["processed"] == [budget.id]
