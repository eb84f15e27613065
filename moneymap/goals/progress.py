"""Savings progress against a goal: pure arithmetic, no I/O."""

from datetime import date
from decimal import Decimal
from typing import Iterable

from moneymap.models.ledger import LedgerEntry, SavingsGoal
from moneymap.models.reports import GoalProgress


def month_key(on: date) -> str:
    return f"{on.year:04d}-{on.month:02d}"


def progress_pct(savings: Decimal, goal_amount: Decimal) -> float:
    """
    Percentage of the goal reached, clamped to [0, 100].

    Negative savings (spent more than earned) read as 0%, not as a
    negative percentage.
    """
    if goal_amount <= 0:
        raise ValueError("Goal amount must be positive")
    pct = float(savings / goal_amount * 100)
    return max(0.0, min(100.0, pct))


def total_in_month(entries: Iterable[LedgerEntry], period: str) -> Decimal:
    return sum(
        (e.amount for e in entries if month_key(e.entry_date) == period),
        Decimal("0"),
    )


def compute_progress(
    goal: SavingsGoal,
    incomes: Iterable[LedgerEntry],
    expenses: Iterable[LedgerEntry],
    on: date,
) -> GoalProgress:
    """Progress toward `goal` in the calendar month containing `on`."""
    period = month_key(on)
    total_income = total_in_month(incomes, period)
    total_expense = total_in_month(expenses, period)
    savings = total_income - total_expense

    return GoalProgress(
        goal_id=goal.id,
        period_key=period,
        goal_amount=goal.amount,
        total_income=total_income,
        total_expense=total_expense,
        savings=savings,
        achieved=savings >= goal.amount,
        progress_pct=progress_pct(savings, goal.amount),
        remaining=max(goal.amount - savings, Decimal("0")),
    )
