"""
Report Aggregations

Plain aggregations over ledger entries for the reports and savings pages.
All date ranges are inclusive. A range whose start is after its end is
treated as empty rather than as an error.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from moneymap.goals.progress import month_key
from moneymap.models.ledger import LedgerEntry
from moneymap.models.reports import (
    CategoryTotal,
    MonthlyComparisonRow,
    PeriodSummary,
    SavingsHistoryPoint,
)


def _in_range(entry: LedgerEntry, start: date, end: date) -> bool:
    return start <= entry.entry_date <= end


def filter_expenses(
    expenses: Iterable[LedgerEntry],
    start: date,
    end: date,
    category: Optional[str] = None,
    member: Optional[str] = None,
) -> list[LedgerEntry]:
    """Expenses in range, optionally narrowed to one category and/or one member."""
    return [
        e for e in expenses
        if _in_range(e, start, end)
        and (not category or getattr(e, "category", None) == category)
        and (not member or e.added_by == member)
    ]


def _total(entries: Iterable[LedgerEntry]) -> Decimal:
    return sum((e.amount for e in entries), Decimal("0"))


def months_between(start: date, end: date) -> list[str]:
    """Month keys from start's month through end's month, inclusive."""
    months = []
    year, month = start.year, start.month
    while (year, month) <= (end.year, end.month):
        months.append(f"{year:04d}-{month:02d}")
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
    return months


def summarize(
    incomes: Iterable[LedgerEntry],
    expenses: Iterable[LedgerEntry],
    start: date,
    end: date,
    category: Optional[str] = None,
    member: Optional[str] = None,
) -> PeriodSummary:
    """
    Totals and balance over [start, end].

    The category and member filters apply to expenses only; incomes have
    no category and are always family-wide.
    """
    if start > end:
        return PeriodSummary(start=start, end=end, category=category, member=member)

    period_incomes = [i for i in incomes if _in_range(i, start, end)]
    period_expenses = filter_expenses(expenses, start, end, category, member)
    return PeriodSummary(
        start=start,
        end=end,
        total_income=_total(period_incomes),
        total_expense=_total(period_expenses),
        income_count=len(period_incomes),
        expense_count=len(period_expenses),
        category=category,
        member=member,
    )


def category_breakdown(
    expenses: Iterable[LedgerEntry],
    start: date,
    end: date,
) -> list[CategoryTotal]:
    """Expense totals per category over [start, end], largest first."""
    totals: dict[str, Decimal] = defaultdict(Decimal)
    counts: dict[str, int] = defaultdict(int)
    for expense in filter_expenses(expenses, start, end):
        category = getattr(expense, "category", None) or "Other"
        totals[category] += expense.amount
        counts[category] += 1

    grand_total = sum(totals.values(), Decimal("0"))
    rows = [
        CategoryTotal(
            category=category,
            total=total,
            count=counts[category],
            share_pct=float(total / grand_total * 100) if grand_total else 0.0,
        )
        for category, total in totals.items()
    ]
    rows.sort(key=lambda row: (-row.total, row.category))
    return rows


def monthly_comparison(
    incomes: Iterable[LedgerEntry],
    expenses: Iterable[LedgerEntry],
    start: date,
    end: date,
    max_months: int = 6,
    category: Optional[str] = None,
    member: Optional[str] = None,
) -> list[MonthlyComparisonRow]:
    """Income and expense per month of the range, keeping only the last max_months months."""
    if start > end:
        return []

    rows = {month: MonthlyComparisonRow(month=month) for month in months_between(start, end)}
    for income in incomes:
        if _in_range(income, start, end):
            rows[month_key(income.entry_date)].income += income.amount
    for expense in filter_expenses(expenses, start, end, category, member):
        rows[month_key(expense.entry_date)].expense += expense.amount

    ordered = list(rows.values())
    return ordered[-max(1, max_months):]


def savings_history(
    incomes: Iterable[LedgerEntry],
    expenses: Iterable[LedgerEntry],
    months: int = 12,
    today: Optional[date] = None,
    goal: Optional[Decimal] = None,
) -> list[SavingsHistoryPoint]:
    """
    Savings (income minus expense) for each of the trailing `months` months,
    oldest first, ending with the current month.
    """
    today = today or date.today()
    months = max(1, months)

    year, month = today.year, today.month - (months - 1)
    while month < 1:
        year, month = year - 1, month + 12
    keys = months_between(date(year, month, 1), today)

    savings = {key: Decimal("0") for key in keys}
    for income in incomes:
        key = month_key(income.entry_date)
        if key in savings:
            savings[key] += income.amount
    for expense in expenses:
        key = month_key(expense.entry_date)
        if key in savings:
            savings[key] -= expense.amount

    return [SavingsHistoryPoint(month=key, savings=value, goal=goal) for key, value in savings.items()]
