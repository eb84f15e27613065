"""
Spending Threshold Evaluation

evaluate() is a pure function of (transactions, thresholds, dedup state, now).
It is re-run on every snapshot of the expense stream, so the same overrun is
seen many times; the dedup state is what turns that into a single alert.

DESIGN DECISION: The dedup state is an explicit object owned by the session,
never a module global. It is not persisted, so a restarted session may
alert again for an overrun it already reported.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional

from moneymap.models.ledger import Alert, AlertKind, EntryKind, LedgerEntry, NotificationThresholds


def monthly_key(on: date) -> str:
    return f"monthly:{on.year:04d}-{on.month:02d}"


def daily_key(on: date) -> str:
    return f"daily:{on.isoformat()}"


def expense_key(entry_id: str) -> str:
    return f"expense:{entry_id}"


def category_key(category: str, on: date) -> str:
    return f"category:{category}:{on.year:04d}-{on.month:02d}"


class NotificationDedupState:
    """Alert keys already raised in this session."""

    def __init__(self) -> None:
        self._keys: set[str] = set()

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def mark(self, key: str) -> None:
        self._keys.add(key)

    def reset(self) -> None:
        self._keys.clear()

    @property
    def keys(self) -> frozenset[str]:
        return frozenset(self._keys)


def _fmt(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def evaluate(
    transactions: Iterable[LedgerEntry],
    thresholds: NotificationThresholds,
    dedup_state: NotificationDedupState,
    now: Optional[datetime] = None,
) -> list[Alert]:
    """
    Check the expense stream against the family's thresholds.

    Only expenses count; incomes in `transactions` are ignored. A threshold
    of zero disables its rule. Every alert returned has a key that was not
    in `dedup_state`, and that key is added to it.

    Args:
        transactions: Current ledger entries (typically a stream snapshot)
        thresholds: The family's configured limits
        dedup_state: Session-owned record of keys already raised
        now: Evaluation time (defaults to the local clock)

    Returns:
        New alerts, in rule order: monthly, single expense, daily, category
    """
    today = (now or datetime.now()).date()
    expenses = [t for t in transactions if t.kind is EntryKind.EXPENSE]
    this_month = [
        e for e in expenses
        if e.entry_date.year == today.year and e.entry_date.month == today.month
    ]
    period = f"{today.year:04d}-{today.month:02d}"
    alerts: list[Alert] = []

    def raise_once(alert: Alert) -> None:
        if alert.key in dedup_state:
            return
        dedup_state.mark(alert.key)
        alerts.append(alert)

    if thresholds.monthly_limit > 0:
        total = sum((e.amount for e in this_month), Decimal("0"))
        if total > thresholds.monthly_limit:
            raise_once(Alert(
                kind=AlertKind.MONTHLY_LIMIT,
                key=monthly_key(today),
                message=f"Monthly spending exceeded the limit of {_fmt(thresholds.monthly_limit)}",
                total=total,
                limit=thresholds.monthly_limit,
                period_key=period,
            ))

    if thresholds.single_expense_limit > 0:
        # Any period: a large expense is worth one alert whenever it shows up
        for expense in expenses:
            if expense.amount > thresholds.single_expense_limit:
                raise_once(Alert(
                    kind=AlertKind.SINGLE_EXPENSE,
                    key=expense_key(expense.id),
                    message=f"Large expense recorded: {expense.name} - {_fmt(expense.amount)}",
                    total=expense.amount,
                    limit=thresholds.single_expense_limit,
                    entry_id=expense.id,
                ))

    if thresholds.daily_limit > 0:
        total = sum((e.amount for e in expenses if e.entry_date == today), Decimal("0"))
        if total > thresholds.daily_limit:
            raise_once(Alert(
                kind=AlertKind.DAILY_LIMIT,
                key=daily_key(today),
                message=f"Today's spending exceeded the daily limit of {_fmt(thresholds.daily_limit)}",
                total=total,
                limit=thresholds.daily_limit,
                period_key=today.isoformat(),
            ))

    for category, limit in thresholds.category_limits.items():
        if limit <= 0:
            continue
        total = sum(
            (e.amount for e in this_month if getattr(e, "category", None) == category),
            Decimal("0"),
        )
        if total > limit:
            raise_once(Alert(
                kind=AlertKind.CATEGORY_LIMIT,
                key=category_key(category, today),
                message=f'Spending on "{category}" exceeded the monthly limit of {_fmt(limit)}',
                total=total,
                limit=limit,
                category=category,
                period_key=period,
            ))

    return alerts
