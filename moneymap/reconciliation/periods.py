"""
Period arithmetic for recurring obligations.

A monthly obligation has one period per calendar month ("YYYY-MM"); an
annual one has one period per year, and is only eligible during its month.
"""

import calendar
from datetime import date
from typing import Optional

from moneymap.models.ledger import Frequency, PeriodKey, RecurringObligation
from moneymap.registry.obligations import period_key_for


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def effective_trigger_date(trigger_day: int, year: int, month: int) -> date:
    """The obligation's day in the given month, clamped to the month's last day."""
    return date(year, month, min(trigger_day, days_in_month(year, month)))


def current_period_key(
    obligation: RecurringObligation,
    today: date,
    default_annual_month: int = 1,
) -> Optional[PeriodKey]:
    """
    Period the obligation would materialize for today.

    None for an annual obligation outside its month: it has nothing
    to do until that month comes around.
    """
    if obligation.frequency is Frequency.ANNUAL:
        month = obligation.month or default_annual_month
        if today.month != month:
            return None
    return period_key_for(obligation.frequency, today)


def is_due(
    obligation: RecurringObligation,
    today: date,
    default_annual_month: int = 1,
) -> bool:
    """True iff the obligation should be materialized for its current period."""
    if not obligation.active:
        return False
    period_key = current_period_key(obligation, today, default_annual_month)
    if period_key is None:
        return False
    if obligation.last_processed_period == period_key:
        return False
    return today >= effective_trigger_date(obligation.trigger_day, today.year, today.month)
