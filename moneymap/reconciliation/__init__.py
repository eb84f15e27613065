"""Recurring-obligation reconciliation: period arithmetic, the engine, and its event loop."""

from moneymap.reconciliation.engine import ReconciliationEngine, ReconciliationReport
from moneymap.reconciliation.loop import ReconciliationEvent, ReconciliationLoop
from moneymap.reconciliation.periods import (
    current_period_key,
    days_in_month,
    effective_trigger_date,
    is_due,
)

__all__ = [
    "ReconciliationEngine",
    "ReconciliationEvent",
    "ReconciliationLoop",
    "ReconciliationReport",
    "current_period_key",
    "days_in_month",
    "effective_trigger_date",
    "is_due",
]
