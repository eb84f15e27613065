"""Spending-threshold notifications."""

from moneymap.notifications.engine import (
    NotificationDedupState,
    category_key,
    daily_key,
    evaluate,
    expense_key,
    monthly_key,
)
from moneymap.notifications.monitor import NotificationMonitor
from moneymap.notifications.settings import NotificationSettingsStore

__all__ = [
    "NotificationDedupState",
    "NotificationMonitor",
    "NotificationSettingsStore",
    "category_key",
    "daily_key",
    "evaluate",
    "expense_key",
    "monthly_key",
]
