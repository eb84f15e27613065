"""Savings goal management and progress."""

from moneymap.goals.manager import SavingsGoalManager, choose_canonical, parse_goals, selection_key
from moneymap.goals.progress import compute_progress, month_key, progress_pct

__all__ = [
    "SavingsGoalManager",
    "choose_canonical",
    "compute_progress",
    "month_key",
    "parse_goals",
    "progress_pct",
    "selection_key",
]
