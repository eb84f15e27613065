"""Report aggregations for the reports and savings pages."""

from moneymap.reports.summary import (
    category_breakdown,
    filter_expenses,
    monthly_comparison,
    months_between,
    savings_history,
    summarize,
)

__all__ = [
    "category_breakdown",
    "filter_expenses",
    "monthly_comparison",
    "months_between",
    "savings_history",
    "summarize",
]
