"""
Report Models

Plain result shapes handed to the presentation layer (cards, charts,
PDF/spreadsheet export). Nothing here is persisted.
"""

from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class PeriodSummary(BaseModel):
    """Income, expenses and balance over an inclusive date range."""

    start: date
    end: date
    total_income: Decimal = Decimal("0")
    total_expense: Decimal = Decimal("0")
    income_count: int = 0
    expense_count: int = 0
    category: Optional[str] = None
    member: Optional[str] = None

    @property
    def balance(self) -> Decimal:
        return self.total_income - self.total_expense

    @property
    def is_positive(self) -> bool:
        return self.balance >= 0


class CategoryTotal(BaseModel):
    category: str
    total: Decimal
    count: int
    share_pct: float = Field(
        ...,
        ge=0.0,
        le=100.0,
        description="Share of all expenses in the range"
    )


class MonthlyComparisonRow(BaseModel):
    month: str = Field(..., description="Month key, YYYY-MM")
    income: Decimal = Decimal("0")
    expense: Decimal = Decimal("0")

    @property
    def balance(self) -> Decimal:
        return self.income - self.expense


class SavingsHistoryPoint(BaseModel):
    month: str = Field(..., description="Month key, YYYY-MM")
    savings: Decimal
    goal: Optional[Decimal] = None

    @property
    def achieved(self) -> Optional[bool]:
        if self.goal is None:
            return None
        return self.savings >= self.goal


class GoalProgress(BaseModel):
    """
    Where the family stands against its savings goal in one period.

    progress_pct is clamped to [0, 100] on both ends.
    """

    goal_id: str
    period_key: str
    goal_amount: Decimal
    total_income: Decimal
    total_expense: Decimal
    savings: Decimal
    achieved: bool
    progress_pct: float = Field(..., ge=0.0, le=100.0)
    remaining: Decimal = Field(
        ...,
        ge=0,
        description="How much more must be saved to reach the goal"
    )
