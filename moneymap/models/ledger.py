"""
Core Data Models for Money Map Engine

These models define the schemas for every document the engine reads or writes.
They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Serialize to the document store's camelCase shape
4. Tolerate the legacy shapes still present in old families

DESIGN DECISION: Python attributes are snake_case, documents are camelCase.
Every model round-trips through to_document() / from_document() so the
storage layer only ever sees plain JSON-compatible dicts.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Optional, Union
from uuid import uuid4

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    model_validator,
)
from pydantic.alias_generators import to_camel


# A period key is "YYYY-MM" for monthly obligations and a year for annual ones
PeriodKey = Union[str, int]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid4().hex


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Frequency(str, Enum):
    """How often a recurring obligation fires."""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class EntryKind(str, Enum):
    """Which side of the ledger an entry or obligation belongs to."""
    EXPENSE = "expense"
    INCOME = "income"


class GoalSchema(str, Enum):
    """
    Shapes a savings goal document can have.

    Only CURRENT documents participate in the single-active invariant.
    The other two predate it and must be migrated.
    """
    CURRENT = "current"                   # carries an explicit `active` flag
    LEGACY_UNFLAGGED = "legacy_unflagged"  # no `active` field at all
    LEGACY_MONTHLY = "legacy_monthly"      # per-calendar-month goal (month, year)


# =============================================================================
# BASE DOCUMENT
# =============================================================================

class DocumentModel(BaseModel):
    """Base for everything persisted in the document store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(
        default_factory=new_id,
        description="Document identifier"
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the camelCase, JSON-compatible document shape."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    @classmethod
    def from_document(cls, document: dict[str, Any]):
        return cls.model_validate(document)


# =============================================================================
# RECURRING OBLIGATIONS
# =============================================================================

class RecurringObligation(DocumentModel):
    """
    A declared recurring income or expense.

    The reconciliation engine turns it into one ledger entry per period.
    `last_processed_period` is the authoritative "already materialized"
    marker and is only ever written with a conditional update.
    """

    kind: ClassVar[EntryKind]
    collection: ClassVar[str]

    family_id: str = Field(..., min_length=1)
    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Name copied onto every materialized entry"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        decimal_places=2,
        description="Amount of each materialized entry"
    )
    trigger_day: int = Field(
        ...,
        ge=1,
        le=31,
        description="Day of the month the obligation fires on (clamped to month length)"
    )
    month: Optional[int] = Field(
        default=None,
        ge=1,
        le=12,
        description="Month an annual obligation fires in (engine default when unset)"
    )
    frequency: Frequency = Frequency.MONTHLY
    active: bool = Field(
        default=True,
        description="False once soft-deleted; history is kept"
    )
    created_by: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)
    last_processed_period: Optional[PeriodKey] = Field(
        default=None,
        description="Most recent period a ledger entry was materialized for"
    )

    def entry_fields(self) -> dict[str, Any]:
        """Fields copied onto a materialized ledger entry."""
        return {"name": self.name, "amount": self.amount}


class RecurringExpense(RecurringObligation):
    kind: ClassVar[EntryKind] = EntryKind.EXPENSE
    collection: ClassVar[str] = "recurringExpenses"

    category: str = Field(..., min_length=1, max_length=100)

    def entry_fields(self) -> dict[str, Any]:
        fields = super().entry_fields()
        fields["category"] = self.category
        return fields


class RecurringIncome(RecurringObligation):
    kind: ClassVar[EntryKind] = EntryKind.INCOME
    collection: ClassVar[str] = "recurringIncomes"


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

class LedgerEntry(DocumentModel):
    """
    A concrete, dated income or expense.

    Entries created by reconciliation carry the obligation and period they
    came from, and use a deterministic id so a retried write is detectable.
    """

    kind: ClassVar[EntryKind]
    collection: ClassVar[str]

    family_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    # `date` would shadow the type inside the class body
    entry_date: date = Field(..., alias="date")
    added_by: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)

    obligation_id: Optional[str] = Field(
        default=None,
        description="Obligation this entry was materialized from, if any"
    )
    period_key: Optional[PeriodKey] = Field(
        default=None,
        description="Period this entry was materialized for, if any"
    )

    @property
    def is_materialized(self) -> bool:
        return self.obligation_id is not None


class Expense(LedgerEntry):
    kind: ClassVar[EntryKind] = EntryKind.EXPENSE
    collection: ClassVar[str] = "expenses"

    category: str = Field(..., min_length=1, max_length=100)


class Income(LedgerEntry):
    kind: ClassVar[EntryKind] = EntryKind.INCOME
    collection: ClassVar[str] = "incomes"


OBLIGATION_TYPES: dict[EntryKind, type[RecurringObligation]] = {
    EntryKind.EXPENSE: RecurringExpense,
    EntryKind.INCOME: RecurringIncome,
}

ENTRY_TYPES: dict[EntryKind, type[LedgerEntry]] = {
    EntryKind.EXPENSE: Expense,
    EntryKind.INCOME: Income,
}


def materialized_entry_id(obligation_id: str, period_key: PeriodKey) -> str:
    """Idempotency key for the entry an obligation produces in a period."""
    return f"{obligation_id}-{period_key}"


# =============================================================================
# SAVINGS GOALS
# =============================================================================

class SavingsGoal(DocumentModel):
    """
    The family's savings target.

    Reads accept every historical shape: documents without `active`,
    per-month goals carrying (month, year), and the first schema's
    Portuguese field names. Writes always produce the current shape.
    """

    collection: ClassVar[str] = "savingsGoals"

    family_id: str = Field(..., min_length=1)
    amount: Decimal = Field(
        ...,
        gt=0,
        validation_alias=AliasChoices("amount", "valor"),
        description="Monthly savings target"
    )
    active: Optional[bool] = Field(
        default=None,
        description="None only on legacy documents that predate the flag"
    )
    month: Optional[int] = Field(
        default=None,
        ge=1,
        le=12,
        validation_alias=AliasChoices("month", "mes"),
    )
    year: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("year", "ano"),
    )
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def schema_variant(self) -> GoalSchema:
        if self.active is not None:
            return GoalSchema.CURRENT
        if self.month is not None and self.year is not None:
            return GoalSchema.LEGACY_MONTHLY
        return GoalSchema.LEGACY_UNFLAGGED

    @property
    def is_active(self) -> bool:
        return self.active is True

    @property
    def is_legacy(self) -> bool:
        return self.schema_variant is not GoalSchema.CURRENT


# =============================================================================
# CATEGORIES
# =============================================================================

DEFAULT_CATEGORIES: tuple[str, ...] = (
    "Food",
    "Transport",
    "Housing",
    "Health",
    "Education",
    "Leisure",
    "Other",
)


class CustomCategory(DocumentModel):
    """A family-defined expense category, on top of the defaults."""

    collection: ClassVar[str] = "categories"

    family_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=100)
    created_by: str = Field(..., min_length=1)
    created_at: datetime = Field(default_factory=utcnow)


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationThresholds(DocumentModel):
    """
    Spending thresholds configured for a family.

    A threshold of zero disables its rule. Stored under the family id
    in the settings collection.
    """

    collection: ClassVar[str] = "settings"

    daily_limit: Decimal = Field(default=Decimal("0"), ge=0)
    monthly_limit: Decimal = Field(default=Decimal("0"), ge=0)
    single_expense_limit: Decimal = Field(default=Decimal("0"), ge=0)
    category_limits: dict[str, Decimal] = Field(default_factory=dict)

    @model_validator(mode='after')
    def validate_category_limits(self) -> 'NotificationThresholds':
        for category, limit in self.category_limits.items():
            if limit < 0:
                raise ValueError(f"Category limit for {category!r} cannot be negative")
        return self


class AlertKind(str, Enum):
    MONTHLY_LIMIT = "monthly_limit"
    DAILY_LIMIT = "daily_limit"
    SINGLE_EXPENSE = "single_expense"
    CATEGORY_LIMIT = "category_limit"


class Alert(BaseModel):
    """A spending alert raised by the notification engine."""

    kind: AlertKind
    key: str = Field(
        ...,
        description="Dedup key; at most one alert per key per session"
    )
    message: str
    total: Decimal = Field(
        ...,
        description="Amount that crossed the limit"
    )
    limit: Decimal
    category: Optional[str] = None
    entry_id: Optional[str] = None
    period_key: Optional[str] = None
    raised_at: datetime = Field(default_factory=utcnow)
