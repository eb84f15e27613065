"""Data models for Money Map Engine."""

from moneymap.models.audit import AuditEvent, AuditEventBuilder, AuditEventType, AuditSeverity
from moneymap.models.ledger import (
    DEFAULT_CATEGORIES,
    ENTRY_TYPES,
    OBLIGATION_TYPES,
    Alert,
    AlertKind,
    CustomCategory,
    EntryKind,
    Expense,
    Frequency,
    GoalSchema,
    Income,
    LedgerEntry,
    NotificationThresholds,
    PeriodKey,
    RecurringExpense,
    RecurringIncome,
    RecurringObligation,
    SavingsGoal,
    materialized_entry_id,
)
from moneymap.models.reports import (
    CategoryTotal,
    GoalProgress,
    MonthlyComparisonRow,
    PeriodSummary,
    SavingsHistoryPoint,
)
from moneymap.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Ledger
    "DEFAULT_CATEGORIES",
    "ENTRY_TYPES",
    "OBLIGATION_TYPES",
    "CustomCategory",
    "EntryKind",
    "Expense",
    "Frequency",
    "Income",
    "LedgerEntry",
    "PeriodKey",
    "RecurringExpense",
    "RecurringIncome",
    "RecurringObligation",
    "materialized_entry_id",
    # Goals
    "GoalSchema",
    "SavingsGoal",
    # Notifications
    "Alert",
    "AlertKind",
    "NotificationThresholds",
    # Reports
    "CategoryTotal",
    "GoalProgress",
    "MonthlyComparisonRow",
    "PeriodSummary",
    "SavingsHistoryPoint",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
