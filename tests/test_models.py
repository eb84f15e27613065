"""
Tests for Money Map Engine models

Test strategy:
1. Unit tests for individual components (models, validators, pure functions)
2. Engine tests against the in-memory store (no real API calls)
3. The Sheets gateway against a fake worksheet
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from moneymap.models import (
    DEFAULT_CATEGORIES,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Expense,
    Frequency,
    GoalProgress,
    GoalSchema,
    Income,
    NotificationThresholds,
    PeriodSummary,
    RecurringExpense,
    RecurringIncome,
    SavingsGoal,
    ValidationIssue,
    ValidationResult,
    materialized_entry_id,
)


class TestObligationModels:
    """Tests for recurring obligation models."""

    def test_recurring_expense_round_trips_camel_case(self):
        """Test that documents use camelCase and parse back."""
        obligation = RecurringExpense(
            family_id="fam",
            name="Rent",
            amount=Decimal("1500.00"),
            category="Housing",
            trigger_day=31,
            created_by="alice",
        )
        document = obligation.to_document()

        assert document["familyId"] == "fam"
        assert document["triggerDay"] == 31
        assert document["frequency"] == "monthly"
        assert document["active"] is True
        assert "lastProcessedPeriod" not in document  # None is omitted

        parsed = RecurringExpense.from_document(document)
        assert parsed.amount == Decimal("1500.00")
        assert parsed.trigger_day == 31

    def test_obligation_rejects_trigger_day_out_of_range(self):
        with pytest.raises(ValidationError):
            RecurringIncome(family_id="fam", name="Salary", amount=Decimal("10"), trigger_day=32, created_by="a")

    def test_obligation_rejects_non_positive_amount(self):
        with pytest.raises(ValidationError):
            RecurringIncome(family_id="fam", name="Salary", amount=Decimal("0"), trigger_day=5, created_by="a")

    def test_period_keys_keep_their_type(self):
        """Monthly keys are strings, annual keys are integers."""
        monthly = RecurringIncome.from_document({
            "id": "o1", "familyId": "fam", "name": "Salary", "amount": "10",
            "triggerDay": 5, "createdBy": "a", "lastProcessedPeriod": "2024-02",
        })
        annual = RecurringIncome.from_document({
            "id": "o2", "familyId": "fam", "name": "Bonus", "amount": "10", "frequency": "annual",
            "triggerDay": 5, "createdBy": "a", "lastProcessedPeriod": 2024,
        })
        assert monthly.last_processed_period == "2024-02"
        assert annual.last_processed_period == 2024
        assert annual.frequency is Frequency.ANNUAL

    def test_expense_entry_fields_include_category(self):
        obligation = RecurringExpense(
            family_id="fam", name="Gym", amount=Decimal("50"), category="Health",
            trigger_day=1, created_by="a",
        )
        assert obligation.entry_fields() == {"name": "Gym", "amount": Decimal("50"), "category": "Health"}


class TestLedgerModels:
    """Tests for ledger entry models."""

    def test_entry_date_serializes_as_date(self):
        expense = Expense(
            family_id="fam", name="Lunch", amount=Decimal("12.50"), category="Food",
            entry_date=date(2024, 3, 1), added_by="alice",
        )
        document = expense.to_document()
        assert document["date"] == "2024-03-01"
        assert document["addedBy"] == "alice"
        assert not expense.is_materialized

    def test_entry_rejects_three_decimal_places(self):
        with pytest.raises(ValidationError):
            Income(family_id="fam", name="Gift", amount=Decimal("1.005"), entry_date=date(2024, 1, 1), added_by="a")

    def test_materialized_entry_id_is_deterministic(self):
        assert materialized_entry_id("abc", "2024-02") == "abc-2024-02"
        assert materialized_entry_id("abc", 2024) == "abc-2024"


class TestSavingsGoalModel:
    """Tests for the tagged legacy goal shapes."""

    def test_current_schema(self):
        goal = SavingsGoal(family_id="fam", amount=Decimal("500"), active=True)
        assert goal.schema_variant is GoalSchema.CURRENT
        assert goal.is_active
        assert not goal.is_legacy

    def test_unflagged_legacy_document(self):
        goal = SavingsGoal.from_document({"id": "g1", "familyId": "fam", "amount": "300"})
        assert goal.schema_variant is GoalSchema.LEGACY_UNFLAGGED
        assert goal.active is None
        assert not goal.is_active

    def test_portuguese_legacy_fields(self):
        """Test that the first schema's field names are accepted on read."""
        goal = SavingsGoal.from_document({
            "id": "g1", "familyId": "fam", "valor": 250, "mes": 3, "ano": 2023,
        })
        assert goal.amount == Decimal("250")
        assert goal.schema_variant is GoalSchema.LEGACY_MONTHLY

    def test_written_shape_is_current(self):
        goal = SavingsGoal.from_document({"id": "g1", "familyId": "fam", "valor": 250})
        document = goal.model_copy(update={"active": True}).to_document()
        assert document["amount"] == "250"
        assert "valor" not in document
        assert document["active"] is True


class TestNotificationThresholds:

    def test_defaults_disable_every_rule(self):
        thresholds = NotificationThresholds()
        assert thresholds.daily_limit == 0
        assert thresholds.monthly_limit == 0
        assert thresholds.single_expense_limit == 0
        assert thresholds.category_limits == {}

    def test_negative_category_limit_rejected(self):
        with pytest.raises(ValidationError):
            NotificationThresholds(category_limits={"Food": Decimal("-1")})


class TestReportModels:

    def test_period_summary_balance(self):
        summary = PeriodSummary(
            start=date(2024, 1, 1),
            end=date(2024, 1, 31),
            total_income=Decimal("1000"),
            total_expense=Decimal("1200"),
        )
        assert summary.balance == Decimal("-200")
        assert not summary.is_positive

    def test_goal_progress_bounds(self):
        with pytest.raises(ValidationError):
            GoalProgress(
                goal_id="g", period_key="2024-01", goal_amount=Decimal("100"),
                total_income=Decimal("0"), total_expense=Decimal("0"), savings=Decimal("0"),
                achieved=False, progress_pct=120.0, remaining=Decimal("0"),
            )


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.GOAL_CREATED,
            family_id="fam",
            description="Savings goal set",
        )
        assert event.severity is AuditSeverity.INFO
        assert event.timestamp.tzinfo is not None

    def test_audit_event_to_sheets_row(self):
        correlation_id = uuid4()
        event = AuditEventBuilder.entry_materialized(
            family_id="fam",
            obligation_id="ob1",
            entry_id="ob1-2024-02",
            period_key="2024-02",
            amount="1500.00",
            correlation_id=correlation_id,
        )
        row = event.to_sheets_row()
        assert len(row) == 12
        assert row[2] == "entry_materialized"
        assert row[4] == "fam"
        assert row[7] == str(correlation_id)

    def test_migration_event_reflects_failures(self):
        complete = AuditEventBuilder.goal_migrated("fam", "g2", deactivated=["g1"], failed=[])
        partial = AuditEventBuilder.goal_migrated("fam", "g2", deactivated=[], failed=["g1"])
        assert complete.event_type is AuditEventType.GOAL_MIGRATED
        assert partial.event_type is AuditEventType.GOAL_MIGRATION_INCOMPLETE
        assert partial.severity is AuditSeverity.WARNING


class TestValidationResult:

    def test_validation_result_has_errors(self):
        result = ValidationResult(issues=[
            ValidationIssue(field="amount", issue_type="missing", message="Amount is required"),
        ])
        assert result.has_errors
        assert not result.is_valid

    def test_validation_result_warnings_only(self):
        result = ValidationResult(issues=[
            ValidationIssue(field="month", issue_type="ignored", message="x", severity="warning"),
        ])
        assert not result.has_errors
        assert result.is_valid


def test_default_categories():
    assert "Food" in DEFAULT_CATEGORIES
    assert len(set(DEFAULT_CATEGORIES)) == len(DEFAULT_CATEGORIES)
