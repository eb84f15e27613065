"""
User Input Validation

DESIGN DECISION: Invalid input is rejected locally, before any write.
A bad amount or a blank name never reaches the engine or the store;
the caller gets every problem at once as a list of ValidationIssues.

IMPORTANT: Validation NEVER silently fixes issues.
It reports them for the user to correct.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from moneymap.config import get_settings
from moneymap.models.ledger import EntryKind, Frequency
from moneymap.models.validation import ValidationIssue, ValidationResult


class InvalidInputError(ValueError):
    """User input failed validation; nothing was written."""

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        summary = "; ".join(f"{issue.field}: {issue.message}" for issue in issues)
        super().__init__(summary or "Invalid input")


def parse_amount(value: Any) -> Optional[Decimal]:
    """Parse user-entered money, accepting a decimal comma. None if unparseable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, (int, float)):
        amount = Decimal(str(value))
    else:
        text = str(value).strip().replace(" ", "")
        if not text:
            return None
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return amount


class InputValidator:
    """Checks user input for entries, obligations, goals and thresholds."""

    def __init__(self, max_amount: Optional[float] = None):
        if max_amount is None:
            max_amount = get_settings().engine.max_amount
        self._max_amount = Decimal(str(max_amount))

    def _check_amount(self, value: Any, field: str = "amount") -> list[ValidationIssue]:
        if value is None or (isinstance(value, str) and not value.strip()):
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message="Amount is required",
            )]

        amount = parse_amount(value)
        if amount is None:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_format",
                message=f"Not a valid amount: {value!r}",
                suggested_fix="Enter a number such as 1500.00",
            )]
        if amount <= 0:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_value",
                message="Amount must be greater than zero",
            )]
        if amount > self._max_amount:
            return [ValidationIssue(
                field=field,
                issue_type="out_of_range",
                message=f"Amount exceeds the maximum of {self._max_amount}",
            )]
        if amount.quantize(Decimal("0.01")) != amount:
            return [ValidationIssue(
                field=field,
                issue_type="invalid_format",
                message="Amount can have at most two decimal places",
            )]
        return []

    @staticmethod
    def _check_name(value: Optional[str], field: str = "name") -> list[ValidationIssue]:
        if value is None or not str(value).strip():
            return [ValidationIssue(
                field=field,
                issue_type="missing",
                message=f"{field.capitalize()} is required",
            )]
        if len(str(value).strip()) > 200:
            return [ValidationIssue(
                field=field,
                issue_type="out_of_range",
                message=f"{field.capitalize()} is too long (max 200 characters)",
            )]
        return []

    def validate_entry(
        self,
        kind: EntryKind,
        name: Optional[str],
        amount: Any,
        entry_date: Optional[date],
        category: Optional[str] = None,
    ) -> ValidationResult:
        """Validate a manually entered income or expense."""
        issues = self._check_name(name) + self._check_amount(amount)

        if entry_date is None:
            issues.append(ValidationIssue(
                field="date",
                issue_type="missing",
                message="Date is required",
            ))

        if kind is EntryKind.EXPENSE:
            issues.extend(self._check_name(category, field="category"))

        return ValidationResult(issues=issues)

    def validate_obligation(
        self,
        kind: EntryKind,
        name: Optional[str],
        amount: Any,
        trigger_day: Any,
        frequency: Frequency = Frequency.MONTHLY,
        month: Optional[int] = None,
        category: Optional[str] = None,
    ) -> ValidationResult:
        """Validate the fields of a recurring income or expense."""
        issues = self._check_name(name) + self._check_amount(amount)

        if not isinstance(trigger_day, int) or isinstance(trigger_day, bool) or not 1 <= trigger_day <= 31:
            issues.append(ValidationIssue(
                field="trigger_day",
                issue_type="out_of_range",
                message="Day of month must be between 1 and 31",
                suggested_fix="Days past the end of a short month fire on its last day",
            ))

        if month is not None and (not isinstance(month, int) or not 1 <= month <= 12):
            issues.append(ValidationIssue(
                field="month",
                issue_type="out_of_range",
                message="Month must be between 1 and 12",
            ))
        elif month is not None and frequency is Frequency.MONTHLY:
            issues.append(ValidationIssue(
                field="month",
                issue_type="ignored",
                message="Month only applies to annual obligations",
                severity="warning",
            ))

        if kind is EntryKind.EXPENSE:
            issues.extend(self._check_name(category, field="category"))

        return ValidationResult(issues=issues)

    def validate_goal_amount(self, amount: Any) -> ValidationResult:
        return ValidationResult(issues=self._check_amount(amount))

    def validate_thresholds(
        self,
        daily_limit: Any = 0,
        monthly_limit: Any = 0,
        single_expense_limit: Any = 0,
        category_limits: Optional[dict[str, Any]] = None,
    ) -> ValidationResult:
        """Thresholds may be zero (rule disabled) but never negative."""
        issues = []
        limits = {
            "daily_limit": daily_limit,
            "monthly_limit": monthly_limit,
            "single_expense_limit": single_expense_limit,
        }
        for category, limit in (category_limits or {}).items():
            limits[f"category_limits.{category}"] = limit

        for field, value in limits.items():
            limit = parse_amount(value if value is not None else 0)
            if limit is None:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_format",
                    message=f"Not a valid amount: {value!r}",
                ))
            elif limit < 0:
                issues.append(ValidationIssue(
                    field=field,
                    issue_type="invalid_value",
                    message="Limits cannot be negative; use 0 to disable",
                ))
        return ValidationResult(issues=issues)


def ensure_valid(result: ValidationResult) -> None:
    """Raise InvalidInputError if the result carries any error-level issue."""
    if result.has_errors:
        raise InvalidInputError([i for i in result.issues if i.severity == "error"])
