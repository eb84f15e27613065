"""Input validation package."""

from moneymap.validation.validator import (
    InputValidator,
    InvalidInputError,
    ensure_valid,
    parse_amount,
)

__all__ = ["InputValidator", "InvalidInputError", "ensure_valid", "parse_amount"]
