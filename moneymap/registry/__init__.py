"""Data access for obligations, ledger entries and categories."""

from moneymap.registry.categories import CategoryRegistry
from moneymap.registry.ledger import LedgerRepository, parse_entries
from moneymap.registry.obligations import (
    ObligationRegistry,
    convert_period_key,
    parse_obligations,
    period_key_for,
)

__all__ = [
    "CategoryRegistry",
    "LedgerRepository",
    "ObligationRegistry",
    "convert_period_key",
    "parse_entries",
    "parse_obligations",
    "period_key_for",
]
