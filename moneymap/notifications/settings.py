"""Per-family notification thresholds, stored under the family id."""

from typing import Any, Optional

import structlog
from pydantic import ValidationError

from moneymap.audit import AuditLogger
from moneymap.models.ledger import NotificationThresholds
from moneymap.services.storage import DocumentStore
from moneymap.validation import InputValidator, ensure_valid, parse_amount


logger = structlog.get_logger(__name__)


class NotificationSettingsStore:
    """
    Reads and writes a family's spending thresholds.

    One document per family in the settings collection, keyed by the
    family id. Saving replaces every limit at once.
    """

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._validator = validator or InputValidator()

    async def load(self, family_id: str) -> NotificationThresholds:
        """The family's thresholds; all rules disabled if none were saved or the record is unreadable."""
        document = await self._store.get(NotificationThresholds.collection, family_id)
        if document is None:
            return NotificationThresholds(id=family_id)
        try:
            return NotificationThresholds.from_document(document)
        except ValidationError as e:
            logger.warning("thresholds_document_invalid", family_id=family_id, error=str(e))
            return NotificationThresholds(id=family_id)

    async def save(
        self,
        family_id: str,
        daily_limit: Any = 0,
        monthly_limit: Any = 0,
        single_expense_limit: Any = 0,
        category_limits: Optional[dict[str, Any]] = None,
    ) -> NotificationThresholds:
        """
        Replace the family's thresholds. Zero disables a rule.

        Raises:
            InvalidInputError: If any limit is negative or not a number
        """
        ensure_valid(self._validator.validate_thresholds(
            daily_limit=daily_limit,
            monthly_limit=monthly_limit,
            single_expense_limit=single_expense_limit,
            category_limits=category_limits,
        ))

        thresholds = NotificationThresholds(
            id=family_id,
            daily_limit=parse_amount(daily_limit or 0),
            monthly_limit=parse_amount(monthly_limit or 0),
            single_expense_limit=parse_amount(single_expense_limit or 0),
            category_limits={
                category: parse_amount(limit or 0)
                for category, limit in (category_limits or {}).items()
            },
        )
        document = thresholds.to_document()

        if await self._store.get(thresholds.collection, family_id) is None:
            await self._store.create(thresholds.collection, document, doc_id=family_id)
        else:
            await self._store.update(thresholds.collection, family_id, document)

        if self._audit_logger:
            await self._audit_logger.log_thresholds_updated(
                family_id=family_id,
                thresholds=document,
            )
        return thresholds
