"""
Obligation Registry

Data access for the two template collections, recurringExpenses and
recurringIncomes. Obligations are never hard-deleted: deactivate() flips
`active` so past materializations keep a valid source.

The only write that needs care is mark_processed(): it is a conditional
update on lastProcessedPeriod and is what keeps two sessions from both
claiming the same period.
"""

from datetime import date
from typing import Any, AsyncIterator, Optional

import structlog
from pydantic import ValidationError

from moneymap.audit import AuditLogger
from moneymap.config import get_settings
from moneymap.models.audit import AuditEventType
from moneymap.models.ledger import (
    OBLIGATION_TYPES,
    EntryKind,
    Expense,
    Frequency,
    LedgerEntry,
    PeriodKey,
    RecurringObligation,
)
from moneymap.services.storage import Document, DocumentStore, NotFoundError, Query, Snapshot
from moneymap.validation import InputValidator, ensure_valid, parse_amount


logger = structlog.get_logger(__name__)


def period_key_for(frequency: Frequency, on: date) -> PeriodKey:
    """Period key the given date falls in."""
    if frequency is Frequency.ANNUAL:
        return on.year
    return f"{on.year:04d}-{on.month:02d}"


def convert_period_key(
    key: Optional[PeriodKey],
    frequency: Frequency,
    month: int,
) -> Optional[PeriodKey]:
    """
    Re-express a processed-period marker under another frequency.

    "2024-03" becomes 2024 for an annual obligation; 2024 becomes
    "2024-<month>" for a monthly one, `month` being the month the annual
    obligation fired in.
    """
    if key is None:
        return None
    text = str(key)
    if frequency is Frequency.ANNUAL:
        return int(text[:4])
    if text.isdigit():
        return f"{int(text):04d}-{month:02d}"
    return key


def parse_obligations(kind: EntryKind, documents: list[Document]) -> list[RecurringObligation]:
    """Parse raw documents, skipping (and logging) any that don't fit the schema."""
    model = OBLIGATION_TYPES[kind]
    obligations = []
    for document in documents:
        try:
            obligations.append(model.from_document(document))
        except ValidationError as e:
            logger.warning(
                "obligation_document_skipped",
                collection=model.collection,
                doc_id=document.get("id"),
                error=str(e),
            )
    return obligations


class ObligationRegistry:
    """Reads and writes recurring obligation templates."""

    def __init__(
        self,
        store: DocumentStore,
        audit_logger: Optional[AuditLogger] = None,
        validator: Optional[InputValidator] = None,
    ):
        self._store = store
        self._audit_logger = audit_logger
        self._validator = validator or InputValidator()

    @staticmethod
    def active_query(family_id: str, kind: EntryKind) -> Query:
        return Query.where(
            OBLIGATION_TYPES[kind].collection,
            familyId=family_id,
            active=True,
        )

    async def list_active(
        self,
        family_id: str,
        kind: Optional[EntryKind] = None,
    ) -> list[RecurringObligation]:
        """Active obligations of one kind, or of both kinds when kind is None."""
        kinds = [kind] if kind is not None else list(EntryKind)
        obligations: list[RecurringObligation] = []
        for k in kinds:
            documents = await self._store.query(self.active_query(family_id, k))
            obligations.extend(parse_obligations(k, documents))
        return obligations

    async def get(self, kind: EntryKind, obligation_id: str) -> Optional[RecurringObligation]:
        model = OBLIGATION_TYPES[kind]
        document = await self._store.get(model.collection, obligation_id)
        return model.from_document(document) if document else None

    async def create(
        self,
        family_id: str,
        actor_id: str,
        kind: EntryKind,
        name: str,
        amount: Any,
        trigger_day: int,
        frequency: Frequency = Frequency.MONTHLY,
        month: Optional[int] = None,
        category: Optional[str] = None,
        last_processed_period: Optional[PeriodKey] = None,
    ) -> RecurringObligation:
        """
        Declare a new recurring obligation.

        Raises:
            InvalidInputError: If any field is invalid (nothing is written)
        """
        ensure_valid(self._validator.validate_obligation(
            kind=kind,
            name=name,
            amount=amount,
            trigger_day=trigger_day,
            frequency=frequency,
            month=month,
            category=category,
        ))

        fields: dict[str, Any] = {
            "family_id": family_id,
            "name": name,
            "amount": parse_amount(amount),
            "trigger_day": trigger_day,
            "frequency": frequency,
            "month": month if frequency is Frequency.ANNUAL else None,
            "created_by": actor_id,
            "last_processed_period": last_processed_period,
        }
        if kind is EntryKind.EXPENSE:
            fields["category"] = category
        obligation = OBLIGATION_TYPES[kind](**fields)

        await self._store.create(obligation.collection, obligation.to_document(), doc_id=obligation.id)

        if self._audit_logger:
            await self._audit_logger.log_obligation_changed(
                event_type=AuditEventType.OBLIGATION_CREATED,
                family_id=family_id,
                obligation_id=obligation.id,
                kind=kind.value,
                actor_id=actor_id,
                changes={"amount": str(obligation.amount), "trigger_day": trigger_day},
            )
        return obligation

    async def create_from_entry(
        self,
        entry: LedgerEntry,
        frequency: Frequency = Frequency.MONTHLY,
    ) -> RecurringObligation:
        """
        Turn a just-logged transaction into a recurring obligation.

        The transaction itself stands for its own period, so the new
        obligation starts out with that period already processed.
        """
        return await self.create(
            family_id=entry.family_id,
            actor_id=entry.added_by,
            kind=entry.kind,
            name=entry.name,
            amount=entry.amount,
            trigger_day=entry.entry_date.day,
            frequency=frequency,
            month=entry.entry_date.month if frequency is Frequency.ANNUAL else None,
            category=entry.category if isinstance(entry, Expense) else None,
            last_processed_period=period_key_for(frequency, entry.entry_date),
        )

    async def update(
        self,
        kind: EntryKind,
        obligation_id: str,
        actor_id: Optional[str] = None,
        **changes: Any,
    ) -> RecurringObligation:
        """
        Edit name, amount, category, trigger_day, month or frequency.

        An edit takes effect from the next unprocessed period. Changing the
        frequency converts lastProcessedPeriod to the new kind of key, so
        the period already materialized is not materialized again.

        Raises:
            NotFoundError: If the obligation doesn't exist
            InvalidInputError: If the edited obligation would be invalid
        """
        editable = {"name", "amount", "category", "trigger_day", "month", "frequency"}
        unknown = set(changes) - editable
        if unknown:
            raise TypeError(f"Cannot edit obligation fields: {sorted(unknown)}")

        current = await self.get(kind, obligation_id)
        if current is None:
            raise NotFoundError(f"Recurring {kind.value} not found: {obligation_id}")

        merged = current.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        frequency = Frequency(merged["frequency"])
        ensure_valid(self._validator.validate_obligation(
            kind=kind,
            name=merged["name"],
            amount=merged["amount"],
            trigger_day=merged["trigger_day"],
            frequency=frequency,
            month=merged["month"] if frequency is Frequency.ANNUAL else None,
            category=merged.get("category"),
        ))

        merged["amount"] = parse_amount(merged["amount"])
        if frequency is not current.frequency:
            annual_month = current.month or get_settings().engine.default_annual_month
            merged["last_processed_period"] = convert_period_key(
                current.last_processed_period, frequency, annual_month,
            )
        updated = OBLIGATION_TYPES[kind].model_validate(merged)
        document = updated.to_document()
        patch = {
            key: value for key, value in document.items()
            if key in {"name", "amount", "category", "triggerDay", "month", "frequency"}
        }
        if frequency is not current.frequency:
            patch["lastProcessedPeriod"] = updated.last_processed_period
        await self._store.update(updated.collection, obligation_id, patch)

        if self._audit_logger:
            await self._audit_logger.log_obligation_changed(
                event_type=AuditEventType.OBLIGATION_UPDATED,
                family_id=updated.family_id,
                obligation_id=obligation_id,
                kind=kind.value,
                actor_id=actor_id,
                changes={k: str(v) for k, v in changes.items() if v is not None},
            )
        return updated

    async def deactivate(
        self,
        kind: EntryKind,
        obligation_id: str,
        actor_id: Optional[str] = None,
    ) -> None:
        """Soft delete. Already-materialized entries are left alone."""
        model = OBLIGATION_TYPES[kind]
        document = await self._store.update(model.collection, obligation_id, {"active": False})

        if self._audit_logger:
            await self._audit_logger.log_obligation_changed(
                event_type=AuditEventType.OBLIGATION_DEACTIVATED,
                family_id=document.get("familyId", ""),
                obligation_id=obligation_id,
                kind=kind.value,
                actor_id=actor_id,
            )

    async def mark_processed(
        self,
        obligation: RecurringObligation,
        period_key: PeriodKey,
    ) -> bool:
        """
        Record period_key as processed, if nobody else moved the marker.

        Succeeds only while the stored lastProcessedPeriod still equals the
        value this obligation was read with.

        Returns:
            True if this call advanced the marker
        """
        return await self._store.update_if(
            obligation.collection,
            obligation.id,
            field="lastProcessedPeriod",
            expected=obligation.last_processed_period,
            patch={"lastProcessedPeriod": period_key},
        )

    def watch(self, family_id: str, kind: EntryKind) -> AsyncIterator[Snapshot]:
        """Subscribe to the family's active obligations of one kind."""
        return self._store.subscribe(self.active_query(family_id, kind))
