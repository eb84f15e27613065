"""
Ledger Repository

Data access for the expenses and incomes collections. Entries come from two
places: a family member typing them in, or the reconciliation engine
materializing an obligation. The second path goes through
create_materialized(), which never writes the same (obligation, period) twice.
"""

from datetime import date
from typing import Any, AsyncIterator, Optional

import structlog
from pydantic import ValidationError

from moneymap.audit import AuditLogger
from moneymap.models.audit import AuditEventType
from moneymap.models.ledger import ENTRY_TYPES, EntryKind, LedgerEntry
from moneymap.services.storage import (
    Document,
    DocumentStore,
    DuplicateError,
    FilterOp,
    NotFoundError,
    Query,
    Snapshot,
)
from moneymap.validation import InputValidator, ensure_valid, parse_amount


logger = structlog.get_logger(__name__)


def parse_entries(kind: EntryKind, documents: list[Document]) -> list[LedgerEntry]:
    """Parse raw documents, skipping (and logging) any that don't fit the schema."""
    model = ENTRY_TYPES[kind]
    entries = []
    for document in documents:
        try:
            entries.append(model.from_document(document))
        except ValidationError as e:
            logger.warning(
                "entry_document_skipped",
                collection=model.collection,
                doc_id=document.get("id"),
                error=str(e),
            )
    return entries


class LedgerRepository:
    """Reads and writes income and expense entries."""

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
    def family_query(
        family_id: str,
        kind: EntryKind,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Query:
        query = Query.where(ENTRY_TYPES[kind].collection, familyId=family_id)
        # Dates are stored as ISO strings, which order the same as the dates
        if start is not None:
            query = query.and_where("date", FilterOp.GE, start.isoformat())
        if end is not None:
            query = query.and_where("date", FilterOp.LE, end.isoformat())
        return query.ordered("date")

    async def list_entries(
        self,
        family_id: str,
        kind: EntryKind,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[LedgerEntry]:
        """Entries of one kind, oldest first, optionally within [start, end]."""
        documents = await self._store.query(self.family_query(family_id, kind, start, end))
        return parse_entries(kind, documents)

    async def get_entry(self, kind: EntryKind, entry_id: str) -> Optional[LedgerEntry]:
        model = ENTRY_TYPES[kind]
        document = await self._store.get(model.collection, entry_id)
        return model.from_document(document) if document else None

    async def add_entry(
        self,
        family_id: str,
        actor_id: str,
        kind: EntryKind,
        name: str,
        amount: Any,
        entry_date: date,
        category: Optional[str] = None,
    ) -> LedgerEntry:
        """
        Log an income or expense typed in by a family member.

        Raises:
            InvalidInputError: If any field is invalid (nothing is written)
        """
        ensure_valid(self._validator.validate_entry(
            kind=kind,
            name=name,
            amount=amount,
            entry_date=entry_date,
            category=category,
        ))

        fields: dict[str, Any] = {
            "family_id": family_id,
            "name": name,
            "amount": parse_amount(amount),
            "entry_date": entry_date,
            "added_by": actor_id,
        }
        if kind is EntryKind.EXPENSE:
            fields["category"] = category
        entry = ENTRY_TYPES[kind](**fields)

        await self._store.create(entry.collection, entry.to_document(), doc_id=entry.id)

        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                event_type=AuditEventType.ENTRY_ADDED,
                family_id=family_id,
                entry_id=entry.id,
                kind=kind.value,
                actor_id=actor_id,
                changes={"amount": str(entry.amount)},
            )
        return entry

    async def update_entry(
        self,
        kind: EntryKind,
        entry_id: str,
        actor_id: Optional[str] = None,
        **changes: Any,
    ) -> LedgerEntry:
        """
        Edit name, amount, category or entry_date. Identity never changes.

        Raises:
            NotFoundError: If the entry doesn't exist
            InvalidInputError: If the edited entry would be invalid
        """
        editable = {"name", "amount", "category", "entry_date"}
        unknown = set(changes) - editable
        if unknown:
            raise TypeError(f"Cannot edit entry fields: {sorted(unknown)}")

        current = await self.get_entry(kind, entry_id)
        if current is None:
            raise NotFoundError(f"{kind.value.capitalize()} not found: {entry_id}")

        merged = current.model_dump()
        merged.update({k: v for k, v in changes.items() if v is not None})
        ensure_valid(self._validator.validate_entry(
            kind=kind,
            name=merged["name"],
            amount=merged["amount"],
            entry_date=merged["entry_date"],
            category=merged.get("category"),
        ))

        merged["amount"] = parse_amount(merged["amount"])
        updated = ENTRY_TYPES[kind].model_validate(merged)
        document = updated.to_document()
        patch = {
            key: value for key, value in document.items()
            if key in {"name", "amount", "category", "date"}
        }
        await self._store.update(updated.collection, entry_id, patch)

        if self._audit_logger:
            await self._audit_logger.log_entry_changed(
                event_type=AuditEventType.ENTRY_UPDATED,
                family_id=updated.family_id,
                entry_id=entry_id,
                kind=kind.value,
                actor_id=actor_id,
                changes={k: str(v) for k, v in changes.items() if v is not None},
            )
        return updated

    async def delete_entry(
        self,
        kind: EntryKind,
        entry_id: str,
        actor_id: Optional[str] = None,
    ) -> bool:
        model = ENTRY_TYPES[kind]
        existing = await self._store.get(model.collection, entry_id)
        deleted = await self._store.delete(model.collection, entry_id)

        if deleted and self._audit_logger:
            await self._audit_logger.log_entry_changed(
                event_type=AuditEventType.ENTRY_DELETED,
                family_id=(existing or {}).get("familyId", ""),
                entry_id=entry_id,
                kind=kind.value,
                actor_id=actor_id,
            )
        return deleted

    async def create_materialized(self, entry: LedgerEntry) -> bool:
        """
        Write an entry produced by reconciliation, at most once.

        The entry's id is its idempotency key. If a document with that id
        already exists (an earlier attempt, or another session), nothing is
        written.

        Returns:
            True if this call created the entry, False if it already existed
        """
        try:
            await self._store.create(entry.collection, entry.to_document(), doc_id=entry.id)
            return True
        except DuplicateError:
            return False

    def watch(self, family_id: str, kind: EntryKind) -> AsyncIterator[Snapshot]:
        """Subscribe to every entry of one kind for the family."""
        return self._store.subscribe(self.family_query(family_id, kind))
