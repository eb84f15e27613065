"""
Abstract Document Store Interface

DESIGN DECISION: The engine talks to persistence only through this interface.
This allows us to:
1. Back the engine with any document store (Google Sheets today)
2. Use in-memory storage for testing and offline sessions
3. Keep business logic decoupled from storage implementation

The interface is intentionally small - we're not building a query language.
Equality/range filters, one ordering, a limit, and a single-document
conditional update. No multi-document transaction is assumed; components
that need atomicity build it on update_if().
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from moneymap.models.audit import AuditEvent


Document = dict[str, Any]

# Key under which every stored document carries its own identifier
ID_FIELD = "id"


class FilterOp(str, Enum):
    EQ = "=="
    NE = "!="
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="


class Filter(BaseModel):
    """
    One field condition.

    A document that lacks the field never matches, whatever the operator.
    This mirrors the hosted document stores and is what makes legacy
    goal records invisible to an `active == True` query.
    """
    model_config = ConfigDict(frozen=True)

    field: str
    op: FilterOp = FilterOp.EQ
    value: Any = None

    def matches(self, document: Document) -> bool:
        if self.field not in document:
            return False
        actual = document[self.field]
        try:
            if self.op is FilterOp.EQ:
                return actual == self.value
            if self.op is FilterOp.NE:
                return actual != self.value
            if self.op is FilterOp.LT:
                return actual < self.value
            if self.op is FilterOp.LE:
                return actual <= self.value
            if self.op is FilterOp.GT:
                return actual > self.value
            return actual >= self.value
        except TypeError:
            # Mismatched types never satisfy a range filter
            return False


class OrderBy(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    descending: bool = False


class Query(BaseModel):
    """A collection query: filters are ANDed, then ordered, then limited."""
    model_config = ConfigDict(frozen=True)

    collection: str
    filters: tuple[Filter, ...] = ()
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def where(cls, collection: str, **equals: Any) -> "Query":
        """Shorthand for a query made only of equality filters."""
        return cls(
            collection=collection,
            filters=tuple(Filter(field=k, value=v) for k, v in equals.items()),
        )

    def and_where(self, field: str, op: FilterOp, value: Any) -> "Query":
        return self.model_copy(
            update={"filters": self.filters + (Filter(field=field, op=op, value=value),)}
        )

    def ordered(self, field: str, descending: bool = False) -> "Query":
        return self.model_copy(update={"order_by": OrderBy(field=field, descending=descending)})

    def limited(self, limit: int) -> "Query":
        return self.model_copy(update={"limit": limit})

    def matches(self, document: Document) -> bool:
        return all(f.matches(document) for f in self.filters)

    def apply(self, documents: list[Document]) -> list[Document]:
        """Evaluate the query over an unfiltered list of documents."""
        result = [doc for doc in documents if self.matches(doc)]
        if self.order_by is not None:
            field = self.order_by.field
            # Documents missing the order field are excluded, like filters
            result = [doc for doc in result if doc.get(field) is not None]
            result.sort(key=lambda doc: doc[field], reverse=self.order_by.descending)
        if self.limit is not None:
            result = result[:self.limit]
        return result


class Snapshot(BaseModel):
    """
    The current result set of a subscribed query, plus what changed.

    The first snapshot of a subscription reports every document as added.
    Delivery is at-least-once: consumers must tolerate identical snapshots.
    """

    documents: list[Document] = Field(default_factory=list)
    added: list[str] = Field(default_factory=list)
    modified: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.documents

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.modified or self.removed)

    @classmethod
    def diff(cls, previous: list[Document], current: list[Document]) -> "Snapshot":
        before = {doc[ID_FIELD]: doc for doc in previous}
        after = {doc[ID_FIELD]: doc for doc in current}
        return cls(
            documents=current,
            added=[doc_id for doc_id in after if doc_id not in before],
            modified=[
                doc_id for doc_id, doc in after.items()
                if doc_id in before and before[doc_id] != doc
            ],
            removed=[doc_id for doc_id in before if doc_id not in after],
        )


class DocumentStore(ABC):
    """
    Abstract interface for the document store.

    Any storage implementation (Google Sheets, a hosted document DB, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        """
        Read one document.

        Returns:
            The document if found, None otherwise
        """
        pass

    @abstractmethod
    async def query(self, query: Query) -> list[Document]:
        """
        Run a collection query.

        Returns:
            Matching documents, ordered and limited as the query asks
        """
        pass

    @abstractmethod
    async def create(
        self,
        collection: str,
        data: Document,
        doc_id: Optional[str] = None,
    ) -> Document:
        """
        Create a document.

        Args:
            collection: Target collection
            data: Document body
            doc_id: Explicit identifier. When given, creation is
                    create-if-absent: an existing id is never overwritten.

        Returns:
            The stored document, including its id

        Raises:
            DuplicateError: If doc_id already exists
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, patch: Document) -> Document:
        """
        Merge a patch into an existing document (last write wins).

        Returns:
            The updated document

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def update_if(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        patch: Document,
    ) -> bool:
        """
        Compare-and-swap on a single document.

        Applies the patch only if the stored value of `field` still equals
        `expected` (a missing field compares equal to None).

        Returns:
            True if the patch was applied, False if the stored value differed

        Raises:
            NotFoundError: If the document doesn't exist
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> bool:
        """
        Delete a document.

        Returns:
            True if a document was deleted
        """
        pass

    @abstractmethod
    def subscribe(self, query: Query) -> AsyncIterator[Snapshot]:
        """
        Subscribe to a query.

        Yields the current result set immediately, then a new snapshot
        whenever the result set changes. Closing the iterator unsubscribes.
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one reconciliation pass).

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Returns:
            List of events in chronological order
        """
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """
        Get the most recent audit events.

        Returns:
            List of recent events (newest first)
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
