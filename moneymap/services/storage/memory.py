"""
In-Memory Storage Implementation

Backs tests and offline sessions. Several FamilySession objects can share
one InMemoryDocumentStore to play the part of devices writing to the same
hosted store: each operation is applied atomically, update_if() is a real
compare-and-swap, and subscriptions are pushed on every change.
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, AsyncIterator, Optional
from uuid import UUID, uuid4

from moneymap.models.audit import AuditEvent
from moneymap.services.storage.interface import (
    ID_FIELD,
    AuditStorageInterface,
    Document,
    DocumentStore,
    DuplicateError,
    NotFoundError,
    Query,
    Snapshot,
)


class _Subscription:
    def __init__(self, query: Query, last: list[Document]):
        self.query = query
        self.last = last
        self.queue: asyncio.Queue[Snapshot] = asyncio.Queue()


class InMemoryDocumentStore(DocumentStore):
    """Dictionary-backed document store."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, Document]] = defaultdict(dict)
        self._subscriptions: dict[str, list[_Subscription]] = defaultdict(list)
        self._lock = asyncio.Lock()

    def _run(self, query: Query) -> list[Document]:
        documents = list(self._collections[query.collection].values())
        return copy.deepcopy(query.apply(documents))

    def _notify(self, collection: str) -> None:
        for sub in self._subscriptions[collection]:
            current = self._run(sub.query)
            if current != sub.last:
                sub.queue.put_nowait(Snapshot.diff(sub.last, current))
                sub.last = current

    def seed(self, collection: str, documents: list[Document]) -> None:
        """Load raw documents as-is, bypassing models (legacy fixtures)."""
        for document in documents:
            doc = copy.deepcopy(document)
            doc.setdefault(ID_FIELD, uuid4().hex)
            self._collections[collection][doc[ID_FIELD]] = doc
        self._notify(collection)

    def dump(self, collection: str) -> list[Document]:
        return copy.deepcopy(list(self._collections[collection].values()))

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        document = self._collections[collection].get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def query(self, query: Query) -> list[Document]:
        return self._run(query)

    async def create(
        self,
        collection: str,
        data: Document,
        doc_id: Optional[str] = None,
    ) -> Document:
        async with self._lock:
            doc_id = doc_id or data.get(ID_FIELD) or uuid4().hex
            if doc_id in self._collections[collection]:
                raise DuplicateError(f"{collection}/{doc_id} already exists")
            document = copy.deepcopy(data)
            document[ID_FIELD] = doc_id
            self._collections[collection][doc_id] = document
            self._notify(collection)
            return copy.deepcopy(document)

    async def update(self, collection: str, doc_id: str, patch: Document) -> Document:
        async with self._lock:
            document = self._collections[collection].get(doc_id)
            if document is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            document.update(copy.deepcopy(patch))
            document[ID_FIELD] = doc_id
            self._notify(collection)
            return copy.deepcopy(document)

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        field: str,
        expected: Any,
        patch: Document,
    ) -> bool:
        async with self._lock:
            document = self._collections[collection].get(doc_id)
            if document is None:
                raise NotFoundError(f"{collection}/{doc_id} not found")
            if document.get(field) != expected:
                return False
            document.update(copy.deepcopy(patch))
            document[ID_FIELD] = doc_id
            self._notify(collection)
            return True

    async def delete(self, collection: str, doc_id: str) -> bool:
        async with self._lock:
            removed = self._collections[collection].pop(doc_id, None)
            if removed is not None:
                self._notify(collection)
            return removed is not None

    async def subscribe(self, query: Query) -> AsyncIterator[Snapshot]:
        current = self._run(query)
        sub = _Subscription(query, current)
        self._subscriptions[query.collection].append(sub)
        try:
            yield Snapshot.diff([], current)
            while True:
                yield await sub.queue.get()
        finally:
            self._subscriptions[query.collection].remove(sub)


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self.events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        return sorted(self.events, key=lambda e: e.timestamp, reverse=True)[:limit]
