"""
Storage Services Package

Provides the abstract document store the engine is written against, plus
concrete implementations. Google Sheets is the hosted backend; the in-memory
store backs tests and offline sessions.
"""

from moneymap.services.storage.interface import (
    ID_FIELD,
    AuditStorageInterface,
    ConnectionError,
    Document,
    DocumentStore,
    DuplicateError,
    Filter,
    FilterOp,
    NotFoundError,
    OrderBy,
    Query,
    Snapshot,
    StorageError,
)
from moneymap.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryDocumentStore,
)
from moneymap.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DocumentStore",
    # Query model
    "Document",
    "Filter",
    "FilterOp",
    "ID_FIELD",
    "OrderBy",
    "Query",
    "Snapshot",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsDocumentStore",
]
