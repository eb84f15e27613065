"""Services package."""

from moneymap.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DocumentStore,
    DuplicateError,
    InMemoryAuditStorage,
    InMemoryDocumentStore,
    NotFoundError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DocumentStore",
    "DuplicateError",
    "InMemoryAuditStorage",
    "InMemoryDocumentStore",
    "NotFoundError",
    "StorageError",
]
