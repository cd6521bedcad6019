"""Services package."""

from meatledger.services.storage import (
    CollectionSnapshot,
    DocumentStoreInterface,
    InMemoryDocumentStore,
    NotFoundError,
    SequenceConflictError,
    StorageError,
    TransientStoreError,
)

__all__ = [
    "CollectionSnapshot",
    "DocumentStoreInterface",
    "InMemoryDocumentStore",
    "NotFoundError",
    "SequenceConflictError",
    "StorageError",
    "TransientStoreError",
]
