"""
Storage Services Package

Provides the abstract document store interface and its implementations.
Firestore is the production backend; the in-memory store serves tests
and local runs.

FirestoreDocumentStore lives in meatledger.services.storage.firestore and is
wired in by the orchestrator; the engine depends on the interface only.
"""

from meatledger.services.storage.interface import (
    CollectionSnapshot,
    Document,
    DocumentStoreInterface,
    NotFoundError,
    SequenceConflictError,
    StorageError,
    TransientStoreError,
)
from meatledger.services.storage.memory import InMemoryDocumentStore

__all__ = [
    # Interface
    "CollectionSnapshot",
    "Document",
    "DocumentStoreInterface",
    # Exceptions
    "NotFoundError",
    "SequenceConflictError",
    "StorageError",
    "TransientStoreError",
    # Implementations
    "InMemoryDocumentStore",
]
