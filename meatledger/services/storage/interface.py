"""
Abstract Document Store Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against Firestore in production
2. Use in-memory storage for testing
3. Keep the ledger engine decoupled from the storage implementation

The interface mirrors the primitives a remote document store offers and
nothing more: documents addressed by (collection, id), one atomic
read-modify-write on a single document, and push subscriptions.
Multi-document consistency is the engine's job, not the store's.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, TypeVar

from meatledger.errors import LedgerError
from meatledger.models.ledger import Collection

T = TypeVar("T")

Document = dict[str, Any]

# Receives the current document (None when absent) and returns
# (document to write, value to hand back to the caller)
TransactionMutation = Callable[[Optional[Document]], tuple[Document, T]]


@dataclass(frozen=True)
class CollectionSnapshot:
    """
    Full contents of one collection at one point in time.

    version increases with every change the store observes, so observers
    can discard snapshots that arrive out of order.
    """
    collection: Collection
    version: int
    documents: tuple[Document, ...] = field(default_factory=tuple)


SnapshotCallback = Callable[[CollectionSnapshot], None]
Unsubscribe = Callable[[], None]


class DocumentStoreInterface(ABC):
    """
    Abstract interface for the shared document store.

    Any storage implementation (Firestore, in-memory, etc.)
    must implement these methods. All I/O methods may suspend.
    """

    @abstractmethod
    async def get(self, collection: Collection, doc_id: str) -> Optional[Document]:
        """
        Retrieve a document by its ID.

        Returns:
            The document (with its "id" field) if found, None otherwise

        Raises:
            TransientStoreError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def set(self, collection: Collection, doc_id: str, data: Document) -> None:
        """
        Create or fully replace a document.

        Raises:
            TransientStoreError: If the write fails
        """
        pass

    @abstractmethod
    async def update(self, collection: Collection, doc_id: str, fields: Document) -> None:
        """
        Partially update an existing document.

        Raises:
            NotFoundError: If the document doesn't exist
            TransientStoreError: If the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: Collection, doc_id: str) -> None:
        """
        Delete a document. Deleting an absent document is not an error.

        Raises:
            TransientStoreError: If the delete fails
        """
        pass

    @abstractmethod
    async def list_documents(
        self,
        collection: Collection,
        field: Optional[str] = None,
        value: Any = None,
    ) -> list[Document]:
        """
        List documents, optionally those whose `field` equals `value`.

        Raises:
            TransientStoreError: If the read fails
        """
        pass

    @abstractmethod
    async def run_transaction(
        self,
        collection: Collection,
        doc_id: str,
        mutate: TransactionMutation,
    ) -> Any:
        """
        Atomically read, modify and write a single document.

        `mutate` may be called more than once if the store retries;
        it must not have side effects.

        Returns:
            The value returned by `mutate` for the committed attempt

        Raises:
            SequenceConflictError: If the transaction could not commit
            TransientStoreError: If the store cannot be reached
        """
        pass

    @abstractmethod
    def subscribe(self, collection: Collection, callback: SnapshotCallback) -> Unsubscribe:
        """
        Push a CollectionSnapshot to `callback` now and after every change.

        Returns:
            A function that cancels the subscription
        """
        pass


class StorageError(LedgerError):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""

    def __init__(self, message: str, code: Optional[str] = "not-found"):
        super().__init__(message, code)


class TransientStoreError(StorageError):
    """
    The store could not be reached or rejected a write.

    Not retried automatically. Steps of the same operation that completed
    before this was raised stay applied.
    """
    pass


class SequenceConflictError(StorageError):
    """The invoice counter transaction lost a race and could not commit."""

    def __init__(self, message: str, code: Optional[str] = "aborted"):
        super().__init__(message, code)
