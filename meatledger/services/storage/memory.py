"""
In-Memory Document Store

Implements DocumentStoreInterface entirely in process memory.
Used by the test-suite and as a fallback when Firestore isn't configured.

It behaves like the remote store where it matters to the engine:
- documents are deep-copied in and out (no shared references)
- every change bumps the collection's version and pushes a snapshot
- transactions on a single document are serialized by a lock, one per
  event loop, so a store can outlive the loop that first used it
"""

import asyncio
import copy
from collections import defaultdict
from typing import Any, Optional

import structlog

from meatledger.models.ledger import Collection
from meatledger.services.storage.interface import (
    CollectionSnapshot,
    Document,
    DocumentStoreInterface,
    NotFoundError,
    SnapshotCallback,
    TransactionMutation,
    Unsubscribe,
)


logger = structlog.get_logger(__name__)


class InMemoryDocumentStore(DocumentStoreInterface):
    """
    Dictionary-backed document store.

    Collections are created on first write.
    """

    def __init__(self):
        self._collections: dict[Collection, dict[str, Document]] = defaultdict(dict)
        self._versions: dict[Collection, int] = defaultdict(int)
        self._subscribers: dict[Collection, list[SnapshotCallback]] = defaultdict(list)
        self._lock: Optional[asyncio.Lock] = None
        self._lock_loop: Optional[asyncio.AbstractEventLoop] = None

    def _transaction_lock(self) -> asyncio.Lock:
        """Lock of the running event loop; a new loop gets a new lock."""
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _snapshot(self, collection: Collection) -> CollectionSnapshot:
        documents = tuple(
            copy.deepcopy(doc) for doc in self._collections[collection].values()
        )
        return CollectionSnapshot(
            collection=collection,
            version=self._versions[collection],
            documents=documents,
        )

    def _changed(self, collection: Collection) -> None:
        self._versions[collection] += 1
        if not self._subscribers[collection]:
            return
        snapshot = self._snapshot(collection)
        for callback in list(self._subscribers[collection]):
            callback(snapshot)

    async def get(self, collection: Collection, doc_id: str) -> Optional[Document]:
        doc = self._collections[collection].get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, collection: Collection, doc_id: str, data: Document) -> None:
        doc = copy.deepcopy(data)
        doc["id"] = doc_id
        self._collections[collection][doc_id] = doc
        self._changed(collection)

    async def update(self, collection: Collection, doc_id: str, fields: Document) -> None:
        doc = self._collections[collection].get(doc_id)
        if doc is None:
            raise NotFoundError(f"{collection.value}/{doc_id} not found")
        doc.update(copy.deepcopy(fields))
        self._changed(collection)

    async def delete(self, collection: Collection, doc_id: str) -> None:
        if self._collections[collection].pop(doc_id, None) is not None:
            self._changed(collection)

    async def list_documents(
        self,
        collection: Collection,
        field: Optional[str] = None,
        value: Any = None,
    ) -> list[Document]:
        return [
            copy.deepcopy(doc)
            for doc in self._collections[collection].values()
            if field is None or doc.get(field) == value
        ]

    async def run_transaction(
        self,
        collection: Collection,
        doc_id: str,
        mutate: TransactionMutation,
    ) -> Any:
        async with self._transaction_lock():
            current = await self.get(collection, doc_id)
            new_doc, result = mutate(current)
            await self.set(collection, doc_id, new_doc)
            return result

    def subscribe(self, collection: Collection, callback: SnapshotCallback) -> Unsubscribe:
        self._subscribers[collection].append(callback)
        callback(self._snapshot(collection))

        def unsubscribe() -> None:
            if callback in self._subscribers[collection]:
                self._subscribers[collection].remove(callback)

        logger.debug("subscribed", collection=collection.value)
        return unsubscribe
