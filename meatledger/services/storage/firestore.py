"""
Firestore Storage Implementation

DESIGN DECISION: Firestore is the shared store because:
1. Several users work against the same data at once
2. Transactions give us a safe, shared invoice counter
3. Snapshot listeners push changes to every open screen
4. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Only single-document transactions are used (the counter); every other
  multi-document change is ordered by the engine, not by the store
- Balance writes are last-write-wins across users

The implementation follows the abstract interface, so the engine never
imports anything from Firebase directly.
"""

from datetime import datetime
from typing import Any, Optional

import firebase_admin
import structlog
from firebase_admin import credentials, firestore, firestore_async
from google.api_core import exceptions as google_exceptions
from google.cloud.firestore import async_transactional
from google.cloud.firestore_v1.base_query import FieldFilter
from tenacity import retry, stop_after_attempt, wait_exponential

from meatledger.config import get_settings
from meatledger.models.ledger import Collection
from meatledger.services.storage.interface import (
    CollectionSnapshot,
    Document,
    DocumentStoreInterface,
    NotFoundError,
    SequenceConflictError,
    SnapshotCallback,
    TransactionMutation,
    TransientStoreError,
    Unsubscribe,
)


logger = structlog.get_logger(__name__)

APP_NAME = "meatledger"


def _error_code(error: Exception) -> Optional[str]:
    """Best available code for a Google API error."""
    grpc_code = getattr(error, "grpc_status_code", None)
    if grpc_code is not None:
        return grpc_code.name.lower().replace("_", "-")
    code = getattr(error, "code", None)
    return str(code) if code is not None else None


def _to_store_error(action: str, error: Exception) -> TransientStoreError:
    return TransientStoreError(f"Failed to {action}: {error}", code=_error_code(error))


class FirestoreClient:
    """
    Low-level Firestore client wrapper.

    Handles authentication and provides retry logic for connecting.
    Holds the async client for reads/writes and the sync client
    for snapshot listeners (only the sync client can listen).
    """

    def __init__(self):
        self._app: Optional[firebase_admin.App] = None
        self._async_client = None
        self._sync_client = None
        self._settings = get_settings().firestore

    @property
    def max_attempts(self) -> int:
        return self._settings.transaction_max_attempts

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> firebase_admin.App:
        """
        Initialize the Firebase app.

        Uses service account credentials for authentication.
        """
        if self._app is None:
            try:
                self._app = firebase_admin.get_app(APP_NAME)
            except ValueError:
                try:
                    cred = credentials.Certificate(self._settings.credentials_path)
                except FileNotFoundError:
                    raise TransientStoreError(
                        f"Firebase credentials file not found: {self._settings.credentials_path}",
                        code="unauthenticated",
                    )
                except Exception as e:
                    raise TransientStoreError(f"Failed to load Firebase credentials: {e}")
                self._app = firebase_admin.initialize_app(
                    cred,
                    {"projectId": self._settings.project_id},
                    name=APP_NAME,
                )
        return self._app

    def get_async_client(self):
        if self._async_client is None:
            self._async_client = firestore_async.client(app=self.connect())
        return self._async_client

    def get_sync_client(self):
        if self._sync_client is None:
            self._sync_client = firestore.client(app=self.connect())
        return self._sync_client


class FirestoreDocumentStore(DocumentStoreInterface):
    """
    Firestore implementation of the document store.

    Each Collection maps to a top-level Firestore collection; the invoice
    counter lives in the "settings" collection.
    """

    def __init__(self, client: Optional[FirestoreClient] = None):
        self._client = client or FirestoreClient()

    def _ref(self, collection: Collection, doc_id: str):
        return self._client.get_async_client().collection(collection.value).document(doc_id)

    @staticmethod
    def _to_document(snapshot) -> Document:
        data = snapshot.to_dict() or {}
        data["id"] = snapshot.id
        return data

    async def get(self, collection: Collection, doc_id: str) -> Optional[Document]:
        try:
            snapshot = await self._ref(collection, doc_id).get()
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"read {collection.value}/{doc_id}", e)
        if not snapshot.exists:
            return None
        return self._to_document(snapshot)

    async def set(self, collection: Collection, doc_id: str, data: Document) -> None:
        try:
            await self._ref(collection, doc_id).set({**data, "id": doc_id})
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"write {collection.value}/{doc_id}", e)

    async def update(self, collection: Collection, doc_id: str, fields: Document) -> None:
        try:
            await self._ref(collection, doc_id).update(fields)
        except google_exceptions.NotFound:
            raise NotFoundError(f"{collection.value}/{doc_id} not found")
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"update {collection.value}/{doc_id}", e)

    async def delete(self, collection: Collection, doc_id: str) -> None:
        try:
            await self._ref(collection, doc_id).delete()
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"delete {collection.value}/{doc_id}", e)

    async def list_documents(
        self,
        collection: Collection,
        field: Optional[str] = None,
        value: Any = None,
    ) -> list[Document]:
        query = self._client.get_async_client().collection(collection.value)
        if field is not None:
            query = query.where(filter=FieldFilter(field, "==", value))
        try:
            return [self._to_document(snapshot) async for snapshot in query.stream()]
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"list {collection.value}", e)

    async def run_transaction(
        self,
        collection: Collection,
        doc_id: str,
        mutate: TransactionMutation,
    ) -> Any:
        ref = self._ref(collection, doc_id)
        transaction = self._client.get_async_client().transaction(
            max_attempts=self._client.max_attempts
        )

        @async_transactional
        async def read_modify_write(txn):
            snapshot = await ref.get(transaction=txn)
            current = self._to_document(snapshot) if snapshot.exists else None
            new_doc, result = mutate(current)
            txn.set(ref, {**new_doc, "id": doc_id})
            return result

        try:
            return await read_modify_write(transaction)
        except google_exceptions.Aborted as e:
            raise SequenceConflictError(
                f"Transaction on {collection.value}/{doc_id} could not commit: {e}"
            )
        except ValueError as e:
            # The client raises a plain ValueError once max_attempts is exhausted
            if "Failed to commit transaction" not in str(e):
                raise
            raise SequenceConflictError(
                f"Transaction on {collection.value}/{doc_id} could not commit: {e}"
            )
        except google_exceptions.GoogleAPICallError as e:
            raise _to_store_error(f"run transaction on {collection.value}/{doc_id}", e)

    def subscribe(self, collection: Collection, callback: SnapshotCallback) -> Unsubscribe:
        """
        Listen to a collection.

        Firestore calls back on a background thread with the full
        collection; read_time orders the snapshots.
        """
        col_ref = self._client.get_sync_client().collection(collection.value)

        def on_snapshot(docs, changes, read_time: datetime):
            version = int(read_time.timestamp() * 1_000_000) if read_time else 0
            callback(CollectionSnapshot(
                collection=collection,
                version=version,
                documents=tuple(self._to_document(doc) for doc in docs),
            ))

        watch = col_ref.on_snapshot(on_snapshot)
        logger.info("firestore_subscribed", collection=collection.value)
        return watch.unsubscribe
