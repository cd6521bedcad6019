"""
Snapshot Mirror

Read-only, eventually consistent local copy of the shared collections,
kept current by the store's push subscriptions. Views read from here;
every mutation goes through the engine.

DESIGN DECISION: Each collection is replaced wholesale by the newest
snapshot. A snapshot whose version is not newer than the one held is
discarded, so a late push can never roll the mirror back.
Collections update independently and may briefly disagree with each
other (e.g. a new invoice visible before the client's new balance).
"""

import threading
from typing import Optional

import structlog
from pydantic import ValidationError as ModelValidationError

from meatledger.models.ledger import (
    Client,
    ClientInvoice,
    Collection,
    LedgerDocument,
    StockProduct,
    Supplier,
    SupplierInvoice,
)
from meatledger.services.storage import (
    CollectionSnapshot,
    DocumentStoreInterface,
)


logger = structlog.get_logger(__name__)

MIRRORED_COLLECTIONS: dict[Collection, type[LedgerDocument]] = {
    Collection.CLIENTS: Client,
    Collection.STOCK: StockProduct,
    Collection.SUPPLIERS: Supplier,
    Collection.CLIENT_INVOICES: ClientInvoice,
    Collection.SUPPLIER_INVOICES: SupplierInvoice,
}


class SnapshotMirror:
    """
    Latest known contents of every mirrored collection.

    Snapshot callbacks may arrive on another thread (Firestore listeners
    do), hence the lock.
    """

    def __init__(self, store: DocumentStoreInterface):
        self._store = store
        self._lock = threading.Lock()
        self._versions: dict[Collection, int] = {}
        self._entities: dict[Collection, list[LedgerDocument]] = {
            collection: [] for collection in MIRRORED_COLLECTIONS
        }
        self._unsubscribers = []

    def start(self) -> "SnapshotMirror":
        """Subscribe to every mirrored collection."""
        if not self._unsubscribers:
            for collection in MIRRORED_COLLECTIONS:
                self._unsubscribers.append(
                    self._store.subscribe(collection, self.apply_snapshot)
                )
        return self

    def stop(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    @property
    def is_running(self) -> bool:
        return bool(self._unsubscribers)

    def apply_snapshot(self, snapshot: CollectionSnapshot) -> bool:
        """
        Replace a collection with `snapshot` if it is newer.

        Returns False when the snapshot was stale and discarded.
        """
        model = MIRRORED_COLLECTIONS.get(snapshot.collection)
        if model is None:
            return False

        entities = []
        for document in snapshot.documents:
            try:
                entities.append(model.from_document(document, document.get("id")))
            except ModelValidationError as e:
                logger.warning(
                    "malformed_document_skipped",
                    collection=snapshot.collection.value,
                    doc_id=document.get("id"),
                    error=str(e),
                )

        with self._lock:
            held = self._versions.get(snapshot.collection)
            if held is not None and snapshot.version <= held:
                logger.debug(
                    "stale_snapshot_discarded",
                    collection=snapshot.collection.value,
                    version=snapshot.version,
                    held=held,
                )
                return False
            self._versions[snapshot.collection] = snapshot.version
            self._entities[snapshot.collection] = entities
        return True

    def version(self, collection: Collection) -> Optional[int]:
        with self._lock:
            return self._versions.get(collection)

    def _get(self, collection: Collection) -> list:
        with self._lock:
            return list(self._entities[collection])

    # Typed accessors

    def clients(self, active_only: bool = False) -> list[Client]:
        clients = self._get(Collection.CLIENTS)
        if active_only:
            clients = [client for client in clients if client.active]
        return sorted(clients, key=lambda client: client.name.lower())

    def client(self, client_id: str) -> Optional[Client]:
        return next((c for c in self._get(Collection.CLIENTS) if c.id == client_id), None)

    def suppliers(self) -> list[Supplier]:
        return sorted(self._get(Collection.SUPPLIERS), key=lambda s: s.name.lower())

    def stock(self) -> list[StockProduct]:
        return sorted(self._get(Collection.STOCK), key=lambda p: p.normalized_name)

    def client_invoices(self, client_id: Optional[str] = None) -> list[ClientInvoice]:
        """Newest first."""
        invoices = self._get(Collection.CLIENT_INVOICES)
        if client_id is not None:
            invoices = [inv for inv in invoices if inv.client_id == client_id]
        return sorted(invoices, key=lambda inv: inv.invoice_number, reverse=True)

    def supplier_invoices(self, supplier_id: Optional[str] = None) -> list[SupplierInvoice]:
        """Newest first."""
        invoices = self._get(Collection.SUPPLIER_INVOICES)
        if supplier_id is not None:
            invoices = [inv for inv in invoices if inv.supplier_id == supplier_id]
        return sorted(invoices, key=lambda inv: inv.invoice_number, reverse=True)
