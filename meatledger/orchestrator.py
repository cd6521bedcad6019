"""
Main Orchestrator for Meat Ledger

This module ties together all the components behind one facade,
BackOffice, which is what the screens call:
1. Entity management (clients, suppliers, stock products)
2. Invoice lifecycle (close and delete client and supplier invoices)

DESIGN DECISION: The orchestrator enforces the boundaries:
- Nothing is written without passing validation first
- Every balance and stock change goes through the lifecycle manager
- Every step is audited

Reads go through the SnapshotMirror, never through BackOffice.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog

from meatledger.audit import AuditLogger
from meatledger.config import LedgerSettings, get_settings, validate_all_settings
from meatledger.engine import (
    CompletionLog,
    InvoiceLifecycleManager,
    SequenceGenerator,
    StockReconciler,
)
from meatledger.errors import ValidationError
from meatledger.models.ledger import (
    Client,
    ClientInvoice,
    ClientInvoiceDraft,
    Collection,
    StockProduct,
    Supplier,
    SupplierInvoice,
    SupplierInvoiceDraft,
)
from meatledger.queries import SnapshotMirror
from meatledger.services.storage import DocumentStoreInterface, InMemoryDocumentStore
from meatledger.services.storage.firestore import FirestoreClient, FirestoreDocumentStore
from meatledger.validation.validator import DraftValidator


logger = structlog.get_logger(__name__)


class BackOffice:
    """
    Every mutating operation of the back office.

    Each method is awaitable and raises a LedgerError subclass on failure;
    show the error's user_message and log its message/code.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        audit_logger: Optional[AuditLogger] = None,
        user: Optional[str] = None,
        settings: Optional[LedgerSettings] = None,
        validator: Optional[DraftValidator] = None,
    ):
        self._settings = settings or get_settings().ledger
        self._store = store
        self._audit_logger = audit_logger
        self._validator = validator or DraftValidator()
        self.user = user

        self.sequence = SequenceGenerator(
            store,
            initial_number=self._settings.initial_invoice_number,
            counter_document=self._settings.counter_document,
            audit_logger=audit_logger,
        )
        self.reconciler = StockReconciler(
            store,
            default_editor=self._settings.default_editor,
            audit_logger=audit_logger,
        )
        self.invoices = InvoiceLifecycleManager(
            store,
            self.sequence,
            self.reconciler,
            validator=self._validator,
            audit_logger=audit_logger,
            auto_compensate=self._settings.auto_compensate,
        )

    @property
    def editor(self) -> str:
        """Name stamped on stock edits."""
        return self.user or self._settings.default_editor

    async def _checked_name(self, entity_type: str, name: Optional[str]) -> str:
        try:
            return self._validator.check_name(entity_type, name)
        except ValidationError as e:
            if self._audit_logger:
                await self._audit_logger.log_validation_failed(
                    entity_type=entity_type,
                    entity_id=None,
                    issues=[issue.model_dump() for issue in e.issues],
                )
            raise

    # =========================================================================
    # CLIENTS
    # =========================================================================

    async def add_client(self, name: str) -> Client:
        """Register a new, active client with a zero balance."""
        client = Client(name=await self._checked_name("client", name))
        await self._store.set(Collection.CLIENTS, client.id, client.to_document())

        if self._audit_logger:
            await self._audit_logger.log_entity_added("client", client.id, client.name)
        return client

    async def delete_client(self, client_id: str, cascade_invoices: bool = False) -> int:
        """
        Remove a client.

        Args:
            client_id: Client to remove. An unknown ID is a no-op.
            cascade_invoices: Also delete the client's invoices, reverting
                their stock effect. Otherwise they are kept as history.

        Returns:
            Number of invoices deleted along with the client
        """
        if await self._store.get(Collection.CLIENTS, client_id) is None:
            logger.info("client_already_absent", client_id=client_id)
            return 0

        cascaded = 0
        if cascade_invoices:
            documents = await self._store.list_documents(
                Collection.CLIENT_INVOICES, field="clientId", value=client_id,
            )
            for document in documents:
                if await self.invoices.delete_client_invoice(document["id"], editor=self.editor):
                    cascaded += 1

        await self._store.delete(Collection.CLIENTS, client_id)
        if self._audit_logger:
            await self._audit_logger.log_entity_deleted("client", client_id, cascaded)
        return cascaded

    # =========================================================================
    # SUPPLIERS
    # =========================================================================

    async def add_supplier(self, name: str) -> Supplier:
        supplier = Supplier(name=await self._checked_name("supplier", name))
        await self._store.set(Collection.SUPPLIERS, supplier.id, supplier.to_document())

        if self._audit_logger:
            await self._audit_logger.log_entity_added("supplier", supplier.id, supplier.name)
        return supplier

    async def delete_supplier(self, supplier_id: str, cascade_invoices: bool = False) -> int:
        """
        Remove a supplier, optionally with its invoices (see delete_client).

        Returns:
            Number of invoices deleted along with the supplier
        """
        if await self._store.get(Collection.SUPPLIERS, supplier_id) is None:
            logger.info("supplier_already_absent", supplier_id=supplier_id)
            return 0

        cascaded = 0
        if cascade_invoices:
            documents = await self._store.list_documents(
                Collection.SUPPLIER_INVOICES, field="supplierId", value=supplier_id,
            )
            for document in documents:
                if await self.invoices.delete_supplier_invoice(document["id"], editor=self.editor):
                    cascaded += 1

        await self._store.delete(Collection.SUPPLIERS, supplier_id)
        if self._audit_logger:
            await self._audit_logger.log_entity_deleted("supplier", supplier_id, cascaded)
        return cascaded

    # =========================================================================
    # STOCK
    # =========================================================================

    async def add_stock_product(self, name: str, price: float = 0.0) -> StockProduct:
        """Register a product with nothing on hand."""
        product = StockProduct(
            name=await self._checked_name("stock", name),
            unit_price=self._validator.check_price(price),
            last_edited_by=self.editor,
            last_edited_at=datetime.now(timezone.utc),
        )
        await self._store.set(Collection.STOCK, product.id, product.to_document())

        if self._audit_logger:
            await self._audit_logger.log_entity_added("stock", product.id, product.name)
        return product

    async def delete_stock_product(self, product_id: str) -> None:
        if await self._store.get(Collection.STOCK, product_id) is None:
            logger.info("stock_product_already_absent", product_id=product_id)
            return

        await self._store.delete(Collection.STOCK, product_id)
        if self._audit_logger:
            await self._audit_logger.log_entity_deleted("stock", product_id)

    # =========================================================================
    # INVOICES
    # =========================================================================

    async def close_client_invoice(self, draft: ClientInvoiceDraft) -> ClientInvoice:
        return await self.invoices.close_client_invoice(draft, editor=self.editor)

    async def close_supplier_invoice(self, draft: SupplierInvoiceDraft) -> SupplierInvoice:
        return await self.invoices.close_supplier_invoice(draft, editor=self.editor)

    async def delete_client_invoice(self, invoice_id: str) -> Optional[ClientInvoice]:
        return await self.invoices.delete_client_invoice(invoice_id, editor=self.editor)

    async def delete_supplier_invoice(self, invoice_id: str) -> Optional[SupplierInvoice]:
        return await self.invoices.delete_supplier_invoice(invoice_id, editor=self.editor)

    async def rollback_last_operation(self) -> Optional[CompletionLog]:
        """
        Compensate whatever the most recent close/delete left behind.

        For manual reconciliation after a failure when auto_compensate is
        off. Returns the updated CompletionLog, or None if nothing ran yet.
        """
        pipeline = self.invoices.last_pipeline
        if pipeline is None:
            return None
        return await pipeline.rollback()


def create_app_components(
    use_storage: bool = True,
    user: Optional[str] = None,
) -> tuple[BackOffice, SnapshotMirror]:
    """
    Factory function to create all application components.

    Args:
        use_storage: Whether to connect to Firestore.
                    Set to False to run entirely in memory.
        user: Logged-in user, stamped on stock edits and audit events

    Returns:
        (back_office, mirror) with the mirror already subscribed
    """
    settings = get_settings()
    store: Optional[DocumentStoreInterface] = None

    if use_storage:
        status = validate_all_settings()
        if not status["firestore"]:
            logger.warning("storage_not_configured", error=status.get("firestore_error"))
            use_storage = False

    if use_storage:
        try:
            client = FirestoreClient()
            client.connect()
            store = FirestoreDocumentStore(client)
        except Exception as e:
            # Firestore unreachable - continue in memory
            logger.warning("storage_not_configured", error=str(e))
            store = None

    if store is None:
        store = InMemoryDocumentStore()

    ledger_settings = settings.ledger
    audit_logger = AuditLogger(
        store if ledger_settings.persist_audit_log else None,
        actor=user,
    )

    back_office = BackOffice(
        store,
        audit_logger=audit_logger,
        user=user,
        settings=ledger_settings,
    )
    mirror = SnapshotMirror(store).start()
    return back_office, mirror
