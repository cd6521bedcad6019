"""
Invoice Lifecycle Manager

Closes and deletes client and supplier invoices, keeping the client's
balance and the stock consistent with the invoices on record.

Lifecycle: Draft -> Closed -> Deleted. A closed invoice is never edited;
deleting it reverses its balance and stock effects.

CLOSE (client):     validate -> assign_number -> persist_invoice
                    -> update_balance -> apply_stock (SALE)
CLOSE (supplier):   validate -> assign_number -> persist_invoice
                    -> apply_stock (PURCHASE)
DELETE (client):    revert_balance -> revert_stock (REVERT_SALE) -> remove_invoice
DELETE (supplier):  revert_stock (REVERT_PURCHASE) -> remove_invoice

CRITICAL: Nothing is written before validation passes and the invoice
number has been drawn. A failure after that leaves the earlier steps in
place (see OperationPipeline); the raised error carries the CompletionLog.
"""

from typing import Optional
from uuid import UUID

import structlog

from meatledger.audit import AuditLogger, create_correlation_id
from meatledger.engine.pipeline import OperationPipeline
from meatledger.engine.sequence import SequenceGenerator
from meatledger.engine.stock import StockReconciler
from meatledger.errors import ValidationError
from meatledger.models.ledger import (
    Client,
    ClientInvoice,
    ClientInvoiceDraft,
    Collection,
    StockEffectKind,
    SupplierInvoice,
    SupplierInvoiceDraft,
)
from meatledger.services.storage import DocumentStoreInterface, NotFoundError
from meatledger.validation import sanitize
from meatledger.validation.validator import DraftValidator


logger = structlog.get_logger(__name__)


class InvoiceLifecycleManager:
    """
    Runs the multi-step invoice operations.

    All collaborators are injected so tests can swap the store for a
    failing one.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        sequence: SequenceGenerator,
        reconciler: StockReconciler,
        validator: Optional[DraftValidator] = None,
        audit_logger: Optional[AuditLogger] = None,
        auto_compensate: bool = False,
    ):
        self._store = store
        self._sequence = sequence
        self._reconciler = reconciler
        self._validator = validator or DraftValidator()
        self._audit_logger = audit_logger
        self._auto_compensate = auto_compensate
        # Pipeline of the most recent operation, kept for manual rollback
        self.last_pipeline: Optional[OperationPipeline] = None

    def _pipeline(self, operation: str, correlation_id: UUID) -> OperationPipeline:
        pipeline = OperationPipeline(
            operation,
            audit_logger=self._audit_logger,
            correlation_id=correlation_id,
            auto_compensate=self._auto_compensate,
        )
        self.last_pipeline = pipeline
        return pipeline

    async def _reject(
        self,
        entity_type: str,
        entity_id: str,
        error: ValidationError,
        correlation_id: UUID,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log_validation_failed(
                entity_type=entity_type,
                entity_id=entity_id,
                issues=[issue.model_dump() for issue in error.issues],
                correlation_id=correlation_id,
            )

    async def _set_balance(
        self,
        client_id: str,
        old_balance: float,
        new_balance: float,
        correlation_id: UUID,
    ) -> None:
        await self._store.update(
            Collection.CLIENTS,
            client_id,
            sanitize({"currentBalance": new_balance}),
        )
        if self._audit_logger:
            await self._audit_logger.log_balance_updated(
                client_id=client_id,
                old_balance=old_balance,
                new_balance=new_balance,
                correlation_id=correlation_id,
            )

    # =========================================================================
    # CLIENT INVOICES
    # =========================================================================

    async def close_client_invoice(
        self,
        draft: ClientInvoiceDraft,
        editor: Optional[str] = None,
    ) -> ClientInvoice:
        """
        Close a sale or a payment-only invoice for a client.

        Returns:
            The persisted ClientInvoice

        Raises:
            ValidationError: Draft rejected, nothing written
            NotFoundError: Client doesn't exist, nothing written
            SequenceConflictError: No number could be drawn, nothing written
            TransientStoreError: A later step failed; earlier steps stay applied
        """
        correlation_id = create_correlation_id()

        try:
            self._validator.check_client_invoice(draft)
        except ValidationError as e:
            await self._reject("client_invoice", draft.id, e, correlation_id)
            raise

        client_doc = await self._store.get(Collection.CLIENTS, draft.client_id)
        if client_doc is None:
            raise NotFoundError(f"Client {draft.client_id} not found")
        client = Client.from_document(client_doc, draft.client_id)

        items = draft.line_items

        async def assign_number(ctx):
            return await self._sequence.next_invoice_number(correlation_id)

        async def persist_invoice(ctx):
            invoice = ClientInvoice(
                id=draft.id,
                invoice_number=ctx["assign_number"],
                client_id=client.id,
                date=draft.date,
                items=items,
                previous_balance=client.current_balance,
                cash_payment=draft.cash_payment,
                type=draft.type,
            )
            await self._store.set(Collection.CLIENT_INVOICES, invoice.id, invoice.to_document())
            return invoice

        async def remove_invoice(ctx):
            await self._store.delete(Collection.CLIENT_INVOICES, draft.id)

        async def update_balance(ctx):
            invoice = ctx["persist_invoice"]
            await self._set_balance(
                client.id, client.current_balance, invoice.final_balance, correlation_id,
            )

        async def restore_balance(ctx):
            invoice = ctx["persist_invoice"]
            await self._set_balance(
                client.id, invoice.final_balance, client.current_balance, correlation_id,
            )

        async def apply_stock(ctx):
            return await self._reconciler.apply_stock_effect(
                items,
                StockEffectKind.SALE,
                movement_ref=draft.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def undo_stock(ctx):
            await self._reconciler.undo_stock_effect(
                items,
                StockEffectKind.SALE,
                movement_ref=draft.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        pipeline = (
            self._pipeline("close_client_invoice", correlation_id)
            .step("assign_number", assign_number)
            .step("persist_invoice", persist_invoice, compensate=remove_invoice)
            .step("update_balance", update_balance, compensate=restore_balance)
            .step("apply_stock", apply_stock, compensate=undo_stock, compensate_partial=True)
        )
        await pipeline.run()

        invoice = pipeline.context["persist_invoice"]
        if self._audit_logger:
            await self._audit_logger.log_invoice_closed(
                entity_type="client_invoice",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                correlation_id=correlation_id,
                details={
                    "client_id": client.id,
                    "type": invoice.type.value,
                    "invoice_total": invoice.invoice_total,
                    "cash_payment": invoice.cash_payment,
                    "final_balance": invoice.final_balance,
                },
            )

        logger.info(
            "client_invoice_closed",
            invoice_number=invoice.invoice_number,
            client_id=client.id,
            final_balance=invoice.final_balance,
        )
        return invoice

    async def delete_client_invoice(
        self,
        invoice_id: str,
        editor: Optional[str] = None,
    ) -> Optional[ClientInvoice]:
        """
        Delete a client invoice and reverse its effects.

        The balance is only reverted if the owning client still exists.

        Returns:
            The deleted invoice, or None if it was already gone
        """
        correlation_id = create_correlation_id()

        invoice_doc = await self._store.get(Collection.CLIENT_INVOICES, invoice_id)
        if invoice_doc is None:
            logger.info("client_invoice_already_absent", invoice_id=invoice_id)
            return None
        invoice = ClientInvoice.from_document(invoice_doc, invoice_id)

        async def revert_balance(ctx):
            client_doc = await self._store.get(Collection.CLIENTS, invoice.client_id)
            if client_doc is None:
                if self._audit_logger:
                    await self._audit_logger.log_balance_reversal_skipped(
                        invoice_id=invoice.id,
                        client_id=invoice.client_id,
                        correlation_id=correlation_id,
                    )
                return None
            client = Client.from_document(client_doc, invoice.client_id)
            reverted = client.current_balance - invoice.invoice_total + invoice.cash_payment
            await self._set_balance(client.id, client.current_balance, reverted, correlation_id)
            return client.current_balance

        async def reapply_balance(ctx):
            old_balance = ctx["revert_balance"]
            if old_balance is None:
                return
            reverted = old_balance - invoice.invoice_total + invoice.cash_payment
            await self._set_balance(invoice.client_id, reverted, old_balance, correlation_id)

        async def revert_stock(ctx):
            return await self._reconciler.apply_stock_effect(
                invoice.items,
                StockEffectKind.REVERT_SALE,
                movement_ref=invoice.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def undo_revert_stock(ctx):
            await self._reconciler.undo_stock_effect(
                invoice.items,
                StockEffectKind.REVERT_SALE,
                movement_ref=invoice.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def remove_invoice(ctx):
            await self._store.delete(Collection.CLIENT_INVOICES, invoice.id)

        pipeline = (
            self._pipeline("delete_client_invoice", correlation_id)
            .step("revert_balance", revert_balance, compensate=reapply_balance)
            .step(
                "revert_stock",
                revert_stock,
                compensate=undo_revert_stock,
                compensate_partial=True,
            )
            .step("remove_invoice", remove_invoice)
        )
        await pipeline.run()

        if self._audit_logger:
            await self._audit_logger.log_invoice_deleted(
                entity_type="client_invoice",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                correlation_id=correlation_id,
            )
        return invoice

    # =========================================================================
    # SUPPLIER INVOICES
    # =========================================================================

    async def close_supplier_invoice(
        self,
        draft: SupplierInvoiceDraft,
        editor: Optional[str] = None,
    ) -> SupplierInvoice:
        """
        Close a purchase from a supplier, adding its items to stock.

        Raises:
            ValidationError: No items, nothing written
            SequenceConflictError: No number could be drawn, nothing written
            TransientStoreError: A later step failed; earlier steps stay applied
        """
        correlation_id = create_correlation_id()

        try:
            self._validator.check_supplier_invoice(draft)
        except ValidationError as e:
            await self._reject("supplier_invoice", draft.id, e, correlation_id)
            raise

        items = draft.line_items

        async def assign_number(ctx):
            return await self._sequence.next_invoice_number(correlation_id)

        async def persist_invoice(ctx):
            invoice = SupplierInvoice(
                id=draft.id,
                invoice_number=ctx["assign_number"],
                supplier_id=draft.supplier_id,
                date=draft.date,
                items=items,
            )
            await self._store.set(Collection.SUPPLIER_INVOICES, invoice.id, invoice.to_document())
            return invoice

        async def remove_invoice(ctx):
            await self._store.delete(Collection.SUPPLIER_INVOICES, draft.id)

        async def apply_stock(ctx):
            return await self._reconciler.apply_stock_effect(
                items,
                StockEffectKind.PURCHASE,
                movement_ref=draft.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def undo_stock(ctx):
            await self._reconciler.undo_stock_effect(
                items,
                StockEffectKind.PURCHASE,
                movement_ref=draft.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        pipeline = (
            self._pipeline("close_supplier_invoice", correlation_id)
            .step("assign_number", assign_number)
            .step("persist_invoice", persist_invoice, compensate=remove_invoice)
            .step("apply_stock", apply_stock, compensate=undo_stock, compensate_partial=True)
        )
        await pipeline.run()

        invoice = pipeline.context["persist_invoice"]
        if self._audit_logger:
            await self._audit_logger.log_invoice_closed(
                entity_type="supplier_invoice",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                correlation_id=correlation_id,
                details={"supplier_id": invoice.supplier_id, "total": invoice.total},
            )
        return invoice

    async def delete_supplier_invoice(
        self,
        invoice_id: str,
        editor: Optional[str] = None,
    ) -> Optional[SupplierInvoice]:
        """
        Delete a supplier invoice, taking its items back out of stock.

        Returns:
            The deleted invoice, or None if it was already gone
        """
        correlation_id = create_correlation_id()

        invoice_doc = await self._store.get(Collection.SUPPLIER_INVOICES, invoice_id)
        if invoice_doc is None:
            logger.info("supplier_invoice_already_absent", invoice_id=invoice_id)
            return None
        invoice = SupplierInvoice.from_document(invoice_doc, invoice_id)

        async def revert_stock(ctx):
            return await self._reconciler.apply_stock_effect(
                invoice.items,
                StockEffectKind.REVERT_PURCHASE,
                movement_ref=invoice.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def undo_revert_stock(ctx):
            await self._reconciler.undo_stock_effect(
                invoice.items,
                StockEffectKind.REVERT_PURCHASE,
                movement_ref=invoice.id,
                editor=editor,
                correlation_id=correlation_id,
            )

        async def remove_invoice(ctx):
            await self._store.delete(Collection.SUPPLIER_INVOICES, invoice.id)

        pipeline = (
            self._pipeline("delete_supplier_invoice", correlation_id)
            .step(
                "revert_stock",
                revert_stock,
                compensate=undo_revert_stock,
                compensate_partial=True,
            )
            .step("remove_invoice", remove_invoice)
        )
        await pipeline.run()

        if self._audit_logger:
            await self._audit_logger.log_invoice_deleted(
                entity_type="supplier_invoice",
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                correlation_id=correlation_id,
            )
        return invoice
