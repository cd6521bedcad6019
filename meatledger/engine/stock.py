"""
Stock Reconciler

Applies the stock effect of an invoice's items:

    SALE             kilos/quantity go down   (-1)
    PURCHASE         kilos/quantity go up     (+1), cost price refreshed
    REVERT_SALE      undoes a sale            (+1)
    REVERT_PURCHASE  undoes a purchase        (-1)

Items are matched to stock entries by product name, case-insensitively.
An unknown product is created by the stock-increasing kinds and ignored
by the others (stock never goes negative because of a product nobody
registered).

DESIGN DECISION: Items are NOT applied inside one transaction.
Each item is its own upsert, and each upsert records a movement key on
the stock entry. Running the same effect again for the same invoice
skips the items already applied, so a failed close or delete can simply
be re-run, and an undo (see StockReconciler.undo_stock_effect) takes back
exactly the items whose key it finds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

import structlog

from meatledger.audit import AuditLogger
from meatledger.models.ledger import (
    Collection,
    InvoiceItem,
    StockEffectKind,
    StockProduct,
    normalize_product_name,
)
from meatledger.services.storage import (
    DocumentStoreInterface,
    StorageError,
    TransientStoreError,
)


logger = structlog.get_logger(__name__)

# Movement keys remembered per stock entry; retries happen right after a failure
MOVEMENT_HISTORY_KEPT = 200

_UPSERT_FIELDS = (
    "quantity",
    "kilos",
    "unitPrice",
    "lastEditedBy",
    "lastEditedAt",
    "appliedMovements",
)


class ItemStatus(str, Enum):
    """What happened to one invoice item."""
    UPDATED = "updated"
    CREATED = "created"
    ALREADY_APPLIED = "already_applied"
    UNMATCHED = "unmatched"     # sale of an unknown product, ignored
    SKIPPED = "skipped"         # blank product name
    UNDONE = "undone"
    NOT_APPLIED = "not_applied"  # nothing to undo
    FAILED = "failed"


@dataclass
class ItemOutcome:
    item_id: str
    detail: str
    status: ItemStatus
    stock_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class StockEffectReport:
    """Per-item result of one apply_stock_effect call."""
    kind: StockEffectKind
    outcomes: list[ItemOutcome] = field(default_factory=list)

    def _with_status(self, *statuses: ItemStatus) -> list[ItemOutcome]:
        return [outcome for outcome in self.outcomes if outcome.status in statuses]

    @property
    def succeeded(self) -> list[ItemOutcome]:
        return self._with_status(
            ItemStatus.UPDATED,
            ItemStatus.CREATED,
            ItemStatus.ALREADY_APPLIED,
            ItemStatus.UNDONE,
        )

    @property
    def failed(self) -> list[ItemOutcome]:
        return self._with_status(ItemStatus.FAILED)

    @property
    def unmatched(self) -> list[ItemOutcome]:
        return self._with_status(ItemStatus.UNMATCHED)

    @property
    def ok(self) -> bool:
        return not self.failed

    def summary(self) -> dict:
        counts = {status.value: 0 for status in ItemStatus}
        for outcome in self.outcomes:
            counts[outcome.status.value] += 1
        return {
            "kind": self.kind.value,
            **counts,
            "failed_items": [outcome.detail for outcome in self.failed],
        }


class StockReconciliationError(TransientStoreError):
    """Some items of a stock effect could not be written. The rest were."""

    def __init__(self, report: StockEffectReport):
        failed = report.failed
        super().__init__(
            f"{len(failed)} of {len(report.outcomes)} stock updates failed "
            f"({', '.join(outcome.detail for outcome in failed)})",
            code=failed[0].error_code if failed else None,
        )
        self.report = report


class StockIndex:
    """
    Snapshot of the stock collection keyed by normalized product name.

    Kept up to date as the reconciler writes, so several items naming the
    same product within one call all see each other's effect.
    When two entries share a name the first one listed wins.
    """

    def __init__(self, products: Iterable[StockProduct] = ()):
        self._by_name: dict[str, StockProduct] = {}
        for product in products:
            if product.normalized_name:
                self._by_name.setdefault(product.normalized_name, product)

    @classmethod
    async def load(cls, store: DocumentStoreInterface) -> "StockIndex":
        documents = await store.list_documents(Collection.STOCK)
        return cls(StockProduct.from_document(doc, doc.get("id")) for doc in documents)

    def find(self, name: str) -> Optional[StockProduct]:
        return self._by_name.get(normalize_product_name(name))

    def put(self, product: StockProduct) -> None:
        self._by_name[product.normalized_name] = product

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return normalize_product_name(name) in self._by_name


class StockReconciler:
    """
    Applies and reverts the stock effect of invoice items.

    apply_stock_effect moves stock in the direction of `kind`.
    undo_stock_effect takes back exactly what an earlier apply with the
    same movement_ref wrote, and is what failed operations roll back with.
    """

    def __init__(
        self,
        store: DocumentStoreInterface,
        default_editor: str = "Sistema",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._default_editor = default_editor
        self._audit_logger = audit_logger

    @staticmethod
    def movement_key(
        movement_ref: str,
        position: int,
        item_id: str,
        kind: StockEffectKind,
    ) -> str:
        """Key of one item row; the row position keeps rows sharing an ID apart."""
        return f"{movement_ref}:{position}:{item_id}:{kind.value}"

    async def apply_stock_effect(
        self,
        items: list[InvoiceItem],
        kind: StockEffectKind,
        *,
        movement_ref: Optional[str] = None,
        editor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> StockEffectReport:
        """
        Apply `kind` to every item.

        Args:
            items: The invoice's items
            kind: Direction of the movement
            movement_ref: Invoice ID; makes each item's upsert idempotent.
                Without it every call applies again.
            editor: User stamped on touched entries

        Returns:
            StockEffectReport with one outcome per item

        Raises:
            StockReconciliationError: If any item failed to write. Every
                other item was still attempted; the report is attached.
        """
        return await self._reconcile(
            items, kind, movement_ref, editor, correlation_id, undo=False,
        )

    async def undo_stock_effect(
        self,
        items: list[InvoiceItem],
        kind: StockEffectKind,
        *,
        movement_ref: str,
        editor: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> StockEffectReport:
        """
        Take back an effect applied earlier with the same movement_ref.

        Only entries carrying the item's movement key are touched: the
        inverse delta is applied and the key removed, so the same
        effect can be applied again later. Items that were never applied
        (unknown products on a sale, or a failed write) are reported as
        not_applied. The cost price is never changed by an undo.

        Raises:
            StockReconciliationError: If any item failed to write.
        """
        return await self._reconcile(
            items, kind, movement_ref, editor, correlation_id, undo=True,
        )

    async def _reconcile(
        self,
        items: list[InvoiceItem],
        kind: StockEffectKind,
        movement_ref: Optional[str],
        editor: Optional[str],
        correlation_id: Optional[UUID],
        undo: bool,
    ) -> StockEffectReport:
        report = StockEffectReport(kind=kind.inverse if undo else kind)
        if not items:
            return report

        index = await StockIndex.load(self._store)
        editor = editor or self._default_editor

        for position, item in enumerate(items):
            if not item.has_product:
                report.outcomes.append(ItemOutcome(
                    item_id=item.id, detail=item.detail, status=ItemStatus.SKIPPED,
                ))
                continue

            key = self.movement_key(movement_ref, position, item.id, kind) if movement_ref else None
            try:
                if undo:
                    outcome = await self._undo_item(index, item, kind, key, editor)
                else:
                    outcome = await self._apply_item(index, item, kind, key, editor)
            except StorageError as e:
                logger.warning(
                    "stock_item_failed",
                    detail=item.detail,
                    kind=report.kind.value,
                    undo=undo,
                    error=e.message,
                )
                outcome = ItemOutcome(
                    item_id=item.id,
                    detail=item.detail,
                    status=ItemStatus.FAILED,
                    error=e.message,
                    error_code=e.code,
                )
            report.outcomes.append(outcome)

        if self._audit_logger:
            await self._audit_logger.log_stock_effect(
                kind=report.kind.value,
                summary={**report.summary(), "undo": undo},
                correlation_id=correlation_id,
            )

        if not report.ok:
            raise StockReconciliationError(report)
        return report

    async def _write_entry(
        self,
        index: StockIndex,
        product: StockProduct,
        item: InvoiceItem,
        multiplier: int,
        unit_price: float,
        movements: list[str],
        editor: str,
    ) -> StockProduct:
        updated = product.model_copy(update={
            "quantity": product.quantity + item.quantity * multiplier,
            "kilos": product.kilos + item.kilos * multiplier,
            "unit_price": unit_price,
            "last_edited_by": editor,
            "last_edited_at": datetime.now(timezone.utc),
            "applied_movements": movements[-MOVEMENT_HISTORY_KEPT:],
        })
        document = updated.to_document()
        await self._store.update(
            Collection.STOCK,
            product.id,
            {field_name: document[field_name] for field_name in _UPSERT_FIELDS},
        )
        index.put(updated)
        return updated

    async def _apply_item(
        self,
        index: StockIndex,
        item: InvoiceItem,
        kind: StockEffectKind,
        key: Optional[str],
        editor: str,
    ) -> ItemOutcome:
        name = item.detail.strip()
        product = index.find(name)

        if product is not None:
            if key and key in product.applied_movements:
                return ItemOutcome(
                    item_id=item.id,
                    detail=name,
                    status=ItemStatus.ALREADY_APPLIED,
                    stock_id=product.id,
                )
            await self._write_entry(
                index,
                product,
                item,
                multiplier=kind.multiplier,
                unit_price=item.unit_price if kind.refreshes_price else product.unit_price,
                movements=product.applied_movements + [key] if key else product.applied_movements,
                editor=editor,
            )
            return ItemOutcome(
                item_id=item.id, detail=name, status=ItemStatus.UPDATED, stock_id=product.id,
            )

        if not kind.creates_missing:
            return ItemOutcome(item_id=item.id, detail=name, status=ItemStatus.UNMATCHED)

        created = StockProduct(
            name=name,
            quantity=item.quantity * kind.multiplier,
            kilos=item.kilos * kind.multiplier,
            unit_price=item.unit_price,
            last_edited_by=editor,
            last_edited_at=datetime.now(timezone.utc),
            applied_movements=[key] if key else [],
        )
        await self._store.set(Collection.STOCK, created.id, created.to_document())
        index.put(created)
        logger.info("stock_entry_created", name=name, kind=kind.value, stock_id=created.id)
        return ItemOutcome(
            item_id=item.id, detail=name, status=ItemStatus.CREATED, stock_id=created.id,
        )

    async def _undo_item(
        self,
        index: StockIndex,
        item: InvoiceItem,
        kind: StockEffectKind,
        key: Optional[str],
        editor: str,
    ) -> ItemOutcome:
        name = item.detail.strip()
        product = index.find(name)

        if product is None or key not in product.applied_movements:
            return ItemOutcome(item_id=item.id, detail=name, status=ItemStatus.NOT_APPLIED)

        await self._write_entry(
            index,
            product,
            item,
            multiplier=kind.inverse.multiplier,
            unit_price=product.unit_price,
            movements=[movement for movement in product.applied_movements if movement != key],
            editor=editor,
        )
        return ItemOutcome(
            item_id=item.id, detail=name, status=ItemStatus.UNDONE, stock_id=product.id,
        )
