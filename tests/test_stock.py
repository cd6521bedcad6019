"""Tests for the stock reconciler."""

import asyncio

import pytest

from meatledger.audit import AuditLogger
from meatledger.engine import (
    ItemStatus,
    StockIndex,
    StockReconciler,
    StockReconciliationError,
)
from meatledger.models.audit import AuditEventType, AuditSeverity
from meatledger.models.ledger import (
    Collection,
    InvoiceItem,
    StockEffectKind,
    StockProduct,
)
from meatledger.services.storage import TransientStoreError


def _item(detail, kilos=0.0, unit_price=0.0, quantity=0.0, item_id=None):
    item = InvoiceItem(detail=detail, kilos=kilos, unit_price=unit_price, quantity=quantity)
    if item_id:
        item.id = item_id
    return item


async def _add_product(store, name, kilos=0.0, quantity=0.0, unit_price=0.0):
    product = StockProduct(name=name, kilos=kilos, quantity=quantity, unit_price=unit_price)
    await store.set(Collection.STOCK, product.id, product.to_document())
    return product


async def _stock(store):
    documents = await store.list_documents(Collection.STOCK)
    return {doc["name"]: StockProduct.from_document(doc, doc["id"]) for doc in documents}


class TestStockIndex:

    def test_lookup_is_case_and_space_insensitive(self):
        index = StockIndex([StockProduct(name="Vacío")])
        assert index.find("  VACÍO ").name == "Vacío"
        assert "vacío" in index
        assert index.find("Asado") is None

    def test_first_duplicate_wins(self):
        first = StockProduct(name="Asado")
        second = StockProduct(name="asado ")
        index = StockIndex([first, second])
        assert index.find("ASADO").id == first.id
        assert len(index) == 1

    def test_nameless_entries_are_not_indexed(self):
        assert len(StockIndex([StockProduct(name="")])) == 0


class TestApplyStockEffect:

    def test_sale_decrements_matching_entry(self, store):
        reconciler = StockReconciler(store)

        async def scenario():
            await _add_product(store, "Vacío", kilos=50, quantity=5, unit_price=4000)
            report = await reconciler.apply_stock_effect(
                [_item("vacío", kilos=10, unit_price=5000, quantity=1)],
                StockEffectKind.SALE,
            )
            return report, await _stock(store)

        report, stock = asyncio.run(scenario())
        assert report.outcomes[0].status == ItemStatus.UPDATED
        assert stock["Vacío"].kilos == 40
        assert stock["Vacío"].quantity == 4
        # A sale never changes the cost price
        assert stock["Vacío"].unit_price == 4000

    def test_purchase_increments_and_refreshes_price(self, store):
        reconciler = StockReconciler(store)

        async def scenario():
            await _add_product(store, "Asado", kilos=5, unit_price=3000)
            await reconciler.apply_stock_effect(
                [_item("ASADO", kilos=20, unit_price=3500, quantity=2)],
                StockEffectKind.PURCHASE,
            )
            return await _stock(store)

        stock = asyncio.run(scenario())
        assert stock["Asado"].kilos == 25
        assert stock["Asado"].quantity == 2
        assert stock["Asado"].unit_price == 3500

    def test_sale_of_unknown_product_leaves_stock_unchanged(self, store):
        reconciler = StockReconciler(store)

        async def scenario():
            await _add_product(store, "Vacío", kilos=50)
            report = await reconciler.apply_stock_effect(
                [_item("Entraña", kilos=3, unit_price=100)],
                StockEffectKind.SALE,
            )
            return report, await _stock(store)

        report, stock = asyncio.run(scenario())
        assert report.outcomes[0].status == ItemStatus.UNMATCHED
        assert list(stock) == ["Vacío"]
        assert stock["Vacío"].kilos == 50

    def test_revert_purchase_of_unknown_product_is_ignored(self, store):
        report = asyncio.run(StockReconciler(store).apply_stock_effect(
            [_item("Entraña", kilos=3)], StockEffectKind.REVERT_PURCHASE,
        ))
        assert report.unmatched
        assert asyncio.run(store.list_documents(Collection.STOCK)) == []

    @pytest.mark.parametrize("kind", [StockEffectKind.PURCHASE, StockEffectKind.REVERT_SALE])
    def test_unknown_product_created_once(self, store, kind):
        """Two items naming the same new product create a single entry."""
        reconciler = StockReconciler(store)

        async def scenario():
            report = await reconciler.apply_stock_effect(
                [
                    _item("Matambre", kilos=4, unit_price=2500, quantity=1),
                    _item("  matambre", kilos=6, unit_price=2600, quantity=2),
                ],
                kind,
            )
            return report, await _stock(store)

        report, stock = asyncio.run(scenario())
        assert [o.status for o in report.outcomes] == [ItemStatus.CREATED, ItemStatus.UPDATED]
        assert list(stock) == ["Matambre"]
        assert stock["Matambre"].kilos == 10
        assert stock["Matambre"].quantity == 3

    def test_new_entry_takes_item_price(self, store):
        async def scenario():
            await StockReconciler(store).apply_stock_effect(
                [_item("Chorizo", kilos=8, unit_price=1800, quantity=4)],
                StockEffectKind.PURCHASE,
            )
            return await _stock(store)

        chorizo = asyncio.run(scenario())["Chorizo"]
        assert chorizo.kilos == 8
        assert chorizo.quantity == 4
        assert chorizo.unit_price == 1800

    def test_blank_items_skipped(self, store):
        report = asyncio.run(StockReconciler(store).apply_stock_effect(
            [_item("   ", kilos=3)], StockEffectKind.PURCHASE,
        ))
        assert report.outcomes[0].status == ItemStatus.SKIPPED
        assert asyncio.run(store.list_documents(Collection.STOCK)) == []

    def test_empty_items_do_nothing(self, store):
        report = asyncio.run(StockReconciler(store).apply_stock_effect([], StockEffectKind.SALE))
        assert report.outcomes == []
        assert report.ok

    def test_editor_is_stamped(self, store):
        async def scenario():
            await _add_product(store, "Vacío", kilos=50)
            reconciler = StockReconciler(store, default_editor="Sistema")
            await reconciler.apply_stock_effect([_item("Vacío", kilos=1)], StockEffectKind.SALE)
            first = (await _stock(store))["Vacío"]
            await reconciler.apply_stock_effect(
                [_item("Vacío", kilos=1)], StockEffectKind.SALE, editor="Marta",
            )
            second = (await _stock(store))["Vacío"]
            return first, second

        first, second = asyncio.run(scenario())
        assert first.last_edited_by == "Sistema"
        assert first.last_edited_at is not None
        assert second.last_edited_by == "Marta"

    def test_effect_is_audited(self, store):
        audit_logger = AuditLogger(store)
        asyncio.run(StockReconciler(store, audit_logger=audit_logger).apply_stock_effect(
            [_item("Chorizo", kilos=1)], StockEffectKind.PURCHASE,
        ))
        event = audit_logger.recent_events[-1]
        assert event.event_type == AuditEventType.STOCK_EFFECT_APPLIED
        assert event.details["created"] == 1


class TestIdempotentMovements:

    def test_same_movement_applies_once(self, store):
        reconciler = StockReconciler(store)
        items = [_item("Vacío", kilos=10, item_id="i1")]

        async def scenario():
            await _add_product(store, "Vacío", kilos=50)
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")
            again = await reconciler.apply_stock_effect(
                items, StockEffectKind.SALE, movement_ref="inv1",
            )
            return again, await _stock(store)

        again, stock = asyncio.run(scenario())
        assert again.outcomes[0].status == ItemStatus.ALREADY_APPLIED
        assert stock["Vacío"].kilos == 40
        assert stock["Vacío"].applied_movements == ["inv1:0:i1:sale"]

    def test_rows_sharing_an_id_both_apply(self, store):
        """Two rows with the same item ID still move stock twice."""
        reconciler = StockReconciler(store)
        items = [
            _item("Asado", kilos=2, item_id="row"),
            _item("Asado", kilos=3, item_id="row"),
        ]

        async def scenario():
            await _add_product(store, "Asado")
            report = await reconciler.apply_stock_effect(
                items, StockEffectKind.SALE, movement_ref="inv1",
            )
            sold = await _stock(store)
            await reconciler.undo_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")
            return report, sold, await _stock(store)

        report, sold, restored = asyncio.run(scenario())
        assert [o.status for o in report.outcomes] == [ItemStatus.UPDATED, ItemStatus.UPDATED]
        assert sold["Asado"].kilos == -5
        assert restored["Asado"].kilos == 0
        assert restored["Asado"].applied_movements == []

    def test_without_reference_every_call_applies(self, store):
        reconciler = StockReconciler(store)
        items = [_item("Vacío", kilos=10)]

        async def scenario():
            await _add_product(store, "Vacío", kilos=50)
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE)
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE)
            return await _stock(store)

        assert asyncio.run(scenario())["Vacío"].kilos == 30

    def test_partial_failure_reports_and_can_be_rerun(self, failing_store):
        """Every item is attempted; a re-run finishes only what failed."""
        store = failing_store
        reconciler = StockReconciler(store)
        items = [
            _item("Vacío", kilos=10, item_id="i1"),
            _item("Asado", kilos=5, item_id="i2"),
            _item("Chorizo", kilos=2, item_id="i3"),
        ]

        async def first_attempt():
            await _add_product(store, "Vacío", kilos=50)
            asado = await _add_product(store, "Asado", kilos=50)
            await _add_product(store, "Chorizo", kilos=50)
            store.fail_doc_ids.add(asado.id)
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")

        with pytest.raises(StockReconciliationError) as exc_info:
            asyncio.run(first_attempt())

        error = exc_info.value
        assert isinstance(error, TransientStoreError)
        assert error.code == "unavailable"
        assert [o.detail for o in error.report.failed] == ["Asado"]
        assert len(error.report.succeeded) == 2

        async def retry():
            store.fail_doc_ids.clear()
            report = await reconciler.apply_stock_effect(
                items, StockEffectKind.SALE, movement_ref="inv1",
            )
            return report, await _stock(store)

        report, stock = asyncio.run(retry())
        assert [o.status for o in report.outcomes] == [
            ItemStatus.ALREADY_APPLIED, ItemStatus.UPDATED, ItemStatus.ALREADY_APPLIED,
        ]
        assert stock["Vacío"].kilos == 40
        assert stock["Asado"].kilos == 45
        assert stock["Chorizo"].kilos == 48

    def test_partial_failure_is_audited_as_warning(self, failing_store):
        store = failing_store
        audit_logger = AuditLogger(store)
        reconciler = StockReconciler(store, audit_logger=audit_logger)

        async def scenario():
            product = await _add_product(store, "Vacío", kilos=50)
            store.fail_doc_ids.add(product.id)
            await reconciler.apply_stock_effect([_item("Vacío", kilos=1)], StockEffectKind.SALE)

        with pytest.raises(StockReconciliationError):
            asyncio.run(scenario())
        assert audit_logger.recent_events[-1].severity == AuditSeverity.WARNING


class TestUndoStockEffect:

    def test_undo_restores_and_forgets_the_movement(self, store):
        reconciler = StockReconciler(store)
        items = [_item("Vacío", kilos=10, quantity=1, item_id="i1")]

        async def scenario():
            await _add_product(store, "Vacío", kilos=50, quantity=5, unit_price=4000)
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")
            report = await reconciler.undo_stock_effect(
                items, StockEffectKind.SALE, movement_ref="inv1",
            )
            stock = await _stock(store)
            # The same effect can be applied again afterwards
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")
            return report, stock, await _stock(store)

        report, restored, reapplied = asyncio.run(scenario())
        assert report.kind is StockEffectKind.REVERT_SALE
        assert report.outcomes[0].status == ItemStatus.UNDONE
        assert restored["Vacío"].kilos == 50
        assert restored["Vacío"].quantity == 5
        assert restored["Vacío"].applied_movements == []
        assert reapplied["Vacío"].kilos == 40

    def test_undo_of_unapplied_item_does_nothing(self, store):
        """An unknown product's sale was never applied, so nothing is created on undo."""
        reconciler = StockReconciler(store)
        items = [_item("Entraña", kilos=3, item_id="i1")]

        async def scenario():
            await reconciler.apply_stock_effect(items, StockEffectKind.SALE, movement_ref="inv1")
            return await reconciler.undo_stock_effect(
                items, StockEffectKind.SALE, movement_ref="inv1",
            )

        report = asyncio.run(scenario())
        assert report.outcomes[0].status == ItemStatus.NOT_APPLIED
        assert asyncio.run(store.list_documents(Collection.STOCK)) == []

    def test_undo_purchase_keeps_cost_price(self, store):
        reconciler = StockReconciler(store)
        items = [_item("Asado", kilos=20, unit_price=3500, item_id="i1")]

        async def scenario():
            await _add_product(store, "Asado", kilos=5, unit_price=3000)
            await reconciler.apply_stock_effect(items, StockEffectKind.PURCHASE, movement_ref="p1")
            await reconciler.undo_stock_effect(items, StockEffectKind.PURCHASE, movement_ref="p1")
            return await _stock(store)

        asado = asyncio.run(scenario())["Asado"]
        assert asado.kilos == 5
        assert asado.unit_price == 3500
