"""Tests for the snapshot mirror and the metrics."""

import asyncio
from datetime import date

import pytest

from meatledger.models.ledger import (
    Client,
    ClientInvoice,
    ClientInvoiceDraft,
    Collection,
    InvoiceItem,
    InvoiceType,
    SupplierInvoice,
)
from meatledger.queries import SnapshotMirror, summarize, totals_by_period
from meatledger.services.storage import CollectionSnapshot


def _sale(number, day, total, client_id="c1", cash=0.0):
    return ClientInvoice(
        invoice_number=number,
        client_id=client_id,
        date=day,
        items=[InvoiceItem(detail="Vacío", kilos=1, unit_price=total)],
        cash_payment=cash,
    )


def _purchase(number, day, total):
    return SupplierInvoice(
        invoice_number=number,
        supplier_id="s1",
        date=day,
        items=[InvoiceItem(detail="Media res", kilos=1, unit_price=total)],
    )


class TestSnapshotMirror:

    def test_mirror_follows_the_store(self, store, back_office):
        mirror = SnapshotMirror(store).start()

        async def scenario():
            client = await back_office.add_client("Ana")
            await back_office.close_client_invoice(ClientInvoiceDraft(
                client_id=client.id, type=InvoiceType.PAYMENT, cash_payment=100,
            ))
            return client

        client = asyncio.run(scenario())
        assert [c.name for c in mirror.clients()] == ["Ana"]
        assert mirror.client(client.id).current_balance == -100
        assert [inv.invoice_number for inv in mirror.client_invoices(client.id)] == [1000]
        assert mirror.client_invoices("someone-else") == []

    def test_stale_snapshot_discarded(self):
        mirror = SnapshotMirror(store=None)
        newer = CollectionSnapshot(
            collection=Collection.CLIENTS,
            version=5,
            documents=({"id": "c1", "name": "Ana", "currentBalance": 700},),
        )
        older = CollectionSnapshot(
            collection=Collection.CLIENTS,
            version=3,
            documents=({"id": "c1", "name": "Ana", "currentBalance": 1000},),
        )

        assert mirror.apply_snapshot(newer) is True
        assert mirror.apply_snapshot(older) is False
        assert mirror.client("c1").current_balance == 700
        assert mirror.version(Collection.CLIENTS) == 5

    def test_malformed_documents_skipped(self):
        mirror = SnapshotMirror(store=None)
        mirror.apply_snapshot(CollectionSnapshot(
            collection=Collection.CLIENTS,
            version=1,
            documents=(
                {"id": "c1", "name": "Ana"},
                {"id": "c2", "name": ""},
            ),
        ))
        assert [client.id for client in mirror.clients()] == ["c1"]

    def test_unmirrored_collection_ignored(self):
        mirror = SnapshotMirror(store=None)
        snapshot = CollectionSnapshot(collection=Collection.SETTINGS, version=1)
        assert mirror.apply_snapshot(snapshot) is False

    def test_accessors_sort(self):
        mirror = SnapshotMirror(store=None)
        mirror.apply_snapshot(CollectionSnapshot(
            collection=Collection.CLIENTS,
            version=1,
            documents=(
                {"id": "c1", "name": "zoe", "active": False},
                {"id": "c2", "name": "Ana"},
            ),
        ))
        mirror.apply_snapshot(CollectionSnapshot(
            collection=Collection.CLIENT_INVOICES,
            version=1,
            documents=tuple(_sale(n, date(2026, 10, 1), 10).to_document() for n in (1001, 1003, 1002)),
        ))
        assert [c.name for c in mirror.clients()] == ["Ana", "zoe"]
        assert [c.name for c in mirror.clients(active_only=True)] == ["Ana"]
        assert [inv.invoice_number for inv in mirror.client_invoices()] == [1003, 1002, 1001]

    def test_stop_unsubscribes(self, store, back_office):
        mirror = SnapshotMirror(store).start()
        assert mirror.is_running
        mirror.stop()
        asyncio.run(back_office.add_client("Ana"))
        assert mirror.clients() == []
        assert not mirror.is_running


class TestSummarize:

    def test_totals(self):
        summary = summarize(
            client_invoices=[
                _sale(1000, date(2026, 10, 1), 5000),
                _sale(1001, date(2026, 10, 2), 3000),
            ],
            supplier_invoices=[_purchase(1002, date(2026, 10, 1), 6000)],
            clients=[
                Client(name="Ana", current_balance=1500),
                Client(name="Luis", current_balance=-200),
            ],
        )
        assert summary.total_sales == 8000
        assert summary.total_purchases == 6000
        assert summary.gross_margin == 2000
        assert summary.margin_percent == pytest.approx(25.0)
        assert summary.total_debt == 1300
        assert (summary.sale_count, summary.purchase_count) == (2, 1)

    def test_payments_count_as_zero_sales(self):
        payment = ClientInvoice(
            invoice_number=1000,
            client_id="c1",
            date=date(2026, 10, 1),
            type=InvoiceType.PAYMENT,
            cash_payment=500,
        )
        assert summarize([payment], []).total_sales == 0

    def test_date_range_is_inclusive(self):
        summary = summarize(
            client_invoices=[
                _sale(1000, date(2026, 9, 30), 100),
                _sale(1001, date(2026, 10, 1), 200),
                _sale(1002, date(2026, 10, 31), 400),
                _sale(1003, date(2026, 11, 1), 800),
            ],
            supplier_invoices=[],
            date_from=date(2026, 10, 1),
            date_to=date(2026, 10, 31),
        )
        assert summary.total_sales == 600

    def test_no_sales_has_no_margin_percent(self):
        assert summarize([], []).margin_percent is None


class TestTotalsByPeriod:

    def test_daily_covers_last_seven_days(self):
        today = date(2026, 10, 19)
        buckets = totals_by_period(
            [_sale(1000, date(2026, 10, 19), 100), _sale(1001, date(2026, 10, 13), 50),
             _sale(1002, date(2026, 10, 12), 999)],
            [_purchase(1003, date(2026, 10, 18), 70)],
            period="daily",
            today=today,
        )
        assert len(buckets) == 7
        assert buckets[0].start == date(2026, 10, 13)
        assert buckets[-1].label == "2026-10-19"
        assert buckets[0].sales == 50
        assert buckets[-1].sales == 100
        assert buckets[-2].purchases == 70
        assert sum(bucket.sales for bucket in buckets) == 150

    def test_weekly_windows_do_not_overlap(self):
        buckets = totals_by_period([], [], period="weekly", today=date(2026, 10, 19))
        assert len(buckets) == 4
        for earlier, later in zip(buckets, buckets[1:]):
            assert (later.start - earlier.end).days == 1
        assert buckets[-1].end == date(2026, 10, 19)

    def test_monthly_crosses_year_boundary(self):
        buckets = totals_by_period(
            [_sale(1000, date(2025, 12, 31), 100), _sale(1001, date(2026, 2, 1), 40)],
            [],
            period="monthly",
            today=date(2026, 2, 10),
        )
        assert [bucket.label for bucket in buckets] == [
            "2025-09", "2025-10", "2025-11", "2025-12", "2026-01", "2026-02",
        ]
        assert buckets[3].end == date(2025, 12, 31)
        assert buckets[3].sales == 100
        assert buckets[-1].sales == 40

    def test_unknown_period_rejected(self):
        with pytest.raises(ValueError, match="Unknown period"):
            totals_by_period([], [], period="yearly", today=date(2026, 10, 19))
