"""
Business Metrics

Sales, purchases, margin and outstanding debt computed from closed
invoices and client balances. Pure functions over model lists: pass them
the SnapshotMirror's contents or anything else already loaded.

Sales are the invoice totals of client invoices (payments count 0);
purchases are the item totals of supplier invoices.
"""

import datetime as dt
from typing import Iterable, Literal, Optional

from pydantic import BaseModel, Field

from meatledger.models.ledger import Client, ClientInvoice, SupplierInvoice


Period = Literal["daily", "weekly", "monthly"]

# How many buckets each period reports, ending with the current one
PERIOD_BUCKETS = {"daily": 7, "weekly": 4, "monthly": 6}


class LedgerSummary(BaseModel):
    """Headline figures for a date range (or all time)."""

    date_from: Optional[dt.date] = None
    date_to: Optional[dt.date] = None
    total_sales: float = 0.0
    total_purchases: float = 0.0
    total_debt: float = Field(
        default=0.0,
        description="Sum of every client's current balance"
    )
    sale_count: int = 0
    purchase_count: int = 0

    @property
    def gross_margin(self) -> float:
        return self.total_sales - self.total_purchases

    @property
    def margin_percent(self) -> Optional[float]:
        """Gross margin as a percentage of sales; None with no sales."""
        if not self.total_sales:
            return None
        return self.gross_margin / self.total_sales * 100


class PeriodTotals(BaseModel):
    """Sales and purchases of one day, week or month."""

    label: str
    start: dt.date
    end: dt.date
    sales: float = 0.0
    purchases: float = 0.0


def _in_range(
    day: dt.date,
    date_from: Optional[dt.date],
    date_to: Optional[dt.date],
) -> bool:
    if date_from and day < date_from:
        return False
    if date_to and day > date_to:
        return False
    return True


def summarize(
    client_invoices: Iterable[ClientInvoice],
    supplier_invoices: Iterable[SupplierInvoice],
    clients: Iterable[Client] = (),
    date_from: Optional[dt.date] = None,
    date_to: Optional[dt.date] = None,
) -> LedgerSummary:
    """
    Total sales, purchases and client debt.

    The date range (inclusive) filters invoices only; debt is always the
    current total.
    """
    sales = [inv for inv in client_invoices if _in_range(inv.date, date_from, date_to)]
    purchases = [inv for inv in supplier_invoices if _in_range(inv.date, date_from, date_to)]

    return LedgerSummary(
        date_from=date_from,
        date_to=date_to,
        total_sales=sum(inv.invoice_total for inv in sales),
        total_purchases=sum(inv.total for inv in purchases),
        total_debt=sum(client.current_balance for client in clients),
        sale_count=len(sales),
        purchase_count=len(purchases),
    )


def _period_windows(period: Period, today: dt.date) -> list[tuple[str, dt.date, dt.date]]:
    if period not in PERIOD_BUCKETS:
        raise ValueError(f"Unknown period: {period}")

    count = PERIOD_BUCKETS[period]
    windows = []

    if period == "daily":
        for back in range(count - 1, -1, -1):
            day = today - dt.timedelta(days=back)
            windows.append((day.isoformat(), day, day))

    elif period == "weekly":
        for back in range(count - 1, -1, -1):
            end = today - dt.timedelta(days=7 * back)
            start = end - dt.timedelta(days=6)
            windows.append((f"{start.isoformat()}/{end.isoformat()}", start, end))

    else:
        for back in range(count - 1, -1, -1):
            month_index = today.year * 12 + today.month - 1 - back
            year, month = divmod(month_index, 12)
            start = dt.date(year, month + 1, 1)
            next_start = dt.date(year + (month + 1) // 12, (month + 1) % 12 + 1, 1)
            windows.append((start.strftime("%Y-%m"), start, next_start - dt.timedelta(days=1)))

    return windows


def totals_by_period(
    client_invoices: Iterable[ClientInvoice],
    supplier_invoices: Iterable[SupplierInvoice],
    period: Period = "daily",
    today: Optional[dt.date] = None,
) -> list[PeriodTotals]:
    """
    Sales and purchases bucketed by period, oldest first.

    daily:   the last 7 days
    weekly:  the last 4 seven-day windows ending today
    monthly: the last 6 calendar months
    """
    today = today or dt.date.today()
    client_invoices = list(client_invoices)
    supplier_invoices = list(supplier_invoices)

    buckets = []
    for label, start, end in _period_windows(period, today):
        buckets.append(PeriodTotals(
            label=label,
            start=start,
            end=end,
            sales=sum(
                inv.invoice_total for inv in client_invoices
                if start <= inv.date <= end
            ),
            purchases=sum(
                inv.total for inv in supplier_invoices
                if start <= inv.date <= end
            ),
        ))
    return buckets
