"""Read side: snapshot mirror and metrics."""

from meatledger.queries.metrics import (
    LedgerSummary,
    PeriodTotals,
    summarize,
    totals_by_period,
)
from meatledger.queries.snapshots import SnapshotMirror

__all__ = [
    "LedgerSummary",
    "PeriodTotals",
    "SnapshotMirror",
    "summarize",
    "totals_by_period",
]
