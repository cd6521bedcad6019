"""
Ledger engine: invoice numbering, stock reconciliation and the invoice
lifecycle.
"""

from meatledger.engine.invoices import InvoiceLifecycleManager
from meatledger.engine.pipeline import (
    CompletionLog,
    OperationPipeline,
    PipelineStep,
    StepRecord,
    StepStatus,
)
from meatledger.engine.sequence import SequenceGenerator
from meatledger.engine.stock import (
    ItemOutcome,
    ItemStatus,
    StockEffectReport,
    StockIndex,
    StockReconciler,
    StockReconciliationError,
)

__all__ = [
    "InvoiceLifecycleManager",
    "CompletionLog",
    "OperationPipeline",
    "PipelineStep",
    "StepRecord",
    "StepStatus",
    "SequenceGenerator",
    "ItemOutcome",
    "ItemStatus",
    "StockEffectReport",
    "StockIndex",
    "StockReconciler",
    "StockReconciliationError",
]
