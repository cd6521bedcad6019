"""
Data Models Package

This package contains all Pydantic models used in the Meat Ledger system.
All data flowing through the engine must conform to these schemas.
"""

from meatledger.models.ledger import (
    Client,
    ClientInvoice,
    ClientInvoiceDraft,
    Collection,
    CounterState,
    InvoiceItem,
    InvoiceType,
    LedgerDocument,
    SafeFloat,
    StockEffectKind,
    StockProduct,
    Supplier,
    SupplierInvoice,
    SupplierInvoiceDraft,
    generate_id,
    normalize_product_name,
)
from meatledger.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Client",
    "ClientInvoice",
    "ClientInvoiceDraft",
    "Collection",
    "CounterState",
    "InvoiceItem",
    "InvoiceType",
    "LedgerDocument",
    "SafeFloat",
    "StockEffectKind",
    "StockProduct",
    "Supplier",
    "SupplierInvoice",
    "SupplierInvoiceDraft",
    "generate_id",
    "normalize_product_name",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
