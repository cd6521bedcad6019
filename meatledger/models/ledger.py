"""
Core Data Models for Meat Ledger

These models define the schemas for every document kept in the store:
clients, suppliers, stock entries, invoices and the invoice counter.
They are designed to:
1. Sanitize every numeric field on construction (SafeFloat)
2. Recompute derived fields (item totals, invoice totals, balances)
3. Serialize to the camelCase documents the store holds
4. Read documents written by older clients (dd/mm/yyyy dates, missing type)

DESIGN DECISION: Derived fields are never trusted from input.
An item's total, an invoice's total and its final balance are always
recomputed from the values they derive from.
"""

import datetime as dt
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import uuid4

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from meatledger.validation.sanitizer import safe_number, sanitize


# Numeric field that never holds NaN, infinity or garbage text
SafeFloat = Annotated[float, BeforeValidator(safe_number)]


def generate_id() -> str:
    """Generate a document ID."""
    return uuid4().hex


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Collection(str, Enum):
    """Collections held by the document store."""
    CLIENTS = "clients"
    STOCK = "stock"
    SUPPLIERS = "suppliers"
    CLIENT_INVOICES = "clientInvoices"
    SUPPLIER_INVOICES = "supplierInvoices"
    SETTINGS = "settings"       # holds the invoice counter singleton
    AUDIT_LOG = "auditLog"


class InvoiceType(str, Enum):
    """
    Kind of client invoice.

    SALE carries line items; PAYMENT only records cash handed in by the client.
    """
    SALE = "sale"
    PAYMENT = "payment"


class StockEffectKind(str, Enum):
    """
    How an invoice's items move stock.

    SALE and PURCHASE are applied when invoices close;
    the REVERT_* kinds undo them when invoices are deleted.
    """
    SALE = "sale"
    PURCHASE = "purchase"
    REVERT_SALE = "revert_sale"
    REVERT_PURCHASE = "revert_purchase"

    @property
    def multiplier(self) -> int:
        if self in (StockEffectKind.SALE, StockEffectKind.REVERT_PURCHASE):
            return -1
        return 1

    @property
    def creates_missing(self) -> bool:
        """Stock-increasing kinds create an entry for an unknown product."""
        return self in (StockEffectKind.PURCHASE, StockEffectKind.REVERT_SALE)

    @property
    def refreshes_price(self) -> bool:
        """Only a genuine purchase updates the cost basis."""
        return self is StockEffectKind.PURCHASE

    @property
    def inverse(self) -> "StockEffectKind":
        return {
            StockEffectKind.SALE: StockEffectKind.REVERT_SALE,
            StockEffectKind.REVERT_SALE: StockEffectKind.SALE,
            StockEffectKind.PURCHASE: StockEffectKind.REVERT_PURCHASE,
            StockEffectKind.REVERT_PURCHASE: StockEffectKind.PURCHASE,
        }[self]


def _parse_invoice_date(value: Any) -> Any:
    """Accept ISO dates as well as the dd/mm/yyyy and dd-mm-yyyy forms."""
    if isinstance(value, str):
        text = value.strip()
        for fmt in ("%Y-%m-%d", "%d/%m/%Y", "%d-%m-%Y"):
            try:
                return dt.datetime.strptime(text, fmt).date()
            except ValueError:
                continue
    return value


InvoiceDate = Annotated[dt.date, BeforeValidator(_parse_invoice_date)]


# =============================================================================
# BASE DOCUMENT
# =============================================================================

class LedgerDocument(BaseModel):
    """
    Base for every model stored as a document.

    Attributes are snake_case in Python and camelCase in the store.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(
        default_factory=generate_id,
        description="Document ID"
    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to a sanitized, store-ready dict."""
        return sanitize(self.model_dump(mode="json", by_alias=True))

    @classmethod
    def from_document(cls, data: dict[str, Any], doc_id: Optional[str] = None):
        """Build a model from a stored document (the document ID wins)."""
        payload = dict(data)
        if doc_id is not None:
            payload["id"] = doc_id
        return cls.model_validate(payload)


# =============================================================================
# PARTIES AND STOCK
# =============================================================================

class Client(LedgerDocument):
    """
    A client buying on credit.

    current_balance is the client's outstanding debt. Only the invoice
    lifecycle manager changes it.
    """

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Client name"
    )
    active: bool = Field(
        default=True,
        description="Whether the client is currently trading"
    )
    current_balance: SafeFloat = Field(
        default=0.0,
        description="Outstanding balance"
    )


class Supplier(LedgerDocument):
    """A supplier we buy stock from. Suppliers carry no balance."""

    name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Supplier name"
    )


class StockProduct(LedgerDocument):
    """
    Inventory on hand for one named product.

    Products are matched to invoice items by name, case-insensitively.
    """

    name: str = Field(
        default="",
        max_length=200,
        description="Product name, also the matching key for invoice items"
    )
    quantity: SafeFloat = Field(
        default=0.0,
        description="Units on hand"
    )
    kilos: SafeFloat = Field(
        default=0.0,
        description="Kilos on hand"
    )
    unit_price: SafeFloat = Field(
        default=0.0,
        description="Price per kilo (cost basis of the latest purchase)"
    )
    last_edited_by: Optional[str] = None
    last_edited_at: Optional[dt.datetime] = None

    # Movement keys already applied to this entry, see StockReconciler
    applied_movements: list[str] = Field(default_factory=list)

    @property
    def normalized_name(self) -> str:
        return normalize_product_name(self.name)


def normalize_product_name(name: Optional[str]) -> str:
    """Matching key for product names: trimmed and lowercased."""
    return (name or "").strip().lower()


# =============================================================================
# INVOICES
# =============================================================================

class InvoiceItem(BaseModel):
    """
    One product row on an invoice.

    total is always kilos * unit_price; any total passed in is discarded.
    """
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )

    id: str = Field(default_factory=generate_id)
    quantity: SafeFloat = Field(
        default=0.0,
        description="Number of pieces"
    )
    detail: str = Field(
        default="",
        max_length=200,
        description="Product name"
    )
    kilos: SafeFloat = Field(
        default=0.0,
        description="Weight in kilos"
    )
    unit_price: SafeFloat = Field(
        default=0.0,
        description="Price per kilo"
    )
    total: SafeFloat = Field(
        default=0.0,
        description="kilos * unit_price (computed)"
    )

    @model_validator(mode='after')
    def compute_total(self) -> 'InvoiceItem':
        self.total = self.kilos * self.unit_price
        return self

    @property
    def has_product(self) -> bool:
        return bool(self.detail.strip())


def _line_items(items: list[InvoiceItem]) -> list[InvoiceItem]:
    return [item for item in items if item.has_product]


class ClientInvoiceDraft(LedgerDocument):
    """
    An unpersisted client invoice being composed.

    The draft carries only what the user entered. Number, previous balance
    and final balance are filled in by the engine when the invoice closes.
    """

    client_id: str = Field(..., min_length=1)
    date: InvoiceDate = Field(default_factory=dt.date.today)
    items: list[InvoiceItem] = Field(default_factory=list)
    cash_payment: SafeFloat = Field(
        default=0.0,
        description="Cash handed over together with this invoice"
    )
    type: InvoiceType = InvoiceType.SALE

    @property
    def line_items(self) -> list[InvoiceItem]:
        """Items naming a product; blank rows are dropped."""
        if self.type is InvoiceType.PAYMENT:
            return []
        return _line_items(self.items)

    @property
    def invoice_total(self) -> float:
        return sum(item.total for item in self.line_items)


class ClientInvoice(LedgerDocument):
    """
    A closed client invoice.

    CRITICAL: Invoices are immutable once persisted. They can only be
    deleted as a whole, which reverses their balance and stock effects.
    """

    invoice_number: int = Field(..., ge=1)
    client_id: str
    date: InvoiceDate
    items: list[InvoiceItem] = Field(default_factory=list)
    previous_balance: SafeFloat = 0.0
    invoice_total: SafeFloat = 0.0
    cash_payment: SafeFloat = 0.0
    final_balance: SafeFloat = 0.0
    closed: bool = True
    type: InvoiceType = InvoiceType.SALE

    @field_validator('closed')
    @classmethod
    def must_be_closed(cls, v: bool) -> bool:
        if not v:
            raise ValueError("Invoices are only ever persisted closed")
        return v

    @model_validator(mode='after')
    def compute_totals(self) -> 'ClientInvoice':
        if self.type is InvoiceType.PAYMENT:
            self.items = []
            self.invoice_total = 0.0
        else:
            self.invoice_total = sum(item.total for item in self.items)
        self.final_balance = (
            self.previous_balance + self.invoice_total - self.cash_payment
        )
        return self


class SupplierInvoiceDraft(LedgerDocument):
    """An unpersisted purchase from a supplier."""

    supplier_id: str = Field(..., min_length=1)
    date: InvoiceDate = Field(default_factory=dt.date.today)
    items: list[InvoiceItem] = Field(default_factory=list)

    @property
    def line_items(self) -> list[InvoiceItem]:
        return _line_items(self.items)


class SupplierInvoice(LedgerDocument):
    """A closed purchase invoice. Immutable except for full deletion."""

    invoice_number: int = Field(..., ge=1)
    supplier_id: str
    date: InvoiceDate
    items: list[InvoiceItem] = Field(default_factory=list)
    closed: bool = True

    @field_validator('closed')
    @classmethod
    def must_be_closed(cls, v: bool) -> bool:
        if not v:
            raise ValueError("Invoices are only ever persisted closed")
        return v

    @property
    def total(self) -> float:
        return sum(item.total for item in self.items)


class CounterState(BaseModel):
    """The invoice counter singleton: the next number to issue."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    next_number: int = Field(..., ge=1)
