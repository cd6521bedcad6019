"""
Audit Models for Meat Ledger

Every mutation the engine performs is logged for audit purposes.
This provides:
1. Complete traceability of balance and stock changes
2. Debugging information when a multi-step operation fails midway
3. The record needed for manual reconciliation after a partial failure

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from meatledger.validation.sanitizer import sanitize


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEventType(str, Enum):
    """
    Types of events we audit.
    """
    # Parties and stock catalogue
    CLIENT_ADDED = "client_added"
    CLIENT_DELETED = "client_deleted"
    SUPPLIER_ADDED = "supplier_added"
    SUPPLIER_DELETED = "supplier_deleted"
    STOCK_PRODUCT_ADDED = "stock_product_added"
    STOCK_PRODUCT_DELETED = "stock_product_deleted"

    # Invoice lifecycle
    INVOICE_NUMBER_ISSUED = "invoice_number_issued"
    INVOICE_CLOSED = "invoice_closed"
    INVOICE_DELETED = "invoice_deleted"
    BALANCE_UPDATED = "balance_updated"
    BALANCE_REVERSAL_SKIPPED = "balance_reversal_skipped"
    STOCK_EFFECT_APPLIED = "stock_effect_applied"

    # Pipeline bookkeeping
    STEP_COMPLETED = "step_completed"
    STEP_FAILED = "step_failed"
    COMPENSATION_APPLIED = "compensation_applied"

    # Rejections and failures
    VALIDATION_FAILED = "validation_failed"
    SEQUENCE_CONFLICT = "sequence_conflict"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'client', 'stock', 'client_invoice')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all steps of one close)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # Who did it
    actor: Optional[str] = Field(
        default=None,
        description="Logged-in user that triggered the event"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "actor": self.actor,
        }

    def to_document(self) -> dict:
        """
        Convert to a store document (sanitized, JSON-compatible).

        details are sanitized before the JSON dump, which would otherwise
        turn NaN and infinities into None.
        """
        event = self.model_copy(update={"details": sanitize(self.details)})
        return event.model_dump(mode="json")


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.invoice_closed("client_invoice", invoice_id, 1000, correlation_id)
        event = AuditEventBuilder.step_failed("close_client_invoice", "update_balance", error, correlation_id)
    """

    @staticmethod
    def entity_added(
        entity_type: str,
        entity_id: str,
        name: str,
        actor: Optional[str] = None,
    ) -> AuditEvent:
        event_type = {
            "client": AuditEventType.CLIENT_ADDED,
            "supplier": AuditEventType.SUPPLIER_ADDED,
            "stock": AuditEventType.STOCK_PRODUCT_ADDED,
        }[entity_type]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} added: {name}",
            details={"name": name},
            actor=actor,
        )

    @staticmethod
    def entity_deleted(
        entity_type: str,
        entity_id: str,
        cascaded_invoices: int = 0,
        actor: Optional[str] = None,
    ) -> AuditEvent:
        event_type = {
            "client": AuditEventType.CLIENT_DELETED,
            "supplier": AuditEventType.SUPPLIER_DELETED,
            "stock": AuditEventType.STOCK_PRODUCT_DELETED,
        }[entity_type]
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            description=f"{entity_type.capitalize()} deleted",
            details={"cascaded_invoices": cascaded_invoices},
            actor=actor,
        )

    @staticmethod
    def invoice_number_issued(
        invoice_number: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_NUMBER_ISSUED,
            entity_type="counter",
            correlation_id=correlation_id,
            description=f"Invoice number {invoice_number} issued",
            details={"invoice_number": invoice_number},
        )

    @staticmethod
    def invoice_closed(
        entity_type: str,
        invoice_id: str,
        invoice_number: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CLOSED,
            entity_type=entity_type,
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice #{invoice_number} closed",
            details={"invoice_number": invoice_number, **(details or {})},
        )

    @staticmethod
    def invoice_deleted(
        entity_type: str,
        invoice_id: str,
        invoice_number: int,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_DELETED,
            entity_type=entity_type,
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice #{invoice_number} deleted and reverted",
            details={"invoice_number": invoice_number},
        )

    @staticmethod
    def balance_updated(
        client_id: str,
        old_balance: float,
        new_balance: float,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_UPDATED,
            entity_type="client",
            entity_id=client_id,
            correlation_id=correlation_id,
            description=f"Balance changed from {old_balance:.2f} to {new_balance:.2f}",
            details={"old_balance": old_balance, "new_balance": new_balance},
        )

    @staticmethod
    def balance_reversal_skipped(
        invoice_id: str,
        client_id: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REVERSAL_SKIPPED,
            severity=AuditSeverity.WARNING,
            entity_type="client_invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description="Client no longer exists; balance reversal skipped",
            details={"client_id": client_id},
        )

    @staticmethod
    def stock_effect_applied(
        kind: str,
        summary: dict,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STOCK_EFFECT_APPLIED,
            severity=AuditSeverity.WARNING if summary.get("failed") else AuditSeverity.INFO,
            entity_type="stock",
            correlation_id=correlation_id,
            description=f"Stock effect '{kind}' applied",
            details=summary,
        )

    @staticmethod
    def step_completed(
        operation: str,
        step: str,
        correlation_id: UUID,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STEP_COMPLETED,
            severity=AuditSeverity.DEBUG,
            correlation_id=correlation_id,
            description=f"{operation}: step '{step}' completed",
            details={"operation": operation, "step": step},
        )

    @staticmethod
    def step_failed(
        operation: str,
        step: str,
        error_message: str,
        correlation_id: UUID,
        completed_steps: Optional[list[str]] = None,
        error_code: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STEP_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"{operation}: step '{step}' failed",
            details={
                "operation": operation,
                "step": step,
                "completed_steps": completed_steps or [],
            },
            error_code=error_code,
            error_message=error_message,
        )

    @staticmethod
    def compensation_applied(
        operation: str,
        step: str,
        succeeded: bool,
        correlation_id: UUID,
        error_message: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COMPENSATION_APPLIED,
            severity=AuditSeverity.WARNING if succeeded else AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"{operation}: step '{step}' compensated"
            if succeeded else f"{operation}: compensation of '{step}' failed",
            details={"operation": operation, "step": step, "succeeded": succeeded},
            error_message=error_message,
        )

    @staticmethod
    def validation_failed(
        entity_type: str,
        entity_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issues",
            details={"issues": issues},
        )

    @staticmethod
    def sequence_conflict(
        error_message: str,
        correlation_id: Optional[UUID] = None,
        error_code: Optional[str] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SEQUENCE_CONFLICT,
            severity=AuditSeverity.ERROR,
            entity_type="counter",
            correlation_id=correlation_id,
            description="Invoice counter transaction could not commit",
            error_code=error_code,
            error_message=error_message,
        )
