"""
Audit Logger

DESIGN DECISION: Every mutation the engine performs is logged.
This provides:
1. Complete traceability of balance and stock changes
2. The trail needed to reconcile by hand after a partial failure
3. Users can see who changed what

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace all steps of one operation
"""

from collections import deque
from typing import Optional
from uuid import UUID, uuid4

import structlog

from meatledger.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from meatledger.models.ledger import Collection
from meatledger.services.storage import DocumentStoreInterface


RECENT_EVENTS_KEPT = 1000

# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The store's audit collection (for persistence and user visibility)
    """

    def __init__(
        self,
        store: Optional[DocumentStoreInterface] = None,
        actor: Optional[str] = None,
    ):
        """
        Initialize audit logger.

        Args:
            store: Storage backend for persistence.
                   If None, only logs locally.
            actor: Logged-in user stamped on events that don't name one.
        """
        self._store = store
        self._actor = actor
        self._logger = structlog.get_logger("meatledger.audit")
        self.recent_events: deque[AuditEvent] = deque(maxlen=RECENT_EVENTS_KEPT)

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        if event.actor is None and self._actor:
            event.actor = self._actor

        self.recent_events.append(event)
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._store:
            try:
                await self._store.set(
                    Collection.AUDIT_LOG,
                    str(event.event_id),
                    event.to_document(),
                )
                return True
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_entity_added(self, entity_type: str, entity_id: str, name: str) -> None:
        """Log a client, supplier or stock product being added."""
        await self.log(AuditEventBuilder.entity_added(entity_type, entity_id, name))

    async def log_entity_deleted(
        self,
        entity_type: str,
        entity_id: str,
        cascaded_invoices: int = 0,
    ) -> None:
        """Log a client, supplier or stock product being deleted."""
        await self.log(AuditEventBuilder.entity_deleted(
            entity_type, entity_id, cascaded_invoices=cascaded_invoices,
        ))

    async def log_invoice_number_issued(
        self,
        invoice_number: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_number_issued(
            invoice_number=invoice_number,
            correlation_id=correlation_id,
        ))

    async def log_invoice_closed(
        self,
        entity_type: str,
        invoice_id: str,
        invoice_number: int,
        correlation_id: UUID,
        details: Optional[dict] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_closed(
            entity_type=entity_type,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            correlation_id=correlation_id,
            details=details,
        ))

    async def log_invoice_deleted(
        self,
        entity_type: str,
        invoice_id: str,
        invoice_number: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_deleted(
            entity_type=entity_type,
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            correlation_id=correlation_id,
        ))

    async def log_balance_updated(
        self,
        client_id: str,
        old_balance: float,
        new_balance: float,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.balance_updated(
            client_id=client_id,
            old_balance=old_balance,
            new_balance=new_balance,
            correlation_id=correlation_id,
        ))

    async def log_balance_reversal_skipped(
        self,
        invoice_id: str,
        client_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.balance_reversal_skipped(
            invoice_id=invoice_id,
            client_id=client_id,
            correlation_id=correlation_id,
        ))

    async def log_stock_effect(
        self,
        kind: str,
        summary: dict,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.stock_effect_applied(
            kind=kind,
            summary=summary,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        entity_type: str,
        entity_id: Optional[str],
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            entity_type=entity_type,
            entity_id=entity_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_sequence_conflict(
        self,
        error_message: str,
        correlation_id: Optional[UUID] = None,
        error_code: Optional[str] = None,
    ) -> None:
        await self.log(AuditEventBuilder.sequence_conflict(
            error_message=error_message,
            correlation_id=correlation_id,
            error_code=error_code,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., closing an invoice).
    Pass it through all subsequent operations.
    """
    return uuid4()
