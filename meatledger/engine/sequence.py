"""
Invoice Sequence Generator

Client and supplier invoices share one counter document
(settings/counters). Every number is drawn inside a store transaction,
so two users closing invoices at the same moment can never receive the
same number.

The counter holds the NEXT number to issue. When it doesn't exist yet,
the first call issues the initial number (1000) and leaves 1001 behind.
"""

from typing import Optional
from uuid import UUID

from meatledger.audit import AuditLogger
from meatledger.models.ledger import Collection, CounterState
from meatledger.services.storage import (
    DocumentStoreInterface,
    SequenceConflictError,
)


class SequenceGenerator:
    """Issues unique, strictly increasing invoice numbers."""

    def __init__(
        self,
        store: DocumentStoreInterface,
        initial_number: int = 1000,
        counter_document: str = "counters",
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._store = store
        self._initial_number = initial_number
        self._counter_document = counter_document
        self._audit_logger = audit_logger

    def _advance(self, current: Optional[dict]) -> tuple[dict, int]:
        if current is None or current.get("nextNumber") is None:
            issued = self._initial_number
        else:
            issued = CounterState.model_validate(current).next_number
        counter = CounterState(next_number=issued + 1)
        return counter.model_dump(by_alias=True), issued

    async def next_invoice_number(self, correlation_id: Optional[UUID] = None) -> int:
        """
        Draw the next invoice number.

        Raises:
            SequenceConflictError: The counter transaction could not commit.
                No number was issued; the caller must not persist anything.
            TransientStoreError: The store could not be reached.
        """
        try:
            number = await self._store.run_transaction(
                Collection.SETTINGS,
                self._counter_document,
                self._advance,
            )
        except SequenceConflictError as e:
            if self._audit_logger:
                await self._audit_logger.log_sequence_conflict(
                    error_message=e.message,
                    correlation_id=correlation_id,
                    error_code=e.code,
                )
            raise

        if self._audit_logger:
            await self._audit_logger.log_invoice_number_issued(number, correlation_id)
        return number
