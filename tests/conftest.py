"""
Shared fixtures.

Everything runs against the in-memory store; FailingStore and
ConflictingStore inject the store failures the engine must survive.
Each test drives its coroutines with a single asyncio.run call.
"""

from typing import Optional

import pytest

from meatledger.audit import AuditLogger
from meatledger.config import LedgerSettings
from meatledger.models.ledger import Collection
from meatledger.orchestrator import BackOffice
from meatledger.services.storage import (
    InMemoryDocumentStore,
    SequenceConflictError,
    TransientStoreError,
)


class FailingStore(InMemoryDocumentStore):
    """
    In-memory store whose writes can be made to fail.

    fail_on holds (operation, collection) pairs, fail_doc_ids single
    documents; both raise TransientStoreError("unavailable").
    """

    def __init__(self):
        super().__init__()
        self.fail_on: set[tuple[str, Collection]] = set()
        self.fail_doc_ids: set[str] = set()

    def _check(self, operation: str, collection: Collection, doc_id: str) -> None:
        if (operation, collection) in self.fail_on or doc_id in self.fail_doc_ids:
            raise TransientStoreError(
                f"{operation} {collection.value}/{doc_id} unavailable",
                code="unavailable",
            )

    async def set(self, collection, doc_id, data):
        self._check("set", collection, doc_id)
        await super().set(collection, doc_id, data)

    async def update(self, collection, doc_id, fields):
        self._check("update", collection, doc_id)
        await super().update(collection, doc_id, fields)

    async def delete(self, collection, doc_id):
        self._check("delete", collection, doc_id)
        await super().delete(collection, doc_id)


class ConflictingStore(InMemoryDocumentStore):
    """Every counter transaction loses its race."""

    async def run_transaction(self, collection, doc_id, mutate):
        raise SequenceConflictError("too much contention on settings/counters")


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def failing_store():
    return FailingStore()


@pytest.fixture
def conflicting_store():
    return ConflictingStore()


@pytest.fixture
def settings():
    return LedgerSettings(_env_file=None)


@pytest.fixture
def build_back_office(settings):
    """Factory: a BackOffice (and its audit logger) over any store."""

    def build(
        store,
        user: Optional[str] = "Tester",
        **overrides,
    ) -> tuple[BackOffice, AuditLogger]:
        audit_logger = AuditLogger(store, actor=user)
        back_office = BackOffice(
            store,
            audit_logger=audit_logger,
            user=user,
            settings=settings.model_copy(update=overrides),
        )
        return back_office, audit_logger

    return build


@pytest.fixture
def back_office(store, build_back_office):
    back_office, _ = build_back_office(store)
    return back_office
