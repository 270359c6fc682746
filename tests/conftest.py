"""
Shared fixtures.

Every test gets fresh in-memory storage, a fresh cache and a fresh audit
trail, wired together the same way create_ledger_components() does it.
"""

import asyncio

import pytest

from moneymoo.orchestrator import create_ledger_components
from moneymoo.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage


class SuspendingLedgerStorage(InMemoryLedgerStorage):
    """
    In-memory storage that yields to the event loop after each single-record
    read, the way a networked backend would. Lets gathered calls interleave.
    """

    async def get_account(self, account_id):
        found = await super().get_account(account_id)
        await asyncio.sleep(0)
        return found

    async def get_transaction(self, transaction_id):
        found = await super().get_transaction(transaction_id)
        await asyncio.sleep(0)
        return found

    async def get_debt(self, debt_id):
        found = await super().get_debt(debt_id)
        await asyncio.sleep(0)
        return found

    async def get_payment(self, payment_id):
        found = await super().get_payment(payment_id)
        await asyncio.sleep(0)
        return found


@pytest.fixture
def storage():
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage():
    return InMemoryAuditStorage()


@pytest.fixture
def components(storage, audit_storage):
    built = create_ledger_components(backend=storage, audit_storage=audit_storage)
    yield built
    if built.cache is not None:
        built.cache.clear()


@pytest.fixture
def service(components):
    return components.service


@pytest.fixture
def racing_service(audit_storage):
    built = create_ledger_components(backend=SuspendingLedgerStorage(), audit_storage=audit_storage)
    yield built.service
    if built.cache is not None:
        built.cache.clear()
