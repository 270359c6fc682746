"""Tests for the in-memory storage backend and its unit of work."""

import asyncio
import pytest
from datetime import date, datetime
from decimal import Decimal
from uuid import uuid4

from moneymoo.exceptions import DuplicateError, NotFoundError, StorageError
from moneymoo.models.ledger import (
    Account,
    Debt,
    DebtPayment,
    DebtStatus,
    DebtType,
    Transaction,
    TransactionFilters,
    TransactionType,
)
from moneymoo.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage
from moneymoo.models.audit import AuditEvent, AuditEventType


def make_transaction(**overrides) -> Transaction:
    data = {
        "owner_id": "user-1",
        "type": TransactionType.EXPENSE,
        "category": "Food",
        "description": "Lunch",
        "amount": Decimal("30000"),
        "date": date(2024, 3, 1),
    }
    data.update(overrides)
    return Transaction(**data)


class TestUniqueness:
    """The storage layer is the authority on duplicates."""

    @pytest.mark.asyncio
    async def test_identical_transaction_rejected(self):
        storage = InMemoryLedgerStorage()
        first = await storage.save_transaction(make_transaction())

        with pytest.raises(DuplicateError) as exc:
            await storage.save_transaction(make_transaction())
        assert exc.value.existing_id == first.id
        assert await storage.count_transactions("user-1") == 1

    @pytest.mark.asyncio
    async def test_other_owner_is_not_a_duplicate(self):
        storage = InMemoryLedgerStorage()
        await storage.save_transaction(make_transaction())
        await storage.save_transaction(make_transaction(owner_id="user-2"))
        assert await storage.count_transactions("user-2") == 1

    @pytest.mark.asyncio
    async def test_update_into_collision_rejected(self):
        storage = InMemoryLedgerStorage()
        await storage.save_transaction(make_transaction())
        other = await storage.save_transaction(make_transaction(description="Dinner"))

        with pytest.raises(DuplicateError):
            await storage.update_transaction(other.model_copy(update={"description": "Lunch"}))

    @pytest.mark.asyncio
    async def test_update_of_self_is_not_a_collision(self):
        storage = InMemoryLedgerStorage()
        tx = await storage.save_transaction(make_transaction())
        updated = await storage.update_transaction(tx.model_copy(update={"account_id": None}))
        assert updated.id == tx.id

    @pytest.mark.asyncio
    async def test_find_duplicate_excludes_id(self):
        storage = InMemoryLedgerStorage()
        tx = await storage.save_transaction(make_transaction())
        args = ("user-1", tx.amount, tx.description, tx.category, tx.date)
        assert (await storage.find_duplicate_transaction(*args)).id == tx.id
        assert await storage.find_duplicate_transaction(*args, exclude_id=tx.id) is None


class TestRecords:
    """CRUD behavior and isolation of stored records."""

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self):
        storage = InMemoryLedgerStorage()
        with pytest.raises(NotFoundError):
            await storage.update_account(Account(owner_id="user-1", name="Ghost"))
        with pytest.raises(NotFoundError):
            await storage.update_transaction(make_transaction())

    @pytest.mark.asyncio
    async def test_returned_records_are_copies(self):
        """Mutating a returned record does not change storage."""
        storage = InMemoryLedgerStorage()
        account = await storage.save_account(Account(owner_id="user-1", name="Cash"))
        fetched = await storage.get_account(account.id)
        fetched.balance = Decimal("999")
        assert (await storage.get_account(account.id)).balance == Decimal("0")

    @pytest.mark.asyncio
    async def test_list_orders_and_pages(self):
        storage = InMemoryLedgerStorage()
        for day in (1, 3, 2):
            await storage.save_transaction(make_transaction(date=date(2024, 3, day), description=f"d{day}"))

        listed = await storage.list_transactions("user-1")
        assert [t.date.day for t in listed] == [3, 2, 1]

        page = await storage.list_transactions("user-1", limit=1, offset=1)
        assert [t.date.day for t in page] == [2]

    @pytest.mark.asyncio
    async def test_text_filter_matches_description_or_category(self):
        storage = InMemoryLedgerStorage()
        await storage.save_transaction(make_transaction(description="Nasi goreng"))
        await storage.save_transaction(make_transaction(category="Transport", description="Ojek"))

        by_description = TransactionFilters(text="GORENG")
        by_category = TransactionFilters(text="transport")
        assert await storage.count_transactions("user-1", by_description) == 1
        assert await storage.count_transactions("user-1", by_category) == 1

    @pytest.mark.asyncio
    async def test_list_debts_by_status(self):
        storage = InMemoryLedgerStorage()
        debt = Debt(owner_id="user-1", type=DebtType.DEBT, contact_name="Budi", total_amount=Decimal("10"))
        await storage.save_debt(debt)
        await storage.save_debt(debt.model_copy(update={"id": uuid4(), "status": DebtStatus.PAID}))

        active = await storage.list_debts("user-1", status=DebtStatus.ACTIVE)
        assert [d.id for d in active] == [debt.id]

    @pytest.mark.asyncio
    async def test_payments_by_debt_and_account(self):
        storage = InMemoryLedgerStorage()
        account_id, debt_id = uuid4(), uuid4()
        await storage.save_payment(DebtPayment(
            debt_id=debt_id, account_id=account_id, payment_date=date(2024, 1, 1), amount=Decimal("5"),
        ))
        await storage.save_payment(DebtPayment(
            debt_id=debt_id, payment_date=date(2024, 1, 2), amount=Decimal("7"),
        ))
        assert len(await storage.list_payments(debt_id)) == 2
        assert len(await storage.list_payments_by_account(account_id)) == 1


class TestUnitOfWork:
    """All-or-nothing scope for multi-step mutations."""

    @pytest.mark.asyncio
    async def test_rollback_restores_every_table(self):
        storage = InMemoryLedgerStorage()
        account = await storage.save_account(Account(owner_id="user-1", name="Cash", balance=Decimal("100")))

        with pytest.raises(StorageError) as exc:
            async with storage.unit_of_work("create_transaction", "tx-1"):
                await storage.save_transaction(make_transaction())
                await storage.update_account(account.model_copy(update={"balance": Decimal("70")}))
                raise StorageError("backend went away")

        assert exc.value.operation == "create_transaction"
        assert exc.value.entity_id == "tx-1"
        assert await storage.count_transactions("user-1") == 0
        assert (await storage.get_account(account.id)).balance == Decimal("100")

    @pytest.mark.asyncio
    async def test_existing_context_is_kept(self):
        storage = InMemoryLedgerStorage()
        with pytest.raises(NotFoundError) as exc:
            async with storage.unit_of_work("outer", "outer-id"):
                raise NotFoundError("missing", operation="inner", entity_id="inner-id")
        assert exc.value.operation == "inner"
        assert exc.value.entity_id == "inner-id"

    @pytest.mark.asyncio
    async def test_non_ledger_errors_also_roll_back(self):
        storage = InMemoryLedgerStorage()
        with pytest.raises(RuntimeError):
            async with storage.unit_of_work("create_transaction"):
                await storage.save_transaction(make_transaction())
                raise RuntimeError("bug")
        assert await storage.count_transactions("user-1") == 0

    @pytest.mark.asyncio
    async def test_success_commits(self):
        storage = InMemoryLedgerStorage()
        async with storage.unit_of_work("create_transaction"):
            await storage.save_transaction(make_transaction())
        assert await storage.count_transactions("user-1") == 1

    @pytest.mark.asyncio
    async def test_units_are_serialized(self):
        """A second unit of work waits for the first to finish."""
        storage = InMemoryLedgerStorage()
        order = []

        async def unit(name):
            async with storage.unit_of_work(name):
                order.append(f"{name}:start")
                await asyncio.sleep(0.01)
                order.append(f"{name}:end")

        await asyncio.gather(unit("a"), unit("b"))
        assert order == ["a:start", "a:end", "b:start", "b:end"]


class TestInMemoryAuditStorage:
    @pytest.mark.asyncio
    async def test_events_by_correlation_and_entity(self):
        audit = InMemoryAuditStorage()
        correlation_id, entity_id = uuid4(), uuid4()
        await audit.append_event(AuditEvent(
            event_type=AuditEventType.DEBT_CREATED,
            timestamp=datetime(2024, 1, 1),
            description="created",
            entity_type="debt",
            entity_id=entity_id,
            correlation_id=correlation_id,
        ))
        await audit.append_event(AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            timestamp=datetime(2024, 1, 2),
            description="other",
        ))

        assert len(await audit.get_events_by_correlation_id(correlation_id)) == 1
        assert len(await audit.get_events_by_entity("debt", entity_id)) == 1
        recent = await audit.get_recent_events(limit=1)
        assert recent[0].event_type == AuditEventType.SYSTEM_ERROR


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
