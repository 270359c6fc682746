"""
Tests for the transaction store and balance reconciliation.

Balances are always checked against
    initial_balance + Σincome − Σexpense − Σdebt_payments
"""

import asyncio

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from moneymoo.exceptions import (
    DuplicateError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from moneymoo.models.audit import AuditEventType
from moneymoo.models.ledger import (
    PageRequest,
    TransactionFilters,
    TransactionType,
)

OWNER = "user-1"


async def open_account(service, name="Cash", initial="100.000"):
    return await service.create_account(OWNER, {
        "name": name,
        "type": "cash",
        "initial_balance": initial,
    })


def expense(account_id=None, amount="30.000", **overrides):
    payload = {
        "type": "expense",
        "category": "Food",
        "description": "Lunch",
        "amount": amount,
        "date": "2024-03-01",
        "account_id": str(account_id) if account_id else None,
    }
    payload.update(overrides)
    return payload


async def balance_of(service, account_id):
    return (await service.get_account(OWNER, account_id)).balance


class TestCreateTransaction:
    """Create: validate, guard duplicates, apply to balance."""

    @pytest.mark.asyncio
    async def test_expense_reduces_balance(self, service):
        """Cash 100.000, expense 30.000 -> 70.000."""
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))

        assert tx.amount == Decimal("30000")
        assert tx.type == TransactionType.EXPENSE
        assert tx.date == date(2024, 3, 1)
        assert await balance_of(service, account.id) == Decimal("70000")

    @pytest.mark.asyncio
    async def test_income_increases_balance(self, service):
        account = await open_account(service)
        await service.create_transaction(OWNER, expense(account.id, type="income", category="Salary"))
        assert await balance_of(service, account.id) == Decimal("130000")

    @pytest.mark.asyncio
    async def test_unassigned_transaction_touches_no_account(self, service):
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense())
        assert tx.account_id is None
        assert await balance_of(service, account.id) == Decimal("100000")

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, service, storage, audit_storage):
        """Second identical create fails; exactly one record exists."""
        account = await open_account(service)
        first = await service.create_transaction(OWNER, expense(account.id))

        with pytest.raises(DuplicateError) as exc:
            await service.create_transaction(OWNER, expense(account.id))

        assert exc.value.existing_id == first.id
        assert exc.value.operation == "create_transaction"
        assert await storage.count_transactions(OWNER) == 1
        assert await balance_of(service, account.id) == Decimal("70000")

        events = await audit_storage.get_recent_events()
        assert AuditEventType.DUPLICATE_REJECTED in [e.event_type for e in events]

    @pytest.mark.asyncio
    async def test_storage_constraint_catches_what_the_fast_path_misses(
        self, service, storage, monkeypatch,
    ):
        """With the pre-check blinded, the storage constraint still refuses."""
        account = await open_account(service)
        await service.create_transaction(OWNER, expense(account.id))

        async def blind(*args, **kwargs):
            return None

        monkeypatch.setattr(storage, "find_duplicate_transaction", blind)

        with pytest.raises(DuplicateError):
            await service.create_transaction(OWNER, expense(account.id))

        assert await storage.count_transactions(OWNER) == 1
        assert await balance_of(service, account.id) == Decimal("70000")

    @pytest.mark.asyncio
    async def test_same_content_different_date_is_allowed(self, service, storage):
        await service.create_transaction(OWNER, expense())
        await service.create_transaction(OWNER, expense(date="2024-03-02"))
        assert await storage.count_transactions(OWNER) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", ["abc", "-30.000", "", "0"])
    async def test_bad_amount_is_validation_error(self, service, storage, amount):
        """A parse failure is a ValidationError, never a silent zero."""
        with pytest.raises(ValidationError) as exc:
            await service.create_transaction(OWNER, expense(amount=amount))
        assert "amount" in exc.value.fields
        assert await storage.count_transactions(OWNER) == 0

    @pytest.mark.asyncio
    async def test_all_violations_reported(self, service, audit_storage):
        with pytest.raises(ValidationError) as exc:
            await service.create_transaction(OWNER, {"amount": "10"})
        assert set(exc.value.fields) == {"type", "category", "date"}

        events = await audit_storage.get_recent_events()
        assert events[0].event_type == AuditEventType.VALIDATION_FAILED

    @pytest.mark.asyncio
    async def test_text_is_sanitized_before_storage(self, service):
        tx = await service.create_transaction(OWNER, expense(description="<b>Lunch</b>"))
        assert tx.description == "&lt;b&gt;Lunch&lt;&#x2F;b&gt;"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,text", [
        ("category", "a/" * 60),
        ("description", "<br>" * 150),
    ])
    async def test_text_too_long_once_escaped(self, service, storage, audit_storage, field, text):
        with pytest.raises(ValidationError) as exc:
            await service.create_transaction(OWNER, expense(**{field: text}))

        assert exc.value.fields == [field]
        assert exc.value.errors[0].code == "max_length"
        assert await storage.count_transactions(OWNER) == 0
        types = [e.event_type for e in await audit_storage.get_recent_events()]
        assert AuditEventType.SYSTEM_ERROR not in types

    @pytest.mark.asyncio
    async def test_unknown_account_is_not_found(self, service, storage):
        with pytest.raises(NotFoundError):
            await service.create_transaction(OWNER, expense(uuid4()))
        assert await storage.count_transactions(OWNER) == 0

    @pytest.mark.asyncio
    async def test_someone_elses_account_is_not_found(self, service):
        theirs = await service.create_account("user-2", {"name": "Theirs", "type": "bank"})
        with pytest.raises(NotFoundError):
            await service.create_transaction(OWNER, expense(theirs.id))

    @pytest.mark.asyncio
    async def test_malformed_account_id_is_validation_error(self, service):
        payload = expense()
        payload["account_id"] = "not-a-uuid"
        with pytest.raises(ValidationError) as exc:
            await service.create_transaction(OWNER, payload)
        assert exc.value.fields == ["account_id"]


class TestUpdateTransaction:
    """Update: reverse the old effect, apply the new one."""

    @pytest.mark.asyncio
    async def test_amount_change(self, service):
        """70.000 + 30.000 - 50.000 = 50.000."""
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))

        updated = await service.update_transaction(OWNER, tx.id, {"amount": "50.000"})

        assert updated.amount == Decimal("50000")
        assert await balance_of(service, account.id) == Decimal("50000")

    @pytest.mark.asyncio
    async def test_unchanged_patch_round_trip(self, service):
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))
        before = await balance_of(service, account.id)

        await service.update_transaction(OWNER, tx.id, {
            "type": tx.type,
            "amount": tx.amount,
            "category": tx.category,
            "description": tx.description,
            "date": tx.date,
            "account_id": tx.account_id,
        })

        assert await balance_of(service, account.id) == before

    @pytest.mark.asyncio
    async def test_type_flip(self, service):
        """Expense 30.000 becoming income 30.000 moves the balance by 60.000."""
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))
        await service.update_transaction(OWNER, tx.id, {"type": "income"})
        assert await balance_of(service, account.id) == Decimal("130000")

    @pytest.mark.asyncio
    async def test_account_change_touches_both_accounts(self, service):
        cash = await open_account(service, "Cash")
        bank = await open_account(service, "Bank", initial="500.000")
        tx = await service.create_transaction(OWNER, expense(cash.id))

        await service.update_transaction(OWNER, tx.id, {"account_id": str(bank.id), "amount": "40.000"})

        assert await balance_of(service, cash.id) == Decimal("100000")
        assert await balance_of(service, bank.id) == Decimal("460000")

    @pytest.mark.asyncio
    async def test_unassigning_reverses(self, service):
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))
        await service.update_transaction(OWNER, tx.id, {"account_id": None})
        assert await balance_of(service, account.id) == Decimal("100000")

    @pytest.mark.asyncio
    async def test_failed_second_write_rolls_back_first(self, service, storage, monkeypatch):
        """If crediting the new account fails, the old account is restored too."""
        cash = await open_account(service, "Cash")
        bank = await open_account(service, "Bank", initial="500.000")
        tx = await service.create_transaction(OWNER, expense(cash.id))

        original = storage.update_account

        async def flaky(account):
            if account.id == bank.id:
                raise StorageError("sheet unavailable")
            return await original(account)

        monkeypatch.setattr(storage, "update_account", flaky)

        with pytest.raises(StorageError) as exc:
            await service.update_transaction(OWNER, tx.id, {"account_id": str(bank.id)})
        assert exc.value.operation == "update_transaction"
        assert exc.value.entity_id == tx.id

        monkeypatch.undo()
        assert await balance_of(service, cash.id) == Decimal("70000")
        assert await balance_of(service, bank.id) == Decimal("500000")
        assert (await service.get_transaction(OWNER, tx.id)).account_id == cash.id

    @pytest.mark.asyncio
    async def test_invalid_patch_changes_nothing(self, service):
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))

        with pytest.raises(ValidationError):
            await service.update_transaction(OWNER, tx.id, {"amount": "lots", "category": ""})

        assert (await service.get_transaction(OWNER, tx.id)).amount == Decimal("30000")
        assert await balance_of(service, account.id) == Decimal("70000")

    @pytest.mark.asyncio
    async def test_update_into_duplicate_rejected(self, service):
        await service.create_transaction(OWNER, expense())
        other = await service.create_transaction(OWNER, expense(description="Dinner"))
        with pytest.raises(DuplicateError):
            await service.update_transaction(OWNER, other.id, {"description": "Lunch"})

    @pytest.mark.asyncio
    async def test_update_someone_elses_transaction(self, service):
        tx = await service.create_transaction("user-2", expense())
        with pytest.raises(NotFoundError):
            await service.update_transaction(OWNER, tx.id, {"amount": "1"})

    @pytest.mark.asyncio
    async def test_ignores_non_editable_fields(self, service):
        tx = await service.create_transaction(OWNER, expense())
        updated = await service.update_transaction(OWNER, tx.id, {"owner_id": "user-2", "id": str(uuid4())})
        assert updated.owner_id == OWNER
        assert updated.id == tx.id

    @pytest.mark.asyncio
    async def test_racing_updates_keep_balance(self, racing_service):
        """Each update reverses what the previous one stored."""
        account = await open_account(racing_service)
        tx = await racing_service.create_transaction(OWNER, expense(account.id))

        await asyncio.gather(
            racing_service.update_transaction(OWNER, tx.id, {"amount": "50.000"}),
            racing_service.update_transaction(OWNER, tx.id, {"amount": "40.000"}),
        )

        stored = await racing_service.get_transaction(OWNER, tx.id)
        assert stored.amount == Decimal("40000")
        assert await balance_of(racing_service, account.id) == Decimal("60000")
        assert (await racing_service.verify_account_balance(OWNER, account.id)).is_consistent


class TestDeleteTransaction:
    """Delete: remove and reverse."""

    @pytest.mark.asyncio
    async def test_delete_restores_balance(self, service, storage):
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))

        await service.delete_transaction(OWNER, tx.id)

        assert await storage.count_transactions(OWNER) == 0
        assert await balance_of(service, account.id) == Decimal("100000")

    @pytest.mark.asyncio
    async def test_delete_racing_update(self, racing_service):
        account = await open_account(racing_service)
        tx = await racing_service.create_transaction(OWNER, expense(account.id))

        results = await asyncio.gather(
            racing_service.update_transaction(OWNER, tx.id, {"amount": "50.000"}),
            racing_service.delete_transaction(OWNER, tx.id),
            return_exceptions=True,
        )

        assert all(r is None or isinstance(r, NotFoundError) for r in results)
        assert await balance_of(racing_service, account.id) == Decimal("100000")

    @pytest.mark.asyncio
    async def test_double_submitted_delete(self, racing_service):
        account = await open_account(racing_service)
        tx = await racing_service.create_transaction(OWNER, expense(account.id))

        results = await asyncio.gather(
            racing_service.delete_transaction(OWNER, tx.id),
            racing_service.delete_transaction(OWNER, tx.id),
            return_exceptions=True,
        )

        assert sum(isinstance(r, NotFoundError) for r in results) == 1
        assert await balance_of(racing_service, account.id) == Decimal("100000")

    @pytest.mark.asyncio
    async def test_delete_missing(self, service):
        with pytest.raises(NotFoundError):
            await service.delete_transaction(OWNER, uuid4())

    @pytest.mark.asyncio
    async def test_delete_after_account_removed(self, service):
        """Deleting the account unassigns its transactions first."""
        account = await open_account(service)
        tx = await service.create_transaction(OWNER, expense(account.id))
        await service.delete_account(OWNER, account.id)

        await service.delete_transaction(OWNER, tx.id)

        page = await service.list_transactions(OWNER)
        assert page.total_count == 0


class TestQueries:
    """List and summary reads, with the read-through cache."""

    @pytest.mark.asyncio
    async def test_list_pages_and_filters(self, service):
        for day in range(1, 6):
            await service.create_transaction(OWNER, expense(date=f"2024-03-0{day}", description=f"d{day}"))
        await service.create_transaction(OWNER, expense(type="income", category="Salary", description="pay"))

        page = await service.list_transactions(OWNER, page=PageRequest(number=1, size=2))
        assert page.total_count == 6
        assert page.total_pages == 3
        assert [t.date.day for t in page.items] == [5, 4]

        incomes = await service.list_transactions(
            OWNER, TransactionFilters(type=TransactionType.INCOME),
        )
        assert incomes.total_count == 1

        ranged = await service.list_transactions(
            OWNER, TransactionFilters(date_from=date(2024, 3, 2), date_to=date(2024, 3, 3)),
        )
        assert ranged.total_count == 2

    @pytest.mark.asyncio
    async def test_list_is_per_owner(self, service):
        await service.create_transaction("user-2", expense())
        assert (await service.list_transactions(OWNER)).total_count == 0

    @pytest.mark.asyncio
    async def test_summary(self, service):
        await service.create_transaction(OWNER, expense(type="income", category="Salary", amount="1.000.000"))
        await service.create_transaction(OWNER, expense(amount="250.000"))
        await service.create_transaction(OWNER, expense(amount="50.000", date="2024-04-01"))

        summary = await service.get_financial_summary(OWNER)
        assert summary.total_income == Decimal("1000000")
        assert summary.total_expense == Decimal("300000")
        assert summary.balance == Decimal("700000")
        assert summary.count == 3

        march = await service.get_financial_summary(OWNER, date(2024, 3, 1), date(2024, 3, 31))
        assert march.count == 2

    @pytest.mark.asyncio
    async def test_reads_are_cached(self, service, components, storage, monkeypatch):
        await service.create_transaction(OWNER, expense())
        first = await service.list_transactions(OWNER)

        async def unavailable(*args, **kwargs):
            raise AssertionError("storage should not be read on a cache hit")

        monkeypatch.setattr(storage, "list_transactions", unavailable)
        monkeypatch.setattr(storage, "count_transactions", unavailable)

        second = await service.list_transactions(OWNER)
        assert second == first
        assert components.cache.hits == 1

    @pytest.mark.asyncio
    async def test_mutation_invalidates_owner_entries(self, service, components):
        await service.create_transaction("user-2", expense())
        await service.list_transactions(OWNER)
        await service.get_financial_summary(OWNER)
        await service.list_transactions("user-2")
        assert components.cache.size() == 3

        await service.create_transaction(OWNER, expense())

        assert components.cache.size() == 1
        assert (await service.list_transactions(OWNER)).total_count == 1

    @pytest.mark.asyncio
    async def test_failed_mutation_does_not_invalidate(self, service, components):
        await service.create_transaction(OWNER, expense())
        await service.list_transactions(OWNER)
        assert components.cache.size() == 1

        with pytest.raises(DuplicateError):
            await service.create_transaction(OWNER, expense())

        assert components.cache.size() == 1

    @pytest.mark.asyncio
    async def test_cache_failure_does_not_fail_mutation(self, service, components, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("cache down")

        monkeypatch.setattr(components.cache, "invalidate_tags", broken)
        monkeypatch.setattr(components.cache, "get", broken)

        tx = await service.create_transaction(OWNER, expense())
        page = await service.list_transactions(OWNER)
        assert page.items[0].id == tx.id


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
