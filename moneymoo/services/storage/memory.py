"""
In-Memory Storage Implementation

Used for tests and for running the engine without any external backend.

Atomicity: a unit of work takes a process-wide asyncio lock, snapshots
every table, and restores the snapshot if the body raises. Because units
of work are serialized, two racing creates of the same transaction cannot
both pass the uniqueness check.

Records are copied on the way in and on the way out, so callers can never
mutate stored state without going through a write method.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Optional
from uuid import UUID

from moneymoo.exceptions import (
    DuplicateError,
    LedgerError,
    NotFoundError,
)
from moneymoo.models.audit import AuditEvent
from moneymoo.models.ledger import (
    Account,
    Category,
    Debt,
    DebtPayment,
    DebtStatus,
    DebtType,
    Transaction,
    TransactionFilters,
    TransactionType,
)
from moneymoo.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
    matches_filters,
    sort_transactions,
)

_TABLES = ("_accounts", "_transactions", "_categories", "_debts", "_payments")


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed ledger storage with snapshot rollback."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._categories: dict[UUID, Category] = {}
        self._debts: dict[UUID, Debt] = {}
        self._payments: dict[UUID, DebtPayment] = {}
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def unit_of_work(
        self,
        operation: str,
        entity_id: Optional[Any] = None,
    ) -> AsyncIterator[None]:
        async with self._lock:
            snapshot = {name: dict(getattr(self, name)) for name in _TABLES}
            try:
                yield
            except LedgerError as e:
                self._restore(snapshot)
                raise e.with_context(operation, entity_id)
            except BaseException:
                self._restore(snapshot)
                raise

    def _restore(self, snapshot: dict) -> None:
        for name, table in snapshot.items():
            setattr(self, name, table)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def save_account(self, account: Account) -> Account:
        self._accounts[account.id] = account.model_copy()
        return account.model_copy()

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy() if account else None

    async def update_account(self, account: Account) -> Account:
        if account.id not in self._accounts:
            raise NotFoundError(f"Account not found: {account.id}", entity_id=account.id)
        self._accounts[account.id] = account.model_copy()
        return account.model_copy()

    async def delete_account(self, account_id: UUID) -> bool:
        return self._accounts.pop(account_id, None) is not None

    async def list_accounts(self, owner_id: str) -> list[Account]:
        accounts = [a.model_copy() for a in self._accounts.values() if a.owner_id == owner_id]
        accounts.sort(key=lambda a: a.created_at, reverse=True)
        return accounts

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _conflicting(self, transaction: Transaction) -> Optional[Transaction]:
        key = transaction.identity_key()
        for existing in self._transactions.values():
            if existing.id != transaction.id and existing.identity_key() == key:
                return existing
        return None

    async def save_transaction(self, transaction: Transaction) -> Transaction:
        existing = self._conflicting(transaction)
        if existing is not None:
            raise DuplicateError(
                "Transaction violates uniqueness on (owner, amount, description, category, date)",
                existing_id=existing.id,
            )
        self._transactions[transaction.id] = transaction.model_copy()
        return transaction.model_copy()

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy() if tx else None

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.id not in self._transactions:
            raise NotFoundError(
                f"Transaction not found: {transaction.id}",
                entity_id=transaction.id,
            )
        existing = self._conflicting(transaction)
        if existing is not None:
            raise DuplicateError(
                "Transaction violates uniqueness on (owner, amount, description, category, date)",
                existing_id=existing.id,
            )
        self._transactions[transaction.id] = transaction.model_copy()
        return transaction.model_copy()

    async def delete_transaction(self, transaction_id: UUID) -> bool:
        return self._transactions.pop(transaction_id, None) is not None

    def _matching(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters],
    ) -> list[Transaction]:
        return [
            t for t in self._transactions.values()
            if t.owner_id == owner_id and matches_filters(t, filters)
        ]

    async def list_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        ordered = sort_transactions(self._matching(owner_id, filters))
        end = None if limit is None else offset + limit
        return [t.model_copy() for t in ordered[offset:end]]

    async def count_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
    ) -> int:
        return len(self._matching(owner_id, filters))

    async def find_duplicate_transaction(
        self,
        owner_id: str,
        amount: Decimal,
        description: str,
        category: str,
        on_date: date,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        key = (owner_id, amount, description, category, on_date)
        for tx in self._transactions.values():
            if tx.id != exclude_id and tx.identity_key() == key:
                return tx.model_copy()
        return None

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    async def save_category(self, category: Category) -> Category:
        self._categories[category.id] = category.model_copy()
        return category.model_copy()

    async def get_category(self, category_id: UUID) -> Optional[Category]:
        category = self._categories.get(category_id)
        return category.model_copy() if category else None

    async def delete_category(self, category_id: UUID) -> bool:
        return self._categories.pop(category_id, None) is not None

    async def list_categories(
        self,
        owner_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        categories = [
            c.model_copy() for c in self._categories.values()
            if c.owner_id == owner_id
            and (category_type is None or c.type == category_type)
        ]
        categories.sort(key=lambda c: c.created_at, reverse=True)
        return categories

    # ------------------------------------------------------------------
    # Debts
    # ------------------------------------------------------------------

    async def save_debt(self, debt: Debt) -> Debt:
        self._debts[debt.id] = debt.model_copy()
        return debt.model_copy()

    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        debt = self._debts.get(debt_id)
        return debt.model_copy() if debt else None

    async def update_debt(self, debt: Debt) -> Debt:
        if debt.id not in self._debts:
            raise NotFoundError(f"Debt not found: {debt.id}", entity_id=debt.id)
        self._debts[debt.id] = debt.model_copy()
        return debt.model_copy()

    async def delete_debt(self, debt_id: UUID) -> bool:
        return self._debts.pop(debt_id, None) is not None

    async def list_debts(
        self,
        owner_id: str,
        debt_type: Optional[DebtType] = None,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        debts = [
            d.model_copy() for d in self._debts.values()
            if d.owner_id == owner_id
            and (debt_type is None or d.type == debt_type)
            and (status is None or d.status == status)
        ]
        debts.sort(key=lambda d: d.created_at, reverse=True)
        return debts

    # ------------------------------------------------------------------
    # Debt payments
    # ------------------------------------------------------------------

    async def save_payment(self, payment: DebtPayment) -> DebtPayment:
        self._payments[payment.id] = payment.model_copy()
        return payment.model_copy()

    async def get_payment(self, payment_id: UUID) -> Optional[DebtPayment]:
        payment = self._payments.get(payment_id)
        return payment.model_copy() if payment else None

    async def update_payment(self, payment: DebtPayment) -> DebtPayment:
        if payment.id not in self._payments:
            raise NotFoundError(f"Payment not found: {payment.id}", entity_id=payment.id)
        self._payments[payment.id] = payment.model_copy()
        return payment.model_copy()

    async def delete_payment(self, payment_id: UUID) -> bool:
        return self._payments.pop(payment_id, None) is not None

    async def list_payments(self, debt_id: UUID) -> list[DebtPayment]:
        payments = [p.model_copy() for p in self._payments.values() if p.debt_id == debt_id]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments

    async def list_payments_by_account(self, account_id: UUID) -> list[DebtPayment]:
        payments = [p.model_copy() for p in self._payments.values() if p.account_id == account_id]
        payments.sort(key=lambda p: (p.payment_date, p.created_at), reverse=True)
        return payments


class InMemoryAuditStorage(AuditStorageInterface):
    """Append-only list of audit events."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
