"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally simple - we're not building a full ORM.
Just per-entity CRUD plus one thing every backend must provide: a unit of
work that makes a multi-step ledger mutation all-or-nothing.

Uniqueness: a backend must refuse a second transaction with the same
(owner, amount, description, category, date) by raising DuplicateError.
The ledger's own pre-insert check is only a fast path; this constraint is
the authority.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from moneymoo.exceptions import (
    ConnectionError,
    DuplicateError,
    NotFoundError,
    StorageError,
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


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger storage operations.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.

    Write methods raise StorageError on backend failure and NotFoundError
    when asked to update a record that does not exist. Get methods return
    None for a missing record; ownership checks happen in the ledger.
    """

    # ------------------------------------------------------------------
    # Unit of work
    # ------------------------------------------------------------------

    @abstractmethod
    def unit_of_work(
        self,
        operation: str,
        entity_id: Optional[Any] = None,
    ) -> AbstractAsyncContextManager:
        """
        Atomic scope for one logical ledger operation.

        Usage:
            async with storage.unit_of_work("create_transaction", tx.id):
                await storage.save_transaction(tx)
                await storage.update_account(account)

        If the body raises, every write made inside the scope is undone and
        the exception propagates with `operation`/`entity_id` filled in.
        If undoing fails, ReconciliationDriftError is raised instead.
        Units of work do not nest.
        """
        pass

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> Account:
        """Insert a new account."""
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """Retrieve an account by ID, or None."""
        pass

    @abstractmethod
    async def update_account(self, account: Account) -> Account:
        """
        Replace an existing account.

        Raises:
            NotFoundError: If the account doesn't exist
        """
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """Delete an account. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def list_accounts(self, owner_id: str) -> list[Account]:
        """All accounts for an owner, newest first."""
        pass

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> Transaction:
        """
        Insert a new transaction.

        Raises:
            DuplicateError: If an identical transaction exists for the owner
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        """
        Replace an existing transaction.

        Raises:
            NotFoundError: If the transaction doesn't exist
            DuplicateError: If the new values collide with another transaction
        """
        pass

    @abstractmethod
    async def delete_transaction(self, transaction_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        """
        List an owner's transactions, newest date first.

        Args:
            owner_id: Owner whose transactions to list
            filters: Date range, type, category, free text, account
            limit: Maximum number of results (None for all)
            offset: Number of results to skip
        """
        pass

    @abstractmethod
    async def count_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
    ) -> int:
        pass

    @abstractmethod
    async def find_duplicate_transaction(
        self,
        owner_id: str,
        amount: Decimal,
        description: str,
        category: str,
        on_date: date,
        exclude_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Find a transaction with identical owner, amount, description,
        category and date.
        """
        pass

    # ------------------------------------------------------------------
    # Categories
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_category(self, category: Category) -> Category:
        pass

    @abstractmethod
    async def get_category(self, category_id: UUID) -> Optional[Category]:
        pass

    @abstractmethod
    async def delete_category(self, category_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_categories(
        self,
        owner_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        pass

    # ------------------------------------------------------------------
    # Debts
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_debt(self, debt: Debt) -> Debt:
        pass

    @abstractmethod
    async def get_debt(self, debt_id: UUID) -> Optional[Debt]:
        pass

    @abstractmethod
    async def update_debt(self, debt: Debt) -> Debt:
        """
        Raises:
            NotFoundError: If the debt doesn't exist
        """
        pass

    @abstractmethod
    async def delete_debt(self, debt_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_debts(
        self,
        owner_id: str,
        debt_type: Optional[DebtType] = None,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        """All matching debts for an owner, newest first."""
        pass

    # ------------------------------------------------------------------
    # Debt payments
    # ------------------------------------------------------------------

    @abstractmethod
    async def save_payment(self, payment: DebtPayment) -> DebtPayment:
        pass

    @abstractmethod
    async def get_payment(self, payment_id: UUID) -> Optional[DebtPayment]:
        pass

    @abstractmethod
    async def update_payment(self, payment: DebtPayment) -> DebtPayment:
        """
        Replace a payment record. Only used to clear a deleted account
        reference; amounts are never edited.
        """
        pass

    @abstractmethod
    async def delete_payment(self, payment_id: UUID) -> bool:
        pass

    @abstractmethod
    async def list_payments(self, debt_id: UUID) -> list[DebtPayment]:
        """Payments for one debt, newest payment_date first."""
        pass

    @abstractmethod
    async def list_payments_by_account(self, account_id: UUID) -> list[DebtPayment]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Events sharing a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """The most recent events, newest first."""
        pass


# =============================================================================
# Shared helpers for backends that filter in Python
# =============================================================================

def matches_filters(tx: Transaction, filters: Optional[TransactionFilters]) -> bool:
    """Apply TransactionFilters to one record."""
    if filters is None:
        return True
    if filters.date_from and tx.date < filters.date_from:
        return False
    if filters.date_to and tx.date > filters.date_to:
        return False
    if filters.type and tx.type != filters.type:
        return False
    if filters.category and tx.category != filters.category:
        return False
    if filters.account_id and tx.account_id != filters.account_id:
        return False
    if filters.text:
        needle = filters.text.lower()
        if needle not in tx.description.lower() and needle not in tx.category.lower():
            return False
    return True


def sort_transactions(transactions: list[Transaction]) -> list[Transaction]:
    """Newest booking date first, then newest created_at."""
    return sorted(
        transactions,
        key=lambda t: (t.date, t.created_at),
        reverse=True,
    )


__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "LedgerStorageInterface",
    "NotFoundError",
    "StorageError",
    "matches_filters",
    "sort_transactions",
]
