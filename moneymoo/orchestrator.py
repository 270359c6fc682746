"""
Ledger Service

This module ties together all the components and exposes the surface the
presentation layer calls:
1. Transactions (list, create, update, delete, financial summary)
2. Debts and debt payments
3. Accounts and categories
4. Consistency tooling (verify and repair derived balances)

DESIGN DECISION: The service enforces the boundaries:
- Every call carries the authenticated owner id, trusted as given
- Every multi-step mutation runs in one storage unit of work
- Storage failures and reconciliation drift are audited before they
  propagate, so manual reconciliation has a trail to follow

Errors reach the caller as LedgerError subclasses with a stable `kind`.
"""

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, AsyncIterator, Mapping, Optional, Union
from uuid import UUID

import structlog

from moneymoo.audit import AuditLogger, configure_logging
from moneymoo.cache import TTLCache
from moneymoo.config import Settings, get_settings
from moneymoo.exceptions import LedgerError, ReconciliationDriftError, StorageError
from moneymoo.ledger import (
    AccountBalanceReconciler,
    AccountService,
    CategoryService,
    DebtLedger,
    TransactionStore,
)
from moneymoo.models.ledger import (
    Account,
    BalanceCheck,
    Category,
    Debt,
    DebtCheck,
    DebtPayment,
    DebtStats,
    DebtStatus,
    DebtType,
    FinancialSummary,
    PageRequest,
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionType,
)
from moneymoo.services.storage import (
    AuditStorageInterface,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
)
from moneymoo.validation import ValidationGate

logger = structlog.get_logger(__name__)


class LedgerService:
    """
    Facade over the ledger components.

    Construct through create_ledger_components() unless a test needs to
    wire the parts by hand.
    """

    def __init__(
        self,
        transactions: TransactionStore,
        debts: DebtLedger,
        accounts: AccountService,
        categories: CategoryService,
        reconciler: AccountBalanceReconciler,
        audit_logger: AuditLogger,
    ):
        self.transactions = transactions
        self.debts = debts
        self.accounts = accounts
        self.categories = categories
        self.reconciler = reconciler
        self._audit = audit_logger

    @asynccontextmanager
    async def _audited(
        self,
        operation: str,
        owner_id: str,
        entity_type: str,
    ) -> AsyncIterator[None]:
        """Audit infrastructure and unexpected failures, then re-raise them."""
        try:
            yield
        except ReconciliationDriftError as e:
            await self._audit.log_reconciliation_drift(
                owner_id=owner_id,
                entity_type=entity_type,
                entity_id=e.entity_id if isinstance(e.entity_id, UUID) else None,
                operation=e.operation or operation,
                details=e.details,
                error_message=e.message,
            )
            raise
        except StorageError as e:
            await self._audit.log_storage_error(
                operation=e.operation or operation,
                error_message=e.message,
                entity_id=e.entity_id if isinstance(e.entity_id, UUID) else None,
                owner_id=owner_id,
            )
            raise
        except LedgerError:
            raise
        except Exception as e:
            await self._audit.log_error(
                error_type=type(e).__name__,
                error_message=str(e),
                details={"operation": operation, "owner_id": owner_id},
            )
            raise

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def list_transactions(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> TransactionPage:
        async with self._audited("list_transactions", owner_id, "transaction"):
            return await self.transactions.list(owner_id, filters, page)

    async def get_transaction(self, owner_id: str, transaction_id: UUID) -> Transaction:
        async with self._audited("get_transaction", owner_id, "transaction"):
            return await self.transactions.get(owner_id, transaction_id)

    async def create_transaction(self, owner_id: str, payload: Mapping[str, Any]) -> Transaction:
        async with self._audited("create_transaction", owner_id, "transaction"):
            return await self.transactions.create(owner_id, payload)

    async def update_transaction(
        self,
        owner_id: str,
        transaction_id: UUID,
        patch: Mapping[str, Any],
    ) -> Transaction:
        async with self._audited("update_transaction", owner_id, "transaction"):
            return await self.transactions.update(owner_id, transaction_id, patch)

    async def delete_transaction(self, owner_id: str, transaction_id: UUID) -> None:
        async with self._audited("delete_transaction", owner_id, "transaction"):
            await self.transactions.delete(owner_id, transaction_id)

    async def get_financial_summary(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> FinancialSummary:
        async with self._audited("get_financial_summary", owner_id, "transaction"):
            return await self.transactions.summary(owner_id, date_from, date_to)

    # ------------------------------------------------------------------
    # Debts and payments
    # ------------------------------------------------------------------

    async def create_debt(self, owner_id: str, payload: Mapping[str, Any]) -> Debt:
        async with self._audited("create_debt", owner_id, "debt"):
            return await self.debts.create_debt(owner_id, payload)

    async def update_debt(self, owner_id: str, debt_id: UUID, patch: Mapping[str, Any]) -> Debt:
        async with self._audited("update_debt", owner_id, "debt"):
            return await self.debts.update_debt(owner_id, debt_id, patch)

    async def delete_debt(self, owner_id: str, debt_id: UUID) -> None:
        async with self._audited("delete_debt", owner_id, "debt"):
            await self.debts.delete_debt(owner_id, debt_id)

    async def get_debt(self, owner_id: str, debt_id: UUID) -> Debt:
        async with self._audited("get_debt", owner_id, "debt"):
            return await self.debts.get_debt(owner_id, debt_id)

    async def list_debts(
        self,
        owner_id: str,
        debt_type: Optional[DebtType] = None,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        async with self._audited("list_debts", owner_id, "debt"):
            return await self.debts.list_debts(owner_id, debt_type, status)

    async def get_debt_stats(self, owner_id: str, today: Optional[date] = None) -> DebtStats:
        async with self._audited("get_debt_stats", owner_id, "debt"):
            return await self.debts.stats(owner_id, today)

    async def create_debt_payment(self, owner_id: str, payload: Mapping[str, Any]) -> DebtPayment:
        async with self._audited("create_debt_payment", owner_id, "debt_payment"):
            return await self.debts.create_payment(owner_id, payload)

    async def delete_debt_payment(self, owner_id: str, payment_id: UUID) -> None:
        async with self._audited("delete_debt_payment", owner_id, "debt_payment"):
            await self.debts.delete_payment(owner_id, payment_id)

    async def list_debt_payments(self, owner_id: str, debt_id: UUID) -> list[DebtPayment]:
        async with self._audited("list_debt_payments", owner_id, "debt_payment"):
            return await self.debts.list_payments(owner_id, debt_id)

    async def verify_debt(self, owner_id: str, debt_id: UUID) -> DebtCheck:
        async with self._audited("verify_debt", owner_id, "debt"):
            return await self.debts.verify_debt(owner_id, debt_id)

    # ------------------------------------------------------------------
    # Accounts and categories
    # ------------------------------------------------------------------

    async def create_account(self, owner_id: str, payload: Mapping[str, Any]) -> Account:
        async with self._audited("create_account", owner_id, "account"):
            return await self.accounts.create(owner_id, payload)

    async def get_account(self, owner_id: str, account_id: UUID) -> Account:
        async with self._audited("get_account", owner_id, "account"):
            return await self.accounts.get(owner_id, account_id)

    async def list_accounts(self, owner_id: str) -> list[Account]:
        async with self._audited("list_accounts", owner_id, "account"):
            return await self.accounts.list_accounts(owner_id)

    async def delete_account(self, owner_id: str, account_id: UUID) -> None:
        async with self._audited("delete_account", owner_id, "account"):
            await self.accounts.delete(owner_id, account_id)

    async def create_category(self, owner_id: str, payload: Mapping[str, Any]) -> Category:
        async with self._audited("create_category", owner_id, "category"):
            return await self.categories.create(owner_id, payload)

    async def list_categories(
        self,
        owner_id: str,
        category_type: Optional[TransactionType] = None,
    ) -> list[Category]:
        async with self._audited("list_categories", owner_id, "category"):
            return await self.categories.list_categories(owner_id, category_type)

    async def delete_category(self, owner_id: str, category_id: UUID) -> None:
        async with self._audited("delete_category", owner_id, "category"):
            await self.categories.delete(owner_id, category_id)

    # ------------------------------------------------------------------
    # Consistency tooling
    # ------------------------------------------------------------------

    async def verify_account_balance(self, owner_id: str, account_id: UUID) -> BalanceCheck:
        async with self._audited("verify_account_balance", owner_id, "account"):
            return await self.reconciler.verify(owner_id, account_id)

    async def repair_account_balance(self, owner_id: str, account_id: UUID) -> Account:
        async with self._audited("repair_account_balance", owner_id, "account"):
            return await self.reconciler.repair(owner_id, account_id)


@dataclass
class LedgerComponents:
    """Everything create_ledger_components() builds."""

    service: LedgerService
    storage: LedgerStorageInterface
    audit_storage: AuditStorageInterface
    audit_logger: AuditLogger
    cache: Optional[TTLCache]
    sheets_client: Optional[GoogleSheetsClient] = None


def create_ledger_components(
    settings: Optional[Settings] = None,
    backend: Optional[Union[str, LedgerStorageInterface]] = None,
    audit_storage: Optional[AuditStorageInterface] = None,
) -> LedgerComponents:
    """
    Factory function to create all ledger components.

    Args:
        settings: Settings to use. Defaults to get_settings().
        backend: "memory", "google_sheets", or a ready storage instance.
                 Defaults to settings.ledger.storage_backend.
        audit_storage: Where audit events persist. Defaults to the
                       backend's own audit storage.

    Returns:
        LedgerComponents with the service and the parts it was built from
    """
    settings = settings or get_settings()
    app_settings = settings.app
    ledger_settings = settings.ledger
    cache_settings = settings.cache

    configure_logging(app_settings.log_level)

    sheets_client = None
    backend = backend or ledger_settings.storage_backend
    if isinstance(backend, LedgerStorageInterface):
        storage = backend
        audit_storage = audit_storage or InMemoryAuditStorage()
    elif backend == "google_sheets":
        sheets_client = GoogleSheetsClient(settings.google_sheets)
        storage = GoogleSheetsLedgerStorage(sheets_client)
        audit_storage = audit_storage or GoogleSheetsAuditStorage(sheets_client)
    elif backend == "memory":
        storage = InMemoryLedgerStorage()
        audit_storage = audit_storage or InMemoryAuditStorage()
    else:
        raise ValueError(f"Unknown storage backend: {backend}")

    audit_logger = AuditLogger(audit_storage)

    cache = None
    if cache_settings.enabled:
        cache = TTLCache(default_ttl=cache_settings.default_ttl_seconds)

    gate = ValidationGate(max_amount=Decimal(str(ledger_settings.max_transaction_amount)))
    separators = {
        "thousands_separator": ledger_settings.amount_thousands_separator,
        "decimal_separator": ledger_settings.amount_decimal_separator,
    }

    reconciler = AccountBalanceReconciler(
        storage,
        audit_logger=audit_logger,
        receivable_payments_credit_account=ledger_settings.receivable_payments_credit_account,
    )
    transactions = TransactionStore(
        storage,
        reconciler,
        gate,
        cache=cache,
        audit_logger=audit_logger,
        list_ttl=cache_settings.list_ttl_seconds,
        summary_ttl=cache_settings.summary_ttl_seconds,
        **separators,
    )
    debts = DebtLedger(
        storage,
        reconciler,
        gate,
        cache=cache,
        audit_logger=audit_logger,
        stats_ttl=cache_settings.summary_ttl_seconds,
        **separators,
    )
    accounts = AccountService(storage, gate, cache=cache, audit_logger=audit_logger, **separators)
    categories = CategoryService(storage, gate, audit_logger=audit_logger)

    service = LedgerService(
        transactions=transactions,
        debts=debts,
        accounts=accounts,
        categories=categories,
        reconciler=reconciler,
        audit_logger=audit_logger,
    )

    logger.info(
        "ledger_components_created",
        backend=type(storage).__name__,
        cache_enabled=cache is not None,
        environment=app_settings.app_environment,
    )

    return LedgerComponents(
        service=service,
        storage=storage,
        audit_storage=audit_storage,
        audit_logger=audit_logger,
        cache=cache,
        sheets_client=sheets_client,
    )
