"""
Transaction Store

Source of truth for income/expense history.

Every mutation follows the same path:
1. Parse the locale-formatted amount (failure is a ValidationError)
2. Validate and sanitize through the ValidationGate
3. Check ownership of the transaction and of any linked account
4. Fast duplicate check on (owner, amount, description, category, date)
5. One unit of work: write the record and reconcile the account balance
6. On success only, invalidate the owner's cached reads

Step 4 is a convenience. The storage layer refuses duplicates inside the
serialized unit of work, so two racing creates still yield one record.

Update and delete read the existing record inside their unit of work.
Balance reversals always start from what is stored, never from a copy
read before another mutation committed.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog

from moneymoo.audit import AuditLogger, create_correlation_id
from moneymoo.cache import (
    SUMMARY_NAMESPACE,
    TRANSACTIONS_NAMESPACE,
    TTLCache,
    cache_key,
    owner_tag,
)
from moneymoo.exceptions import DuplicateError, NotFoundError, ValidationError
from moneymoo.ledger.common import (
    coerce_amount,
    coerce_date,
    coerce_uuid,
    invalidate_owner,
    read_through,
    require_owned,
)
from moneymoo.ledger.reconciler import AccountBalanceReconciler
from moneymoo.models.audit import AuditEventType
from moneymoo.models.ledger import (
    FieldError,
    FinancialSummary,
    PageRequest,
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionType,
)
from moneymoo.models.money import format_rupiah
from moneymoo.services.storage import LedgerStorageInterface
from moneymoo.validation import ValidationGate

logger = structlog.get_logger(__name__)

# Fields a caller may change on update
EDITABLE_FIELDS = ("type", "category", "description", "amount", "date", "account_id")

TEXT_FIELDS = ("category", "description")


class TransactionStore:
    """Create/update/delete/query transactions for one storage backend."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        reconciler: AccountBalanceReconciler,
        gate: ValidationGate,
        cache: Optional[TTLCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        list_ttl: float = 30.0,
        summary_ttl: float = 60.0,
        thousands_separator: str = ".",
        decimal_separator: str = ",",
    ):
        self._storage = storage
        self._reconciler = reconciler
        self._gate = gate
        self._cache = cache
        self._audit = audit_logger or AuditLogger()
        self._list_ttl = list_ttl
        self._summary_ttl = summary_ttl
        self._thousands = thousands_separator
        self._decimal = decimal_separator

    # ------------------------------------------------------------------
    # Input handling
    # ------------------------------------------------------------------

    async def _clean(
        self,
        owner_id: str,
        payload: Mapping[str, Any],
        operation: str,
        correlation_id,
    ) -> dict:
        """Validated, sanitized, typed field values ready for the model."""
        errors: list[FieldError] = []
        amount = coerce_amount(payload, "amount", self._thousands, self._decimal, errors)
        account_id = coerce_uuid(payload, "account_id", errors)

        rules = dict(self._gate.transaction_rules)
        checked = dict(payload)
        if errors and any(e.field == "amount" for e in errors):
            rules.pop("amount")
        else:
            checked["amount"] = amount

        try:
            self._gate.check(checked, rules, operation=operation, extra_errors=errors)
        except ValidationError as e:
            await self._audit.log_validation_failed(owner_id, operation, e.errors, correlation_id)
            raise

        cleaned = self._gate.sanitize_fields(checked, TEXT_FIELDS)
        return {
            "type": TransactionType(getattr(cleaned["type"], "value", cleaned["type"])),
            "category": cleaned["category"].strip(),
            "description": (cleaned.get("description") or "").strip(),
            "amount": amount,
            "date": coerce_date(cleaned["date"]),
            "account_id": account_id,
        }

    async def _require_account(self, owner_id: str, account_id: Optional[UUID]) -> None:
        if account_id is None:
            return
        account = await self._storage.get_account(account_id)
        require_owned(account, owner_id, "Account", account_id)

    async def _reject_duplicate(self, transaction: Transaction, exclude_id=None, correlation_id=None):
        existing = await self._storage.find_duplicate_transaction(
            transaction.owner_id,
            transaction.amount,
            transaction.description,
            transaction.category,
            transaction.date,
            exclude_id=exclude_id,
        )
        if existing is not None:
            await self._audit.log_duplicate_rejected(
                transaction.owner_id,
                existing.id,
                format_rupiah(transaction.amount),
                transaction.category,
                correlation_id,
            )
            raise DuplicateError(
                "An identical transaction already exists",
                existing_id=existing.id,
            )

    def _invalidate(self, owner_id: str) -> None:
        invalidate_owner(self._cache, owner_id, (TRANSACTIONS_NAMESPACE, SUMMARY_NAMESPACE))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(self, owner_id: str, payload: Mapping[str, Any]) -> Transaction:
        """
        Create a transaction and apply it to its account.

        Raises:
            ValidationError: payload failed validation or amount parsing
            NotFoundError: linked account missing or not owned
            DuplicateError: identical transaction already exists
            StorageError: backend failure; nothing is left half-written
        """
        correlation_id = create_correlation_id()
        fields = await self._clean(owner_id, payload, "create_transaction", correlation_id)
        transaction = Transaction(owner_id=owner_id, **fields)

        try:
            await self._require_account(owner_id, transaction.account_id)
            await self._reject_duplicate(transaction, correlation_id=correlation_id)

            try:
                async with self._storage.unit_of_work("create_transaction", transaction.id):
                    stored = await self._storage.save_transaction(transaction)
                    await self._reconciler.apply_created(stored)
            except DuplicateError as e:
                await self._audit.log_duplicate_rejected(
                    owner_id,
                    e.existing_id,
                    format_rupiah(transaction.amount),
                    transaction.category,
                    correlation_id,
                )
                raise
        except (DuplicateError, NotFoundError) as e:
            raise e.with_context("create_transaction", transaction.id)

        self._invalidate(owner_id)
        await self._audit.log_transaction_changed(
            AuditEventType.TRANSACTION_CREATED, stored, correlation_id
        )
        logger.info("transaction_created", transaction_id=str(stored.id), owner_id=owner_id)
        return stored

    async def update(
        self,
        owner_id: str,
        transaction_id: UUID,
        patch: Mapping[str, Any],
    ) -> Transaction:
        """
        Apply a patch to a transaction and move its balance effect.

        Only EDITABLE_FIELDS are honored. The balance change is computed
        from the record as stored when the unit of work starts, so a
        concurrent update is never reversed from a stale copy.
        """
        correlation_id = create_correlation_id()

        try:
            async with self._storage.unit_of_work("update_transaction", transaction_id):
                old = await self.get(owner_id, transaction_id)

                merged = {
                    "type": old.type,
                    "category": old.category,
                    "description": old.description,
                    "amount": old.amount,
                    "date": old.date,
                    "account_id": old.account_id,
                }
                merged.update({k: v for k, v in patch.items() if k in EDITABLE_FIELDS})
                fields = await self._clean(owner_id, merged, "update_transaction", correlation_id)
                new = Transaction.model_validate({
                    **old.model_dump(),
                    **fields,
                })

                if new.account_id != old.account_id:
                    await self._require_account(owner_id, new.account_id)
                await self._reject_duplicate(new, exclude_id=old.id, correlation_id=correlation_id)

                stored = await self._storage.update_transaction(new)
                await self._reconciler.apply_updated(old, stored)
        except (DuplicateError, NotFoundError) as e:
            raise e.with_context("update_transaction", transaction_id)

        self._invalidate(owner_id)
        await self._audit.log_transaction_changed(
            AuditEventType.TRANSACTION_UPDATED, stored, correlation_id
        )
        return stored

    async def delete(self, owner_id: str, transaction_id: UUID) -> None:
        """Remove a transaction and reverse its balance effect."""
        correlation_id = create_correlation_id()

        async with self._storage.unit_of_work("delete_transaction", transaction_id):
            old = await self.get(owner_id, transaction_id)
            deleted = await self._storage.delete_transaction(transaction_id)
            if not deleted:
                raise NotFoundError(f"Transaction not found: {transaction_id}")
            await self._reconciler.apply_deleted(old)

        self._invalidate(owner_id)
        await self._audit.log_transaction_changed(
            AuditEventType.TRANSACTION_DELETED, old, correlation_id
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, owner_id: str, transaction_id: UUID) -> Transaction:
        transaction = await self._storage.get_transaction(transaction_id)
        return require_owned(transaction, owner_id, "Transaction", transaction_id)

    async def list(
        self,
        owner_id: str,
        filters: Optional[TransactionFilters] = None,
        page: Optional[PageRequest] = None,
    ) -> TransactionPage:
        """One page of the owner's transactions, newest first. Read-through cached."""
        filters = filters or TransactionFilters()
        page = page or PageRequest()
        key = cache_key(
            TRANSACTIONS_NAMESPACE,
            owner_id,
            {**filters.cache_params(), "page": page.number, "size": page.size},
        )

        async def load() -> TransactionPage:
            total = await self._storage.count_transactions(owner_id, filters)
            items = await self._storage.list_transactions(
                owner_id,
                filters,
                limit=page.size,
                offset=page.offset,
            )
            return TransactionPage(
                items=items,
                total_count=total,
                page=page.number,
                page_size=page.size,
            )

        return await read_through(
            self._cache,
            key,
            self._list_ttl,
            [owner_tag(TRANSACTIONS_NAMESPACE, owner_id)],
            load,
        )

    async def summary(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> FinancialSummary:
        """Income, expense and net over an optional date range. Read-through cached."""
        key = cache_key(
            SUMMARY_NAMESPACE,
            owner_id,
            {"date_from": date_from, "date_to": date_to},
        )

        async def load() -> FinancialSummary:
            transactions = await self._storage.list_transactions(
                owner_id,
                TransactionFilters(date_from=date_from, date_to=date_to),
            )
            income = sum(
                (t.amount for t in transactions if t.type == TransactionType.INCOME),
                Decimal("0"),
            )
            expense = sum(
                (t.amount for t in transactions if t.type == TransactionType.EXPENSE),
                Decimal("0"),
            )
            return FinancialSummary(
                total_income=income,
                total_expense=expense,
                balance=income - expense,
                count=len(transactions),
                date_from=date_from,
                date_to=date_to,
            )

        return await read_through(
            self._cache,
            key,
            self._summary_ttl,
            [
                owner_tag(SUMMARY_NAMESPACE, owner_id),
                owner_tag(TRANSACTIONS_NAMESPACE, owner_id),
            ],
            load,
        )
