"""
Account Service

Accounts are where money sits. The balance starts at initial_balance and
afterwards only moves through the reconciler.

Deleting an account never deletes history: transactions and payments that
named it become unassigned, in the same unit of work as the delete.
"""

from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog

from moneymoo.audit import AuditLogger, create_correlation_id
from moneymoo.cache import SUMMARY_NAMESPACE, TRANSACTIONS_NAMESPACE, TTLCache
from moneymoo.exceptions import NotFoundError, ValidationError
from moneymoo.ledger.common import invalidate_owner, require_owned
from moneymoo.models.audit import AuditEventType
from moneymoo.models.ledger import (
    Account,
    AccountType,
    FieldError,
    TransactionFilters,
)
from moneymoo.models.money import AmountParseError, format_rupiah, parse_amount
from moneymoo.services.storage import LedgerStorageInterface
from moneymoo.validation import ValidationGate

logger = structlog.get_logger(__name__)


class AccountService:
    def __init__(
        self,
        storage: LedgerStorageInterface,
        gate: ValidationGate,
        cache: Optional[TTLCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        thousands_separator: str = ".",
        decimal_separator: str = ",",
    ):
        self._storage = storage
        self._gate = gate
        self._cache = cache
        self._audit = audit_logger or AuditLogger()
        self._thousands = thousands_separator
        self._decimal = decimal_separator

    def _initial_balance(self, raw: Any, errors: list[FieldError]) -> Decimal:
        """Opening balance; unlike transaction amounts it may be negative."""
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return Decimal("0")
        negative = isinstance(raw, str) and raw.strip().startswith("-")
        if negative:
            raw = raw.strip()[1:]
        elif isinstance(raw, (int, float, Decimal)) and not isinstance(raw, bool) and raw < 0:
            negative, raw = True, -raw
        try:
            amount = parse_amount(raw, self._thousands, self._decimal)
        except AmountParseError as e:
            errors.append(FieldError(
                field="initial_balance",
                code="type",
                message=f"Initial balance could not be read: {e.reason}",
            ))
            return Decimal("0")
        return -amount if negative else amount

    async def create(self, owner_id: str, payload: Mapping[str, Any]) -> Account:
        correlation_id = create_correlation_id()
        errors: list[FieldError] = []
        initial = self._initial_balance(payload.get("initial_balance"), errors)

        try:
            self._gate.check(payload, self._gate.account_rules, "create_account", errors)
        except ValidationError as e:
            await self._audit.log_validation_failed(owner_id, "create_account", e.errors, correlation_id)
            raise

        cleaned = self._gate.sanitize_fields(payload, ("name", "account_number"))
        account_type = cleaned["type"]
        account = Account(
            owner_id=owner_id,
            name=cleaned["name"],
            type=AccountType(getattr(account_type, "value", account_type)),
            account_number=cleaned.get("account_number") or None,
            initial_balance=initial,
            balance=initial,
        )

        async with self._storage.unit_of_work("create_account", account.id):
            stored = await self._storage.save_account(account)

        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_CREATED,
            owner_id,
            "account",
            stored.id,
            f"Account {stored.name} created with {format_rupiah(stored.initial_balance)}",
            details={"type": stored.type.value, "initial_balance": str(stored.initial_balance)},
            correlation_id=correlation_id,
        )
        return stored

    async def get(self, owner_id: str, account_id: UUID) -> Account:
        account = await self._storage.get_account(account_id)
        return require_owned(account, owner_id, "Account", account_id)

    async def list_accounts(self, owner_id: str) -> list[Account]:
        return await self._storage.list_accounts(owner_id)

    async def delete(self, owner_id: str, account_id: UUID) -> None:
        """Delete an account and unassign everything that referenced it."""
        correlation_id = create_correlation_id()

        async with self._storage.unit_of_work("delete_account", account_id):
            account = await self.get(owner_id, account_id)
            transactions = await self._storage.list_transactions(
                owner_id,
                TransactionFilters(account_id=account_id),
            )
            for tx in transactions:
                await self._storage.update_transaction(tx.model_copy(update={"account_id": None}))

            payments = await self._storage.list_payments_by_account(account_id)
            for payment in payments:
                await self._storage.update_payment(payment.model_copy(update={"account_id": None}))

            if not await self._storage.delete_account(account_id):
                raise NotFoundError(f"Account not found: {account_id}", entity_id=account_id)

        # Cached transaction pages still carry the old account_id
        invalidate_owner(self._cache, owner_id, (TRANSACTIONS_NAMESPACE, SUMMARY_NAMESPACE))
        logger.info(
            "account_deleted",
            account_id=str(account_id),
            unassigned_transactions=len(transactions),
            unassigned_payments=len(payments),
        )
        await self._audit.log_entity_changed(
            AuditEventType.ACCOUNT_DELETED,
            owner_id,
            "account",
            account_id,
            f"Account {account.name} deleted",
            details={
                "unassigned_transactions": len(transactions),
                "unassigned_payments": len(payments),
            },
            correlation_id=correlation_id,
        )
