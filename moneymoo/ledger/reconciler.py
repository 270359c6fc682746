"""
Account Balance Reconciler

Keeps Account.balance equal to the net effect of every transaction and
debt payment applied against the account:

    balance == initial_balance + Σincome − Σexpense − Σdebt_payments

DESIGN DECISION: The reconciler never runs on a schedule. It is called by
TransactionStore and DebtLedger, inside their unit of work, only when a
mutation names an account. It adjusts incrementally; `verify` and `repair`
recompute from scratch for when drift is suspected.

An account id that no longer resolves (deleted account, or one owned by
somebody else) is treated as unassigned: the step is skipped and logged.
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from moneymoo.audit import AuditLogger, create_correlation_id
from moneymoo.ledger.common import require_owned
from moneymoo.models.ledger import (
    Account,
    BalanceCheck,
    Debt,
    DebtPayment,
    DebtType,
    Transaction,
    TransactionFilters,
)
from moneymoo.models.money import format_rupiah
from moneymoo.services.storage import LedgerStorageInterface

logger = structlog.get_logger(__name__)


class AccountBalanceReconciler:
    """
    Applies balance deltas for transaction and payment writes.

    Args:
        storage: Ledger storage. Callers hold its unit of work.
        audit_logger: Receives drift and repair events.
        receivable_payments_credit_account: When True a payment on a
            receivable adds to the account instead of subtracting.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        audit_logger: Optional[AuditLogger] = None,
        receivable_payments_credit_account: bool = False,
    ):
        self._storage = storage
        self._audit = audit_logger or AuditLogger()
        self._credit_receivables = receivable_payments_credit_account

    # ------------------------------------------------------------------
    # Signed effects
    # ------------------------------------------------------------------

    def payment_effect(self, payment: DebtPayment, debt: Optional[Debt]) -> Decimal:
        """Signed change a payment makes to its account."""
        if (
            self._credit_receivables
            and debt is not None
            and debt.type == DebtType.RECEIVABLE
        ):
            return payment.amount
        return -payment.amount

    # ------------------------------------------------------------------
    # Incremental application
    # ------------------------------------------------------------------

    async def _adjust(
        self,
        owner_id: str,
        account_id: Optional[UUID],
        delta: Decimal,
        reason: str,
    ) -> Optional[Account]:
        if account_id is None or delta == 0:
            return None

        account = await self._storage.get_account(account_id)
        if account is None or account.owner_id != owner_id:
            logger.warning(
                "balance_adjustment_skipped",
                reason="account_missing",
                account_id=str(account_id),
                owner_id=owner_id,
                operation=reason,
            )
            return None

        updated = account.model_copy(update={"balance": account.balance + delta})
        await self._storage.update_account(updated)
        logger.debug(
            "balance_adjusted",
            account_id=str(account_id),
            delta=str(delta),
            balance=str(updated.balance),
            operation=reason,
        )
        return updated

    async def apply_created(self, transaction: Transaction) -> None:
        await self._adjust(
            transaction.owner_id,
            transaction.account_id,
            transaction.signed_amount,
            "transaction_created",
        )

    async def apply_updated(self, old: Transaction, new: Transaction) -> None:
        """
        Reverse the old record and apply the new one.

        Both sides come from the pre-update snapshot and the patched record.
        Same account: one net write. Different accounts: two writes.
        """
        if old.account_id == new.account_id:
            await self._adjust(
                new.owner_id,
                new.account_id,
                new.signed_amount - old.signed_amount,
                "transaction_updated",
            )
            return

        await self._adjust(
            old.owner_id,
            old.account_id,
            -old.signed_amount,
            "transaction_updated",
        )
        await self._adjust(
            new.owner_id,
            new.account_id,
            new.signed_amount,
            "transaction_updated",
        )

    async def apply_deleted(self, transaction: Transaction) -> None:
        await self._adjust(
            transaction.owner_id,
            transaction.account_id,
            -transaction.signed_amount,
            "transaction_deleted",
        )

    async def apply_payment(self, owner_id: str, payment: DebtPayment, debt: Debt) -> None:
        await self._adjust(
            owner_id,
            payment.account_id,
            self.payment_effect(payment, debt),
            "payment_recorded",
        )

    async def reverse_payment(self, owner_id: str, payment: DebtPayment, debt: Debt) -> None:
        await self._adjust(
            owner_id,
            payment.account_id,
            -self.payment_effect(payment, debt),
            "payment_deleted",
        )

    # ------------------------------------------------------------------
    # Recompute from source records
    # ------------------------------------------------------------------

    async def _owned_account(self, owner_id: str, account_id: UUID) -> Account:
        account = await self._storage.get_account(account_id)
        return require_owned(account, owner_id, "Account", account_id)

    async def expected_balance(self, owner_id: str, account_id: UUID) -> BalanceCheck:
        """Recompute the balance from the account's transactions and payments."""
        account = await self._owned_account(owner_id, account_id)

        transactions = await self._storage.list_transactions(
            owner_id,
            TransactionFilters(account_id=account_id),
        )
        payments = await self._storage.list_payments_by_account(account_id)

        expected = account.initial_balance
        for tx in transactions:
            expected += tx.signed_amount

        debts: dict[UUID, Optional[Debt]] = {}
        for payment in payments:
            if payment.debt_id not in debts:
                debts[payment.debt_id] = await self._storage.get_debt(payment.debt_id)
            expected += self.payment_effect(payment, debts[payment.debt_id])

        return BalanceCheck(
            account_id=account_id,
            recorded_balance=account.balance,
            expected_balance=expected,
            transaction_count=len(transactions),
            payment_count=len(payments),
        )

    async def verify(self, owner_id: str, account_id: UUID) -> BalanceCheck:
        """Compare the stored balance to its recomputation; drift is audited."""
        check = await self.expected_balance(owner_id, account_id)
        if not check.is_consistent:
            await self._audit.log_reconciliation_drift(
                owner_id=owner_id,
                entity_type="account",
                entity_id=account_id,
                operation="verify_account_balance",
                details={
                    "recorded_balance": str(check.recorded_balance),
                    "expected_balance": str(check.expected_balance),
                    "drift": str(check.drift),
                },
            )
        return check

    async def repair(self, owner_id: str, account_id: UUID) -> Account:
        """Overwrite the stored balance with the recomputed one."""
        correlation_id = create_correlation_id()
        async with self._storage.unit_of_work("repair_account_balance", account_id):
            check = await self.verify(owner_id, account_id)
            account = await self._owned_account(owner_id, account_id)
            if check.is_consistent:
                return account
            repaired = account.model_copy(update={"balance": check.expected_balance})
            await self._storage.update_account(repaired)

        await self._audit.log_balance_repaired(
            owner_id=owner_id,
            account_id=account_id,
            previous=format_rupiah(check.recorded_balance),
            repaired=format_rupiah(check.expected_balance),
            correlation_id=correlation_id,
        )
        return repaired
