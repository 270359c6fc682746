"""
Debt Ledger

Debts (the user owes a contact) and receivables (a contact owes the user),
plus the payments that pay them down.

STATE MACHINE per debt:
    active --(payment brings remaining <= 0)--> paid
    paid   --(payment deleted, remaining > 0)--> active

remaining_amount is never adjusted incrementally. After every payment
write the total paid is summed from scratch, so a debt that had drifted
heals on the next payment.

Recording a payment is one unit of work:
1. Re-read the debt and reject amount > remaining_amount
2. Insert the payment
3. Recompute remaining_amount and status from all payments
4. Apply the payment to the paying account
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Mapping, Optional
from uuid import UUID

import structlog

from moneymoo.audit import AuditLogger, create_correlation_id
from moneymoo.cache import DEBTS_NAMESPACE, TTLCache, cache_key, owner_tag
from moneymoo.exceptions import (
    InsufficientFundsOnDebtError,
    NotFoundError,
    ValidationError,
)
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
    Debt,
    DebtCheck,
    DebtPayment,
    DebtStats,
    DebtStatus,
    DebtType,
    FieldError,
    PaymentMethod,
    status_for,
)
from moneymoo.models.money import format_rupiah
from moneymoo.services.storage import LedgerStorageInterface
from moneymoo.validation import ValidationGate

logger = structlog.get_logger(__name__)

DEBT_TEXT_FIELDS = ("contact_name", "contact_phone", "description")

# total_amount and type are fixed at creation
EDITABLE_DEBT_FIELDS = ("contact_name", "contact_phone", "description", "due_date")


class DebtLedger:
    """Debt records and the payment allocation state machine."""

    def __init__(
        self,
        storage: LedgerStorageInterface,
        reconciler: AccountBalanceReconciler,
        gate: ValidationGate,
        cache: Optional[TTLCache] = None,
        audit_logger: Optional[AuditLogger] = None,
        stats_ttl: float = 60.0,
        thousands_separator: str = ".",
        decimal_separator: str = ",",
    ):
        self._storage = storage
        self._reconciler = reconciler
        self._gate = gate
        self._cache = cache
        self._audit = audit_logger or AuditLogger()
        self._stats_ttl = stats_ttl
        self._thousands = thousands_separator
        self._decimal = decimal_separator

    async def _check(
        self,
        owner_id: str,
        payload: Mapping[str, Any],
        rules: Mapping,
        operation: str,
        errors: list[FieldError],
        correlation_id: UUID,
    ) -> None:
        try:
            self._gate.check(payload, rules, operation=operation, extra_errors=errors)
        except ValidationError as e:
            await self._audit.log_validation_failed(owner_id, operation, e.errors, correlation_id)
            raise

    def _invalidate(self, owner_id: str) -> None:
        invalidate_owner(self._cache, owner_id, (DEBTS_NAMESPACE,))

    async def _owned_debt(self, owner_id: str, debt_id: UUID) -> Debt:
        debt = await self._storage.get_debt(debt_id)
        return require_owned(debt, owner_id, "Debt", debt_id)

    async def _settle(self, debt: Debt) -> Debt:
        """Recompute remaining/status from every payment on the debt and store it."""
        payments = await self._storage.list_payments(debt.id)
        total_paid = sum((p.amount for p in payments), Decimal("0"))
        settled = debt.settled(total_paid)
        await self._storage.update_debt(settled)
        return settled

    # ------------------------------------------------------------------
    # Debts
    # ------------------------------------------------------------------

    async def create_debt(self, owner_id: str, payload: Mapping[str, Any]) -> Debt:
        """
        Record a new debt or receivable.

        The debt starts active with remaining_amount equal to total_amount.
        """
        correlation_id = create_correlation_id()
        errors: list[FieldError] = []
        total = coerce_amount(payload, "total_amount", self._thousands, self._decimal, errors)

        rules = dict(self._gate.debt_rules)
        checked = dict(payload)
        if errors:
            rules.pop("total_amount")
        else:
            checked["total_amount"] = total
        await self._check(owner_id, checked, rules, "create_debt", errors, correlation_id)

        cleaned = self._gate.sanitize_fields(checked, DEBT_TEXT_FIELDS)
        debt = Debt(
            owner_id=owner_id,
            type=DebtType(getattr(cleaned["type"], "value", cleaned["type"])),
            contact_name=cleaned["contact_name"],
            contact_phone=cleaned.get("contact_phone") or None,
            description=cleaned.get("description") or "",
            total_amount=total,
            remaining_amount=total,
            due_date=coerce_date(cleaned.get("due_date")),
            status=DebtStatus.ACTIVE,
        )

        async with self._storage.unit_of_work("create_debt", debt.id):
            stored = await self._storage.save_debt(debt)

        self._invalidate(owner_id)
        await self._audit.log_entity_changed(
            AuditEventType.DEBT_CREATED,
            owner_id,
            "debt",
            stored.id,
            f"{stored.type.value.capitalize()} with {stored.contact_name} created: "
            f"{format_rupiah(stored.total_amount)}",
            details={"type": stored.type.value, "total_amount": str(stored.total_amount)},
            correlation_id=correlation_id,
        )
        return stored

    async def update_debt(
        self,
        owner_id: str,
        debt_id: UUID,
        patch: Mapping[str, Any],
    ) -> Debt:
        """Edit contact details, description or due date."""
        correlation_id = create_correlation_id()
        errors = [
            FieldError(field=name, code="immutable", message=f"{name} cannot be changed")
            for name in ("total_amount", "type", "remaining_amount", "status")
            if name in patch
        ]

        # Re-read under the unit so a concurrent payment's remaining_amount survives
        async with self._storage.unit_of_work("update_debt", debt_id):
            debt = await self._owned_debt(owner_id, debt_id)
            merged = {
                "contact_name": debt.contact_name,
                "contact_phone": debt.contact_phone,
                "description": debt.description,
                "due_date": debt.due_date,
            }
            merged.update({k: v for k, v in patch.items() if k in EDITABLE_DEBT_FIELDS})
            rules = {k: v for k, v in self._gate.debt_rules.items() if k in EDITABLE_DEBT_FIELDS}
            await self._check(owner_id, merged, rules, "update_debt", errors, correlation_id)

            cleaned = self._gate.sanitize_fields(merged, DEBT_TEXT_FIELDS)
            updated = debt.model_copy(update={
                "contact_name": cleaned["contact_name"],
                "contact_phone": cleaned.get("contact_phone") or None,
                "description": cleaned.get("description") or "",
                "due_date": coerce_date(cleaned.get("due_date")),
                "updated_at": datetime.utcnow(),
            })
            stored = await self._storage.update_debt(updated)

        self._invalidate(owner_id)
        await self._audit.log_entity_changed(
            AuditEventType.DEBT_UPDATED,
            owner_id,
            "debt",
            debt_id,
            f"Debt with {stored.contact_name} updated",
            details={"fields": sorted(k for k in patch if k in EDITABLE_DEBT_FIELDS)},
            correlation_id=correlation_id,
        )
        return stored

    async def delete_debt(self, owner_id: str, debt_id: UUID) -> None:
        """Delete a debt and its payments, giving each payment's amount back to its account."""
        correlation_id = create_correlation_id()

        async with self._storage.unit_of_work("delete_debt", debt_id):
            debt = await self._owned_debt(owner_id, debt_id)
            payments = await self._storage.list_payments(debt_id)
            for payment in payments:
                if await self._storage.delete_payment(payment.id):
                    await self._reconciler.reverse_payment(owner_id, payment, debt)
            if not await self._storage.delete_debt(debt_id):
                raise NotFoundError(f"Debt not found: {debt_id}", entity_id=debt_id)

        self._invalidate(owner_id)
        await self._audit.log_entity_changed(
            AuditEventType.DEBT_DELETED,
            owner_id,
            "debt",
            debt_id,
            f"Debt with {debt.contact_name} deleted with {len(payments)} payments",
            details={"payments_removed": len(payments)},
            correlation_id=correlation_id,
        )

    async def get_debt(self, owner_id: str, debt_id: UUID) -> Debt:
        return await self._owned_debt(owner_id, debt_id)

    async def list_debts(
        self,
        owner_id: str,
        debt_type: Optional[DebtType] = None,
        status: Optional[DebtStatus] = None,
    ) -> list[Debt]:
        return await self._storage.list_debts(owner_id, debt_type=debt_type, status=status)

    async def stats(self, owner_id: str, today: Optional[date] = None) -> DebtStats:
        """Totals and counts over all of the owner's debts. Read-through cached."""
        today = today or date.today()
        key = cache_key(DEBTS_NAMESPACE, owner_id, {"view": "stats", "today": today})

        async def load() -> DebtStats:
            stats = DebtStats()
            for debt in await self._storage.list_debts(owner_id):
                active = debt.status == DebtStatus.ACTIVE
                if debt.type == DebtType.DEBT:
                    stats.total_debt += debt.total_amount
                    stats.remaining_debt += debt.remaining_amount
                    stats.active_debts += int(active)
                else:
                    stats.total_receivable += debt.total_amount
                    stats.remaining_receivable += debt.remaining_amount
                    stats.active_receivables += int(active)
                if debt.is_overdue(today):
                    stats.overdue += 1
            return stats

        return await read_through(
            self._cache,
            key,
            self._stats_ttl,
            [owner_tag(DEBTS_NAMESPACE, owner_id)],
            load,
        )

    # ------------------------------------------------------------------
    # Payments
    # ------------------------------------------------------------------

    async def create_payment(self, owner_id: str, payload: Mapping[str, Any]) -> DebtPayment:
        """
        Record a payment against a debt.

        Raises:
            ValidationError: payload failed validation or amount parsing
            NotFoundError: debt or paying account missing or not owned
            InsufficientFundsOnDebtError: amount exceeds remaining_amount;
                nothing is written
        """
        correlation_id = create_correlation_id()
        errors: list[FieldError] = []
        amount = coerce_amount(payload, "amount", self._thousands, self._decimal, errors)
        debt_id = coerce_uuid(payload, "debt_id", errors)
        account_id = coerce_uuid(payload, "account_id", errors)

        checked = dict(payload)
        if "payment_method" not in checked and "method" in checked:
            checked["payment_method"] = checked["method"]
        rules = dict(self._gate.payment_rules)
        if any(e.field == "amount" for e in errors):
            rules.pop("amount")
        else:
            checked["amount"] = amount
        await self._check(owner_id, checked, rules, "create_debt_payment", errors, correlation_id)

        method = checked.get("payment_method") or PaymentMethod.TRANSFER
        cleaned = self._gate.sanitize_fields(checked, ("description",))
        payment = DebtPayment(
            debt_id=debt_id,
            account_id=account_id,
            payment_date=coerce_date(cleaned["payment_date"]),
            amount=amount,
            payment_method=PaymentMethod(getattr(method, "value", method)),
            description=cleaned.get("description") or "",
        )

        if account_id is not None:
            account = await self._storage.get_account(account_id)
            require_owned(account, owner_id, "Account", account_id)

        try:
            async with self._storage.unit_of_work("create_debt_payment", payment.id):
                debt = await self._owned_debt(owner_id, debt_id)
                if payment.amount > debt.remaining_amount:
                    raise InsufficientFundsOnDebtError(
                        f"Payment of {format_rupiah(payment.amount)} exceeds remaining "
                        f"{format_rupiah(debt.remaining_amount)}",
                        requested=payment.amount,
                        remaining=debt.remaining_amount,
                        entity_id=debt_id,
                    )
                stored = await self._storage.save_payment(payment)
                settled = await self._settle(debt)
                await self._reconciler.apply_payment(owner_id, stored, debt)
        except InsufficientFundsOnDebtError as e:
            await self._audit.log_payment_rejected(
                owner_id,
                debt_id,
                format_rupiah(e.requested),
                format_rupiah(e.remaining),
                correlation_id,
            )
            raise

        self._invalidate(owner_id)
        await self._audit.log_payment_recorded(owner_id, stored, settled, correlation_id)
        if debt.status != settled.status:
            await self._audit.log_entity_changed(
                AuditEventType.DEBT_SETTLED,
                owner_id,
                "debt",
                debt_id,
                f"Debt with {settled.contact_name} is now {settled.status.value}",
                details={"status": settled.status.value},
                correlation_id=correlation_id,
            )
        return stored

    async def delete_payment(self, owner_id: str, payment_id: UUID) -> None:
        """
        Delete a payment and undo its effects.

        remaining_amount and status are recomputed (a paid debt can become
        active again) and the paying account gets the amount back.

        Raises:
            NotFoundError: the payment is gone, including when a concurrent
                delete of the same payment committed first
        """
        correlation_id = create_correlation_id()

        async with self._storage.unit_of_work("delete_debt_payment", payment_id):
            payment = await self.get_payment(owner_id, payment_id)
            debt = await self._owned_debt(owner_id, payment.debt_id)
            if not await self._storage.delete_payment(payment_id):
                raise NotFoundError(f"Payment not found: {payment_id}", entity_id=payment_id)
            settled = await self._settle(debt)
            await self._reconciler.reverse_payment(owner_id, payment, debt)

        self._invalidate(owner_id)
        await self._audit.log_entity_changed(
            AuditEventType.PAYMENT_DELETED,
            owner_id,
            "debt_payment",
            payment_id,
            f"Payment of {format_rupiah(payment.amount)} deleted, "
            f"{format_rupiah(settled.remaining_amount)} remaining",
            details={
                "debt_id": str(debt.id),
                "remaining_amount": str(settled.remaining_amount),
                "status": settled.status.value,
            },
            correlation_id=correlation_id,
        )

    async def get_payment(self, owner_id: str, payment_id: UUID) -> DebtPayment:
        """A payment is owned through its debt."""
        payment = await self._storage.get_payment(payment_id)
        if payment is None:
            raise NotFoundError(f"Payment not found: {payment_id}", entity_id=payment_id)
        debt = await self._storage.get_debt(payment.debt_id)
        if debt is None or debt.owner_id != owner_id:
            raise NotFoundError(f"Payment not found: {payment_id}", entity_id=payment_id)
        return payment

    async def list_payments(self, owner_id: str, debt_id: UUID) -> list[DebtPayment]:
        await self._owned_debt(owner_id, debt_id)
        return await self._storage.list_payments(debt_id)

    async def verify_debt(self, owner_id: str, debt_id: UUID) -> DebtCheck:
        """Recompute remaining/status from payments; drift is audited."""
        debt = await self._owned_debt(owner_id, debt_id)
        payments = await self._storage.list_payments(debt_id)
        expected = debt.total_amount - sum((p.amount for p in payments), Decimal("0"))
        check = DebtCheck(
            debt_id=debt_id,
            recorded_remaining=debt.remaining_amount,
            expected_remaining=expected,
            recorded_status=debt.status,
            expected_status=status_for(expected),
            payment_count=len(payments),
        )
        if not check.is_consistent:
            await self._audit.log_reconciliation_drift(
                owner_id=owner_id,
                entity_type="debt",
                entity_id=debt_id,
                operation="verify_debt",
                details={
                    "recorded_remaining": str(check.recorded_remaining),
                    "expected_remaining": str(check.expected_remaining),
                    "recorded_status": check.recorded_status.value,
                    "expected_status": check.expected_status.value,
                },
            )
        return check
