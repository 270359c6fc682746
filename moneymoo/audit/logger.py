"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of balance-affecting operations
2. Debugging capability
3. The trail needed to reconcile by hand when drift is detected

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the app if logging fails)
- Supports correlation IDs to trace related events
- Logs reconciliation drift at CRITICAL, apart from user-facing errors
"""

import logging
import sys
from typing import Optional
from uuid import UUID, uuid4

import structlog

from moneymoo.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from moneymoo.models.ledger import (
    Debt,
    DebtPayment,
    FieldError,
    Transaction,
)
from moneymoo.models.money import format_rupiah
from moneymoo.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "info") -> None:
    """Route stdlib logging (and so structlog) to stdout at `level`."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("moneymoo.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_changed(
        self,
        event_type: AuditEventType,
        transaction: Transaction,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a transaction create/update/delete."""
        event = AuditEventBuilder.transaction_changed(
            event_type=event_type,
            owner_id=transaction.owner_id,
            transaction_id=transaction.id,
            amount=format_rupiah(transaction.amount),
            tx_type=transaction.type.value,
            account_id=transaction.account_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_duplicate_rejected(
        self,
        owner_id: str,
        existing_id: Optional[UUID],
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.duplicate_rejected(
            owner_id=owner_id,
            existing_id=existing_id,
            amount=amount,
            category=category,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_validation_failed(
        self,
        owner_id: str,
        operation: str,
        errors: list[FieldError],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log validation failure."""
        event = AuditEventBuilder.validation_failed(
            owner_id=owner_id,
            operation=operation,
            errors=[e.model_dump() for e in errors],
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_entity_changed(
        self,
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an account, category or debt change."""
        event = AuditEventBuilder.entity_changed(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            description=description,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_payment_recorded(
        self,
        owner_id: str,
        payment: DebtPayment,
        debt: Debt,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.payment_recorded(
            owner_id=owner_id,
            payment_id=payment.id,
            debt_id=debt.id,
            amount=format_rupiah(payment.amount),
            remaining=format_rupiah(debt.remaining_amount),
            status=debt.status.value,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_payment_rejected(
        self,
        owner_id: str,
        debt_id: UUID,
        requested: str,
        remaining: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.payment_rejected(
            owner_id=owner_id,
            debt_id=debt_id,
            requested=requested,
            remaining=remaining,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_reconciliation_drift(
        self,
        owner_id: Optional[str],
        entity_type: str,
        entity_id: Optional[UUID],
        operation: str,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log drift between a derived quantity and its source records."""
        event = AuditEventBuilder.reconciliation_drift(
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            details=details,
            error_message=error_message,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_balance_repaired(
        self,
        owner_id: str,
        account_id: UUID,
        previous: str,
        repaired: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        event = AuditEventBuilder.balance_repaired(
            owner_id=owner_id,
            account_id=account_id,
            previous=previous,
            repaired=repaired,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_storage_error(
        self,
        operation: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a backend failure."""
        event = AuditEventBuilder.storage_error(
            operation=operation,
            error_message=error_message,
            entity_id=entity_id,
            owner_id=owner_id,
            correlation_id=correlation_id,
        )
        await self.log(event)

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., recording a payment).
    Pass it through all subsequent operations.
    """
    return uuid4()
