"""
Audit Models for the Ledger Engine

Every mutation of the ledger is logged for audit purposes.
This provides:
1. Complete traceability of balance-affecting operations
2. Debugging information when things go wrong
3. The raw material for manual reconciliation when drift is detected

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every ledger mutation has its own event type.
    """
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_UPDATED = "transaction_updated"
    TRANSACTION_DELETED = "transaction_deleted"
    DUPLICATE_REJECTED = "duplicate_rejected"
    VALIDATION_FAILED = "validation_failed"

    # Accounts and categories
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_DELETED = "account_deleted"
    BALANCE_ADJUSTED = "balance_adjusted"
    CATEGORY_CREATED = "category_created"
    CATEGORY_DELETED = "category_deleted"

    # Debts
    DEBT_CREATED = "debt_created"
    DEBT_UPDATED = "debt_updated"
    DEBT_DELETED = "debt_deleted"
    DEBT_SETTLED = "debt_settled"
    PAYMENT_RECORDED = "payment_recorded"
    PAYMENT_DELETED = "payment_deleted"
    PAYMENT_REJECTED = "payment_rejected"

    # Consistency
    RECONCILIATION_DRIFT = "reconciliation_drift"
    BALANCE_REPAIRED = "balance_repaired"

    # System events
    SYSTEM_ERROR = "system_error"
    STORAGE_ERROR = "storage_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Who and what
    owner_id: Optional[str] = Field(
        default=None,
        description="Owner the event belongs to"
    )
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'debt', 'account')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., payment and balance update)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "owner_id": self.owner_id,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, owner_id, entity_type,
         entity_id, correlation_id, description, details_json, error_message,
         is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.owner_id or "",
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_created(tx)
        event = AuditEventBuilder.reconciliation_drift("account", account_id, ...)
    """

    @staticmethod
    def transaction_changed(
        event_type: AuditEventType,
        owner_id: str,
        transaction_id: UUID,
        amount: str,
        tx_type: str,
        account_id: Optional[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = event_type.value.split("_")[-1]
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction {verb}: {tx_type} {amount}",
            details={
                "amount": amount,
                "type": tx_type,
                "account_id": str(account_id) if account_id else None,
            },
            is_user_action=True,
        )

    @staticmethod
    def duplicate_rejected(
        owner_id: str,
        existing_id: Optional[UUID],
        amount: str,
        category: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUPLICATE_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="transaction",
            entity_id=existing_id,
            correlation_id=correlation_id,
            description=f"Duplicate transaction rejected: {category} {amount}",
            details={
                "amount": amount,
                "category": category,
            },
            is_user_action=True,
        )

    @staticmethod
    def validation_failed(
        owner_id: str,
        operation: str,
        errors: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            correlation_id=correlation_id,
            description=f"Validation failed for {operation} with {len(errors)} issues",
            details={
                "operation": operation,
                "errors": errors,
            },
            is_user_action=True,
        )

    @staticmethod
    def entity_changed(
        event_type: AuditEventType,
        owner_id: str,
        entity_type: str,
        entity_id: UUID,
        description: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=description,
            details=details or {},
            is_user_action=True,
        )

    @staticmethod
    def payment_recorded(
        owner_id: str,
        payment_id: UUID,
        debt_id: UUID,
        amount: str,
        remaining: str,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_RECORDED,
            owner_id=owner_id,
            entity_type="debt_payment",
            entity_id=payment_id,
            correlation_id=correlation_id,
            description=f"Payment of {amount} recorded, {remaining} remaining",
            details={
                "debt_id": str(debt_id),
                "amount": amount,
                "remaining_amount": remaining,
                "status": status,
            },
            is_user_action=True,
        )

    @staticmethod
    def payment_rejected(
        owner_id: str,
        debt_id: UUID,
        requested: str,
        remaining: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_REJECTED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="debt",
            entity_id=debt_id,
            correlation_id=correlation_id,
            description=f"Payment of {requested} exceeds remaining {remaining}",
            details={
                "requested": requested,
                "remaining_amount": remaining,
            },
            is_user_action=True,
        )

    @staticmethod
    def reconciliation_drift(
        owner_id: Optional[str],
        entity_type: str,
        entity_id: Optional[UUID],
        operation: str,
        details: Optional[dict] = None,
        error_message: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECONCILIATION_DRIFT,
            severity=AuditSeverity.CRITICAL,
            owner_id=owner_id,
            entity_type=entity_type,
            entity_id=entity_id,
            correlation_id=correlation_id,
            description=f"Reconciliation drift on {entity_type} during {operation}",
            details={"operation": operation, **(details or {})},
            error_code="reconciliation_drift",
            error_message=error_message,
        )

    @staticmethod
    def balance_repaired(
        owner_id: str,
        account_id: UUID,
        previous: str,
        repaired: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_REPAIRED,
            severity=AuditSeverity.WARNING,
            owner_id=owner_id,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account balance repaired from {previous} to {repaired}",
            details={
                "previous_balance": previous,
                "repaired_balance": repaired,
            },
            is_user_action=True,
        )

    @staticmethod
    def storage_error(
        operation: str,
        error_message: str,
        entity_id: Optional[UUID] = None,
        owner_id: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_ERROR,
            severity=AuditSeverity.ERROR,
            owner_id=owner_id,
            entity_id=entity_id,
            description=f"Storage error during {operation}",
            error_message=error_message,
            details={"operation": operation},
            correlation_id=correlation_id,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
