"""
Error Taxonomy for the Ledger Engine

Every error the core raises is a LedgerError with a stable `kind`, so the
presentation layer can translate kinds into messages without parsing text.

Recoverable by the caller:
- ValidationError: input failed required/shape/range checks, nothing written
- DuplicateError: an identical transaction already exists
- InsufficientFundsOnDebtError: payment exceeds what is still owed
- NotFoundError: id does not exist or belongs to someone else

Infrastructure:
- StorageError: the backend failed; retry or surface
- ReconciliationDriftError: a derived quantity no longer matches its
  source records. This is the most serious class and is always audited
  separately from user-facing errors.
"""

from typing import Any, Optional

from moneymoo.models.ledger import FieldError


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    kind = "ledger_error"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.entity_id = entity_id

    def with_context(
        self,
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ) -> "LedgerError":
        """Fill in operation/entity context without overwriting what is already set."""
        if self.operation is None:
            self.operation = operation
        if self.entity_id is None:
            self.entity_id = entity_id
        return self

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "message": self.message,
            "operation": self.operation,
            "entity_id": str(self.entity_id) if self.entity_id is not None else None,
        }


class ValidationError(LedgerError):
    """One or more fields failed validation. Raised before any write."""

    kind = "validation_error"

    def __init__(
        self,
        errors: list[FieldError],
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        self.errors = list(errors)
        summary = "; ".join(e.message for e in self.errors) or "Invalid input"
        super().__init__(summary, operation=operation, entity_id=entity_id)

    @property
    def fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = [e.model_dump() for e in self.errors]
        return data


class DuplicateError(LedgerError):
    """Attempted to insert a duplicate entity."""

    kind = "duplicate_error"

    def __init__(
        self,
        message: str,
        existing_id: Optional[Any] = None,
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(message, operation=operation, entity_id=entity_id)
        self.existing_id = existing_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["existing_id"] = str(self.existing_id) if self.existing_id else None
        return data


class InsufficientFundsOnDebtError(LedgerError):
    """Payment amount exceeds the remaining amount on the debt."""

    kind = "insufficient_funds_on_debt"

    def __init__(
        self,
        message: str,
        requested: Any = None,
        remaining: Any = None,
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
    ):
        super().__init__(message, operation=operation, entity_id=entity_id)
        self.requested = requested
        self.remaining = remaining

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["requested"] = str(self.requested) if self.requested is not None else None
        data["remaining"] = str(self.remaining) if self.remaining is not None else None
        return data


class NotFoundError(LedgerError):
    """Entity not found in storage, or not owned by the caller."""

    kind = "not_found"


class StorageError(LedgerError):
    """Base exception for storage operations."""

    kind = "storage_error"


class ConnectionError(StorageError):
    """Could not connect to storage backend."""

    kind = "connection_error"


class ReconciliationDriftError(LedgerError):
    """A derived balance or debt state could not be kept in line with its source records."""

    kind = "reconciliation_drift"

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        entity_id: Optional[Any] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, operation=operation, entity_id=entity_id)
        self.details = details or {}

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["details"] = self.details
        return data
