"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
The in-memory backend serves tests and local runs; Google Sheets is the
persistent backend. Both are swappable behind the same interface.
"""

from moneymoo.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    LedgerStorageInterface,
    NotFoundError,
    StorageError,
)
from moneymoo.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
)
from moneymoo.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "LedgerStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
]
