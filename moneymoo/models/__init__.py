"""
Data Models Package

This package contains all Pydantic models used by the ledger engine.
All data flowing through the system must conform to these schemas.
"""

from moneymoo.models.ledger import (
    Account,
    AccountType,
    BalanceCheck,
    Category,
    Debt,
    DebtCheck,
    DebtPayment,
    DebtStats,
    DebtStatus,
    DebtType,
    FieldError,
    FinancialSummary,
    PageRequest,
    PaymentMethod,
    Transaction,
    TransactionFilters,
    TransactionPage,
    TransactionType,
    status_for,
)
from moneymoo.models.money import (
    AmountParseError,
    format_number,
    format_rupiah,
    parse_amount,
)
from moneymoo.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Ledger models
    "Account",
    "AccountType",
    "BalanceCheck",
    "Category",
    "Debt",
    "DebtCheck",
    "DebtPayment",
    "DebtStats",
    "DebtStatus",
    "DebtType",
    "FieldError",
    "FinancialSummary",
    "PageRequest",
    "PaymentMethod",
    "Transaction",
    "TransactionFilters",
    "TransactionPage",
    "TransactionType",
    "status_for",
    # Money
    "AmountParseError",
    "format_number",
    "format_rupiah",
    "parse_amount",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
