"""Validation gate package."""

from moneymoo.validation.validator import (
    ACCOUNT_RULES,
    CATEGORY_RULES,
    FieldRule,
    ValidationGate,
    debt_rules,
    format_field_name,
    payment_rules,
    raise_for_errors,
    sanitize,
    sanitize_fields,
    transaction_rules,
    validate,
)

__all__ = [
    "ACCOUNT_RULES",
    "CATEGORY_RULES",
    "FieldRule",
    "ValidationGate",
    "debt_rules",
    "format_field_name",
    "payment_rules",
    "raise_for_errors",
    "sanitize",
    "sanitize_fields",
    "transaction_rules",
    "validate",
]
