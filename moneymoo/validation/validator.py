"""
Validation Gate

DESIGN DECISION: Every write path runs its payload through the same gate
before anything reaches storage:

STAGE 1 - RULE VALIDATION:
- Required field presence
- Type checking (email, number, string, date)
- Length and range checks
- Custom predicates that can see the whole payload

STAGE 2 - SANITIZING:
- HTML metacharacters in user-supplied text are escaped before the text
  is persisted, not just before it is displayed
- Length limits in STAGE 1 count the escaped text, so anything that
  passes the gate also fits the model's column limits

Evaluation order inside a field: a failed required check short-circuits
the remaining checks for that field. Across fields nothing short-circuits,
so the caller gets every violation in one pass.

IMPORTANT: Validation NEVER silently fixes issues.
A non-empty error list means the mutation must be rejected.
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from moneymoo.exceptions import ValidationError
from moneymoo.models.ledger import (
    AccountType,
    DebtType,
    FieldError,
    PaymentMethod,
    TransactionType,
)

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_HTML_ESCAPES = (
    ("<", "&lt;"),
    (">", "&gt;"),
    ('"', "&quot;"),
    ("'", "&#x27;"),
    ("/", "&#x2F;"),
)

CustomCheck = Callable[[Any, Mapping[str, Any]], Optional[str]]


class FieldRule(BaseModel):
    """
    Declarative checks for one payload field.

    `custom` receives (value, whole_payload) and returns an error message
    or None.
    """
    model_config = ConfigDict(arbitrary_types_allowed=True)

    required: bool = False
    type: Optional[str] = Field(
        default=None,
        pattern="^(email|number|string|date)$",
    )
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    min: Optional[Decimal] = None
    max: Optional[Decimal] = None
    choices: Optional[tuple[str, ...]] = None
    custom: Optional[CustomCheck] = None


def format_field_name(field: str) -> str:
    """'contact_name' -> 'Contact name', 'dueDate' -> 'Due date'."""
    spaced = re.sub(r"([A-Z])", r" \1", field).replace("_", " ").strip().lower()
    return spaced[:1].upper() + spaced[1:]


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value))


def as_number(value: Any) -> Optional[Decimal]:
    """Decimal view of a numeric value, or None if it is not a finite number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def is_valid_number(value: Any) -> bool:
    """Finite and non-negative."""
    number = as_number(value)
    return number is not None and number >= 0


def is_valid_date(value: Any) -> bool:
    if isinstance(value, (date, datetime)):
        return True
    if isinstance(value, str):
        try:
            date.fromisoformat(value)
            return True
        except ValueError:
            return False
    return False


def sanitize(text: Any) -> Any:
    """Escape < > " ' / in a string. Non-strings pass through unchanged."""
    if not isinstance(text, str):
        return text
    for raw, escaped in _HTML_ESCAPES:
        text = text.replace(raw, escaped)
    return text


def sanitize_fields(payload: Mapping[str, Any], fields: Iterable[str]) -> dict:
    """Copy of payload with the named text fields sanitized."""
    cleaned = dict(payload)
    for name in fields:
        if name in cleaned:
            cleaned[name] = sanitize(cleaned[name])
    return cleaned


def validate(payload: Mapping[str, Any], rules: Mapping[str, FieldRule]) -> list[FieldError]:
    """
    Check payload against per-field rules.

    Returns all violations; an empty list means the payload passed.
    """
    errors: list[FieldError] = []

    for field, rule in rules.items():
        value = payload.get(field)
        label = format_field_name(field)

        if is_empty(value):
            if rule.required:
                errors.append(FieldError(
                    field=field,
                    code="required",
                    message=f"{label} is required",
                ))
            # Optional and empty: nothing else to check
            continue

        if rule.type == "email" and not is_valid_email(value):
            errors.append(FieldError(
                field=field,
                code="type",
                message=f"{label} must be a valid email",
            ))
        elif rule.type == "number" and not is_valid_number(value):
            errors.append(FieldError(
                field=field,
                code="type",
                message=f"{label} must be a number",
            ))
        elif rule.type == "string" and not isinstance(value, str):
            errors.append(FieldError(
                field=field,
                code="type",
                message=f"{label} must be text",
            ))
        elif rule.type == "date" and not is_valid_date(value):
            errors.append(FieldError(
                field=field,
                code="type",
                message=f"{label} must be a valid date",
            ))

        if isinstance(value, str):
            # Measured as stored, after escaping
            length = len(sanitize(value))
            if rule.min_length is not None and length < rule.min_length:
                errors.append(FieldError(
                    field=field,
                    code="min_length",
                    message=f"{label} must be at least {rule.min_length} characters",
                ))
            if rule.max_length is not None and length > rule.max_length:
                errors.append(FieldError(
                    field=field,
                    code="max_length",
                    message=f"{label} must be at most {rule.max_length} characters",
                ))

        number = as_number(value) if rule.min is not None or rule.max is not None else None
        if number is not None:
            if rule.min is not None and number < rule.min:
                errors.append(FieldError(
                    field=field,
                    code="min",
                    message=f"{label} must be at least {rule.min}",
                ))
            if rule.max is not None and number > rule.max:
                errors.append(FieldError(
                    field=field,
                    code="max",
                    message=f"{label} must be at most {rule.max}",
                ))

        if rule.choices is not None:
            raw = value.value if hasattr(value, "value") else value
            if raw not in rule.choices:
                errors.append(FieldError(
                    field=field,
                    code="choice",
                    message=f"{label} must be one of: {', '.join(rule.choices)}",
                ))

        if rule.custom is not None:
            message = rule.custom(value, payload)
            if message:
                errors.append(FieldError(
                    field=field,
                    code="custom",
                    message=message,
                ))

    return errors


def raise_for_errors(errors: list[FieldError], operation: Optional[str] = None) -> None:
    """Raise ValidationError if there is anything in `errors`."""
    if errors:
        raise ValidationError(errors, operation=operation)


# =============================================================================
# RULE SETS
# =============================================================================

def _positive(value: Any, payload: Mapping[str, Any]) -> Optional[str]:
    number = as_number(value)
    if number is not None and number <= 0:
        return "Amount must be greater than zero"
    return None


def _not_blank(value: Any, payload: Mapping[str, Any]) -> Optional[str]:
    if isinstance(value, str) and not value.strip():
        return "Value must not be blank"
    return None


def _values(enum_cls) -> tuple[str, ...]:
    return tuple(member.value for member in enum_cls)


def transaction_rules(max_amount: Decimal) -> dict[str, FieldRule]:
    return {
        "amount": FieldRule(required=True, type="number", max=max_amount, custom=_positive),
        "type": FieldRule(required=True, choices=_values(TransactionType)),
        "category": FieldRule(required=True, type="string", max_length=200, custom=_not_blank),
        "date": FieldRule(required=True, type="date"),
        "description": FieldRule(type="string", max_length=1000),
    }


ACCOUNT_RULES: dict[str, FieldRule] = {
    "name": FieldRule(required=True, type="string", min_length=1, max_length=100),
    "type": FieldRule(required=True, choices=_values(AccountType)),
    "account_number": FieldRule(type="string", max_length=50),
}

CATEGORY_RULES: dict[str, FieldRule] = {
    "name": FieldRule(required=True, type="string", min_length=1, max_length=100),
    "type": FieldRule(required=True, choices=_values(TransactionType)),
}


def debt_rules(max_amount: Decimal) -> dict[str, FieldRule]:
    return {
        "type": FieldRule(required=True, choices=_values(DebtType)),
        "contact_name": FieldRule(required=True, type="string", min_length=1, max_length=200),
        "contact_phone": FieldRule(type="string", max_length=50),
        "description": FieldRule(type="string", max_length=1000),
        "total_amount": FieldRule(required=True, type="number", max=max_amount, custom=_positive),
        "due_date": FieldRule(type="date"),
    }


def payment_rules(max_amount: Decimal) -> dict[str, FieldRule]:
    return {
        "debt_id": FieldRule(required=True),
        "amount": FieldRule(required=True, type="number", max=max_amount, custom=_positive),
        "payment_date": FieldRule(required=True, type="date"),
        "payment_method": FieldRule(choices=_values(PaymentMethod)),
        "description": FieldRule(type="string", max_length=1000),
    }


class ValidationGate:
    """
    Validates and sanitizes inbound mutation payloads.

    Shared by every write path. Holds the configured amount ceiling so the
    rule sets do not have to be rebuilt per call.
    """

    def __init__(self, max_amount: Optional[Decimal] = None):
        self._max_amount = max_amount if max_amount is not None else Decimal("1000000000000")
        self.transaction_rules = transaction_rules(self._max_amount)
        self.debt_rules = debt_rules(self._max_amount)
        self.payment_rules = payment_rules(self._max_amount)
        self.account_rules = ACCOUNT_RULES
        self.category_rules = CATEGORY_RULES

    def validate(
        self,
        payload: Mapping[str, Any],
        rules: Mapping[str, FieldRule],
    ) -> list[FieldError]:
        return validate(payload, rules)

    def check(
        self,
        payload: Mapping[str, Any],
        rules: Mapping[str, FieldRule],
        operation: Optional[str] = None,
        extra_errors: Optional[list[FieldError]] = None,
    ) -> None:
        """Validate and raise ValidationError with every violation found."""
        errors = list(extra_errors or [])
        errors.extend(validate(payload, rules))
        raise_for_errors(errors, operation=operation)

    @staticmethod
    def sanitize(text: Any) -> Any:
        return sanitize(text)

    @staticmethod
    def sanitize_fields(payload: Mapping[str, Any], fields: Iterable[str]) -> dict:
        return sanitize_fields(payload, fields)
