"""
Money Parse/Format Boundary

Amounts reach the core as locale-formatted strings typed by the user
("Rp 30.000", "1.500,75"). They are converted to Decimal exactly once, here,
before any arithmetic happens. A string that cannot be read as a
non-negative amount is an error, never a silent zero.

Formatting goes the other way for display and for log messages.
"""

import re
from decimal import Decimal
from typing import Union

AmountInput = Union[str, int, float, Decimal]

_CURRENCY_PREFIX = re.compile(r"^\s*(rp\.?|idr)\s*", re.IGNORECASE)
_PLAIN_NUMBER = re.compile(r"^\d+(\.\d+)?$")


class AmountParseError(ValueError):
    """Raised when a value cannot be read as a non-negative amount."""

    def __init__(self, value: object, reason: str):
        super().__init__(f"Cannot parse amount {value!r}: {reason}")
        self.value = value
        self.reason = reason


def parse_amount(
    value: AmountInput,
    thousands_separator: str = ".",
    decimal_separator: str = ",",
) -> Decimal:
    """
    Parse a user-supplied amount into a non-negative Decimal.

    Strings are read in the presentation locale: the thousands separator is
    dropped and the decimal separator becomes a dot. A leading "Rp"/"IDR"
    and surrounding whitespace are ignored.

    Raises:
        AmountParseError: empty, negative, non-numeric or non-finite input
    """
    if isinstance(value, bool):
        raise AmountParseError(value, "booleans are not amounts")

    if isinstance(value, Decimal):
        amount = value
    elif isinstance(value, int):
        amount = Decimal(value)
    elif isinstance(value, float):
        amount = Decimal(str(value))
    elif isinstance(value, str):
        text = _CURRENCY_PREFIX.sub("", value).strip()
        text = re.sub(r"\s+", "", text)
        if not text:
            raise AmountParseError(value, "empty")
        if text.startswith("-"):
            raise AmountParseError(value, "negative amounts are not allowed")
        text = text.replace(thousands_separator, "")
        text = text.replace(decimal_separator, ".")
        if not _PLAIN_NUMBER.match(text):
            raise AmountParseError(value, "not a number")
        amount = Decimal(text)
    else:
        raise AmountParseError(value, f"unsupported type {type(value).__name__}")

    if not amount.is_finite():
        raise AmountParseError(value, "not finite")

    if amount < 0:
        raise AmountParseError(value, "negative amounts are not allowed")

    return amount


def format_number(amount: Decimal, thousands_separator: str = ".") -> str:
    """Format a whole amount with grouped thousands, e.g. 1500000 -> "1.500.000"."""
    whole = int(amount.quantize(Decimal("1")))
    grouped = f"{abs(whole):,}".replace(",", thousands_separator)
    return f"-{grouped}" if whole < 0 else grouped


def format_rupiah(amount: Decimal) -> str:
    """Format an amount as Rupiah without fraction digits, e.g. "Rp 30.000"."""
    return f"Rp {format_number(amount)}"
