from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from recordport.models.field_definition import DataType

"""Typed value parsing shared by validation, import and export.

Validation accepts a value exactly when ``convert_value`` can convert it, so a
row that validates always converts during import.
"""

__all__ = [
    "BOOLEAN_FALSE",
    "BOOLEAN_TRUE",
    "DATE_FORMATS",
    "EMAIL_RE",
    "convert_value",
    "format_date",
    "is_empty",
    "parse_boolean",
    "parse_currency",
    "parse_date",
    "parse_decimal",
    "validate_email",
    "validate_phone",
]

BOOLEAN_TRUE = frozenset({"yes", "y", "true", "1"})
BOOLEAN_FALSE = frozenset({"no", "n", "false", "0"})

# Display format -> strptime/strftime pattern
DATE_FORMATS: dict[str, str] = {
    "YYYY-MM-DD": "%Y-%m-%d",
    "MM/DD/YYYY": "%m/%d/%Y",
    "DD/MM/YYYY": "%d/%m/%Y",
}

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_PHONE_CHARS_RE = re.compile(r"^[\d\s\-+().]+$")
_CURRENCY_NOISE_RE = re.compile(r"[$€£¥,\s]")


def is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def parse_boolean(value: Any) -> bool | None:
    """True/False for a recognized token, None otherwise."""
    if isinstance(value, bool):
        return value
    token = str(value).strip().lower()
    if token in BOOLEAN_TRUE:
        return True
    if token in BOOLEAN_FALSE:
        return False
    return None


def parse_decimal(value: Any) -> Decimal:
    """Parse a plain number. Raises ValueError."""
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return result


def parse_currency(value: Any) -> Decimal:
    """Parse an amount such as ``$1,234.50`` or ``(12.00)``. Raises ValueError."""
    if isinstance(value, (Decimal, int, float)) and not isinstance(value, bool):
        return parse_decimal(value)
    text = str(value).strip()
    negative = text.startswith("(") and text.endswith(")")
    if negative:
        text = text[1:-1]
    text = _CURRENCY_NOISE_RE.sub("", text)
    amount = parse_decimal(text)
    return -abs(amount) if negative else amount


def parse_date(value: Any, date_format: str = "YYYY-MM-DD") -> date:
    """Parse under ``date_format``; ISO dates are accepted as a fallback.

    Raises ValueError.
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    patterns = [DATE_FORMATS.get(date_format, DATE_FORMATS["YYYY-MM-DD"]), DATE_FORMATS["YYYY-MM-DD"]]
    for pattern in patterns:
        try:
            return datetime.strptime(text, pattern).date()
        except ValueError:
            continue
    raise ValueError(f"not a date in format {date_format}: {value!r}")


def format_date(value: date, date_format: str = "YYYY-MM-DD") -> str:
    return value.strftime(DATE_FORMATS.get(date_format, DATE_FORMATS["YYYY-MM-DD"]))


def validate_email(value: Any) -> bool:
    return bool(EMAIL_RE.match(str(value).strip()))


def validate_phone(value: Any) -> bool:
    text = str(value).strip()
    if not _PHONE_CHARS_RE.match(text):
        return False
    digits = sum(ch.isdigit() for ch in text)
    return 7 <= digits <= 15


def convert_value(value: Any, data_type: DataType | None, date_format: str = "YYYY-MM-DD") -> Any:
    """Convert a non-empty value to the Python type stored for ``data_type``.

    string/email/phone -> str, number/currency -> Decimal, boolean -> bool,
    date -> datetime.date. String values are kept as given; whitespace is
    only removed by a mapped ``trim`` transform. Raises ValueError when the
    value does not fit.
    """
    if data_type is None or data_type is DataType.STRING:
        return value
    if data_type is DataType.NUMBER:
        return parse_decimal(value)
    if data_type is DataType.CURRENCY:
        return parse_currency(value)
    if data_type is DataType.BOOLEAN:
        parsed = parse_boolean(value)
        if parsed is None:
            raise ValueError("must be true/false, yes/no, or 1/0")
        return parsed
    if data_type is DataType.DATE:
        return parse_date(value, date_format)
    if data_type is DataType.EMAIL:
        if not validate_email(value):
            raise ValueError("must be a valid email address")
        return str(value).strip()
    if data_type is DataType.PHONE:
        if not validate_phone(value):
            raise ValueError("must be a valid phone number")
        return str(value).strip()
    raise ValueError(f"unsupported data type: {data_type}")
