from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Any

from .conversion import parse_boolean, parse_currency

"""Named value transforms applied before validation and import.

A transform never fails the row: when it cannot handle a value the original
value passes through unchanged (and type validation reports it, if relevant).
"""

__all__ = [
    "TRANSFORMS",
    "apply_transform",
    "transform_ids",
]

logger = logging.getLogger(__name__)

_NON_DIGIT_RE = re.compile(r"\D")
_SPECIAL_RE = re.compile(r"[^A-Za-z0-9\s]")


def _phone_normalize(value: str) -> str:
    digits = _NON_DIGIT_RE.sub("", value)
    if len(digits) == 10:
        return f"({digits[:3]}) {digits[3:6]}-{digits[6:]}"
    return value


def _boolean_yes_no(value: str) -> Any:
    parsed = parse_boolean(value)
    return value if parsed is None else parsed


TRANSFORMS: dict[str, Callable[[str], Any]] = {
    "uppercase": lambda v: v.upper(),
    "lowercase": lambda v: v.lower(),
    "trim": lambda v: v.strip(),
    "numbers_only": lambda v: _NON_DIGIT_RE.sub("", v),
    "phone_normalize": _phone_normalize,
    "currency_to_number": parse_currency,
    "boolean_yes_no": _boolean_yes_no,
    "remove_special": lambda v: _SPECIAL_RE.sub("", v),
}


def transform_ids() -> frozenset[str]:
    return frozenset(TRANSFORMS)


def apply_transform(value: Any, transform: str | None) -> Any:
    """Apply the named transform to a raw string value.

    Unknown or empty transform ids, empty values and non-string values pass
    through unchanged.
    """
    if not transform or not isinstance(value, str) or value == "":
        return value
    fn = TRANSFORMS.get(transform)
    if fn is None:
        return value
    try:
        return fn(value)
    except (ValueError, ArithmeticError) as e:
        logger.debug(f"transform {transform} left value unchanged: {e}")
        return value
