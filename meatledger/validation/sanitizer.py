"""
Numeric Sanitizer

Everything typed by a user (kilos, prices, payments) reaches the engine as
loosely-typed input. Before any value is written to the store it passes
through here:

- safe_number(): one value -> a finite float (0.0 when unusable)
- sanitize(): a whole document, recursively, same shape back

IMPORTANT: sanitize() only touches numeric leaves. Text, booleans, None
and dates are returned untouched, so it is safe to run on any document.
"""

import math
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any


# Integer range the store can hold (64-bit signed)
INT64_MIN = -(2 ** 63)
INT64_MAX = 2 ** 63 - 1


def safe_number(value: Any) -> float:
    """
    Coerce a value into a finite float.

    Returns 0.0 for None, booleans, non-numeric text, NaN, infinities and
    integers too large for a float.
    Numeric strings are parsed ("12,5" is not a number, "12.5" is).
    """
    if value is None or isinstance(value, bool):
        return 0.0

    if isinstance(value, (int, float, Decimal)):
        try:
            number = float(value)
        except (InvalidOperation, OverflowError, ValueError):
            return 0.0
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return 0.0
    else:
        return 0.0

    if not math.isfinite(number):
        return 0.0
    return number


def _is_invalid_number(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return not INT64_MIN <= value <= INT64_MAX
    if isinstance(value, float):
        return not math.isfinite(value)
    if isinstance(value, Decimal):
        return not value.is_finite()
    return False


def sanitize(data: Any) -> Any:
    """
    Recursively normalize a document before persistence.

    - dict: every value sanitized, keys kept
    - list/tuple: every element sanitized, returned as a list
    - NaN / infinite numbers and integers outside int64: replaced by 0
    - everything else (str, bool, None, date, valid numbers): unchanged

    sanitize(sanitize(x)) == sanitize(x) for every x.
    """
    if data is None or isinstance(data, (str, bool, date, datetime)):
        return data

    if isinstance(data, (int, float, Decimal)):
        if _is_invalid_number(data):
            if isinstance(data, Decimal):
                return Decimal(0)
            return 0 if isinstance(data, int) else 0.0
        return data

    if isinstance(data, dict):
        return {key: sanitize(value) for key, value in data.items()}

    if isinstance(data, (list, tuple)):
        return [sanitize(item) for item in data]

    return data
