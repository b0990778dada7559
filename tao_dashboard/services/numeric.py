"""Numeric coercion and decimal-string formatting for analytics inputs and outputs.

Stored balances arrive as Decimal (or strings from upstream); analytics run on
floats; every value leaving the core is a decimal string.
"""

import math
from decimal import Decimal, InvalidOperation
from typing import Any


def to_optional_float(value: Any) -> float | None:
    """Convert to finite float; return None for missing/invalid values."""
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    try:
        numeric = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric):
        return None
    return numeric


def to_float(value: Any, default: float = 0.0) -> float:
    """Convert to finite float, falling back to `default`."""
    numeric = to_optional_float(value)
    return default if numeric is None else numeric


def to_decimal(value: Any) -> Decimal | None:
    """Parse an upstream numeric (str/int/float/Decimal) into a finite Decimal."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        value = repr(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def decimal_str(value: Any) -> str:
    """Render a number as a plain decimal string (no exponent, no trailing zeros)."""
    if isinstance(value, float):
        if not math.isfinite(value):
            return "0"
        parsed = Decimal(repr(value))
    else:
        parsed = to_decimal(value)
        if parsed is None:
            return "0"
    if parsed == 0:
        return "0"
    text = format(parsed, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def fixed_str(value: float | None, places: int = 4) -> str | None:
    """Fixed-point string for ratios/percentages; None stays None."""
    if value is None or not math.isfinite(value):
        return None
    return f"{value:.{places}f}"


def finite_sum(values) -> float:
    """Sum that drops non-finite terms instead of propagating NaN."""
    return sum(v for v in values if math.isfinite(v))
