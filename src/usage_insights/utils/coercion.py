"""Numeric coercion helpers for loosely typed store rows."""

from __future__ import annotations

import math
from typing import Any, Optional


def to_float(value: Any, default: float = 0.0) -> float:
    """Parse ``value`` as a finite float, falling back to ``default``.

    Stores hand back numbers as strings (64-bit integers in JSON), ``None``
    for missing joins, or occasionally garbage; none of that may leak into
    the scoring formulas.
    """

    if value is None or isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return default
        try:
            number = float(text)
        except ValueError:
            return default
    if math.isnan(number) or math.isinf(number):
        return default
    return number


def to_non_negative_float(value: Any, default: float = 0.0) -> float:
    return max(0.0, to_float(value, default))


def to_non_negative_int(value: Any) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return max(0, value)
    return int(to_non_negative_float(value))


def to_optional_str(value: Any) -> Optional[str]:
    """Collapse blank strings to ``None`` so "no email" has one spelling."""

    if value is None:
        return None
    text = str(value).strip()
    return text or None


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like a dashboard does: halves go up, not to even."""

    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor
