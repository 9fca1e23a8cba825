"""Display formatting for dashboard values."""

from __future__ import annotations

from usage_insights.utils.coercion import round_half_up, to_float

_MAGNITUDES = (
    (1_000_000_000, "B"),
    (1_000_000, "M"),
    (1_000, "K"),
)


def format_tokens(tokens: float) -> str:
    """Compact token count: ``1.5M``, ``12.0K``, ``999``."""

    value = to_float(tokens)
    for threshold, suffix in _MAGNITUDES:
        if value >= threshold:
            return f"{value / threshold:.1f}{suffix}"
    return str(int(value))


def format_currency(amount: float) -> str:
    return f"${to_float(amount):.2f}"


def normalize_ratio(value: float) -> float:
    """Accept either a 0-1 ratio or an already scaled 0-100 percentage."""

    number = to_float(value)
    return number / 100 if number > 1 else number


def format_percent(value: float) -> str:
    percent = normalize_ratio(value) * 100
    return f"{int(round_half_up(percent))}%"


def format_score(score: float) -> str:
    return f"{int(round_half_up(to_float(score)))} pts"


def format_count(count: float, unit: str = "invocations") -> str:
    return f"{int(to_float(count))} {unit}"


def round_cents(amount: float) -> float:
    return round_half_up(to_float(amount), 2)
