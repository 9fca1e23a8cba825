"""Reporting window labels accepted by the dashboard."""

from __future__ import annotations

from typing import Optional

PERIOD_DAYS = {
    "7d": 7,
    "30d": 30,
    "90d": 90,
}

DEFAULT_PERIOD = "7d"


def normalize_period(period: Optional[str], default: str = DEFAULT_PERIOD) -> str:
    """Return a supported label; unknown or empty labels fall back to ``default``."""

    if period is None:
        return default
    label = period.strip().lower()
    return label if label in PERIOD_DAYS else default


def period_days(period: Optional[str], default: str = DEFAULT_PERIOD) -> int:
    return PERIOD_DAYS[normalize_period(period, default)]
