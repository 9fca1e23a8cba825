import math

import pytest

from usage_insights.utils.coercion import (
    round_half_up,
    to_float,
    to_non_negative_int,
    to_optional_str,
)
from usage_insights.utils.formatting import (
    format_count,
    format_currency,
    format_percent,
    format_score,
    format_tokens,
    normalize_ratio,
    round_cents,
)
from usage_insights.utils.periods import normalize_period, period_days


@pytest.mark.parametrize(
    "tokens, expected",
    [
        (0, "0"),
        (999, "999"),
        (1_000, "1.0K"),
        (12_345, "12.3K"),
        (1_500_000, "1.5M"),
        (2_500_000_000, "2.5B"),
    ],
)
def test_format_tokens(tokens, expected):
    assert format_tokens(tokens) == expected


def test_format_currency():
    assert format_currency(3.456) == "$3.46"
    assert format_currency(None) == "$0.00"


@pytest.mark.parametrize(
    "value, expected",
    [(0.456, "46%"), (45.6, "46%"), (1, "100%"), (0.0, "0%"), (0.125, "13%")],
)
def test_format_percent_accepts_ratio_or_percentage(value, expected):
    assert format_percent(value) == expected


def test_normalize_ratio():
    assert normalize_ratio(0.5) == 0.5
    assert normalize_ratio(50) == 0.5


def test_format_score_and_count():
    assert format_score(89.5) == "90 pts"
    assert format_count(7) == "7 invocations"
    assert format_count(2, unit="skills") == "2 skills"


def test_round_half_up():
    assert round_half_up(2.5) == 3
    assert round_half_up(0.5) == 1
    assert round_cents(0.125) == 0.13


def test_to_float_rejects_garbage():
    assert to_float("1.5") == 1.5
    assert to_float(" ") == 0.0
    assert to_float("abc", 7.0) == 7.0
    assert to_float(None, 2.0) == 2.0
    assert to_float(True) == 0.0
    assert to_float(math.nan, 0.1) == 0.1
    assert to_float(math.inf) == 0.0


def test_to_non_negative_int():
    assert to_non_negative_int("123") == 123
    assert to_non_negative_int("12.7") == 12
    assert to_non_negative_int(-4) == 0
    assert to_non_negative_int(None) == 0


def test_to_optional_str():
    assert to_optional_str("  ") is None
    assert to_optional_str(" ada@example.com ") == "ada@example.com"
    assert to_optional_str(None) is None


def test_normalize_period():
    assert normalize_period(None) == "7d"
    assert normalize_period(" 30D ") == "30d"
    assert normalize_period("1y") == "7d"
    assert normalize_period("", default="30d") == "30d"


def test_period_days():
    assert period_days("7d") == 7
    assert period_days("90d") == 90
    assert period_days("bogus", default="30d") == 30
