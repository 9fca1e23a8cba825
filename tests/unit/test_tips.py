import pytest

from usage_insights.domain.models import EfficiencyInputs
from usage_insights.scoring.tips import DEFAULT_RULES, ThresholdRule, TipGenerator

CACHE_STRONG = "Keep sessions longer to benefit from prompt caching"
CACHE_SOFT = "Consider extending session duration for better cache hit rates"
GROWTH_STRONG = "Use /compact regularly to manage context growth"
GROWTH_SOFT = "Consider starting new sessions after 10-30 requests"
RETRY_STRONG = "Write clearer, more specific prompts to reduce retries"
RETRY_SOFT = "Review prompt patterns that lead to retries"


def _inputs(cache_read: int, growth: float, retry: float) -> EfficiencyInputs:
    return EfficiencyInputs(
        input_tokens=100,
        cache_read_tokens=cache_read,
        context_growth_rate=growth,
        retry_density=retry,
    )


def test_healthy_metrics_produce_no_tips():
    assert TipGenerator().generate(_inputs(90, 1.5, 0.05)) == []


def test_tips_follow_category_order():
    tips = TipGenerator().generate(_inputs(50, 6.0, 0.15))

    assert tips == [CACHE_STRONG, GROWTH_STRONG, RETRY_SOFT]


@pytest.mark.parametrize(
    "cache_read, expected",
    [(85, []), (84, [CACHE_SOFT]), (60, [CACHE_SOFT]), (59, [CACHE_STRONG])],
)
def test_cache_threshold_boundaries(cache_read, expected):
    assert TipGenerator().generate(_inputs(cache_read, 1.0, 0.0)) == expected


@pytest.mark.parametrize(
    "growth, expected",
    [(2.0, []), (2.5, [GROWTH_SOFT]), (5.0, [GROWTH_SOFT]), (5.1, [GROWTH_STRONG])],
)
def test_context_growth_threshold_boundaries(growth, expected):
    assert TipGenerator().generate(_inputs(90, growth, 0.0)) == expected


@pytest.mark.parametrize(
    "retry, expected",
    [(0.10, []), (0.15, [RETRY_SOFT]), (0.20, [RETRY_SOFT]), (0.35, [RETRY_STRONG])],
)
def test_retry_threshold_boundaries(retry, expected):
    assert TipGenerator().generate(_inputs(90, 1.0, retry)) == expected


def test_no_input_tokens_counts_as_cold_cache():
    tips = TipGenerator().generate(EfficiencyInputs())

    assert tips == [CACHE_STRONG]


def test_at_most_one_tip_per_category():
    tips = TipGenerator().generate(_inputs(0, 50.0, 0.9))

    assert len(tips) == len(DEFAULT_RULES)


def test_duplicate_categories_rejected():
    with pytest.raises(ValueError):
        TipGenerator([DEFAULT_RULES[0], DEFAULT_RULES[0]])


def test_threshold_rule_validates_order():
    with pytest.raises(ValueError):
        ThresholdRule(
            category="cache",
            metric=lambda inputs: inputs.cache_hit_rate,
            good=0.5,
            warning=0.9,
            higher_is_better=True,
            strong_tip="strong",
            soft_tip="soft",
        )


def test_custom_rules_replace_defaults():
    rule = ThresholdRule(
        category="requests",
        metric=lambda inputs: inputs.request_count,
        good=10,
        warning=5,
        higher_is_better=True,
        strong_tip="Use the assistant more",
        soft_tip="Almost there",
    )

    assert TipGenerator([rule]).generate(EfficiencyInputs(request_count=7)) == [
        "Almost there"
    ]
