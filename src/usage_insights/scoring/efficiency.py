"""Composite efficiency scoring from usage and behavioral metrics."""

from __future__ import annotations

from usage_insights.domain.interfaces import IEfficiencyScorer
from usage_insights.domain.models import (
    DEFAULT_CONTEXT_GROWTH_RATE,
    DEFAULT_RETRY_DENSITY,
    EfficiencyInputs,
    EfficiencyResult,
)
from usage_insights.utils.coercion import round_half_up, to_float, to_non_negative_float

# Interactive usage is considered healthy at 50 requests per dollar.
REQUESTS_PER_DOLLAR_TARGET = 50.0
# (cache_read_tokens * 1.0 + output_tokens * 2.0) per dollar.
CACHE_WEIGHTED_TARGET = 100_000.0

IDEAL_GROWTH_LOW = 0.5
IDEAL_GROWTH_HIGH = 2.0
NEUTRAL_SCORE = 0.5

WORK_QUALITY_WEIGHT = 10
CONTEXT_WEIGHT = 20
CACHE_WEIGHT = 35
COST_WEIGHT = 35


def work_quality(retry_density: float) -> float:
    """``1 - retry_density``, floored at zero."""

    density = to_non_negative_float(retry_density, DEFAULT_RETRY_DENSITY)
    return _clamp(1.0 - density)


def context_efficiency(growth_rate: float) -> float:
    """U-shaped penalty: shrinking and runaway context both lose points.

    Below 0.5 the score ramps linearly from 0, the 0.5-2.0 band scores 1.0
    and above 2.0 it decays as ``2 / growth_rate``.
    """

    rate = to_non_negative_float(growth_rate, DEFAULT_CONTEXT_GROWTH_RATE)
    if rate < IDEAL_GROWTH_LOW:
        return _clamp(rate * 2)
    if rate <= IDEAL_GROWTH_HIGH:
        return 1.0
    return _clamp(IDEAL_GROWTH_HIGH / rate)


def cache_efficiency(cache_read_tokens: float, output_tokens: float) -> float:
    """Share of processed tokens served from the prompt cache."""

    cache_read = to_non_negative_float(cache_read_tokens)
    output = to_non_negative_float(output_tokens)
    total = cache_read + output
    if total <= 0:
        return NEUTRAL_SCORE
    return _clamp(cache_read / total)


def requests_per_dollar(request_count: float, cost_usd: float) -> float:
    cost = to_non_negative_float(cost_usd)
    if cost <= 0:
        return 0.0
    return to_non_negative_float(request_count) / cost


def cost_efficiency(
    cost_usd: float,
    request_count: float,
    cache_read_tokens: float,
    output_tokens: float,
) -> float:
    """Blend of requests per dollar (60%) and cache-weighted tokens per dollar (40%)."""

    cost = to_float(cost_usd)
    if cost <= 0:
        return NEUTRAL_SCORE
    requests_score = _clamp(
        requests_per_dollar(request_count, cost) / REQUESTS_PER_DOLLAR_TARGET
    )
    weighted_tokens = (
        to_non_negative_float(cache_read_tokens) * 1.0
        + to_non_negative_float(output_tokens) * 2.0
    )
    cache_weighted_score = _clamp(weighted_tokens / cost / CACHE_WEIGHTED_TARGET)
    return _clamp(0.6 * requests_score + 0.4 * cache_weighted_score)


class EfficiencyScorer(IEfficiencyScorer):
    """Pure scorer; safe to share across threads and requests."""

    def score(self, inputs: EfficiencyInputs) -> EfficiencyResult:
        quality = work_quality(inputs.retry_density)
        context = context_efficiency(inputs.context_growth_rate)
        cache = cache_efficiency(inputs.cache_read_tokens, inputs.output_tokens)
        cost = cost_efficiency(
            inputs.cost_usd,
            inputs.request_count,
            inputs.cache_read_tokens,
            inputs.output_tokens,
        )
        composite = (
            WORK_QUALITY_WEIGHT * quality
            + CONTEXT_WEIGHT * context
            + CACHE_WEIGHT * cache
            + COST_WEIGHT * cost
        )
        return EfficiencyResult(
            work_quality=quality,
            context_efficiency=context,
            cache_efficiency=cache,
            cost_efficiency=cost,
            efficiency_score=int(_clamp(round_half_up(composite), 0, 100)),
            requests_per_dollar=requests_per_dollar(
                inputs.request_count, inputs.cost_usd
            ),
        )


def _clamp(value: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
    return max(minimum, min(value, maximum))
