"""Human-readable recommendations derived from a user's metrics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Sequence

from usage_insights.domain.models import EfficiencyInputs


@dataclass(frozen=True)
class ThresholdRule:
    """Two-tier threshold over one metric.

    With ``higher_is_better`` a value below ``warning`` earns ``strong_tip``,
    a value below ``good`` earns ``soft_tip``. Otherwise the comparisons
    flip: above ``warning`` is strong, above ``good`` is soft.
    """

    category: str
    metric: Callable[[EfficiencyInputs], float]
    good: float
    warning: float
    higher_is_better: bool
    strong_tip: str
    soft_tip: str

    def __post_init__(self) -> None:
        if self.higher_is_better and self.warning > self.good:
            raise ValueError(f"{self.category}: warning must not exceed good")
        if not self.higher_is_better and self.warning < self.good:
            raise ValueError(f"{self.category}: warning must not be below good")

    def evaluate(self, inputs: EfficiencyInputs) -> str | None:
        value = self.metric(inputs)
        if self.higher_is_better:
            if value < self.warning:
                return self.strong_tip
            if value < self.good:
                return self.soft_tip
            return None
        if value > self.warning:
            return self.strong_tip
        if value > self.good:
            return self.soft_tip
        return None


# Ordered by scoring weight: cache first, retries last.
DEFAULT_RULES: Sequence[ThresholdRule] = (
    ThresholdRule(
        category="cache_hit_rate",
        metric=lambda inputs: inputs.cache_hit_rate,
        good=0.85,
        warning=0.60,
        higher_is_better=True,
        strong_tip="Keep sessions longer to benefit from prompt caching",
        soft_tip="Consider extending session duration for better cache hit rates",
    ),
    ThresholdRule(
        category="context_growth_rate",
        metric=lambda inputs: inputs.context_growth_rate,
        good=2.0,
        warning=5.0,
        higher_is_better=False,
        strong_tip="Use /compact regularly to manage context growth",
        soft_tip="Consider starting new sessions after 10-30 requests",
    ),
    ThresholdRule(
        category="retry_density",
        metric=lambda inputs: inputs.retry_density,
        good=0.10,
        warning=0.20,
        higher_is_better=False,
        strong_tip="Write clearer, more specific prompts to reduce retries",
        soft_tip="Review prompt patterns that lead to retries",
    ),
)


class TipGenerator:
    """Evaluates rules in order and emits at most one tip per category."""

    def __init__(self, rules: Sequence[ThresholdRule] = DEFAULT_RULES) -> None:
        categories = [rule.category for rule in rules]
        if len(set(categories)) != len(categories):
            raise ValueError("tip rule categories must be unique")
        self._rules = tuple(rules)

    def generate(self, inputs: EfficiencyInputs) -> List[str]:
        tips: List[str] = []
        for rule in self._rules:
            tip = rule.evaluate(inputs)
            if tip:
                tips.append(tip)
        return tips
