"""Top-N ranking over per-identifier aggregates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import (
    Callable,
    Generic,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from usage_insights.domain.exceptions import ValidationError
from usage_insights.domain.models import SkillAdoptionCounts
from usage_insights.domain.views import LeaderboardEntry, SkillAdoption
from usage_insights.identity.resolver import UNKNOWN_DISPLAY_NAME
from usage_insights.utils.coercion import round_half_up, to_float

T = TypeVar("T")

DEFAULT_TOP_N = 10
DEFAULT_MIN_REQUESTS = 10


@dataclass(frozen=True)
class Ranked(Generic[T]):
    """An item with its 1-based position and the value it was ranked by."""

    rank: int
    item: T
    tracking_id: str
    value: float


class LeaderboardRanker:
    """Filter, sort descending, truncate, then number by position.

    Equal values are ordered by tracking id so every read model that ranks
    the same rows produces the same order.
    """

    def __init__(self, top_n: int = DEFAULT_TOP_N) -> None:
        self._top_n = _validate_top_n(top_n)

    @property
    def top_n(self) -> int:
        return self._top_n

    def rank(
        self,
        candidates: Iterable[T],
        *,
        key: Callable[[T], float],
        tracking_id: Callable[[T], str],
        qualifies: Optional[Callable[[T], bool]] = None,
        top_n: Optional[int] = None,
    ) -> List[Ranked[T]]:
        limit = self._top_n if top_n is None else _validate_top_n(top_n)
        scored: List[Tuple[float, str, T]] = [
            (to_float(key(item)), tracking_id(item) or "", item)
            for item in candidates
            if qualifies is None or qualifies(item)
        ]
        scored.sort(key=lambda entry: (-entry[0], entry[1]))
        return [
            Ranked(rank=position, item=item, tracking_id=identifier, value=value)
            for position, (value, identifier, item) in enumerate(
                scored[:limit], start=1
            )
        ]

    def entries(
        self,
        ranked: Sequence[Ranked[T]],
        names: Mapping[str, str],
        formatter: Callable[[float], str],
    ) -> List[LeaderboardEntry]:
        return [
            LeaderboardEntry(
                rank=row.rank,
                display_name=(
                    names.get(row.tracking_id)
                    or row.tracking_id
                    or UNKNOWN_DISPLAY_NAME
                ),
                value=row.value,
                formatted_value=formatter(row.value),
            )
            for row in ranked
        ]


def min_requests(threshold: int = DEFAULT_MIN_REQUESTS) -> Callable[[object], bool]:
    """Qualification predicate over anything with a ``request_count``."""

    def predicate(item: object) -> bool:
        return to_float(getattr(item, "request_count", 0)) >= threshold

    return predicate


def skill_adoption(counts: SkillAdoptionCounts) -> SkillAdoption:
    """Share of active users who invoked at least one skill, in whole percent."""

    total = counts.total_users
    # A store can count a skill user outside the active-user filter.
    skill_users = min(counts.skill_users, total)
    rate = int(round_half_up(skill_users / total * 100)) if total > 0 else 0
    return SkillAdoption(
        total_users=total, skill_users=skill_users, adoption_rate=rate
    )


def _validate_top_n(value: int) -> int:
    if value <= 0:
        raise ValidationError(
            "top_n must be greater than zero", context={"top_n": value}
        )
    return value
