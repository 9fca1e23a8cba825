"""Domain value objects for rows delivered by the analytics stores."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from usage_insights.utils.coercion import (
    to_non_negative_float,
    to_non_negative_int,
    to_optional_str,
)

DEFAULT_RETRY_DENSITY = 0.10
DEFAULT_CONTEXT_GROWTH_RATE = 2.0


class _Row(BaseModel):
    """Immutable store row; unknown columns are ignored."""

    model_config = ConfigDict(frozen=True, extra="ignore")


class UsageAggregate(_Row):
    """Windowed token/cost totals for one tracking identifier."""

    tracking_id: str
    email: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: float = 0.0
    request_count: int = 0

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Optional[str]:
        return to_optional_str(value)

    @field_validator(
        "input_tokens", "output_tokens", "cache_read_tokens", "request_count",
        mode="before",
    )
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("cost_usd", mode="before")
    @classmethod
    def coerce_cost(cls, value: Any) -> float:
        return to_non_negative_float(value)

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens + self.cache_read_tokens

    @property
    def cache_hit_rate(self) -> float:
        """Cache reads per input token; the display-side cache ratio."""

        if self.input_tokens <= 0:
            return 0.0
        return self.cache_read_tokens / self.input_tokens


class BehavioralMetrics(_Row):
    """Session-derived signals; missing values take the neutral defaults."""

    tracking_id: str
    retry_density: float = DEFAULT_RETRY_DENSITY
    context_growth_rate: float = DEFAULT_CONTEXT_GROWTH_RATE

    @field_validator("retry_density", mode="before")
    @classmethod
    def coerce_retry_density(cls, value: Any) -> float:
        return to_non_negative_float(value, DEFAULT_RETRY_DENSITY)

    @field_validator("context_growth_rate", mode="before")
    @classmethod
    def coerce_growth_rate(cls, value: Any) -> float:
        return to_non_negative_float(value, DEFAULT_CONTEXT_GROWTH_RATE)

    @classmethod
    def defaults_for(cls, tracking_id: str) -> "BehavioralMetrics":
        return cls(tracking_id=tracking_id)


class CorrelationRow(_Row):
    """One observation linking a tracking id to an email and/or directory id.

    ``email`` is what the client reported itself; ``linked_email`` is what the
    directory-aware agent stamped on the event. The former wins when both
    are present.
    """

    tracking_id: str
    email: Optional[str] = None
    linked_id: Optional[str] = None
    linked_email: Optional[str] = None
    observed_at: Optional[datetime] = None

    @field_validator("email", "linked_id", "linked_email", mode="before")
    @classmethod
    def normalize_optional(cls, value: Any) -> Optional[str]:
        return to_optional_str(value)


class DirectoryEntry(_Row):
    """A human known to the directory store."""

    id: str
    email: Optional[str] = None
    name: Optional[str] = None

    @field_validator("email", "name", mode="before")
    @classmethod
    def normalize_optional(cls, value: Any) -> Optional[str]:
        return to_optional_str(value)


class SkillUsage(_Row):
    """Skill/command invocation count for one tracking identifier."""

    tracking_id: str
    email: Optional[str] = None
    skill_count: int = 0
    top_skill: str = ""

    @field_validator("email", mode="before")
    @classmethod
    def normalize_email(cls, value: Any) -> Optional[str]:
        return to_optional_str(value)

    @field_validator("skill_count", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("top_skill", mode="before")
    @classmethod
    def coerce_skill(cls, value: Any) -> str:
        return to_optional_str(value) or ""


class SkillAdoptionCounts(_Row):
    total_users: int = 0
    skill_users: int = 0

    @field_validator("total_users", "skill_users", mode="before")
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)


class UsageTotals(_Row):
    """Window-wide sums across every tracking identifier."""

    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: float = 0.0
    request_count: int = 0

    @field_validator(
        "input_tokens", "output_tokens", "cache_read_tokens", "request_count",
        mode="before",
    )
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("cost_usd", mode="before")
    @classmethod
    def coerce_cost(cls, value: Any) -> float:
        return to_non_negative_float(value)


class TrendRow(_Row):
    date: str
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int = 0
    cost_usd: float = 0.0

    @field_validator(
        "input_tokens", "output_tokens", "cache_read_tokens", mode="before"
    )
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("cost_usd", mode="before")
    @classmethod
    def coerce_cost(cls, value: Any) -> float:
        return to_non_negative_float(value)


class TeamUsageRow(_Row):
    team: str
    member_count: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    request_count: int = 0
    cache_hit_rate: float = 0.0

    @field_validator("member_count", "total_tokens", "request_count", mode="before")
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("total_cost", "cache_hit_rate", mode="before")
    @classmethod
    def coerce_floats(cls, value: Any) -> float:
        return to_non_negative_float(value)


class TeamSkillRow(_Row):
    team: str
    total_users: int = 0
    skill_users: int = 0

    @field_validator("total_users", "skill_users", mode="before")
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)


class TeamSessionRow(_Row):
    team: str
    avg_session_length: float = 0.0

    @field_validator("avg_session_length", mode="before")
    @classmethod
    def coerce_length(cls, value: Any) -> float:
        return to_non_negative_float(value)


class ContextGrowthRow(_Row):
    """Per-day context growth for one user's sessions."""

    date: str
    session_count: int = 0
    avg_growth_rate: float = 0.0
    avg_session_length: float = 0.0

    @field_validator("session_count", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("avg_growth_rate", "avg_session_length", mode="before")
    @classmethod
    def coerce_averages(cls, value: Any) -> float:
        return to_non_negative_float(value)


class ToolUsageRow(_Row):
    tool: str
    requests: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @field_validator("requests", "input_tokens", "output_tokens", mode="before")
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)


class SessionStatsRow(_Row):
    """Session totals for one user; an empty window averages to NaN upstream."""

    total_sessions: int = 0
    avg_session_length: float = 0.0
    avg_growth_rate: float = 0.0

    @field_validator("total_sessions", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("avg_session_length", "avg_growth_rate", mode="before")
    @classmethod
    def coerce_averages(cls, value: Any) -> float:
        return to_non_negative_float(value)


class PromptTypeCount(_Row):
    """Prompt count for one prompt type; a blank type is a natural prompt."""

    prompt_type: str = "natural"
    count: int = 0

    @field_validator("prompt_type", mode="before")
    @classmethod
    def coerce_type(cls, value: Any) -> str:
        return to_optional_str(value) or "natural"

    @field_validator("count", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> int:
        return to_non_negative_int(value)


class SkillInvocationRow(_Row):
    invoked_name: str
    count: int = 0
    last_used: Optional[str] = None

    @field_validator("count", mode="before")
    @classmethod
    def coerce_count(cls, value: Any) -> int:
        return to_non_negative_int(value)

    @field_validator("last_used", mode="before")
    @classmethod
    def normalize_last_used(cls, value: Any) -> Optional[str]:
        return to_optional_str(value)


class SkillTrendRow(_Row):
    """Daily prompt counts split by prompt type."""

    date: str
    natural: int = 0
    skill: int = 0
    command: int = 0
    agent: int = 0
    mcp_tool: int = 0

    @field_validator(
        "natural", "skill", "command", "agent", "mcp_tool", mode="before"
    )
    @classmethod
    def coerce_counts(cls, value: Any) -> int:
        return to_non_negative_int(value)


class EfficiencyInputs(_Row):
    """Everything the scorer reads, merged from usage and behavioral rows."""

    retry_density: float = DEFAULT_RETRY_DENSITY
    context_growth_rate: float = DEFAULT_CONTEXT_GROWTH_RATE
    input_tokens: float = 0
    output_tokens: float = 0
    cache_read_tokens: float = 0
    cost_usd: float = 0.0
    request_count: float = 0

    @classmethod
    def from_rows(
        cls, usage: UsageAggregate, behavior: Optional[BehavioralMetrics] = None
    ) -> "EfficiencyInputs":
        behavior = behavior or BehavioralMetrics.defaults_for(usage.tracking_id)
        return cls(
            retry_density=behavior.retry_density,
            context_growth_rate=behavior.context_growth_rate,
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cache_read_tokens=usage.cache_read_tokens,
            cost_usd=usage.cost_usd,
            request_count=usage.request_count,
        )

    @property
    def cache_hit_rate(self) -> float:
        input_tokens = to_non_negative_float(self.input_tokens)
        if input_tokens <= 0:
            return 0.0
        return to_non_negative_float(self.cache_read_tokens) / input_tokens


class EfficiencyResult(_Row):
    """Bounded sub-scores and the 0-100 composite for one identifier."""

    work_quality: float = Field(..., ge=0, le=1)
    context_efficiency: float = Field(..., ge=0, le=1)
    cache_efficiency: float = Field(..., ge=0, le=1)
    cost_efficiency: float = Field(..., ge=0, le=1)
    efficiency_score: int = Field(..., ge=0, le=100)
    requests_per_dollar: float = Field(default=0.0, ge=0)


class EfficiencyBadge(str, Enum):
    """Coarse label the dashboard colors a score with."""

    EXCELLENT = "excellent"
    GOOD = "good"
    NEEDS_IMPROVEMENT = "needs_improvement"

    @classmethod
    def for_score(cls, score: int) -> "EfficiencyBadge":
        if score >= 80:
            return cls.EXCELLENT
        if score >= 60:
            return cls.GOOD
        return cls.NEEDS_IMPROVEMENT
