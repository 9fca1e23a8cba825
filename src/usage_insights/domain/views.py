"""Read models handed to the dashboard by the response assemblers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .models import EfficiencyBadge


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _View(BaseModel):
    model_config = ConfigDict(frozen=True)


class LeaderboardEntry(_View):
    """Ranked row; ``rank`` is the 1-based position after truncation."""

    rank: int = Field(..., ge=1)
    display_name: str
    value: float
    formatted_value: str


class SkillLeaderboardEntry(LeaderboardEntry):
    top_skill: str = ""


class SkillAdoption(_View):
    total_users: int = 0
    skill_users: int = 0
    adoption_rate: int = Field(default=0, ge=0, le=100)


class UsageSummary(_View):
    """Window totals shown above the per-user table."""

    total_input_tokens: int
    total_output_tokens: int
    total_cache_read_tokens: int
    total_tokens: int
    total_cost: float
    cache_hit_rate: float
    total_requests: int
    formatted_tokens: str
    formatted_cost: str
    formatted_cache_hit_rate: str


class TrendPoint(_View):
    date: str
    input_tokens: int
    output_tokens: int
    cost: float


class UserEfficiencyRow(_View):
    """One user in the analytics table: usage, scores and tips together."""

    tracking_id: str
    display_name: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cost: float
    request_count: int
    cache_hit_rate: float
    avg_input_per_request: float
    context_growth_rate: float
    retry_density: float
    work_quality: float
    context_efficiency: float
    cache_efficiency: float
    cost_efficiency: float
    efficiency_score: int
    requests_per_dollar: float
    badge: EfficiencyBadge
    tips: Tuple[str, ...] = Field(default_factory=tuple)


class AnalyticsView(_View):
    period: str
    summary: UsageSummary
    users: List[UserEfficiencyRow]
    trend: List[TrendPoint]
    updated_at: datetime = Field(default_factory=_utcnow)


class LeaderboardView(_View):
    period: str
    top_token_users: List[LeaderboardEntry]
    top_efficiency_users: List[LeaderboardEntry]
    top_skill_users: List[SkillLeaderboardEntry]
    skill_adoption: SkillAdoption
    updated_at: datetime = Field(default_factory=_utcnow)


class TeamMetrics(_View):
    team: str
    member_count: int
    total_tokens: int
    total_cost: float
    total_requests: int
    skill_adoption_rate: int
    avg_session_length: float
    cache_hit_rate: float


class TeamComparisonView(_View):
    period: str
    teams: List[TeamMetrics]
    team_list: List[str]
    updated_at: datetime = Field(default_factory=_utcnow)


class ContextGrowthPoint(_View):
    date: str
    session_count: int
    avg_growth_rate: float
    avg_session_length: float


class ToolUsage(_View):
    tool: str
    requests: int
    input_tokens: int
    output_tokens: int


class SessionStats(_View):
    total_sessions: int = 0
    avg_session_length: float = 0.0
    avg_growth_rate: float = 0.0


class UserInsightsView(_View):
    """Drill-down for one user: growth trend, busiest tools, session stats."""

    tracking_id: str
    display_name: str
    period: str
    context_growth: List[ContextGrowthPoint]
    tool_usage: List[ToolUsage]
    session_stats: SessionStats
    updated_at: datetime = Field(default_factory=_utcnow)


class PromptTypeShare(_View):
    prompt_type: str
    count: int
    percentage: int = Field(default=0, ge=0, le=100)


class SkillInvocation(_View):
    name: str
    count: int
    last_used: Optional[str] = None


class SkillTrendPoint(_View):
    date: str
    natural: int = 0
    skill: int = 0
    command: int = 0
    agent: int = 0
    mcp_tool: int = 0


class SkillAnalyticsView(_View):
    period: str
    prompt_types: List[PromptTypeShare]
    top_skills: List[SkillInvocation]
    usage_trend: List[SkillTrendPoint]
    skill_adoption: SkillAdoption
    updated_at: datetime = Field(default_factory=_utcnow)
