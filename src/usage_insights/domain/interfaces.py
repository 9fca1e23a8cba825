"""Domain-level interfaces defining contracts for analytics collaborators."""

from __future__ import annotations

from typing import Any, Iterable, List, Optional, Protocol, Sequence

from .models import (
    BehavioralMetrics,
    ContextGrowthRow,
    CorrelationRow,
    DirectoryEntry,
    EfficiencyInputs,
    EfficiencyResult,
    PromptTypeCount,
    SessionStatsRow,
    SkillAdoptionCounts,
    SkillInvocationRow,
    SkillTrendRow,
    SkillUsage,
    TeamSessionRow,
    TeamSkillRow,
    TeamUsageRow,
    ToolUsageRow,
    TrendRow,
    UsageAggregate,
    UsageTotals,
)


class IUsageStore(Protocol):
    """Time-series store holding per-request usage and derived behavior tables.

    Every windowed method covers the trailing ``days`` days. Implementations
    raise ``UpstreamQueryError`` when a query fails.
    """

    def fetch_usage_totals(self, days: int) -> UsageTotals:
        """Return window-wide token, cost and request sums."""

    def fetch_usage_by_user(self, days: int) -> List[UsageAggregate]:
        """Return one aggregate per tracking identifier."""

    def fetch_usage_trend(self, days: int) -> List[TrendRow]:
        """Return per-day totals ordered by date."""

    def fetch_behavioral_metrics(self, days: int) -> List[BehavioralMetrics]:
        """Return retry density / context growth rows; sparse by design."""

    def fetch_correlations(self, days: int) -> List[CorrelationRow]:
        """Return raw identity observations; may repeat a tracking id."""

    def fetch_skill_usage(
        self, days: int, excluded_skills: Sequence[str]
    ) -> List[SkillUsage]:
        """Return skill/command invocation counts per tracking identifier."""

    def fetch_skill_adoption(
        self, days: int, excluded_skills: Sequence[str]
    ) -> SkillAdoptionCounts:
        """Return distinct active users and distinct skill users."""

    def fetch_team_usage(self, days: int) -> List[TeamUsageRow]:
        """Return token/cost/cache rollups per team."""

    def fetch_team_skills(self, days: int) -> List[TeamSkillRow]:
        """Return distinct users and skill users per team."""

    def fetch_team_sessions(self, days: int) -> List[TeamSessionRow]:
        """Return average session length per team."""

    def fetch_team_list(self) -> List[str]:
        """Return every team name seen recently, sorted."""

    def fetch_context_growth(
        self, tracking_id: str, days: int
    ) -> List[ContextGrowthRow]:
        """Return one user's daily session growth, ordered by date."""

    def fetch_tool_usage(
        self, tracking_id: str, days: int, limit: int
    ) -> List[ToolUsageRow]:
        """Return one user's busiest MCP tools by request count."""

    def fetch_session_stats(self, tracking_id: str, days: int) -> SessionStatsRow:
        """Return one user's session count and averages."""

    def fetch_prompt_type_counts(self, days: int) -> List[PromptTypeCount]:
        """Return prompt counts per prompt type, largest first."""

    def fetch_top_skills(self, days: int, limit: int) -> List[SkillInvocationRow]:
        """Return the most invoked skills, commands, agents and MCP tools."""

    def fetch_skill_trend(self, days: int) -> List[SkillTrendRow]:
        """Return per-day prompt counts by prompt type, ordered by date."""


class IDirectoryStore(Protocol):
    """System of record for human identity. Raises ``DirectoryLookupError``."""

    def find_by_ids(self, ids: Iterable[str]) -> List[DirectoryEntry]:
        """Return directory entries whose id is in ``ids``."""

    def find_by_emails(self, emails: Iterable[str]) -> List[DirectoryEntry]:
        """Return directory entries whose email is in ``emails``."""


class IEfficiencyScorer(Protocol):
    """Pure reduction of usage + behavioral metrics to bounded scores."""

    def score(self, inputs: EfficiencyInputs) -> EfficiencyResult:
        """Return sub-scores in [0, 1] and a composite in [0, 100]."""


class ICache(Protocol):
    """Explicit cache owned by the orchestration layer."""

    def get(self, key: str) -> Optional[Any]:
        """Return the live value for ``key`` or ``None``."""

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store ``value`` for ``ttl`` seconds."""
