"""In-memory stores for embedding the engine over rows fetched elsewhere."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Sequence

from usage_insights.domain.interfaces import IDirectoryStore, IUsageStore
from usage_insights.domain.models import (
    BehavioralMetrics,
    ContextGrowthRow,
    CorrelationRow,
    DirectoryEntry,
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


@dataclass
class InMemoryUsageStore(IUsageStore):
    """Serves pre-windowed rows; ``days`` is ignored.

    ``excluded_skills`` is honored for skill usage, but only approximately:
    rows hold one pre-aggregated count per user, so a user whose
    ``top_skill`` is excluded is dropped whole, while a SQL store would
    drop just the excluded invocations and keep the rest. Per-user rows for
    the drill-down are keyed by tracking id. ``calls`` records each fetch.
    """

    totals: UsageTotals = field(default_factory=UsageTotals)
    usage: List[UsageAggregate] = field(default_factory=list)
    trend: List[TrendRow] = field(default_factory=list)
    behavioral: List[BehavioralMetrics] = field(default_factory=list)
    correlations: List[CorrelationRow] = field(default_factory=list)
    skills: List[SkillUsage] = field(default_factory=list)
    adoption: SkillAdoptionCounts = field(default_factory=SkillAdoptionCounts)
    team_usage: List[TeamUsageRow] = field(default_factory=list)
    team_skills: List[TeamSkillRow] = field(default_factory=list)
    team_sessions: List[TeamSessionRow] = field(default_factory=list)
    teams: List[str] = field(default_factory=list)
    context_growth: Dict[str, List[ContextGrowthRow]] = field(default_factory=dict)
    tool_usage: Dict[str, List[ToolUsageRow]] = field(default_factory=dict)
    session_stats: Dict[str, SessionStatsRow] = field(default_factory=dict)
    prompt_types: List[PromptTypeCount] = field(default_factory=list)
    top_skills: List[SkillInvocationRow] = field(default_factory=list)
    skill_trend: List[SkillTrendRow] = field(default_factory=list)
    calls: List[str] = field(default_factory=list)

    def fetch_usage_totals(self, days: int) -> UsageTotals:
        self.calls.append("usage_totals")
        return self.totals

    def fetch_usage_by_user(self, days: int) -> List[UsageAggregate]:
        self.calls.append("usage_by_user")
        return list(self.usage)

    def fetch_usage_trend(self, days: int) -> List[TrendRow]:
        self.calls.append("usage_trend")
        return list(self.trend)

    def fetch_behavioral_metrics(self, days: int) -> List[BehavioralMetrics]:
        self.calls.append("behavioral_metrics")
        return list(self.behavioral)

    def fetch_correlations(self, days: int) -> List[CorrelationRow]:
        self.calls.append("correlations")
        return list(self.correlations)

    def fetch_skill_usage(
        self, days: int, excluded_skills: Sequence[str]
    ) -> List[SkillUsage]:
        self.calls.append("skill_usage")
        excluded = set(excluded_skills)
        return [row for row in self.skills if row.top_skill not in excluded]

    def fetch_skill_adoption(
        self, days: int, excluded_skills: Sequence[str]
    ) -> SkillAdoptionCounts:
        self.calls.append("skill_adoption")
        return self.adoption

    def fetch_team_usage(self, days: int) -> List[TeamUsageRow]:
        self.calls.append("team_usage")
        return list(self.team_usage)

    def fetch_team_skills(self, days: int) -> List[TeamSkillRow]:
        self.calls.append("team_skills")
        return list(self.team_skills)

    def fetch_team_sessions(self, days: int) -> List[TeamSessionRow]:
        self.calls.append("team_sessions")
        return list(self.team_sessions)

    def fetch_team_list(self) -> List[str]:
        self.calls.append("team_list")
        return sorted(self.teams)

    def fetch_context_growth(
        self, tracking_id: str, days: int
    ) -> List[ContextGrowthRow]:
        self.calls.append("context_growth")
        rows = self.context_growth.get(tracking_id, [])
        return sorted(rows, key=lambda row: row.date)

    def fetch_tool_usage(
        self, tracking_id: str, days: int, limit: int
    ) -> List[ToolUsageRow]:
        self.calls.append("tool_usage")
        rows = self.tool_usage.get(tracking_id, [])
        return sorted(rows, key=lambda row: (-row.requests, row.tool))[:limit]

    def fetch_session_stats(self, tracking_id: str, days: int) -> SessionStatsRow:
        self.calls.append("session_stats")
        return self.session_stats.get(tracking_id, SessionStatsRow())

    def fetch_prompt_type_counts(self, days: int) -> List[PromptTypeCount]:
        self.calls.append("prompt_types")
        return sorted(self.prompt_types, key=lambda row: -row.count)

    def fetch_top_skills(self, days: int, limit: int) -> List[SkillInvocationRow]:
        self.calls.append("top_skills")
        ordered = sorted(
            self.top_skills, key=lambda row: (-row.count, row.invoked_name)
        )
        return ordered[:limit]

    def fetch_skill_trend(self, days: int) -> List[SkillTrendRow]:
        self.calls.append("skill_trend")
        return sorted(self.skill_trend, key=lambda row: row.date)


class InMemoryDirectoryStore(IDirectoryStore):
    """Directory over a fixed list of entries; email matching ignores case."""

    def __init__(self, entries: Iterable[DirectoryEntry] = ()) -> None:
        self._by_id: Dict[str, DirectoryEntry] = {entry.id: entry for entry in entries}

    def add(self, entry: DirectoryEntry) -> None:
        self._by_id[entry.id] = entry

    def find_by_ids(self, ids: Iterable[str]) -> List[DirectoryEntry]:
        wanted = set(ids)
        return [entry for key, entry in sorted(self._by_id.items()) if key in wanted]

    def find_by_emails(self, emails: Iterable[str]) -> List[DirectoryEntry]:
        wanted = {email.strip().lower() for email in emails if email}
        return [
            entry
            for _, entry in sorted(self._by_id.items())
            if entry.email and entry.email.strip().lower() in wanted
        ]
