"""Response assemblers that compose fetch, identity, scoring and ranking."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from usage_insights.core.config import AnalyticsConfig
from usage_insights.domain.exceptions import (
    AnalyticsError,
    StoreNotConfiguredError,
    UpstreamQueryError,
    ValidationError,
)
from usage_insights.domain.interfaces import ICache, IEfficiencyScorer, IUsageStore
from usage_insights.domain.models import (
    BehavioralMetrics,
    EfficiencyBadge,
    EfficiencyInputs,
    EfficiencyResult,
    PromptTypeCount,
    SkillUsage,
    TeamSessionRow,
    TeamSkillRow,
    TeamUsageRow,
    TrendRow,
    UsageAggregate,
    UsageTotals,
)
from usage_insights.domain.views import (
    AnalyticsView,
    ContextGrowthPoint,
    LeaderboardView,
    PromptTypeShare,
    SessionStats,
    SkillAnalyticsView,
    SkillInvocation,
    SkillLeaderboardEntry,
    SkillTrendPoint,
    TeamComparisonView,
    TeamMetrics,
    ToolUsage,
    TrendPoint,
    UsageSummary,
    UserEfficiencyRow,
    UserInsightsView,
)
from usage_insights.identity.resolver import IdentityResolver
from usage_insights.ranking.leaderboard import (
    LeaderboardRanker,
    min_requests,
    skill_adoption,
)
from usage_insights.scoring.efficiency import EfficiencyScorer
from usage_insights.scoring.tips import TipGenerator
from usage_insights.utils.coercion import round_half_up
from usage_insights.utils.formatting import (
    format_count,
    format_currency,
    format_percent,
    format_score,
    format_tokens,
    round_cents,
)
from usage_insights.utils.periods import normalize_period, period_days

ViewT = TypeVar("ViewT")

TEAM_DEFAULT_PERIOD = "30d"
DETAIL_DEFAULT_PERIOD = "30d"
TOP_TOOLS = 10
TOP_SKILLS = 20
SKILL_TREND_MAX_DAYS = 14


class AnalyticsService:
    """Builds the analytics, leaderboard, team and drill-down read models.

    Store fetches for one view run concurrently and are joined before the
    pure engine runs. Finished views may be cached; the engine itself keeps
    no state between calls.
    """

    def __init__(
        self,
        usage_store: Optional[IUsageStore],
        resolver: IdentityResolver,
        *,
        config: Optional[AnalyticsConfig] = None,
        scorer: Optional[IEfficiencyScorer] = None,
        tip_generator: Optional[TipGenerator] = None,
        ranker: Optional[LeaderboardRanker] = None,
        cache: Optional[ICache] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._store = usage_store
        self._resolver = resolver
        self._config = config or AnalyticsConfig()
        self._scorer = scorer or EfficiencyScorer()
        self._tips = tip_generator or TipGenerator()
        self._ranker = ranker or LeaderboardRanker(self._config.leaderboard_size)
        self._cache = cache
        self._logger = logger or logging.getLogger(__name__)

    # ------------------------------------------------------------------
    # Read models
    # ------------------------------------------------------------------
    def analytics_view(self, period: Optional[str] = None) -> AnalyticsView:
        label = normalize_period(period)
        return self._cached("analytics", label, lambda: self._build_analytics(label))

    def leaderboard_view(self, period: Optional[str] = None) -> LeaderboardView:
        label = normalize_period(period)
        return self._cached(
            "leaderboard", label, lambda: self._build_leaderboard(label)
        )

    def team_comparison_view(
        self, period: Optional[str] = None
    ) -> TeamComparisonView:
        label = normalize_period(period, TEAM_DEFAULT_PERIOD)
        return self._cached("teams", label, lambda: self._build_teams(label))

    def user_insights_view(
        self, tracking_id: str, period: Optional[str] = None
    ) -> UserInsightsView:
        tracking_id = (tracking_id or "").strip()
        if not tracking_id:
            raise ValidationError("tracking_id must be provided")
        label = normalize_period(period, DETAIL_DEFAULT_PERIOD)
        return self._cached(
            f"user:{tracking_id}",
            label,
            lambda: self._build_user_insights(tracking_id, label),
        )

    def skill_analytics_view(
        self, period: Optional[str] = None
    ) -> SkillAnalyticsView:
        label = normalize_period(period, DETAIL_DEFAULT_PERIOD)
        return self._cached(
            "skills", label, lambda: self._build_skill_analytics(label)
        )

    # ------------------------------------------------------------------
    # Builders
    # ------------------------------------------------------------------
    def _build_analytics(self, period: str) -> AnalyticsView:
        store = self._require_store()
        days = period_days(period)
        fetched = self._fan_out(
            {
                "totals": lambda: store.fetch_usage_totals(days),
                "usage": lambda: store.fetch_usage_by_user(days),
                "trend": lambda: store.fetch_usage_trend(days),
                "behavioral": lambda: store.fetch_behavioral_metrics(days),
                "correlations": lambda: store.fetch_correlations(days),
            }
        )
        usage: List[UsageAggregate] = fetched["usage"]
        names = self._resolver.resolve(
            [row.tracking_id for row in usage],
            fetched["correlations"],
            {row.tracking_id: row.email for row in usage},
        )
        behavior = _index_behavior(fetched["behavioral"])
        ordered = sorted(usage, key=lambda row: (-row.input_tokens, row.tracking_id))
        users = [
            self._user_row(row, behavior.get(row.tracking_id), names)
            for row in ordered
        ]
        view = AnalyticsView(
            period=period,
            summary=_summarize(fetched["totals"]),
            users=users,
            trend=[_trend_point(row) for row in fetched["trend"]],
        )
        self._logger.info(
            "analytics_view_built",
            extra={"view": "analytics", "period": period, "users": len(users)},
        )
        return view

    def _build_leaderboard(self, period: str) -> LeaderboardView:
        store = self._require_store()
        days = period_days(period)
        excluded = list(self._config.excluded_skills)
        fetched = self._fan_out(
            {
                "usage": lambda: store.fetch_usage_by_user(days),
                "behavioral": lambda: store.fetch_behavioral_metrics(days),
                "correlations": lambda: store.fetch_correlations(days),
                "skills": lambda: store.fetch_skill_usage(days, excluded),
                "adoption": lambda: store.fetch_skill_adoption(days, excluded),
            }
        )
        usage: List[UsageAggregate] = fetched["usage"]
        skills: List[SkillUsage] = fetched["skills"]
        behavior = _index_behavior(fetched["behavioral"])

        top_tokens = self._ranker.rank(
            usage,
            key=lambda row: row.total_tokens,
            tracking_id=lambda row: row.tracking_id,
        )
        scored: List[Tuple[UsageAggregate, EfficiencyResult]] = [
            (
                row,
                self._scorer.score(
                    EfficiencyInputs.from_rows(row, behavior.get(row.tracking_id))
                ),
            )
            for row in usage
        ]
        qualifies = min_requests(self._config.min_efficiency_requests)
        top_efficiency = self._ranker.rank(
            scored,
            key=lambda pair: pair[1].efficiency_score,
            tracking_id=lambda pair: pair[0].tracking_id,
            qualifies=lambda pair: qualifies(pair[0]),
        )
        top_skills = self._ranker.rank(
            skills,
            key=lambda row: row.skill_count,
            tracking_id=lambda row: row.tracking_id,
        )

        row_emails: Dict[str, Optional[str]] = {}
        for row in [*usage, *skills]:
            if row.email and not row_emails.get(row.tracking_id):
                row_emails[row.tracking_id] = row.email
        ranked_ids = [
            ranked.tracking_id
            for ranked in [*top_tokens, *top_efficiency, *top_skills]
        ]
        names = self._resolver.resolve(ranked_ids, fetched["correlations"], row_emails)

        skill_entries = [
            SkillLeaderboardEntry(
                **entry.model_dump(), top_skill=ranked.item.top_skill
            )
            for entry, ranked in zip(
                self._ranker.entries(top_skills, names, format_count), top_skills
            )
        ]
        view = LeaderboardView(
            period=period,
            top_token_users=self._ranker.entries(top_tokens, names, format_tokens),
            top_efficiency_users=self._ranker.entries(
                top_efficiency, names, format_score
            ),
            top_skill_users=skill_entries,
            skill_adoption=skill_adoption(fetched["adoption"]),
        )
        self._logger.info(
            "analytics_view_built",
            extra={
                "view": "leaderboard",
                "period": period,
                "candidates": len(usage),
                "qualified": sum(1 for row in usage if qualifies(row)),
            },
        )
        return view

    def _build_teams(self, period: str) -> TeamComparisonView:
        store = self._require_store()
        days = period_days(period, TEAM_DEFAULT_PERIOD)
        fetched = self._fan_out(
            {
                "usage": lambda: store.fetch_team_usage(days),
                "skills": lambda: store.fetch_team_skills(days),
                "sessions": lambda: store.fetch_team_sessions(days),
                "teams": lambda: store.fetch_team_list(),
            }
        )
        teams = _combine_teams(
            fetched["usage"], fetched["skills"], fetched["sessions"]
        )
        self._logger.info(
            "analytics_view_built",
            extra={"view": "teams", "period": period, "teams": len(teams)},
        )
        return TeamComparisonView(
            period=period, teams=teams, team_list=list(fetched["teams"])
        )

    def _build_user_insights(self, tracking_id: str, period: str) -> UserInsightsView:
        store = self._require_store()
        days = period_days(period, DETAIL_DEFAULT_PERIOD)
        fetched = self._fan_out(
            {
                "context_growth": lambda: store.fetch_context_growth(
                    tracking_id, days
                ),
                "tool_usage": lambda: store.fetch_tool_usage(
                    tracking_id, days, TOP_TOOLS
                ),
                "session_stats": lambda: store.fetch_session_stats(tracking_id, days),
                "correlations": lambda: store.fetch_correlations(days),
            }
        )
        names = self._resolver.resolve([tracking_id], fetched["correlations"])
        stats = fetched["session_stats"]
        view = UserInsightsView(
            tracking_id=tracking_id,
            display_name=names[tracking_id],
            period=period,
            context_growth=[
                ContextGrowthPoint(
                    date=row.date,
                    session_count=row.session_count,
                    avg_growth_rate=round_half_up(row.avg_growth_rate, 2),
                    avg_session_length=round_half_up(row.avg_session_length, 1),
                )
                for row in fetched["context_growth"]
            ],
            tool_usage=[
                ToolUsage(
                    tool=row.tool,
                    requests=row.requests,
                    input_tokens=row.input_tokens,
                    output_tokens=row.output_tokens,
                )
                for row in fetched["tool_usage"][:TOP_TOOLS]
            ],
            session_stats=SessionStats(
                total_sessions=stats.total_sessions,
                avg_session_length=round_half_up(stats.avg_session_length, 1),
                avg_growth_rate=round_half_up(stats.avg_growth_rate, 2),
            ),
        )
        self._logger.info(
            "analytics_view_built",
            extra={
                "view": "user_insights",
                "period": period,
                "days": len(view.context_growth),
                "tools": len(view.tool_usage),
            },
        )
        return view

    def _build_skill_analytics(self, period: str) -> SkillAnalyticsView:
        store = self._require_store()
        days = period_days(period, DETAIL_DEFAULT_PERIOD)
        trend_days = min(days, SKILL_TREND_MAX_DAYS)
        excluded = list(self._config.excluded_skills)
        fetched = self._fan_out(
            {
                "prompt_types": lambda: store.fetch_prompt_type_counts(days),
                "top_skills": lambda: store.fetch_top_skills(days, TOP_SKILLS),
                "trend": lambda: store.fetch_skill_trend(trend_days),
                "adoption": lambda: store.fetch_skill_adoption(days, excluded),
            }
        )
        view = SkillAnalyticsView(
            period=period,
            prompt_types=_prompt_type_shares(fetched["prompt_types"]),
            top_skills=[
                SkillInvocation(
                    name=row.invoked_name, count=row.count, last_used=row.last_used
                )
                for row in fetched["top_skills"][:TOP_SKILLS]
            ],
            usage_trend=[
                SkillTrendPoint(
                    date=row.date,
                    natural=row.natural,
                    skill=row.skill,
                    command=row.command,
                    agent=row.agent,
                    mcp_tool=row.mcp_tool,
                )
                for row in fetched["trend"]
            ],
            skill_adoption=skill_adoption(fetched["adoption"]),
        )
        self._logger.info(
            "analytics_view_built",
            extra={
                "view": "skills",
                "period": period,
                "skills": len(view.top_skills),
            },
        )
        return view

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _user_row(
        self,
        usage: UsageAggregate,
        behavior: Optional[BehavioralMetrics],
        names: Mapping[str, str],
    ) -> UserEfficiencyRow:
        inputs = EfficiencyInputs.from_rows(usage, behavior)
        result = self._scorer.score(inputs)
        avg_input = 0.0
        if usage.request_count > 0:
            avg_input = usage.input_tokens / usage.request_count
        return UserEfficiencyRow(
            tracking_id=usage.tracking_id,
            display_name=names[usage.tracking_id],
            input_tokens=usage.input_tokens,
            output_tokens=usage.output_tokens,
            cache_read_tokens=usage.cache_read_tokens,
            cost=round_cents(usage.cost_usd),
            request_count=usage.request_count,
            cache_hit_rate=round_half_up(inputs.cache_hit_rate, 2),
            avg_input_per_request=avg_input,
            context_growth_rate=inputs.context_growth_rate,
            retry_density=inputs.retry_density,
            work_quality=result.work_quality,
            context_efficiency=result.context_efficiency,
            cache_efficiency=result.cache_efficiency,
            cost_efficiency=result.cost_efficiency,
            efficiency_score=result.efficiency_score,
            requests_per_dollar=result.requests_per_dollar,
            badge=EfficiencyBadge.for_score(result.efficiency_score),
            tips=tuple(self._tips.generate(inputs)),
        )

    def _require_store(self) -> IUsageStore:
        if self._store is None:
            raise StoreNotConfiguredError(
                "Usage store connection is not configured; set CLICKHOUSE_URL"
            )
        return self._store

    def _cached(self, view: str, period: str, build: Callable[[], ViewT]) -> ViewT:
        ttl = self._config.cache_ttl_seconds
        if self._cache is None or ttl <= 0:
            return build()
        key = f"{view}:{period}"
        hit = self._cache.get(key)
        if hit is not None:
            return hit
        value = build()
        self._cache.set(key, value, ttl)
        return value

    def _fan_out(self, tasks: Mapping[str, Callable[[], Any]]) -> Dict[str, Any]:
        workers = max(1, min(self._config.max_workers, len(tasks)))
        results: Dict[str, Any] = {}
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = {name: executor.submit(task) for name, task in tasks.items()}
            for name, future in futures.items():
                try:
                    results[name] = future.result()
                except AnalyticsError:
                    self._logger.error("analytics_query_failed", extra={"query": name})
                    raise
                except Exception as exc:
                    self._logger.error(
                        "analytics_query_failed", extra={"query": name}, exc_info=exc
                    )
                    raise UpstreamQueryError(
                        "Analytics query failed", context={"query": name}
                    ) from exc
        return results


def _index_behavior(rows: Sequence[BehavioralMetrics]) -> Dict[str, BehavioralMetrics]:
    return {row.tracking_id: row for row in rows if row.tracking_id}


def _summarize(totals: UsageTotals) -> UsageSummary:
    total_tokens = totals.input_tokens + totals.output_tokens + totals.cache_read_tokens
    cache_hit_rate = 0.0
    if totals.input_tokens > 0:
        cache_hit_rate = totals.cache_read_tokens / totals.input_tokens
    return UsageSummary(
        total_input_tokens=totals.input_tokens,
        total_output_tokens=totals.output_tokens,
        total_cache_read_tokens=totals.cache_read_tokens,
        total_tokens=total_tokens,
        total_cost=round_cents(totals.cost_usd),
        cache_hit_rate=round_half_up(cache_hit_rate, 2),
        total_requests=totals.request_count,
        formatted_tokens=format_tokens(total_tokens),
        formatted_cost=format_currency(totals.cost_usd),
        formatted_cache_hit_rate=format_percent(cache_hit_rate),
    )


def _trend_point(row: TrendRow) -> TrendPoint:
    return TrendPoint(
        date=row.date,
        input_tokens=row.input_tokens,
        output_tokens=row.output_tokens,
        cost=round_cents(row.cost_usd),
    )


def _prompt_type_shares(rows: Sequence[PromptTypeCount]) -> List[PromptTypeShare]:
    """Merge counts per type and attach each type's whole-percent share."""

    counts: Dict[str, int] = {}
    for row in rows:
        counts[row.prompt_type] = counts.get(row.prompt_type, 0) + row.count
    total = sum(counts.values())
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [
        PromptTypeShare(
            prompt_type=prompt_type,
            count=count,
            percentage=int(round_half_up(count / total * 100)) if total > 0 else 0,
        )
        for prompt_type, count in ordered
    ]


def _combine_teams(
    usage: Sequence[TeamUsageRow],
    skills: Sequence[TeamSkillRow],
    sessions: Sequence[TeamSessionRow],
) -> List[TeamMetrics]:
    skills_by_team = {row.team: row for row in skills}
    sessions_by_team = {row.team: row.avg_session_length for row in sessions}
    teams: List[TeamMetrics] = []
    for row in usage:
        if not row.team:
            continue
        skill_row = skills_by_team.get(row.team)
        adoption = 0
        if skill_row is not None and skill_row.total_users > 0:
            skill_users = min(skill_row.skill_users, skill_row.total_users)
            adoption = int(
                round_half_up(skill_users / skill_row.total_users * 100)
            )
        teams.append(
            TeamMetrics(
                team=row.team,
                member_count=row.member_count,
                total_tokens=row.total_tokens,
                total_cost=round_cents(row.total_cost),
                total_requests=row.request_count,
                skill_adoption_rate=adoption,
                avg_session_length=round_half_up(
                    sessions_by_team.get(row.team, 0.0), 1
                ),
                cache_hit_rate=round_half_up(row.cache_hit_rate, 2),
            )
        )
    teams.sort(key=lambda team: (-team.total_tokens, team.team))
    return teams
