import logging
from datetime import datetime, timezone

import pytest

from usage_insights.core.cache import TTLCache
from usage_insights.core.config import AnalyticsConfig
from usage_insights.core.service import AnalyticsService
from usage_insights.domain.exceptions import (
    DirectoryLookupError,
    StoreNotConfiguredError,
    UpstreamQueryError,
    ValidationError,
)
from usage_insights.domain.models import (
    BehavioralMetrics,
    ContextGrowthRow,
    CorrelationRow,
    DirectoryEntry,
    EfficiencyBadge,
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
from usage_insights.identity.resolver import IdentityResolver
from usage_insights.stores.memory import InMemoryDirectoryStore, InMemoryUsageStore

OBSERVED = datetime(2024, 5, 1, tzinfo=timezone.utc)


@pytest.fixture
def usage_store() -> InMemoryUsageStore:
    return InMemoryUsageStore(
        totals=UsageTotals(
            input_tokens=1000,
            output_tokens=2000,
            cache_read_tokens=500,
            cost_usd=3.5,
            request_count=129,
        ),
        usage=[
            UsageAggregate(
                tracking_id="u1",
                email="ada@example.com",
                input_tokens=1000,
                output_tokens=10000,
                cache_read_tokens=90000,
                cost_usd=2.0,
                request_count=100,
            ),
            UsageAggregate(
                tracking_id="u2",
                input_tokens=5000,
                output_tokens=100,
                cost_usd=1.0,
                request_count=9,
            ),
            UsageAggregate(
                tracking_id="u3",
                input_tokens=200,
                output_tokens=50,
                cache_read_tokens=100,
                cost_usd=0.5,
                request_count=20,
            ),
        ],
        trend=[
            TrendRow(
                date="2024-05-01", input_tokens=10, output_tokens=5, cost_usd=0.125
            )
        ],
        behavioral=[
            BehavioralMetrics(
                tracking_id="u1", retry_density=0.05, context_growth_rate=1.5
            )
        ],
        correlations=[
            CorrelationRow(tracking_id="u1", linked_id="d-1", observed_at=OBSERVED),
            CorrelationRow(tracking_id="u3", email="grace@example.com"),
        ],
        skills=[
            SkillUsage(tracking_id="u3", skill_count=5, top_skill="commit"),
            SkillUsage(
                tracking_id="u4",
                email="lin@example.com",
                skill_count=7,
                top_skill="review",
            ),
            SkillUsage(
                tracking_id="u5", skill_count=30, top_skill="rate-limit-options"
            ),
        ],
        adoption=SkillAdoptionCounts(total_users=8, skill_users=3),
        team_usage=[
            TeamUsageRow(
                team="platform",
                member_count=3,
                total_tokens=500,
                total_cost=1.234,
                request_count=30,
                cache_hit_rate=0.456,
            ),
            TeamUsageRow(team="data", member_count=2, total_tokens=900),
            TeamUsageRow(team="", member_count=1, total_tokens=10_000),
        ],
        team_skills=[TeamSkillRow(team="platform", total_users=3, skill_users=2)],
        team_sessions=[TeamSessionRow(team="platform", avg_session_length=12.34)],
        teams=["platform", "data"],
        context_growth={
            "u1": [
                ContextGrowthRow(
                    date="2024-05-01",
                    session_count="3",
                    avg_growth_rate=1.456,
                    avg_session_length=12.25,
                )
            ]
        },
        tool_usage={
            "u1": [
                ToolUsageRow(tool=f"mcp-{index:02d}", requests=index)
                for index in range(12)
            ]
        },
        session_stats={
            "u1": SessionStatsRow(
                total_sessions=14, avg_session_length=8.25, avg_growth_rate=1.336
            )
        },
        prompt_types=[
            PromptTypeCount(prompt_type="skill", count=30),
            PromptTypeCount(prompt_type="", count=50),
            PromptTypeCount(prompt_type="command", count=10),
            PromptTypeCount(prompt_type="natural", count=10),
        ],
        top_skills=[
            SkillInvocationRow(invoked_name=f"skill-{index:02d}", count=index)
            for index in range(25)
        ],
        skill_trend=[SkillTrendRow(date="2024-05-01", natural=4, skill=2)],
    )


@pytest.fixture
def directory() -> InMemoryDirectoryStore:
    return InMemoryDirectoryStore(
        [DirectoryEntry(id="d-1", email="ada@example.com", name="Ada Lovelace")]
    )


@pytest.fixture
def service(usage_store, directory) -> AnalyticsService:
    return AnalyticsService(usage_store, IdentityResolver(directory))


def test_analytics_view_orders_users_and_resolves_names(service):
    view = service.analytics_view("7d")

    assert view.period == "7d"
    assert [user.tracking_id for user in view.users] == ["u2", "u1", "u3"]
    assert [user.display_name for user in view.users] == [
        "u2",
        "Ada Lovelace",
        "grace@example.com",
    ]


def test_analytics_view_scores_and_tips(service):
    users = {user.tracking_id: user for user in service.analytics_view().users}

    assert users["u1"].efficiency_score == 90
    assert users["u1"].badge is EfficiencyBadge.EXCELLENT
    assert users["u1"].tips == ()
    assert users["u2"].tips == (
        "Keep sessions longer to benefit from prompt caching",
    )
    assert users["u2"].retry_density == 0.10
    assert users["u2"].context_growth_rate == 2.0
    assert users["u2"].avg_input_per_request == pytest.approx(5000 / 9)


def test_analytics_view_summary_and_trend(service):
    view = service.analytics_view()

    assert view.summary.total_tokens == 3500
    assert view.summary.formatted_tokens == "3.5K"
    assert view.summary.formatted_cost == "$3.50"
    assert view.summary.cache_hit_rate == 0.5
    assert view.summary.formatted_cache_hit_rate == "50%"
    assert view.trend[0].date == "2024-05-01"
    assert view.trend[0].cost == 0.13


def test_unknown_period_falls_back_to_default(service):
    assert service.analytics_view("1y").period == "7d"


def test_leaderboard_view(service):
    view = service.leaderboard_view("30d")

    assert [entry.display_name for entry in view.top_token_users] == [
        "Ada Lovelace",
        "u2",
        "grace@example.com",
    ]
    assert view.top_token_users[0].formatted_value == "101.0K"

    # u2 has only nine requests and does not qualify.
    assert [entry.display_name for entry in view.top_efficiency_users] == [
        "Ada Lovelace",
        "grace@example.com",
    ]
    assert view.top_efficiency_users[0].formatted_value == "90 pts"
    assert [entry.rank for entry in view.top_efficiency_users] == [1, 2]

    assert [entry.display_name for entry in view.top_skill_users] == [
        "lin@example.com",
        "grace@example.com",
    ]
    assert view.top_skill_users[0].top_skill == "review"
    assert view.top_skill_users[0].formatted_value == "7 invocations"
    assert view.skill_adoption.adoption_rate == 38


def test_leaderboard_respects_min_request_setting(usage_store, directory):
    service = AnalyticsService(
        usage_store,
        IdentityResolver(directory),
        config=AnalyticsConfig(min_efficiency_requests=0),
    )

    view = service.leaderboard_view()

    assert len(view.top_efficiency_users) == 3


def test_leaderboard_size_from_config(usage_store, directory):
    service = AnalyticsService(
        usage_store,
        IdentityResolver(directory),
        config=AnalyticsConfig(leaderboard_size=1),
    )

    view = service.leaderboard_view()

    assert len(view.top_token_users) == 1
    assert len(view.top_skill_users) == 1


def test_team_comparison_view(service):
    view = service.team_comparison_view()

    assert view.period == "30d"
    assert [team.team for team in view.teams] == ["data", "platform"]
    platform = view.teams[1]
    assert platform.skill_adoption_rate == 67
    assert platform.avg_session_length == 12.3
    assert platform.total_cost == 1.23
    assert platform.cache_hit_rate == 0.46
    assert view.teams[0].skill_adoption_rate == 0
    assert view.team_list == ["data", "platform"]


def test_unconfigured_store_raises_not_configured():
    service = AnalyticsService(None, IdentityResolver())

    with pytest.raises(StoreNotConfiguredError) as exc_info:
        service.leaderboard_view()

    assert exc_info.value.status_code == 501


class _BrokenTrendStore(InMemoryUsageStore):
    def fetch_usage_trend(self, days):
        raise RuntimeError("connection reset")


def test_failed_fetch_is_wrapped(caplog, directory):
    service = AnalyticsService(_BrokenTrendStore(), IdentityResolver(directory))

    with caplog.at_level(logging.ERROR):
        with pytest.raises(UpstreamQueryError) as exc_info:
            service.analytics_view()

    assert exc_info.value.context == {"query": "trend"}
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert any(
        record.getMessage() == "analytics_query_failed" for record in caplog.records
    )


class _RejectingStore(InMemoryUsageStore):
    def fetch_usage_by_user(self, days):
        raise UpstreamQueryError("Analytics store rejected the query")


def test_domain_errors_propagate_unchanged():
    service = AnalyticsService(_RejectingStore(), IdentityResolver())

    with pytest.raises(UpstreamQueryError) as exc_info:
        service.analytics_view()

    assert exc_info.value.message == "Analytics store rejected the query"


class _FailingDirectory(InMemoryDirectoryStore):
    def find_by_ids(self, ids):
        raise DirectoryLookupError("Directory unreachable")


def test_directory_failure_still_builds_leaderboard(usage_store):
    service = AnalyticsService(usage_store, IdentityResolver(_FailingDirectory()))

    view = service.leaderboard_view()

    assert view.top_token_users[0].display_name == "ada@example.com"


def test_cached_views_skip_refetch(usage_store, directory):
    service = AnalyticsService(
        usage_store,
        IdentityResolver(directory),
        config=AnalyticsConfig(cache_ttl_seconds=60),
        cache=TTLCache(),
    )

    first = service.analytics_view("7d")
    second = service.analytics_view("7d")
    service.analytics_view("30d")

    assert first is second
    assert usage_store.calls.count("usage_by_user") == 2


def test_cache_disabled_without_ttl(usage_store, directory):
    service = AnalyticsService(
        usage_store, IdentityResolver(directory), cache=TTLCache()
    )

    service.analytics_view()
    service.analytics_view()

    assert usage_store.calls.count("usage_by_user") == 2


def test_user_insights_view(service, usage_store):
    view = service.user_insights_view("u1")

    assert view.period == "30d"
    assert view.display_name == "Ada Lovelace"
    assert view.context_growth[0].session_count == 3
    assert view.context_growth[0].avg_growth_rate == 1.46
    assert view.context_growth[0].avg_session_length == 12.3
    assert len(view.tool_usage) == 10
    assert view.tool_usage[0].tool == "mcp-11"
    assert view.session_stats.total_sessions == 14
    assert view.session_stats.avg_session_length == 8.3
    assert view.session_stats.avg_growth_rate == 1.34
    assert "usage_by_user" not in usage_store.calls


def test_user_insights_for_unknown_user_are_empty(service):
    view = service.user_insights_view("nobody", "7d")

    assert view.period == "7d"
    assert view.display_name == "nobody"
    assert view.context_growth == []
    assert view.tool_usage == []
    assert view.session_stats.total_sessions == 0
    assert view.session_stats.avg_growth_rate == 0.0


@pytest.mark.parametrize("tracking_id", ["", "   ", None])
def test_user_insights_require_tracking_id(service, tracking_id):
    with pytest.raises(ValidationError) as exc_info:
        service.user_insights_view(tracking_id)

    assert exc_info.value.status_code == 400


def test_user_insights_are_cached_per_user(usage_store, directory):
    service = AnalyticsService(
        usage_store,
        IdentityResolver(directory),
        config=AnalyticsConfig(cache_ttl_seconds=60),
        cache=TTLCache(),
    )

    first = service.user_insights_view("u1")
    second = service.user_insights_view("u1")
    other = service.user_insights_view("u2")

    assert first is second
    assert other.tracking_id == "u2"
    assert usage_store.calls.count("tool_usage") == 2


class _TrendDaysStore(InMemoryUsageStore):
    def fetch_skill_trend(self, days):
        self.calls.append(f"skill_trend:{days}")
        return list(self.skill_trend)


def test_skill_analytics_view(usage_store, directory):
    store = _TrendDaysStore(
        prompt_types=usage_store.prompt_types,
        top_skills=usage_store.top_skills,
        skill_trend=usage_store.skill_trend,
        adoption=usage_store.adoption,
    )
    service = AnalyticsService(store, IdentityResolver(directory))

    view = service.skill_analytics_view()

    assert view.period == "30d"
    assert [
        (share.prompt_type, share.count, share.percentage)
        for share in view.prompt_types
    ] == [("natural", 60, 60), ("skill", 30, 30), ("command", 10, 10)]
    assert len(view.top_skills) == 20
    assert view.top_skills[0].name == "skill-24"
    assert view.usage_trend[0].natural == 4
    assert view.usage_trend[0].skill == 2
    assert view.skill_adoption.adoption_rate == 38
    assert "skill_trend:14" in store.calls


def test_skill_trend_window_follows_short_periods(directory):
    store = _TrendDaysStore()
    service = AnalyticsService(store, IdentityResolver(directory))

    view = service.skill_analytics_view("7d")

    assert view.prompt_types == []
    assert "skill_trend:7" in store.calls
