"""Usage store backed by ClickHouse's HTTP interface."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Type, TypeVar

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from usage_insights.domain.exceptions import UpstreamQueryError
from usage_insights.domain.interfaces import IUsageStore
from usage_insights.domain.models import (
    BehavioralMetrics,
    ContextGrowthRow,
    CorrelationRow,
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

RowT = TypeVar("RowT", bound=BaseModel)

_USAGE_TOTALS_SQL = """
SELECT
    sum(input_tokens) AS input_tokens,
    sum(output_tokens) AS output_tokens,
    sum(cache_read_tokens) AS cache_read_tokens,
    sum(cost_usd) AS cost_usd,
    sum(request_count) AS request_count
FROM token_usage_hourly
WHERE hour >= now() - INTERVAL {days:UInt32} DAY
"""

_USAGE_BY_USER_SQL = """
SELECT
    user_id AS tracking_id,
    argMax(user_email, hour) AS email,
    sum(input_tokens) AS input_tokens,
    sum(output_tokens) AS output_tokens,
    sum(cache_read_tokens) AS cache_read_tokens,
    sum(cost_usd) AS cost_usd,
    sum(request_count) AS request_count
FROM token_usage_hourly
WHERE hour >= now() - INTERVAL {days:UInt32} DAY
  AND user_id != ''
GROUP BY user_id
ORDER BY input_tokens DESC
"""

_USAGE_TREND_SQL = """
SELECT
    formatDateTime(toDate(hour), '%Y-%m-%d') AS date,
    sum(input_tokens) AS input_tokens,
    sum(output_tokens) AS output_tokens,
    sum(cache_read_tokens) AS cache_read_tokens,
    sum(cost_usd) AS cost_usd
FROM token_usage_hourly
WHERE hour >= now() - INTERVAL {days:UInt32} DAY
GROUP BY date
ORDER BY date
"""

# join_use_nulls keeps a missing side NULL so defaults apply downstream.
_BEHAVIORAL_SQL = """
SELECT
    coalesce(r.user_id, c.user_id) AS tracking_id,
    r.avg_retry_density AS retry_density,
    c.avg_growth_rate AS context_growth_rate
FROM (
    SELECT user_id, avg(retry_density) AS avg_retry_density
    FROM retry_analysis
    WHERE date >= today() - {days:UInt32} AND user_id != ''
    GROUP BY user_id
) r
FULL OUTER JOIN (
    SELECT user_id, avg(growth_rate) AS avg_growth_rate
    FROM context_growth_analysis
    WHERE date >= today() - {days:UInt32} AND user_id != ''
    GROUP BY user_id
) c ON r.user_id = c.user_id
"""

_CORRELATION_SQL = """
SELECT
    LogAttributes['user.id'] AS tracking_id,
    LogAttributes['user.email'] AS email,
    ResourceAttributes[{linked_id_key:String}] AS linked_id,
    ResourceAttributes[{linked_email_key:String}] AS linked_email,
    toUnixTimestamp(max(Timestamp)) AS observed_at
FROM claude_code_logs
WHERE Timestamp >= now() - INTERVAL {days:UInt32} DAY
  AND LogAttributes['user.id'] != ''
GROUP BY tracking_id, email, linked_id, linked_email
"""

_SKILL_USAGE_SQL = """
SELECT
    user_id AS tracking_id,
    argMax(user_email, timestamp) AS email,
    count() AS skill_count,
    topK(1)(invoked_name)[1] AS top_skill
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
  AND user_id != ''
  AND prompt_type IN ('skill', 'command')
  AND invoked_name != ''
  AND NOT has({excluded:Array(String)}, invoked_name)
GROUP BY user_id
"""

_SKILL_ADOPTION_SQL = """
SELECT
    uniqExact(user_id) AS total_users,
    uniqExactIf(
        user_id,
        prompt_type IN ('skill', 'command')
        AND NOT has({excluded:Array(String)}, invoked_name)
    ) AS skill_users
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
  AND user_id != ''
"""

_TEAM_USAGE_SQL = """
SELECT
    p.team AS team,
    uniqExact(t.user_id) AS member_count,
    sum(t.input_tokens + t.output_tokens + t.cache_read_tokens) AS total_tokens,
    sum(t.cost_usd) AS total_cost,
    sum(t.request_count) AS request_count,
    sum(t.cache_read_tokens) / nullIf(sum(t.input_tokens + t.cache_read_tokens), 0)
        AS cache_hit_rate
FROM token_usage_hourly t
INNER JOIN (
    SELECT user_id, argMax(team, timestamp) AS team
    FROM ai_prompts
    WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
      AND team != '' AND user_id != ''
    GROUP BY user_id
) p ON t.user_id = p.user_id
WHERE t.hour >= now() - INTERVAL {days:UInt32} DAY
GROUP BY p.team
ORDER BY total_tokens DESC
"""

_TEAM_SKILLS_SQL = """
SELECT
    team,
    uniqExact(user_id) AS total_users,
    uniqExactIf(user_id, prompt_type IN ('skill', 'command')) AS skill_users
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
  AND team != '' AND user_id != ''
GROUP BY team
"""

_TEAM_SESSIONS_SQL = """
SELECT team, avg(session_length) AS avg_session_length
FROM (
    SELECT team, session_id, count() AS session_length
    FROM ai_prompts
    WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
      AND team != '' AND session_id != ''
    GROUP BY team, session_id
)
GROUP BY team
"""

_TEAM_LIST_SQL = """
SELECT DISTINCT team
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL 90 DAY AND team != ''
ORDER BY team
"""

_CONTEXT_GROWTH_SQL = """
SELECT
    formatDateTime(toDate(date), '%Y-%m-%d') AS date,
    count() AS session_count,
    avg(growth_rate) AS avg_growth_rate,
    avg(session_length) AS avg_session_length
FROM context_growth_analysis
WHERE user_id = {tracking_id:String}
  AND date >= today() - {days:UInt32}
GROUP BY date
ORDER BY date
"""

_TOOL_USAGE_SQL = """
SELECT
    mcp_server AS tool,
    sum(request_count) AS requests,
    sum(input_tokens) AS input_tokens,
    sum(output_tokens) AS output_tokens
FROM token_usage_hourly
WHERE user_id = {tracking_id:String}
  AND hour >= toStartOfHour(now() - INTERVAL {days:UInt32} DAY)
  AND mcp_server != ''
GROUP BY mcp_server
ORDER BY requests DESC, tool
LIMIT {limit:UInt32}
"""

_SESSION_STATS_SQL = """
SELECT
    count() AS total_sessions,
    avg(session_length) AS avg_session_length,
    avg(growth_rate) AS avg_growth_rate
FROM context_growth_analysis
WHERE user_id = {tracking_id:String}
  AND date >= today() - {days:UInt32}
"""

_PROMPT_TYPES_SQL = """
SELECT prompt_type, count() AS count
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
GROUP BY prompt_type
ORDER BY count DESC
"""

_TOP_SKILLS_SQL = """
SELECT
    invoked_name,
    count() AS count,
    toString(max(timestamp)) AS last_used
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
  AND prompt_type IN ('skill', 'command', 'agent', 'mcp_tool')
  AND invoked_name != ''
GROUP BY invoked_name
ORDER BY count DESC, invoked_name
LIMIT {limit:UInt32}
"""

_SKILL_TREND_SQL = """
SELECT
    formatDateTime(toDate(timestamp), '%Y-%m-%d') AS date,
    countIf(prompt_type IN ('natural', '')) AS natural,
    countIf(prompt_type = 'skill') AS skill,
    countIf(prompt_type = 'command') AS command,
    countIf(prompt_type = 'agent') AS agent,
    countIf(prompt_type = 'mcp_tool') AS mcp_tool
FROM ai_prompts
WHERE timestamp >= now() - INTERVAL {days:UInt32} DAY
GROUP BY date
ORDER BY date
"""


class ClickHouseUsageStore(IUsageStore):
    """Runs parameterized queries and maps ``JSONEachRow`` output to typed rows."""

    LINKED_ID_ATTRIBUTE = "zeude.user.id"
    LINKED_EMAIL_ATTRIBUTE = "zeude.user.email"

    def __init__(
        self,
        http_client: httpx.Client,
        url: str,
        *,
        user: str = "default",
        password: str = "",
        database: str = "default",
        timeout: float = 30.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if not url:
            raise ValueError("url must be provided")
        self._http = http_client
        self._url = url.rstrip("/") + "/"
        self._database = database
        self._timeout = timeout
        self._headers = {
            "X-ClickHouse-User": user,
            "X-ClickHouse-Key": password,
        }
        self._logger = logger or logging.getLogger(__name__)

    def fetch_usage_totals(self, days: int) -> UsageTotals:
        rows = self._fetch(_USAGE_TOTALS_SQL, UsageTotals, {"days": days})
        return rows[0] if rows else UsageTotals()

    def fetch_usage_by_user(self, days: int) -> List[UsageAggregate]:
        return self._fetch(_USAGE_BY_USER_SQL, UsageAggregate, {"days": days})

    def fetch_usage_trend(self, days: int) -> List[TrendRow]:
        return self._fetch(_USAGE_TREND_SQL, TrendRow, {"days": days})

    def fetch_behavioral_metrics(self, days: int) -> List[BehavioralMetrics]:
        return self._fetch(
            _BEHAVIORAL_SQL,
            BehavioralMetrics,
            {"days": days},
            settings={"join_use_nulls": 1},
        )

    def fetch_correlations(self, days: int) -> List[CorrelationRow]:
        return self._fetch(
            _CORRELATION_SQL,
            CorrelationRow,
            {
                "days": days,
                "linked_id_key": self.LINKED_ID_ATTRIBUTE,
                "linked_email_key": self.LINKED_EMAIL_ATTRIBUTE,
            },
        )

    def fetch_skill_usage(
        self, days: int, excluded_skills: Sequence[str]
    ) -> List[SkillUsage]:
        return self._fetch(
            _SKILL_USAGE_SQL,
            SkillUsage,
            {"days": days, "excluded": list(excluded_skills)},
        )

    def fetch_skill_adoption(
        self, days: int, excluded_skills: Sequence[str]
    ) -> SkillAdoptionCounts:
        rows = self._fetch(
            _SKILL_ADOPTION_SQL,
            SkillAdoptionCounts,
            {"days": days, "excluded": list(excluded_skills)},
        )
        return rows[0] if rows else SkillAdoptionCounts()

    def fetch_team_usage(self, days: int) -> List[TeamUsageRow]:
        return self._fetch(_TEAM_USAGE_SQL, TeamUsageRow, {"days": days})

    def fetch_team_skills(self, days: int) -> List[TeamSkillRow]:
        return self._fetch(_TEAM_SKILLS_SQL, TeamSkillRow, {"days": days})

    def fetch_team_sessions(self, days: int) -> List[TeamSessionRow]:
        return self._fetch(_TEAM_SESSIONS_SQL, TeamSessionRow, {"days": days})

    def fetch_team_list(self) -> List[str]:
        rows = self.query(_TEAM_LIST_SQL)
        return [str(row["team"]) for row in rows if row.get("team")]

    def fetch_context_growth(
        self, tracking_id: str, days: int
    ) -> List[ContextGrowthRow]:
        return self._fetch(
            _CONTEXT_GROWTH_SQL,
            ContextGrowthRow,
            {"tracking_id": tracking_id, "days": days},
        )

    def fetch_tool_usage(
        self, tracking_id: str, days: int, limit: int
    ) -> List[ToolUsageRow]:
        return self._fetch(
            _TOOL_USAGE_SQL,
            ToolUsageRow,
            {"tracking_id": tracking_id, "days": days, "limit": limit},
        )

    def fetch_session_stats(self, tracking_id: str, days: int) -> SessionStatsRow:
        rows = self._fetch(
            _SESSION_STATS_SQL,
            SessionStatsRow,
            {"tracking_id": tracking_id, "days": days},
        )
        return rows[0] if rows else SessionStatsRow()

    def fetch_prompt_type_counts(self, days: int) -> List[PromptTypeCount]:
        return self._fetch(_PROMPT_TYPES_SQL, PromptTypeCount, {"days": days})

    def fetch_top_skills(self, days: int, limit: int) -> List[SkillInvocationRow]:
        return self._fetch(
            _TOP_SKILLS_SQL, SkillInvocationRow, {"days": days, "limit": limit}
        )

    def fetch_skill_trend(self, days: int) -> List[SkillTrendRow]:
        return self._fetch(_SKILL_TREND_SQL, SkillTrendRow, {"days": days})

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        *,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        """Execute ``sql`` and return decoded ``JSONEachRow`` objects."""

        query_params: Dict[str, Any] = {"database": self._database}
        for name, value in (params or {}).items():
            query_params[f"param_{name}"] = _encode_param(value)
        query_params.update(settings or {})
        body = f"{sql.strip()}\nFORMAT JSONEachRow"
        try:
            response = self._http.post(
                self._url,
                params=query_params,
                content=body.encode("utf-8"),
                headers=self._headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            self._logger.error("analytics_query_failed", exc_info=exc)
            raise UpstreamQueryError(
                "Failed to reach the analytics store",
                context={"error": exc.__class__.__name__},
            ) from exc

        if response.status_code >= 400:
            self._logger.error(
                "analytics_query_failed",
                extra={"status": response.status_code, "body": response.text[:200]},
            )
            raise UpstreamQueryError(
                "Analytics store rejected the query",
                context={"status": response.status_code},
            )
        return self._decode(response.text)

    def _fetch(
        self,
        sql: str,
        row_type: Type[RowT],
        params: Mapping[str, Any],
        *,
        settings: Optional[Mapping[str, Any]] = None,
    ) -> List[RowT]:
        rows = self.query(sql, params, settings=settings)
        try:
            return [row_type.model_validate(row) for row in rows]
        except PydanticValidationError as exc:
            raise UpstreamQueryError(
                "Analytics store returned malformed rows",
                context={"row_type": row_type.__name__},
            ) from exc

    @staticmethod
    def _decode(text: str) -> List[Dict[str, Any]]:
        rows: List[Dict[str, Any]] = []
        for line in text.splitlines():
            if not line.strip():
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError as exc:
                raise UpstreamQueryError(
                    "Analytics store returned invalid JSON"
                ) from exc
        return rows


def _encode_param(value: Any) -> str:
    """Render a query parameter in ClickHouse's text format."""

    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_quote(str(item)) for item in value) + "]"
    return str(value)


def _quote(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"
