import json

import httpx

from usage_insights.core.config import AnalyticsConfig
from usage_insights.core.container import DIContainer


def _json_lines(*rows) -> str:
    return "\n".join(json.dumps(row) for row in rows) + "\n"


USAGE_ROWS = _json_lines(
    {
        "tracking_id": "u1",
        "email": "",
        "input_tokens": "1000",
        "output_tokens": "10000",
        "cache_read_tokens": "90000",
        "cost_usd": 2.0,
        "request_count": "100",
    },
    {
        "tracking_id": "u2",
        "email": "lin@example.com",
        "input_tokens": "400",
        "output_tokens": "100",
        "cache_read_tokens": "0",
        "cost_usd": 0.4,
        "request_count": "12",
    },
)

CORRELATION_ROWS = _json_lines(
    {"tracking_id": "u1", "email": "old@example.com", "observed_at": 1714500000},
    {
        "tracking_id": "u1",
        "email": "ada@example.com",
        "linked_id": "d-1",
        "observed_at": 1714564800,
    },
)


def _clickhouse_response(sql: str) -> str:
    if "claude_code_logs" in sql:
        return CORRELATION_ROWS
    if "retry_analysis" in sql:
        return _json_lines(
            {"tracking_id": "u1", "retry_density": 0.05, "context_growth_rate": 1.5}
        )
    if "formatDateTime" in sql:
        return _json_lines({"date": "2024-05-01", "input_tokens": "1400"})
    if "argMax(user_email, hour)" in sql:
        return USAGE_ROWS
    if "uniqExactIf" in sql:
        return _json_lines({"total_users": "2", "skill_users": "1"})
    if "ai_prompts" in sql:
        return _json_lines(
            {"tracking_id": "u2", "skill_count": "3", "top_skill": "commit"}
        )
    return _json_lines(
        {"input_tokens": "1400", "output_tokens": "10100", "cost_usd": 2.4}
    )


def _handler(request: httpx.Request) -> httpx.Response:
    if request.url.host == "clickhouse":
        return httpx.Response(
            200, text=_clickhouse_response(request.content.decode("utf-8"))
        )
    if request.url.params.get("id") == 'in.("d-1")':
        return httpx.Response(
            200, json=[{"id": "d-1", "name": "Ada Lovelace", "email": None}]
        )
    return httpx.Response(200, json=[])


def _service():
    config = AnalyticsConfig(
        clickhouse_url="http://clickhouse:8123",
        directory_url="https://directory.example.com",
        directory_api_key="anon-key",
    )
    client = httpx.Client(transport=httpx.MockTransport(_handler))
    return DIContainer.create_service(config=config, http_client=client)


def test_analytics_view_end_to_end():
    view = _service().analytics_view("7d")

    users = {user.tracking_id: user for user in view.users}
    assert users["u1"].display_name == "Ada Lovelace"
    assert users["u1"].efficiency_score == 90
    assert users["u2"].display_name == "lin@example.com"
    assert view.summary.total_tokens == 11500
    assert view.trend[0].input_tokens == 1400


def test_leaderboard_view_end_to_end():
    view = _service().leaderboard_view("7d")

    assert [entry.display_name for entry in view.top_token_users] == [
        "Ada Lovelace",
        "lin@example.com",
    ]
    assert view.top_skill_users[0].display_name == "lin@example.com"
    assert view.top_skill_users[0].top_skill == "commit"
    assert view.skill_adoption.adoption_rate == 50
