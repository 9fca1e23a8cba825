"""Print the weekly leaderboard using the built-in DI container.

Reads CLICKHOUSE_URL and the directory settings from the environment.
"""

from usage_insights.core.container import DIContainer
from usage_insights.domain.exceptions import AnalyticsError


def main() -> None:
    service = DIContainer.create_service()

    try:
        leaderboard = service.leaderboard_view("7d")
    except AnalyticsError as exc:
        print("Leaderboard unavailable:", exc.to_payload())
        return

    print("Top token users:")
    for entry in leaderboard.top_token_users:
        print(f"  {entry.rank}. {entry.display_name} ({entry.formatted_value})")
    print("Top efficiency:")
    for entry in leaderboard.top_efficiency_users:
        print(f"  {entry.rank}. {entry.display_name} ({entry.formatted_value})")
    print("Skill adoption:", f"{leaderboard.skill_adoption.adoption_rate}%")


if __name__ == "__main__":
    main()
