"""Dependency injection container for fully-wired AnalyticsService instances."""

from __future__ import annotations

from typing import Callable, Optional

import httpx

from usage_insights.core.cache import TTLCache
from usage_insights.core.config import AnalyticsConfig
from usage_insights.core.service import AnalyticsService
from usage_insights.domain.interfaces import (
    ICache,
    IDirectoryStore,
    IEfficiencyScorer,
    IUsageStore,
)
from usage_insights.identity.resolver import IdentityResolver
from usage_insights.ranking.leaderboard import LeaderboardRanker
from usage_insights.scoring.efficiency import EfficiencyScorer
from usage_insights.scoring.tips import TipGenerator
from usage_insights.stores.clickhouse import ClickHouseUsageStore
from usage_insights.stores.postgrest import PostgrestDirectoryStore
from usage_insights.stores.sqlite_directory import SQLiteDirectoryStore

HttpClientFactory = Callable[[AnalyticsConfig], httpx.Client]


class DIContainer:
    """Factory helpers that assemble an AnalyticsService with default wiring."""

    @staticmethod
    def create_service(
        *,
        config: Optional[AnalyticsConfig] = None,
        http_client: Optional[httpx.Client] = None,
        cache: Optional[ICache] = None,
    ) -> AnalyticsService:
        cfg = config or AnalyticsConfig.from_env()
        client: Optional[httpx.Client] = http_client
        if client is None and (cfg.clickhouse_url or cfg.directory_url):
            client = DIContainer._build_http_client_factory()(cfg)

        usage_store = DIContainer._build_usage_store(cfg, client)
        directory = DIContainer._build_directory_store(cfg, client)
        if cache is None and cfg.cache_ttl_seconds > 0:
            cache = TTLCache()

        return AnalyticsService(
            usage_store,
            IdentityResolver(directory),
            config=cfg,
            scorer=EfficiencyScorer(),
            tip_generator=TipGenerator(),
            ranker=LeaderboardRanker(cfg.leaderboard_size),
            cache=cache,
        )

    @staticmethod
    def create_custom_service(
        *,
        config: AnalyticsConfig,
        usage_store: Optional[IUsageStore],
        directory: Optional[IDirectoryStore] = None,
        scorer: Optional[IEfficiencyScorer] = None,
        tip_generator: Optional[TipGenerator] = None,
        cache: Optional[ICache] = None,
    ) -> AnalyticsService:
        return AnalyticsService(
            usage_store,
            IdentityResolver(directory),
            config=config,
            scorer=scorer,
            tip_generator=tip_generator,
            ranker=LeaderboardRanker(config.leaderboard_size),
            cache=cache,
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _build_usage_store(
        config: AnalyticsConfig, client: Optional[httpx.Client]
    ) -> Optional[IUsageStore]:
        if not config.clickhouse_url or client is None:
            return None
        return ClickHouseUsageStore(
            client,
            config.clickhouse_url,
            user=config.clickhouse_user,
            password=config.clickhouse_password,
            database=config.clickhouse_database,
            timeout=config.timeout_seconds,
        )

    @staticmethod
    def _build_directory_store(
        config: AnalyticsConfig, client: Optional[httpx.Client]
    ) -> Optional[IDirectoryStore]:
        if config.directory_url and config.directory_api_key and client is not None:
            return PostgrestDirectoryStore(
                client,
                config.directory_url,
                config.directory_api_key,
                timeout=config.timeout_seconds,
            )
        if config.directory_db_path:
            return SQLiteDirectoryStore(config.directory_db_path)
        return None

    @staticmethod
    def _build_http_client_factory() -> HttpClientFactory:
        def factory(config: AnalyticsConfig) -> httpx.Client:
            return httpx.Client(timeout=config.timeout_seconds)

        return factory
