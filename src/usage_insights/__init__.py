"""Usage Insights package: scoring, identity and leaderboards over usage telemetry."""

from .core.config import AnalyticsConfig
from .core.container import DIContainer
from .core.service import AnalyticsService

__all__ = [
    "AnalyticsService",
    "AnalyticsConfig",
    "DIContainer",
    "domain",
    "identity",
    "scoring",
    "ranking",
    "stores",
    "core",
    "utils",
]
