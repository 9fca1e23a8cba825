"""Analytics configuration management helpers."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

DEFAULT_EXCLUDED_SKILLS = ["rate-limit-options"]


def _str_to_int(value: str | None, default: int) -> int:
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"Invalid integer value: {value}") from exc


def _str_to_float(value: str | None, default: float) -> float:
    if value is None or not value.strip():
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"Invalid numeric value: {value}") from exc


def _optional(value: str | None) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _split_list(value: str | None, default: List[str]) -> List[str]:
    if value is None:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass(frozen=True)
class AnalyticsConfig:
    """Immutable configuration object loaded from env or files.

    ``clickhouse_url`` left unset means the usage store is not configured;
    views then raise ``StoreNotConfiguredError`` instead of failing queries.
    """

    clickhouse_url: Optional[str] = None
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_database: str = "default"
    directory_url: Optional[str] = None
    directory_api_key: Optional[str] = None
    directory_db_path: Optional[str] = None
    leaderboard_size: int = 10
    min_efficiency_requests: int = 10
    cache_ttl_seconds: float = 0.0
    timeout_seconds: float = 30.0
    max_workers: int = 4
    excluded_skills: List[str] = field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_SKILLS)
    )

    def __post_init__(self) -> None:
        self.validate()

    @property
    def usage_store_configured(self) -> bool:
        return bool(self.clickhouse_url)

    @classmethod
    def from_env(cls) -> "AnalyticsConfig":
        defaults = cls()
        return cls(
            clickhouse_url=_optional(os.getenv("CLICKHOUSE_URL")),
            clickhouse_user=os.getenv("CLICKHOUSE_USER", defaults.clickhouse_user),
            clickhouse_password=os.getenv(
                "CLICKHOUSE_PASSWORD", defaults.clickhouse_password
            ),
            clickhouse_database=os.getenv(
                "CLICKHOUSE_DATABASE", defaults.clickhouse_database
            ),
            directory_url=_optional(os.getenv("DIRECTORY_URL")),
            directory_api_key=_optional(os.getenv("DIRECTORY_API_KEY")),
            directory_db_path=_optional(os.getenv("DIRECTORY_DB_PATH")),
            leaderboard_size=_str_to_int(
                os.getenv("ANALYTICS_LEADERBOARD_SIZE"), defaults.leaderboard_size
            ),
            min_efficiency_requests=_str_to_int(
                os.getenv("ANALYTICS_MIN_EFFICIENCY_REQUESTS"),
                defaults.min_efficiency_requests,
            ),
            cache_ttl_seconds=_str_to_float(
                os.getenv("ANALYTICS_CACHE_TTL_SECONDS"), defaults.cache_ttl_seconds
            ),
            timeout_seconds=_str_to_float(
                os.getenv("ANALYTICS_TIMEOUT_SECONDS"), defaults.timeout_seconds
            ),
            max_workers=_str_to_int(
                os.getenv("ANALYTICS_MAX_WORKERS"), defaults.max_workers
            ),
            excluded_skills=_split_list(
                os.getenv("ANALYTICS_EXCLUDED_SKILLS"), defaults.excluded_skills
            ),
        )

    @classmethod
    def from_file(cls, path: str) -> "AnalyticsConfig":
        file_path = Path(path)
        if not file_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")
        raw = file_path.read_text()
        data: Dict[str, Any]
        suffix = file_path.suffix.lower()
        if suffix == ".json":
            data = json.loads(raw)
        elif suffix in {".yaml", ".yml"}:
            data = cls._load_yaml(raw)
        else:
            raise ValueError("Unsupported config format. Use JSON or YAML.")
        return cls(**cls._merge_with_defaults(data))

    def validate(self) -> None:
        if self.leaderboard_size <= 0:
            raise ValueError("leaderboard_size must be greater than zero")
        if self.min_efficiency_requests < 0:
            raise ValueError("min_efficiency_requests must be non-negative")
        if self.cache_ttl_seconds < 0:
            raise ValueError("cache_ttl_seconds must be non-negative")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be greater than zero")
        if self.max_workers <= 0:
            raise ValueError("max_workers must be greater than zero")
        if not isinstance(self.excluded_skills, list):
            raise ValueError("excluded_skills must be a list")

    @classmethod
    def _merge_with_defaults(cls, data: Dict[str, Any]) -> Dict[str, Any]:
        defaults = cls()
        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown configuration keys: {unknown}")
        return {name: data.get(name, getattr(defaults, name)) for name in known}

    @staticmethod
    def _load_yaml(raw: str) -> Dict[str, Any]:
        return yaml.safe_load(raw) or {}
