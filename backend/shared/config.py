"""
Central configuration for all MatchArena feed services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field, RedisDsn
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


# (ttl_s, stale_window_s) per cache class
DEFAULT_CACHE_PROFILES: dict[str, tuple[float, float]] = {
    "live": (15.0, 30.0),
    "upcoming": (120.0, 300.0),
    "recent": (300.0, 600.0),
    "leagues": (12 * 60 * 60.0, 24 * 60 * 60.0),
    "standings": (12 * 60 * 60.0, 24 * 60 * 60.0),
}

DEFAULT_APISPORTS_HOSTS: dict[str, str] = {
    "football": "https://v3.football.api-sports.io",
    "basketball": "https://v1.basketball.api-sports.io",
    "baseball": "https://v1.baseball.api-sports.io",
    "hockey": "https://v1.hockey.api-sports.io",
    "tennis": "https://v1.tennis.api-sports.io",
    "volleyball": "https://v1.volleyball.api-sports.io",
    "handball": "https://v1.handball.api-sports.io",
    "rugby": "https://v1.rugby.api-sports.io",
    "american_football": "https://v1.american-football.api-sports.io",
}


class Settings(BaseSettings):
    """Root settings shared across the feed services."""

    model_config = SettingsConfigDict(
        env_prefix="MA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    log_format: str = Field(default="", description="'console' or 'json'; empty picks by environment")
    instance_id: str = Field(default="", description="Unique pod/container ID for log context")

    # ── Redis (persisted match store) ────────────────────────
    redis_url: RedisDsn = Field(default="redis://redis:6379/0")
    redis_max_connections: int = 20
    store_match_ttl_s: int = 6 * 60 * 60

    # ── Upstream HTTP ────────────────────────────────────────
    provider_request_timeout_s: float = 8.0
    provider_connect_timeout_s: float = 5.0
    provider_max_retries: int = Field(default=3, description="Retries after the first attempt")
    provider_backoff_min_s: float = 1.0
    provider_backoff_max_s: float = 5.0
    provider_backoff_factor: float = 2.0

    # ── Provider credentials / hosts ─────────────────────────
    cricapi_api_key: str = ""
    cricapi_base_url: str = "https://api.cricapi.com/v1"
    apisports_api_key: str = ""
    apisports_hosts: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_APISPORTS_HOSTS))

    # ── Rate limiting (per provider host) ────────────────────
    provider_rpm_limit: int = Field(default=10, description="Token bucket refill, requests per minute")
    provider_burst: int = Field(default=10, description="Token bucket capacity")
    provider_daily_limit: int = Field(
        default=100,
        description="Fixed-window requests per UTC day for each host; the free CricAPI and API-Sports plans allow 100",
    )
    provider_429_backoff_s: float = 60.0

    # ── Cache ────────────────────────────────────────────────
    cache_max_items: int = 500
    cache_profiles: dict[str, tuple[float, float]] = Field(
        default_factory=lambda: dict(DEFAULT_CACHE_PROFILES),
        description="cache class -> (ttl seconds, stale window seconds)",
    )

    # ── Aggregator ───────────────────────────────────────────
    aggregator_sports: list[str] = Field(
        default=["cricket", "football", "basketball", "tennis", "hockey"],
        description="Sports fanned out to by combined live/upcoming/recent calls.",
    )
    upcoming_window_days: int = 7
    recent_window_days: int = 1
    upcoming_limit_per_sport: int = 30
    recent_limit_per_sport: int = 30

    # ── Sync scheduler ───────────────────────────────────────
    # Worst case per host per day: one live request per tick, plus upcoming and
    # recent on every Nth tick. 86400 / 1200 = 72 ticks, 72 / 12 = 6 full ticks,
    # 72 + 2 * 6 = 84 requests, under provider_daily_limit.
    scheduler_sync_interval_s: float = Field(
        default=1200.0, description="Seconds between sync ticks (72 ticks per day)"
    )
    scheduler_upcoming_every_n: int = Field(
        default=12, description="Every Nth tick also syncs upcoming and recent (6 full ticks per day)"
    )
    scheduler_leader_ttl_s: int = 30
    scheduler_leader_renew_s: float = 10.0

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True
    metrics_port: int = 9090

    @property
    def redis_url_str(self) -> str:
        return str(self.redis_url)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
