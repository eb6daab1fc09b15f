"""
Abstract base class for all sports data providers.
Defines the contract every provider connector implements: cached, normalized
endpoint methods returning canonical domain models.
"""
from __future__ import annotations

import abc
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Mapping, Optional

from cache.coalescer import CacheService, generate_cache_key
from shared.config import Settings, get_settings
from shared.models.domain import League, Match, Series, Standing, Team
from shared.models.enums import CacheClass, ProviderName, Sport, UnsupportedSportError
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class BaseProvider(abc.ABC):
    """
    Abstract base class for sports data providers.

    Every public method goes through the shared CacheService. The fetch
    function handed to the cache performs the upstream call and the
    normalization, and raises on failure so the cache can fall back to stale
    data instead of caching an empty result.
    """

    def __init__(
        self,
        name: ProviderName,
        cache: CacheService,
        supported_sports: set[Sport],
        settings: Settings | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._name = name
        self._cache = cache
        self._supported_sports = supported_sports
        self._settings = settings or get_settings()
        self._now = now

    @property
    def name(self) -> ProviderName:
        return self._name

    @property
    def supported_sports(self) -> set[Sport]:
        return self._supported_sports

    def supports(self, sport: Sport) -> bool:
        return sport in self._supported_sports

    def _require(self, sport: Sport | str) -> Sport:
        parsed = Sport.parse(sport)
        if parsed not in self._supported_sports:
            raise UnsupportedSportError(
                parsed.value, sorted(s.value for s in self._supported_sports)
            )
        return parsed

    async def _cached(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]],
        cache_class: CacheClass,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        key = generate_cache_key(endpoint, params)
        return await self._cache.get_cached_or_fetch(key, fetch, cache_class)

    # ── Lifecycle ───────────────────────────────────────────────────────
    @abc.abstractmethod
    async def start(self) -> None:
        """Open HTTP clients."""
        ...

    @abc.abstractmethod
    async def close(self) -> None:
        """Close HTTP clients."""
        ...

    # ── Matches ─────────────────────────────────────────────────────────
    @abc.abstractmethod
    async def get_live(self, sport: Sport) -> list[Match]:
        ...

    @abc.abstractmethod
    async def get_upcoming(self, sport: Sport, days: int) -> list[Match]:
        ...

    @abc.abstractmethod
    async def get_recent(self, sport: Sport, days: int) -> list[Match]:
        ...

    @abc.abstractmethod
    async def get_match(self, sport: Sport, match_id: str) -> Optional[Match]:
        ...

    # ── Reference data (optional per provider) ──────────────────────────
    async def get_leagues(self, sport: Sport, country: Optional[str] = None) -> list[League]:
        raise UnsupportedSportError(sport, [])

    async def get_standings(
        self, sport: Sport, league: str, season: Optional[int | str] = None
    ) -> list[Standing]:
        raise UnsupportedSportError(sport, [])

    async def get_teams(
        self,
        sport: Sport,
        league: Optional[str] = None,
        season: Optional[int | str] = None,
        search: Optional[str] = None,
    ) -> list[Team]:
        raise UnsupportedSportError(sport, [])

    async def get_series(self) -> list[Series]:
        return []
