"""
CricAPI provider connector (cricket only).
Credential travels as the ``apikey`` query parameter; responses use the
``{status, data}`` envelope.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from cache.coalescer import CacheService
from shared.config import Settings
from shared.models.domain import Match, Series
from shared.models.enums import CacheClass, MatchState, ProviderName, Sport
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import ProviderRateLimiter

from ingest.normalization.normalizer import (
    normalize_match,
    normalize_matches,
    normalize_series_list,
)
from ingest.providers.base import BaseProvider, utc_now

logger = get_logger(__name__)


class CricApiProvider(BaseProvider):
    """CricAPI v1: current matches, match list, series, match info."""

    def __init__(
        self,
        cache: CacheService,
        settings: Settings | None = None,
        http_client: ProviderHTTPClient | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        super().__init__(
            name=ProviderName.CRICAPI,
            cache=cache,
            supported_sports={Sport.CRICKET},
            settings=settings,
            now=now,
        )
        self._http = http_client or ProviderHTTPClient(
            provider_name=ProviderName.CRICAPI.value,
            base_url=self._settings.cricapi_base_url,
            api_key=self._settings.cricapi_api_key,
            api_key_param="apikey",
            rate_limiter=ProviderRateLimiter(ProviderName.CRICAPI.value, self._settings),
            settings=self._settings,
        )

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def get_live(self, sport: Sport = Sport.CRICKET) -> list[Match]:
        self._require(sport)

        async def fetch() -> list[Match]:
            data = await self._http.get("/currentMatches", params={"offset": 0})
            matches = normalize_matches(data, Sport.CRICKET, now=self._now())
            return [m for m in matches if m.state is MatchState.LIVE]

        return await self._cached("cricket/live", None, CacheClass.LIVE, fetch)

    async def get_upcoming(self, sport: Sport = Sport.CRICKET, days: int = 7) -> list[Match]:
        self._require(sport)

        async def fetch() -> list[Match]:
            now = self._now()
            horizon = now + timedelta(days=days)
            data = await self._http.get("/matches", params={"offset": 0})
            matches = [
                m
                for m in normalize_matches(data, Sport.CRICKET, now=now)
                if m.state is MatchState.UPCOMING
                and m.start_time is not None
                and now < m.start_time <= horizon
            ]
            matches.sort(key=lambda m: m.start_time)
            return matches[: self._settings.upcoming_limit_per_sport]

        return await self._cached("cricket/upcoming", {"days": days}, CacheClass.UPCOMING, fetch)

    async def get_recent(self, sport: Sport = Sport.CRICKET, days: int = 1) -> list[Match]:
        self._require(sport)

        async def fetch() -> list[Match]:
            now = self._now()
            since = now - timedelta(days=days)
            data = await self._http.get("/matches", params={"offset": 0})
            matches = [
                m
                for m in normalize_matches(data, Sport.CRICKET, now=now)
                if m.state is MatchState.COMPLETED
                and m.start_time is not None
                and since <= m.start_time <= now
            ]
            matches.sort(key=lambda m: m.start_time, reverse=True)
            return matches[: self._settings.recent_limit_per_sport]

        return await self._cached("cricket/recent", {"days": days}, CacheClass.RECENT, fetch)

    async def get_match(self, sport: Sport, match_id: str) -> Optional[Match]:
        self._require(sport)

        async def fetch() -> Optional[Match]:
            data = await self._http.get("/match_info", params={"id": match_id})
            return normalize_match(data, Sport.CRICKET, now=self._now())

        return await self._cached(f"cricket/match/{match_id}", None, CacheClass.LIVE, fetch)

    async def get_series(self) -> list[Series]:
        async def fetch() -> list[Series]:
            data = await self._http.get("/series", params={"offset": 0})
            return normalize_series_list(data)

        return await self._cached("cricket/series", None, CacheClass.LEAGUES, fetch)
