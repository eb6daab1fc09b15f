"""
API-Sports provider connector (football, basketball, hockey, tennis, ...).
One host per sport, ``x-apisports-key`` header, ``{response, errors}`` envelope.
Football calls its match resource ``fixtures``; every other host calls it ``games``.
Each host has its own local rate limiter.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from cache.coalescer import CacheService
from shared.config import Settings, get_settings
from shared.models.domain import League, Match, Standing, Team
from shared.models.enums import CacheClass, MatchState, ProviderName, Sport
from shared.utils.http_client import ProviderHTTPClient
from shared.utils.logging import get_logger
from shared.utils.rate_limiter import ProviderRateLimiter

from ingest.normalization.normalizer import (
    normalize_leagues,
    normalize_matches,
    normalize_standings,
    normalize_teams,
)
from ingest.providers.base import BaseProvider, utc_now

logger = get_logger(__name__)

API_KEY_HEADER = "x-apisports-key"
FOOTBALL_NEXT_FIXTURES = 50


def resource_for(sport: Sport) -> str:
    return "fixtures" if sport is Sport.FOOTBALL else "games"


class ApiSportsProvider(BaseProvider):
    """Multi-sport API-Sports connector."""

    def __init__(
        self,
        cache: CacheService,
        settings: Settings | None = None,
        clients: dict[Sport, ProviderHTTPClient] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        s = settings or get_settings()
        if clients is None:
            # each API-Sports host is a separate plan with its own daily quota
            clients = {
                Sport.parse(key): ProviderHTTPClient(
                    provider_name=ProviderName.APISPORTS.value,
                    base_url=host,
                    api_key=s.apisports_api_key,
                    api_key_header=API_KEY_HEADER,
                    rate_limiter=ProviderRateLimiter(f"{ProviderName.APISPORTS.value}:{key}", s),
                    settings=s,
                )
                for key, host in s.apisports_hosts.items()
            }
        super().__init__(
            name=ProviderName.APISPORTS,
            cache=cache,
            supported_sports=set(clients),
            settings=s,
            now=now,
        )
        self._clients = clients

    async def start(self) -> None:
        for client in self._clients.values():
            await client.start()

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()

    async def _get(self, sport: Sport, path: str, params: dict[str, Any] | None = None) -> Any:
        return await self._clients[sport].get(path, params=params)

    # ── Matches ─────────────────────────────────────────────────────────

    async def get_live(self, sport: Sport) -> list[Match]:
        sport = self._require(sport)

        async def fetch() -> list[Match]:
            data = await self._get(sport, f"/{resource_for(sport)}", {"live": "all"})
            matches = normalize_matches(data, sport, now=self._now())
            return [m for m in matches if m.state is MatchState.LIVE]

        return await self._cached(f"{sport.value}/live", None, CacheClass.LIVE, fetch)

    async def get_upcoming(self, sport: Sport, days: int = 7) -> list[Match]:
        sport = self._require(sport)

        async def fetch() -> list[Match]:
            now = self._now()
            if sport is Sport.FOOTBALL:
                params: dict[str, Any] = {"next": FOOTBALL_NEXT_FIXTURES}
            else:
                params = {
                    "from": now.date().isoformat(),
                    "to": (now + timedelta(days=days)).date().isoformat(),
                }
            data = await self._get(sport, f"/{resource_for(sport)}", params)
            matches = [
                m
                for m in normalize_matches(data, sport, now=now)
                if m.state is MatchState.UPCOMING and m.start_time is not None and m.start_time > now
            ]
            matches.sort(key=lambda m: m.start_time)
            return matches[: self._settings.upcoming_limit_per_sport]

        return await self._cached(f"{sport.value}/upcoming", {"days": days}, CacheClass.UPCOMING, fetch)

    async def get_recent(self, sport: Sport, days: int = 1) -> list[Match]:
        sport = self._require(sport)

        async def fetch() -> list[Match]:
            now = self._now()
            params: dict[str, Any] = {
                "from": (now - timedelta(days=days)).date().isoformat(),
                "to": now.date().isoformat(),
            }
            if sport is Sport.FOOTBALL:
                params["status"] = "FT-AET-PEN"
            data = await self._get(sport, f"/{resource_for(sport)}", params)
            matches = [
                m
                for m in normalize_matches(data, sport, now=now)
                if m.state is MatchState.COMPLETED
            ]
            matches.sort(key=lambda m: m.start_time or now, reverse=True)
            return matches[: self._settings.recent_limit_per_sport]

        return await self._cached(f"{sport.value}/recent", {"days": days}, CacheClass.RECENT, fetch)

    async def get_match(self, sport: Sport, match_id: str) -> Optional[Match]:
        sport = self._require(sport)

        async def fetch() -> Optional[Match]:
            data = await self._get(sport, f"/{resource_for(sport)}", {"id": match_id})
            matches = normalize_matches(data, sport, now=self._now())
            return matches[0] if matches else None

        return await self._cached(f"{sport.value}/match/{match_id}", None, CacheClass.LIVE, fetch)

    # ── Reference data ──────────────────────────────────────────────────

    async def get_leagues(self, sport: Sport, country: Optional[str] = None) -> list[League]:
        sport = self._require(sport)
        params = {"country": country}

        async def fetch() -> list[League]:
            data = await self._get(sport, "/leagues", params)
            return normalize_leagues(data, sport)

        return await self._cached(f"{sport.value}/leagues", params, CacheClass.LEAGUES, fetch)

    async def get_standings(
        self, sport: Sport, league: str, season: Optional[int | str] = None
    ) -> list[Standing]:
        sport = self._require(sport)
        params = {"league": league, "season": season}

        async def fetch() -> list[Standing]:
            data = await self._get(sport, "/standings", params)
            return normalize_standings(data, sport)

        return await self._cached(f"{sport.value}/standings", params, CacheClass.STANDINGS, fetch)

    async def get_teams(
        self,
        sport: Sport,
        league: Optional[str] = None,
        season: Optional[int | str] = None,
        search: Optional[str] = None,
    ) -> list[Team]:
        sport = self._require(sport)
        params = {"league": league, "season": season, "search": search}

        async def fetch() -> list[Team]:
            data = await self._get(sport, "/teams", params)
            return normalize_teams(data, sport)

        return await self._cached(f"{sport.value}/teams", params, CacheClass.LEAGUES, fetch)
