"""
Aggregator service.
Fans combined requests out to every configured sport concurrently, merges and
sorts the results, and tolerates partial provider failure: a branch that
raises is logged, counted and replaced by an empty list.
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from shared.config import Settings, get_settings
from shared.models.domain import ApiEnvelope, League, Match, Series, SportInfo, Standing, Team
from shared.models.enums import MatchState, Sport
from shared.utils.logging import get_logger
from shared.utils.metrics import AGGREGATOR_BRANCH_FAILURES

from ingest.providers.base import BaseProvider, utc_now
from ingest.providers.registry import ProviderRegistry

logger = get_logger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)

Branch = Callable[[BaseProvider, Sport], Awaitable[list[Match]]]


def live_sort_key(match: Match) -> tuple[str, bool, datetime]:
    """Sport name first, then start time ascending; unknown start times last."""
    return (match.sport.value, match.start_time is None, match.start_time or _FAR_FUTURE)


def start_sort_key(match: Match) -> tuple[bool, datetime]:
    return (match.start_time is None, match.start_time or _FAR_FUTURE)


def is_upcoming_within(match: Match, now: datetime, window_days: int) -> bool:
    start = match.start_time
    return (
        match.state is MatchState.UPCOMING
        and start is not None
        and now < start <= now + timedelta(days=window_days)
    )


def is_recent_within(match: Match, now: datetime, window_days: int) -> bool:
    start = match.start_time
    return (
        match.state is MatchState.COMPLETED
        and start is not None
        and now - timedelta(days=window_days) <= start <= now
    )


def envelope(data: Any, error: Optional[str] = None) -> ApiEnvelope[Any]:
    """Collaborator response shape ``{success, data, count, timestamp, error?}``."""
    if isinstance(data, (list, tuple)):
        count = len(data)
    else:
        count = 0 if data is None else 1
    return ApiEnvelope[Any](success=error is None, data=data, count=count, error=error)


class AggregatorService:
    """
    Combined and per-sport match queries over the provider registry.

    Per-sport methods propagate errors: the cache beneath them already
    absorbs transient failures when it can. Combined methods never fail on a
    single branch.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        settings: Settings | None = None,
        sports: Iterable[Sport | str] | None = None,
        now: Callable[[], datetime] = utc_now,
    ) -> None:
        self._registry = registry
        self._settings = settings or get_settings()
        self._sports = [
            Sport.parse(s) for s in (sports if sports is not None else self._settings.aggregator_sports)
        ]
        self._now = now

    @property
    def sports(self) -> list[Sport]:
        return list(self._sports)

    # ── Fan-out ─────────────────────────────────────────────────────────

    async def _fan_out(self, operation: str, call: Branch) -> list[Match]:
        # Resolve first so a misconfigured sport fails fast instead of being swallowed.
        targets = [(sport, self._registry.provider_for(sport)) for sport in self._sports]

        async def branch(sport: Sport, provider: BaseProvider) -> list[Match]:
            try:
                return await call(provider, sport)
            except Exception as exc:
                AGGREGATOR_BRANCH_FAILURES.labels(operation=operation, sport=sport.value).inc()
                logger.warning(
                    "aggregator_branch_failed",
                    operation=operation,
                    sport=sport.value,
                    provider=provider.name.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return []

        results = await asyncio.gather(*(branch(sport, provider) for sport, provider in targets))
        merged = [match for result in results for match in result]
        logger.debug(
            "aggregator_fan_out_complete",
            operation=operation,
            sports=len(targets),
            matches=len(merged),
        )
        return merged

    async def get_all_live(self) -> list[Match]:
        """Live matches for every configured sport, sorted by sport then start time."""
        matches = await self._fan_out("live", lambda p, s: p.get_live(s))
        return sorted(
            (m for m in matches if m.state is MatchState.LIVE),
            key=live_sort_key,
        )

    async def get_upcoming(self, window_days: Optional[int] = None) -> list[Match]:
        """Upcoming matches starting within ``window_days``, sorted by start time only."""
        days = window_days if window_days is not None else self._settings.upcoming_window_days
        matches = await self._fan_out("upcoming", lambda p, s: p.get_upcoming(s, days))
        now = self._now()
        return sorted((m for m in matches if is_upcoming_within(m, now, days)), key=start_sort_key)

    async def get_recent(self, window_days: Optional[int] = None) -> list[Match]:
        """Completed matches that started within the trailing window, newest first."""
        days = window_days if window_days is not None else self._settings.recent_window_days
        matches = await self._fan_out("recent", lambda p, s: p.get_recent(s, days))
        now = self._now()
        recent = [m for m in matches if is_recent_within(m, now, days)]
        recent.sort(key=lambda m: m.start_time, reverse=True)
        return recent

    # ── Per-sport ───────────────────────────────────────────────────────

    async def get_sport_live(self, sport: Sport | str) -> list[Match]:
        provider = self._registry.provider_for(sport)
        matches = await provider.get_live(Sport.parse(sport))
        return sorted(matches, key=start_sort_key)

    async def get_sport_upcoming(self, sport: Sport | str, window_days: Optional[int] = None) -> list[Match]:
        days = window_days if window_days is not None else self._settings.upcoming_window_days
        provider = self._registry.provider_for(sport)
        matches = await provider.get_upcoming(Sport.parse(sport), days)
        now = self._now()
        return sorted((m for m in matches if is_upcoming_within(m, now, days)), key=start_sort_key)

    async def get_sport_recent(self, sport: Sport | str, window_days: Optional[int] = None) -> list[Match]:
        days = window_days if window_days is not None else self._settings.recent_window_days
        provider = self._registry.provider_for(sport)
        matches = await provider.get_recent(Sport.parse(sport), days)
        now = self._now()
        recent = [m for m in matches if is_recent_within(m, now, days)]
        recent.sort(key=lambda m: m.start_time, reverse=True)
        return recent

    async def get_match_details(self, sport: Sport | str, match_id: str) -> Optional[Match]:
        provider = self._registry.provider_for(sport)
        return await provider.get_match(Sport.parse(sport), match_id)

    async def get_leagues(self, sport: Sport | str, country: Optional[str] = None) -> list[League]:
        provider = self._registry.provider_for(sport)
        return await provider.get_leagues(Sport.parse(sport), country)

    async def get_standings(
        self, sport: Sport | str, league: str, season: Optional[int | str] = None
    ) -> list[Standing]:
        provider = self._registry.provider_for(sport)
        return await provider.get_standings(Sport.parse(sport), league, season)

    async def get_teams(
        self,
        sport: Sport | str,
        league: Optional[str] = None,
        season: Optional[int | str] = None,
        search: Optional[str] = None,
    ) -> list[Team]:
        provider = self._registry.provider_for(sport)
        return await provider.get_teams(Sport.parse(sport), league, season, search)

    async def get_series(self) -> list[Series]:
        return await self._registry.provider_for(Sport.CRICKET).get_series()

    def supported_sports(self) -> list[SportInfo]:
        return self._registry.supported_sports()

    def breakdown(self, matches: Sequence[Match]) -> dict[str, int]:
        """Match count per sport; configured sports appear even with zero."""
        counts = {sport.value: 0 for sport in self._sports}
        for match in matches:
            counts[match.sport.value] = counts.get(match.sport.value, 0) + 1
        return counts
