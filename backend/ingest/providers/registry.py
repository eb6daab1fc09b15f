"""
Provider registry: resolves a sport to the provider that serves it and owns
the providers' lifecycle.
"""
from __future__ import annotations

from typing import Iterable

from cache.coalescer import CacheService
from shared.config import Settings, get_settings
from shared.models.domain import SportInfo
from shared.models.enums import ProviderName, Sport, UnsupportedSportError
from shared.utils.logging import get_logger

from ingest.providers.apisports import ApiSportsProvider
from ingest.providers.base import BaseProvider
from ingest.providers.cricapi import CricApiProvider

logger = get_logger(__name__)

SPORT_ICONS: dict[Sport, str] = {
    Sport.CRICKET: "\U0001F3CF",
    Sport.FOOTBALL: "⚽",
    Sport.BASKETBALL: "\U0001F3C0",
    Sport.BASEBALL: "⚾",
    Sport.HOCKEY: "\U0001F3D2",
    Sport.TENNIS: "\U0001F3BE",
    Sport.VOLLEYBALL: "\U0001F3D0",
    Sport.HANDBALL: "\U0001F93E",
    Sport.RUGBY: "\U0001F3C9",
    Sport.AMERICAN_FOOTBALL: "\U0001F3C8",
}
DEFAULT_ICON = "\U0001F3C6"


def sport_info(sport: Sport) -> SportInfo:
    return SportInfo(
        id=sport.value,
        name=sport.value.replace("_", " ").title(),
        endpoint=sport.value,
        icon=SPORT_ICONS.get(sport, DEFAULT_ICON),
    )


class ProviderRegistry:
    """
    Maps each sport to exactly one provider. Earlier registrations win when two
    providers claim the same sport.
    """

    def __init__(self, providers: Iterable[BaseProvider]) -> None:
        self._providers: dict[ProviderName, BaseProvider] = {}
        self._by_sport: dict[Sport, BaseProvider] = {}
        for provider in providers:
            self._providers[provider.name] = provider
            for sport in sorted(provider.supported_sports, key=lambda s: s.value):
                self._by_sport.setdefault(sport, provider)

    @property
    def sports(self) -> list[Sport]:
        return sorted(self._by_sport, key=lambda s: s.value)

    def provider_for(self, sport: Sport | str) -> BaseProvider:
        """
        Resolve the provider for ``sport``.

        Raises:
            UnsupportedSportError: unknown sport key or no provider configured for it.
        """
        parsed = Sport.parse(sport)
        provider = self._by_sport.get(parsed)
        if provider is None:
            raise UnsupportedSportError(parsed.value, [s.value for s in self.sports])
        return provider

    def supported_sports(self) -> list[SportInfo]:
        return [sport_info(s) for s in self.sports]

    async def start_all(self) -> None:
        for provider in self._providers.values():
            await provider.start()
            logger.info(
                "provider_started",
                provider=provider.name.value,
                sports=sorted(s.value for s in provider.supported_sports),
            )

    async def close_all(self) -> None:
        for provider in self._providers.values():
            await provider.close()


def build_default_registry(cache: CacheService, settings: Settings | None = None) -> ProviderRegistry:
    """CricAPI for cricket, API-Sports for every host configured in settings."""
    s = settings or get_settings()
    return ProviderRegistry([CricApiProvider(cache, s), ApiSportsProvider(cache, s)])
