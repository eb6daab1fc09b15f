"""Domain enumerations for the MatchArena feed."""
from __future__ import annotations

from enum import Enum
from typing import Any


class UnsupportedSportError(ValueError):
    """Raised for sport keys no configured provider can serve."""

    def __init__(self, sport: Any, supported: list[str] | None = None) -> None:
        self.sport = sport
        self.supported = supported or []
        msg = f"Sport {sport!r} is not supported"
        if self.supported:
            msg += f" (supported: {', '.join(self.supported)})"
        super().__init__(msg)


class Sport(str, Enum):
    CRICKET = "cricket"
    FOOTBALL = "football"
    BASKETBALL = "basketball"
    BASEBALL = "baseball"
    HOCKEY = "hockey"
    TENNIS = "tennis"
    VOLLEYBALL = "volleyball"
    HANDBALL = "handball"
    RUGBY = "rugby"
    AMERICAN_FOOTBALL = "american_football"

    @classmethod
    def parse(cls, value: Any) -> "Sport":
        """Resolve a sport key ("Football", "american-football", Sport.X). Fails fast."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "_").replace(" ", "_")
            try:
                return cls(key)
            except ValueError:
                pass
        raise UnsupportedSportError(value, [s.value for s in cls])


class StatusShort(str, Enum):
    """Canonical match status. Every provider vocabulary maps onto these ten codes."""
    NS = "NS"
    LIVE = "LIVE"
    HT = "HT"
    FT = "FT"
    CANC = "CANC"
    SUSP = "SUSP"
    AWD = "AWD"
    ABD = "ABD"
    WO = "WO"
    PST = "PST"

    @property
    def state(self) -> "MatchState":
        return _STATE_BY_STATUS[self]

    @property
    def is_live(self) -> bool:
        return self.state == MatchState.LIVE


class MatchState(str, Enum):
    """Coarse lifecycle derived from StatusShort; used by aggregator filters."""
    UPCOMING = "upcoming"
    LIVE = "live"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"


_STATE_BY_STATUS: dict[StatusShort, MatchState] = {
    StatusShort.NS: MatchState.UPCOMING,
    StatusShort.LIVE: MatchState.LIVE,
    StatusShort.HT: MatchState.LIVE,
    StatusShort.SUSP: MatchState.LIVE,
    StatusShort.FT: MatchState.COMPLETED,
    StatusShort.AWD: MatchState.COMPLETED,
    StatusShort.WO: MatchState.COMPLETED,
    StatusShort.ABD: MatchState.COMPLETED,
    StatusShort.CANC: MatchState.CANCELLED,
    StatusShort.PST: MatchState.POSTPONED,
}


class CacheClass(str, Enum):
    """Freshness tier; each maps to a (ttl, stale window) profile in Settings."""
    LIVE = "live"
    UPCOMING = "upcoming"
    RECENT = "recent"
    LEAGUES = "leagues"
    STANDINGS = "standings"


class ProviderName(str, Enum):
    CRICAPI = "cricapi"
    APISPORTS = "apisports"
