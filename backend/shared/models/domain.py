"""
Pydantic v2 domain models for the MatchArena feed.
These are the canonical internal/wire representations every provider payload
is normalized into. Serialized with camelCase aliases (``by_alias=True``).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.enums import MatchState, Sport, StatusShort

T = TypeVar("T")


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_store(self) -> dict[str, Any]:
        """Plain JSON-compatible dict in the external (camelCase) shape."""
        return self.model_dump(mode="json", by_alias=True)


# ── Match ───────────────────────────────────────────────────────────────
class LeagueRef(DomainModel):
    id: Optional[str] = None
    name: str = "Unknown League"
    country: Optional[str] = None


class TeamRef(DomainModel):
    id: Optional[str] = None
    name: str = ""
    short_name: str = ""
    logo: Optional[str] = None


class MatchTeams(DomainModel):
    home: TeamRef
    away: TeamRef


class FixtureStatus(DomainModel):
    short: StatusShort = StatusShort.NS
    long: str = "Not Started"
    elapsed: Optional[int] = None


class Fixture(DomainModel):
    start_time: Optional[datetime] = None
    venue: Optional[str] = None
    status: FixtureStatus = Field(default_factory=FixtureStatus)


class TeamScore(DomainModel):
    """Per-side score. Cricket fills runs/wickets/overs, other sports points/goals/sets."""
    runs: Optional[int] = None
    wickets: Optional[int] = None
    overs: Optional[float] = None
    points: Optional[int] = None
    goals: Optional[int] = None
    sets: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return all(
            v is None
            for v in (self.runs, self.wickets, self.overs, self.points, self.goals, self.sets)
        )


class MatchScore(DomainModel):
    home: TeamScore = Field(default_factory=TeamScore)
    away: TeamScore = Field(default_factory=TeamScore)
    detail: Optional[str] = None


class Match(DomainModel):
    """Core entity: one fixture from any provider, in canonical shape."""
    id: str
    sport: Sport
    league: LeagueRef = Field(default_factory=LeagueRef)
    teams: MatchTeams
    fixture: Fixture = Field(default_factory=Fixture)
    score: MatchScore = Field(default_factory=MatchScore)
    extras: dict[str, Any] = Field(default_factory=dict)

    @property
    def state(self) -> MatchState:
        return self.fixture.status.short.state

    @property
    def start_time(self) -> Optional[datetime]:
        return self.fixture.start_time


class DisplayMatch(Match):
    """Match plus derived presentation fields; produced by format_match_for_display."""
    display_time: str
    short_score: str
    status_text: str


# ── Series / League / Team / Standings ──────────────────────────────────
class Series(DomainModel):
    id: str
    name: str = ""
    sport: Sport = Sport.CRICKET
    status: str = "active"
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    matches: int = 0
    odi: int = 0
    t20: int = 0
    test: int = 0
    squads: int = 0


class League(DomainModel):
    id: str
    name: str = ""
    sport: Sport
    type: Optional[str] = None
    country: Optional[str] = None
    logo: Optional[str] = None
    flag: Optional[str] = None
    season: Optional[Any] = None
    current: bool = False


class Team(DomainModel):
    id: str
    name: str = ""
    short_name: str = ""
    logo: Optional[str] = None
    country: Optional[str] = None
    founded: Optional[int] = None
    venue: Optional[str] = None


class Standing(DomainModel):
    rank: Optional[int] = None
    team: TeamRef
    points: Optional[int] = None
    played: Optional[int] = None
    won: Optional[int] = None
    drawn: Optional[int] = None
    lost: Optional[int] = None
    difference: Optional[int] = None
    form: Optional[str] = None
    group: Optional[str] = None


class SportInfo(DomainModel):
    id: str
    name: str
    endpoint: str
    icon: str


# ── Response envelope (collaborator contract) ───────────────────────────
class ApiEnvelope(DomainModel, Generic[T]):
    success: bool
    data: T
    count: int = 0
    timestamp: int = Field(
        default_factory=lambda: int(datetime.now(timezone.utc).timestamp() * 1000)
    )
    error: Optional[str] = None
