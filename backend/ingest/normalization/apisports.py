"""
API-Sports mappers: games/fixtures, leagues, teams and standings.

Football uses the v3 ``fixture``/``goals`` layout; the other hosts return a
flat game with ``status``/``scores``. Both are handled, along with the older
``home_team``/``home_score`` flat shape.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Mapping, Optional

from shared.models.domain import (
    Fixture,
    FixtureStatus,
    League,
    LeagueRef,
    Match,
    MatchScore,
    MatchTeams,
    Standing,
    Team,
    TeamRef,
    TeamScore,
)
from shared.models.enums import MatchState, Sport

from ingest.normalization.common import (
    as_id,
    as_int,
    as_mapping,
    as_text,
    dig,
    drop_none,
    first,
    parse_datetime,
    team_short_name,
)
from ingest.normalization.payloads import ApiSportsGamePayload
from ingest.normalization.status import describe, map_status

_GOAL_SPORTS = {Sport.FOOTBALL, Sport.HOCKEY, Sport.HANDBALL}


def team_score(value: Any, sport: Sport) -> TeamScore:
    """Per-side score from a bare number or a ``{total: n}`` breakdown."""
    if isinstance(value, Mapping):
        value = first(value.get("total"), value.get("points"), value.get("score"))
    n = as_int(value)
    if n is None:
        return TeamScore()
    if sport in _GOAL_SPORTS:
        return TeamScore(goals=n, points=n)
    if sport is Sport.TENNIS:
        return TeamScore(sets=n, points=n)
    return TeamScore(points=n)


def _team_ref(obj: Mapping[str, Any], fallback_name: str) -> TeamRef:
    name = as_text(obj.get("name"))
    return TeamRef(
        id=as_id(obj.get("id")),
        name=name or fallback_name,
        short_name=as_text(obj.get("code")) or team_short_name(name),
        logo=as_text(obj.get("logo")),
    )


def normalize_apisports_game(payload: ApiSportsGamePayload, now: datetime) -> Optional[Match]:
    raw = payload.body
    sport = payload.sport
    fixture = as_mapping(raw.get("fixture")) or raw

    match_id = as_id(first(fixture.get("id"), raw.get("id")))
    if match_id is None:
        return None

    status_raw = first(fixture.get("status"), raw.get("status"))
    if isinstance(status_raw, Mapping):
        short = map_status(status_raw.get("short"), sport)
        long = as_text(status_raw.get("long")) or describe(short)
        elapsed = as_int(first(status_raw.get("elapsed"), status_raw.get("timer"), raw.get("elapsed")))
    else:
        short = map_status(status_raw, sport)
        long = as_text(status_raw) or describe(short)
        elapsed = as_int(raw.get("elapsed"))
    if not short.is_live:
        elapsed = None

    teams = as_mapping(raw.get("teams"))
    home_raw = as_mapping(first(teams.get("home"), raw.get("home_team")))
    away_raw = as_mapping(first(teams.get("away"), raw.get("away_team")))

    league = as_mapping(raw.get("league"))
    country = first(league.get("country"), raw.get("country"))
    if isinstance(country, Mapping):
        country = country.get("name")

    venue = first(dig(fixture, "venue", "name"), raw.get("venue"))
    if isinstance(venue, Mapping):
        venue = venue.get("name")

    goals = as_mapping(first(raw.get("goals"), raw.get("scores")))
    home_score = team_score(first(goals.get("home"), raw.get("home_score")), sport)
    away_score = team_score(first(goals.get("away"), raw.get("away_score")), sport)

    detail = long
    if short.state is MatchState.COMPLETED:
        h = first(home_score.goals, home_score.points)
        a = first(away_score.goals, away_score.points)
        if h is not None and a is not None:
            detail = f"{h} - {a}"

    start = parse_datetime(first(fixture.get("date"), raw.get("date")))
    if start is None:
        start = parse_datetime(first(fixture.get("timestamp"), raw.get("timestamp")))

    return Match(
        id=match_id,
        sport=sport,
        league=LeagueRef(
            id=as_id(first(league.get("id"), raw.get("league_id"))),
            name=as_text(first(league.get("name"), raw.get("league_name"))) or "Unknown League",
            country=as_text(country),
        ),
        teams=MatchTeams(
            home=_team_ref(home_raw, "Home Team"),
            away=_team_ref(away_raw, "Away Team"),
        ),
        fixture=Fixture(
            start_time=start,
            venue=as_text(venue),
            status=FixtureStatus(short=short, long=long, elapsed=elapsed),
        ),
        score=MatchScore(home=home_score, away=away_score, detail=detail),
        extras=drop_none(
            {
                "round": as_text(first(league.get("round"), raw.get("round"))),
                "season": first(league.get("season"), raw.get("season")),
                "timezone": as_text(first(fixture.get("timezone"), raw.get("timezone"))),
                "referee": as_text(first(fixture.get("referee"), raw.get("referee"))),
                "periods": raw.get("periods") if isinstance(raw.get("periods"), Mapping) else None,
                "breakdown": raw.get("score") if isinstance(raw.get("score"), Mapping) else None,
            }
        ),
    )


def _pick_season(seasons: Any) -> Optional[Mapping[str, Any]]:
    if not isinstance(seasons, list) or not seasons:
        return None
    candidates = [s for s in seasons if isinstance(s, Mapping)]
    for season in candidates:
        if season.get("current") is True:
            return season
    return candidates[-1] if candidates else None


def normalize_league(raw: Any, sport: Sport) -> Optional[League]:
    if not isinstance(raw, Mapping):
        return None
    league = as_mapping(raw.get("league")) or raw
    league_id = as_id(league.get("id"))
    if league_id is None:
        return None
    country = first(raw.get("country"), league.get("country"))
    country_name = country.get("name") if isinstance(country, Mapping) else country
    flag = country.get("flag") if isinstance(country, Mapping) else None
    season = _pick_season(first(raw.get("seasons"), league.get("seasons")))
    return League(
        id=league_id,
        name=as_text(league.get("name")) or "",
        sport=sport,
        type=as_text(league.get("type")),
        country=as_text(country_name),
        logo=as_text(league.get("logo")),
        flag=as_text(flag),
        season=first(season.get("season"), season.get("year")) if season else None,
        current=bool(season.get("current")) if season else False,
    )


def normalize_team(raw: Any) -> Optional[Team]:
    if not isinstance(raw, Mapping):
        return None
    team = as_mapping(raw.get("team")) or raw
    team_id = as_id(team.get("id"))
    if team_id is None:
        return None
    name = as_text(team.get("name")) or ""
    country = team.get("country")
    if isinstance(country, Mapping):
        country = country.get("name")
    venue = first(raw.get("venue"), team.get("venue"))
    if isinstance(venue, Mapping):
        venue = venue.get("name")
    return Team(
        id=team_id,
        name=name,
        short_name=as_text(team.get("code")) or team_short_name(name),
        logo=as_text(team.get("logo")),
        country=as_text(country),
        founded=as_int(team.get("founded")),
        venue=as_text(venue),
    )


def normalize_standing(raw: Any) -> Optional[Standing]:
    """One table row; football's ``all`` block and the ``games`` block of other hosts."""
    if not isinstance(raw, Mapping):
        return None
    team_raw = as_mapping(raw.get("team"))
    if not team_raw:
        return None
    record = as_mapping(first(raw.get("all"), raw.get("games")))
    group = raw.get("group")
    if isinstance(group, Mapping):
        group = group.get("name")
    points = raw.get("points")
    difference = raw.get("goalsDiff")
    if isinstance(points, Mapping):
        scored, conceded = as_int(points.get("for")), as_int(points.get("against"))
        if difference is None and scored is not None and conceded is not None:
            difference = scored - conceded
        points = raw.get("pts")

    def _count(key: str) -> Optional[int]:
        value = record.get(key)
        if isinstance(value, Mapping):
            value = value.get("total")
        return as_int(value)

    return Standing(
        rank=as_int(first(raw.get("rank"), raw.get("position"))),
        team=_team_ref(team_raw, ""),
        points=as_int(points),
        played=_count("played"),
        won=_count("win"),
        drawn=_count("draw"),
        lost=_count("lose"),
        difference=as_int(difference),
        form=as_text(raw.get("form")),
        group=as_text(group),
    )


def flatten_standings(payload: Any) -> Iterable[Any]:
    """
    Yield table rows from either the football layout
    ``[{league: {standings: [[row, ...], ...]}}]`` or the nested lists other hosts return.
    """
    stack = [payload]
    while stack:
        node = stack.pop(0)
        if isinstance(node, list):
            stack[0:0] = node
        elif isinstance(node, Mapping):
            nested = dig(node, "league", "standings")
            if nested is not None:
                stack[0:0] = [nested]
            elif "team" in node:
                yield node
