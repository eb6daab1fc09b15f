"""
CricAPI mappers: matches and series.
"""
from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping, Optional

from shared.models.domain import (
    Fixture,
    FixtureStatus,
    LeagueRef,
    Match,
    MatchScore,
    MatchTeams,
    Series,
    TeamRef,
    TeamScore,
)
from shared.models.enums import Sport, StatusShort

from ingest.normalization.common import (
    as_float,
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
from ingest.normalization.payloads import CricApiMatchPayload
from ingest.normalization.status import cricket_status

# runs, optional /wickets, optional (overs)
SCORE_PATTERN = re.compile(r"(\d+)(?:/(\d+))?\s*(?:\(([0-9.]+)\))?")


def parse_score_string(score: Any) -> TeamScore:
    """
    Parse a cricket score string such as ``"287/4 (48.3)"`` into runs,
    wickets and overs. Anything unparseable yields an empty TeamScore.
    """
    if not isinstance(score, str) or not score.strip():
        return TeamScore()
    m = SCORE_PATTERN.search(score)
    if not m:
        return TeamScore()
    runs, wickets, overs = m.groups()
    return TeamScore(
        runs=int(runs),
        wickets=int(wickets) if wickets is not None else None,
        overs=as_float(overs),
    )


def _innings_score(obj: Mapping[str, Any]) -> TeamScore:
    return TeamScore(
        runs=as_int(first(obj.get("runs"), obj.get("r"))),
        wickets=as_int(first(obj.get("wickets"), obj.get("w"))),
        overs=as_float(first(obj.get("overs"), obj.get("o"))),
    )


def _team(raw: Mapping[str, Any], slot: str, index: int) -> TeamRef:
    obj = as_mapping(raw.get(slot))
    info = as_mapping(dig(raw, "teamInfo", index))
    short = "t1" if index == 0 else "t2"
    name = as_text(first(obj.get("name"), info.get("name"), raw.get(short), dig(raw, "teams", index)))
    short_name = as_text(
        first(obj.get("shortName"), info.get("shortname"), info.get("shortName"), raw.get(f"{short}s"))
    )
    return TeamRef(
        id=as_id(first(obj.get("id"), info.get("id"))),
        name=name or "TBC",
        short_name=short_name or team_short_name(name),
        logo=as_text(first(obj.get("img"), info.get("img"))),
    )


def _innings_owner(inning: Any, home: TeamRef, away: TeamRef, position: int) -> str:
    label = (inning or "").lower() if isinstance(inning, str) else ""
    if label:
        home_hit = bool(home.name) and label.startswith(home.name.lower())
        away_hit = bool(away.name) and label.startswith(away.name.lower())
        if home_hit != away_hit:
            return "home" if home_hit else "away"
        # One name can prefix the other ("India" / "India A"); longest wins.
        if home_hit and away_hit:
            return "home" if len(home.name) >= len(away.name) else "away"
    return "home" if position % 2 == 0 else "away"


def _team_scores(
    raw: Mapping[str, Any], home: TeamRef, away: TeamRef
) -> tuple[TeamScore, TeamScore, list[dict[str, Any]]]:
    score = raw.get("score")

    if isinstance(score, Mapping):
        h = score.get("team1")
        a = score.get("team2")
        return (
            _innings_score(h) if isinstance(h, Mapping) else parse_score_string(h),
            _innings_score(a) if isinstance(a, Mapping) else parse_score_string(a),
            [],
        )

    if isinstance(score, list) and score:
        latest: dict[str, TeamScore] = {}
        innings: list[dict[str, Any]] = []
        for position, inn in enumerate(score):
            if not isinstance(inn, Mapping):
                continue
            parsed = _innings_score(inn)
            side = _innings_owner(inn.get("inning"), home, away, position)
            latest[side] = parsed
            innings.append(
                drop_none(
                    {
                        "inning": as_text(inn.get("inning")),
                        "side": side,
                        "runs": parsed.runs,
                        "wickets": parsed.wickets,
                        "overs": parsed.overs,
                    }
                )
            )
        return latest.get("home", TeamScore()), latest.get("away", TeamScore()), innings

    return (
        parse_score_string(raw.get("team1Score")),
        parse_score_string(raw.get("team2Score")),
        [],
    )


def _elapsed_minutes(short: StatusShort, start: Optional[datetime], now: datetime) -> Optional[int]:
    if not short.is_live or start is None:
        return None
    minutes = int((now - start).total_seconds() // 60)
    return minutes if minutes > 0 else None


def normalize_cricket_match(payload: CricApiMatchPayload, now: datetime) -> Optional[Match]:
    raw = payload.body
    match_id = as_id(raw.get("id"))
    if match_id is None:
        return None

    status_text = as_text(raw.get("status"))
    short = cricket_status(raw.get("matchStarted"), raw.get("matchEnded"), status_text)
    if short is StatusShort.FT:
        long = status_text or "Match Finished"
    elif short.is_live:
        long = status_text or "Live"
    elif short is StatusShort.NS:
        long = "Not Started"
    else:
        long = status_text or short.value

    start = parse_datetime(first(raw.get("dateTimeGMT"), raw.get("date")))
    venue = as_text(raw.get("venue"))
    home = _team(raw, "team1", 0)
    away = _team(raw, "team2", 1)
    home_score, away_score, innings = _team_scores(raw, home, away)

    return Match(
        id=match_id,
        sport=Sport.CRICKET,
        league=LeagueRef(
            id=as_id(raw.get("series_id")),
            name=as_text(first(raw.get("series"), raw.get("seriesName"))) or "Unknown Series",
            country=as_text(venue.split(",")[-1]) if venue else None,
        ),
        teams=MatchTeams(home=home, away=away),
        fixture=Fixture(
            start_time=start,
            venue=venue,
            status=FixtureStatus(short=short, long=long, elapsed=_elapsed_minutes(short, start, now)),
        ),
        score=MatchScore(
            home=home_score,
            away=away_score,
            detail=as_text(first(raw.get("status"), raw.get("matchWinner"))),
        ),
        extras=drop_none(
            {
                "name": as_text(raw.get("name")),
                "matchType": as_text(raw.get("matchType")),
                "tossWinner": as_text(raw.get("tossWinner")),
                "tossChoice": as_text(raw.get("tossChoice")),
                "matchWinner": as_text(raw.get("matchWinner")),
                "umpires": raw.get("umpires"),
                "referee": raw.get("referee"),
                "bbbEnabled": raw.get("bbbEnabled"),
                "hasSquad": raw.get("hasSquad"),
                "fantasyEnabled": raw.get("fantasyEnabled"),
                "innings": innings or None,
            }
        ),
    )


def normalize_series(raw: Any) -> Optional[Series]:
    if not isinstance(raw, Mapping):
        return None
    series_id = as_id(raw.get("id"))
    if series_id is None:
        return None
    return Series(
        id=series_id,
        name=as_text(raw.get("name")) or "",
        status=as_text(raw.get("status")) or "active",
        start_date=as_text(raw.get("startDate")),
        end_date=as_text(raw.get("endDate")),
        matches=as_int(raw.get("matches")) or 0,
        odi=as_int(raw.get("odi")) or 0,
        t20=as_int(raw.get("t20")) or 0,
        test=as_int(raw.get("test")) or 0,
        squads=as_int(raw.get("squads")) or 0,
    )
