"""
Display projection layered on top of normalized matches.

Pure functions: they read a Match and build a new DisplayMatch. Nothing here
mutates its input, so formatting the same match twice gives the same result.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from shared.models.domain import DisplayMatch, Match, TeamScore
from shared.models.enums import Sport, StatusShort


def format_match_time(start_time: Optional[datetime], now: Optional[datetime] = None) -> str:
    """'HH:MM' today, 'Ddd HH:MM' within a week, 'Mon DD' beyond, 'TBD' if unknown."""
    if start_time is None:
        return "TBD"
    now = now or datetime.now(timezone.utc)
    start = _utc(start_time)
    now = _utc(now)
    if start.date() == now.date():
        return start.strftime("%H:%M")
    # whole days, truncated toward zero
    if int((start - now).total_seconds() / 86400) <= 7:
        return start.strftime("%a %H:%M")
    return start.strftime("%b %d")


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _cricket_side(score: TeamScore) -> str:
    if score.runs is None:
        return ""
    if score.wickets is None:
        return str(score.runs)
    return f"{score.runs}/{score.wickets}"


def short_score(match: Match) -> str:
    home, away = match.score.home, match.score.away
    status = match.fixture.status.short
    if match.sport is Sport.CRICKET:
        if home.runs is None and away.runs is None:
            return "vs" if status is StatusShort.NS else status.value
        return f"{_cricket_side(home)} - {_cricket_side(away)}"
    if home.points is None and away.points is None:
        return "vs" if status is StatusShort.NS else status.value
    return f"{home.points or 0} - {away.points or 0}"


def status_text(match: Match, now: Optional[datetime] = None) -> str:
    status = match.fixture.status
    if status.short is StatusShort.NS:
        return format_match_time(match.fixture.start_time, now)
    if match.sport is Sport.CRICKET:
        if status.short is StatusShort.LIVE:
            return "Live"
        if status.short is StatusShort.FT:
            return "Finished"
        return status.long
    if status.short is StatusShort.LIVE:
        return f"{status.elapsed}'" if status.elapsed else "Live"
    if status.short is StatusShort.FT:
        return "Full Time"
    if status.short is StatusShort.HT:
        return "Half Time"
    return status.long or status.short.value


def formatted_score(match: Match) -> str:
    """Sport-specific 'home - away' line."""
    home, away = match.score.home, match.score.away
    if match.sport is Sport.CRICKET:
        return f"{_cricket_side(home) or 0} - {_cricket_side(away) or 0}"
    if match.sport in (Sport.FOOTBALL, Sport.HOCKEY, Sport.HANDBALL):
        return f"{home.goals or 0} - {away.goals or 0}"
    if match.sport is Sport.TENNIS:
        return f"{home.sets or 0} - {away.sets or 0}"
    return f"{home.points or 0} - {away.points or 0}"


def format_match_for_display(match: Match, now: Optional[datetime] = None) -> DisplayMatch:
    now = now or datetime.now(timezone.utc)
    base = match.model_dump(exclude={"display_time", "short_score", "status_text"})
    return DisplayMatch.model_validate(
        {
            **base,
            "display_time": format_match_time(match.fixture.start_time, now),
            "short_score": short_score(match),
            "status_text": status_text(match, now),
        }
    )
