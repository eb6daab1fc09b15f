"""
Normalization entry points.

Dispatches raw provider payloads to the matching mapper and guarantees the
contract callers rely on: a canonical Match or None, never an exception for
bad data. Contract errors (an unknown sport key) still raise.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, TypeVar

from pydantic import ValidationError

from shared.models.domain import League, Match, Series, Standing, Team
from shared.models.enums import Sport
from shared.utils.logging import get_logger
from shared.utils.metrics import NORMALIZATION_DROPS

from ingest.normalization.apisports import (
    flatten_standings,
    normalize_apisports_game,
    normalize_league,
    normalize_standing,
    normalize_team,
)
from ingest.normalization.cricket import normalize_cricket_match, normalize_series
from ingest.normalization.payloads import CricApiMatchPayload, wrap_match_payload

logger = get_logger(__name__)

T = TypeVar("T")

_RECOVERABLE = (TypeError, ValueError, AttributeError, KeyError, IndexError, ValidationError)


def normalize_match(raw: Any, sport: Sport | str, now: Optional[datetime] = None) -> Optional[Match]:
    """
    Map one raw match/fixture object to a Match.

    Returns None for garbage input (non-object, missing id, unparseable
    structure). Missing optional fields never fail the record.

    Raises:
        UnsupportedSportError: ``sport`` is not a known sport key.
    """
    sport = Sport.parse(sport)
    payload = wrap_match_payload(raw, sport)
    if payload is None:
        _record_drop(sport, "not_an_object")
        return None
    now = now or datetime.now(timezone.utc)
    try:
        if isinstance(payload, CricApiMatchPayload):
            match = normalize_cricket_match(payload, now)
        else:
            match = normalize_apisports_game(payload, now)
    except _RECOVERABLE as exc:
        _record_drop(sport, type(exc).__name__, error=str(exc))
        return None
    if match is None:
        _record_drop(sport, "missing_id")
    return match


def normalize_matches(raws: Any, sport: Sport | str, now: Optional[datetime] = None) -> list[Match]:
    """Normalize a batch, dropping records that cannot be mapped."""
    sport = Sport.parse(sport)
    if not isinstance(raws, list):
        raws = [raws] if raws else []
    now = now or datetime.now(timezone.utc)
    out: list[Match] = []
    for raw in raws:
        match = normalize_match(raw, sport, now=now)
        if match is not None:
            out.append(match)
    return out


def _normalize_many(
    raws: Iterable[Any], fn: Callable[[Any], Optional[T]], sport: Sport, kind: str
) -> list[T]:
    out: list[T] = []
    for raw in raws:
        try:
            item = fn(raw)
        except _RECOVERABLE as exc:
            _record_drop(sport, type(exc).__name__, kind=kind, error=str(exc))
            continue
        if item is None:
            _record_drop(sport, "unparseable", kind=kind)
            continue
        out.append(item)
    return out


def normalize_series_list(raws: Any) -> list[Series]:
    return _normalize_many(_as_list(raws), normalize_series, Sport.CRICKET, "series")


def normalize_leagues(raws: Any, sport: Sport) -> list[League]:
    return _normalize_many(_as_list(raws), lambda r: normalize_league(r, sport), sport, "league")


def normalize_teams(raws: Any, sport: Sport) -> list[Team]:
    return _normalize_many(_as_list(raws), normalize_team, sport, "team")


def normalize_standings(raws: Any, sport: Sport) -> list[Standing]:
    return _normalize_many(list(flatten_standings(raws)), normalize_standing, sport, "standing")


def _as_list(raws: Any) -> list[Any]:
    if isinstance(raws, list):
        return raws
    return [raws] if raws else []


def _record_drop(sport: Sport, reason: str, **context: Any) -> None:
    NORMALIZATION_DROPS.labels(sport=sport.value).inc()
    logger.warning("normalization_dropped", sport=sport.value, reason=reason, **context)
