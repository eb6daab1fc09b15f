"""
Status translation tables.

Every provider vocabulary is reduced to the ten canonical StatusShort codes.
Lookups are case-insensitive. Codes missing from a table map to NS and are
logged and counted, never raised.
"""
from __future__ import annotations

import re
from typing import Any, Optional

from shared.models.enums import Sport, StatusShort
from shared.utils.logging import get_logger
from shared.utils.metrics import UNKNOWN_STATUS_CODES

logger = get_logger(__name__)

S = StatusShort

CANONICAL_DESCRIPTIONS: dict[StatusShort, str] = {
    S.NS: "Not Started",
    S.LIVE: "In Progress",
    S.HT: "Half Time",
    S.FT: "Match Finished",
    S.CANC: "Cancelled",
    S.SUSP: "Suspended",
    S.AWD: "Awarded",
    S.ABD: "Abandoned",
    S.WO: "Walkover",
    S.PST: "Postponed",
}

# Codes every API-Sports host shares, plus the canonical codes themselves.
_COMMON: dict[str, StatusShort] = {
    **{code.value: code for code in StatusShort},
    "TBD": S.NS,
    "POST": S.PST,
    "INT": S.SUSP,
    "INTR": S.SUSP,
    "BT": S.HT,
    "AOT": S.FT,
    "AP": S.FT,
    "AW": S.AWD,
}

_FOOTBALL: dict[str, StatusShort] = {
    "1H": S.LIVE,
    "2H": S.LIVE,
    "ET": S.LIVE,
    "P": S.LIVE,
    "AET": S.FT,
    "PEN": S.FT,
}

_BASKETBALL: dict[str, StatusShort] = {
    "Q1": S.LIVE,
    "Q2": S.LIVE,
    "Q3": S.LIVE,
    "Q4": S.LIVE,
    "OT": S.LIVE,
}

_HOCKEY: dict[str, StatusShort] = {
    "P1": S.LIVE,
    "P2": S.LIVE,
    "P3": S.LIVE,
    "OT": S.LIVE,
    "PT": S.LIVE,
}

_BASEBALL: dict[str, StatusShort] = {f"IN{n}": S.LIVE for n in range(1, 10)}

_VOLLEYBALL: dict[str, StatusShort] = {f"S{n}": S.LIVE for n in range(1, 6)}

_TENNIS: dict[str, StatusShort] = {
    **{f"S{n}": S.LIVE for n in range(1, 6)},
    "RET": S.FT,
    "W/O": S.WO,
}

_HANDBALL: dict[str, StatusShort] = {"1H": S.LIVE, "2H": S.LIVE, "ET": S.LIVE, "PT": S.LIVE, "AET": S.FT, "AP": S.FT}

_RUGBY: dict[str, StatusShort] = {"1H": S.LIVE, "2H": S.LIVE, "ET": S.LIVE}

_AMERICAN_FOOTBALL: dict[str, StatusShort] = {
    "Q1": S.LIVE,
    "Q2": S.LIVE,
    "Q3": S.LIVE,
    "Q4": S.LIVE,
    "OT": S.LIVE,
}

# football-data.org and SportsData.io vocabularies show up in mirrored feeds.
_VENDOR: dict[str, StatusShort] = {
    "SCHEDULED": S.NS,
    "TIMED": S.NS,
    "IN_PLAY": S.LIVE,
    "INPROGRESS": S.LIVE,
    "PAUSED": S.HT,
    "HALFTIME": S.HT,
    "FINISHED": S.FT,
    "FINAL": S.FT,
    "F/OT": S.FT,
    "F/SO": S.FT,
    "AWARDED": S.AWD,
    "FORFEIT": S.AWD,
    "POSTPONED": S.PST,
    "DELAYED": S.PST,
    "SUSPENDED": S.SUSP,
    "CANCELLED": S.CANC,
    "CANCELED": S.CANC,
}

STATUS_TABLES: dict[Sport, dict[str, StatusShort]] = {
    Sport.FOOTBALL: {**_VENDOR, **_COMMON, **_FOOTBALL},
    Sport.BASKETBALL: {**_VENDOR, **_COMMON, **_BASKETBALL},
    Sport.HOCKEY: {**_VENDOR, **_COMMON, **_HOCKEY},
    Sport.BASEBALL: {**_VENDOR, **_COMMON, **_BASEBALL},
    Sport.VOLLEYBALL: {**_VENDOR, **_COMMON, **_VOLLEYBALL},
    Sport.TENNIS: {**_VENDOR, **_COMMON, **_TENNIS},
    Sport.HANDBALL: {**_VENDOR, **_COMMON, **_HANDBALL},
    Sport.RUGBY: {**_VENDOR, **_COMMON, **_RUGBY},
    Sport.AMERICAN_FOOTBALL: {**_VENDOR, **_COMMON, **_AMERICAN_FOOTBALL},
    Sport.CRICKET: {**_VENDOR, **_COMMON},
}


def map_status(code: Any, sport: Sport) -> StatusShort:
    """Translate a raw status code for ``sport``. Empty input is NS; unknown input is NS plus a warning."""
    if code is None:
        return S.NS
    key = str(code).strip().upper()
    if not key:
        return S.NS
    table = STATUS_TABLES.get(sport, _COMMON)
    found = table.get(key)
    if found is None:
        UNKNOWN_STATUS_CODES.labels(sport=sport.value).inc()
        logger.warning("status_code_unknown", sport=sport.value, code=str(code))
        return S.NS
    return found


def describe(short: StatusShort) -> str:
    return CANONICAL_DESCRIPTIONS[short]


# ── Cricket ─────────────────────────────────────────────────────────────
# CricAPI reports lifecycle as matchStarted/matchEnded flags plus free text.
# The phrase tables refine the flag-derived code; first match wins. Phrases
# only match whole words, so "Bahrain" never reads as rain.

PhraseTable = tuple[tuple[re.Pattern[str], StatusShort], ...]


def _phrases(*entries: tuple[str, StatusShort]) -> PhraseTable:
    return tuple((re.compile(rf"\b{pattern}\b", re.IGNORECASE), status) for pattern, status in entries)


_CRICKET_ENDED_PHRASES = _phrases(
    (r"abandon\w*", S.ABD),
    (r"no result", S.ABD),
    (r"cancel\w*", S.CANC),
    (r"walk\s?over", S.WO),
    (r"awarded", S.AWD),
    (r"forfeit\w*", S.AWD),
)

_CRICKET_LIVE_PHRASES = _phrases(
    (r"innings break", S.HT),
    (r"lunch", S.HT),
    (r"tea", S.HT),
    (r"drinks", S.HT),
    (r"stumps", S.SUSP),
    (r"rain\w*", S.SUSP),
    (r"bad light", S.SUSP),
    (r"wet outfield", S.SUSP),
    (r"delay\w*", S.SUSP),
    (r"suspend\w*", S.SUSP),
    (r"abandon\w*", S.ABD),
    (r"no result", S.ABD),
)

_CRICKET_PENDING_PHRASES = _phrases(
    (r"postpone\w*", S.PST),
    (r"cancel\w*", S.CANC),
    (r"abandon\w*", S.ABD),
    (r"no result", S.ABD),
)


def _phrase_status(text: Optional[str], table: PhraseTable) -> Optional[StatusShort]:
    if not text:
        return None
    for pattern, status in table:
        if pattern.search(text):
            return status
    return None


def cricket_status(started: Any, ended: Any, text: Optional[str]) -> StatusShort:
    """Canonical code from CricAPI flags, refined by the status text."""
    if ended is True:
        return _phrase_status(text, _CRICKET_ENDED_PHRASES) or S.FT
    if started is True:
        return _phrase_status(text, _CRICKET_LIVE_PHRASES) or S.LIVE
    return _phrase_status(text, _CRICKET_PENDING_PHRASES) or S.NS
