"""
Tests for the aggregator fan-out, filtering, sorting and failure isolation.

Run: pytest backend/tests/test_aggregator.py -v
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from aggregator.service import AggregatorService, envelope, live_sort_key
from cache.coalescer import CacheService
from ingest.providers.base import BaseProvider
from ingest.providers.registry import ProviderRegistry
from shared.config import Settings
from shared.models.domain import Fixture, FixtureStatus, Match, MatchTeams, TeamRef
from shared.models.enums import ProviderName, Sport, StatusShort, UnsupportedSportError

NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_match(
    match_id: str,
    sport: Sport,
    short: StatusShort = StatusShort.LIVE,
    start: Optional[datetime] = NOW,
) -> Match:
    return Match(
        id=match_id,
        sport=sport,
        teams=MatchTeams(home=TeamRef(name="A"), away=TeamRef(name="B")),
        fixture=Fixture(start_time=start, status=FixtureStatus(short=short)),
    )


class FakeProvider(BaseProvider):
    """Serves canned lists per sport; a sport mapped to an exception raises it."""

    def __init__(self, name: ProviderName, data: dict[Sport, object]) -> None:
        super().__init__(name, CacheService(settings=Settings()), set(data), settings=Settings())
        self.data = data
        self.calls: list[tuple[str, Sport]] = []

    def _serve(self, op: str, sport: Sport) -> list[Match]:
        self.calls.append((op, sport))
        value = self.data[sport]
        if isinstance(value, Exception):
            raise value
        return list(value)

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def get_live(self, sport: Sport) -> list[Match]:
        return self._serve("live", sport)

    async def get_upcoming(self, sport: Sport, days: int) -> list[Match]:
        return self._serve("upcoming", sport)

    async def get_recent(self, sport: Sport, days: int) -> list[Match]:
        return self._serve("recent", sport)

    async def get_match(self, sport: Sport, match_id: str) -> Optional[Match]:
        return next((m for m in self._serve("match", sport) if m.id == match_id), None)


def build(cricket: object, football: object, sports: list[Sport] | None = None) -> AggregatorService:
    registry = ProviderRegistry(
        [
            FakeProvider(ProviderName.CRICAPI, {Sport.CRICKET: cricket}),
            FakeProvider(ProviderName.APISPORTS, {Sport.FOOTBALL: football}),
        ]
    )
    return AggregatorService(
        registry,
        settings=Settings(),
        sports=sports or [Sport.CRICKET, Sport.FOOTBALL],
        now=lambda: NOW,
    )


# ── Combined live ───────────────────────────────────────────────────────

class TestAllLive:
    @pytest.mark.asyncio
    async def test_one_failing_provider_does_not_fail_the_call(self) -> None:
        football = [make_match("f1", Sport.FOOTBALL), make_match("f2", Sport.FOOTBALL)]
        agg = build(RuntimeError("cricapi down"), football)

        result = await agg.get_all_live()

        assert [m.id for m in result] == ["f1", "f2"]

    @pytest.mark.asyncio
    async def test_all_failing_gives_empty_list(self) -> None:
        agg = build(RuntimeError("down"), TimeoutError("slow"))
        assert await agg.get_all_live() == []

    @pytest.mark.asyncio
    async def test_sorted_by_sport_then_start(self) -> None:
        later = NOW + timedelta(minutes=30)
        agg = build(
            [make_match("c-late", Sport.CRICKET, start=later), make_match("c-early", Sport.CRICKET)],
            [make_match("f-none", Sport.FOOTBALL, start=None), make_match("f1", Sport.FOOTBALL)],
        )

        result = await agg.get_all_live()

        assert [m.id for m in result] == ["c-early", "c-late", "f1", "f-none"]

    @pytest.mark.asyncio
    async def test_non_live_matches_are_filtered(self) -> None:
        agg = build(
            [make_match("c1", Sport.CRICKET), make_match("c2", Sport.CRICKET, short=StatusShort.FT)],
            [make_match("f1", Sport.FOOTBALL, short=StatusShort.HT)],
        )
        assert [m.id for m in await agg.get_all_live()] == ["c1", "f1"]

    @pytest.mark.asyncio
    async def test_unconfigured_sport_fails_fast(self) -> None:
        agg = build([], [], sports=[Sport.CRICKET, Sport.HOCKEY])
        with pytest.raises(UnsupportedSportError):
            await agg.get_all_live()


# ── Upcoming / recent ───────────────────────────────────────────────────

class TestWindows:
    @pytest.mark.asyncio
    async def test_upcoming_filters_window_and_sorts_by_start_only(self) -> None:
        agg = build(
            [
                make_match("c-3d", Sport.CRICKET, StatusShort.NS, NOW + timedelta(days=3)),
                make_match("c-9d", Sport.CRICKET, StatusShort.NS, NOW + timedelta(days=9)),
                make_match("c-past", Sport.CRICKET, StatusShort.NS, NOW - timedelta(hours=1)),
            ],
            [
                make_match("f-1h", Sport.FOOTBALL, StatusShort.NS, NOW + timedelta(hours=1)),
                make_match("f-live", Sport.FOOTBALL, StatusShort.LIVE, NOW + timedelta(hours=2)),
                make_match("f-tbd", Sport.FOOTBALL, StatusShort.NS, None),
            ],
        )

        result = await agg.get_upcoming(window_days=7)

        assert [m.id for m in result] == ["f-1h", "c-3d"]

    @pytest.mark.asyncio
    async def test_recent_is_newest_first(self) -> None:
        agg = build(
            [make_match("c-6h", Sport.CRICKET, StatusShort.FT, NOW - timedelta(hours=6))],
            [
                make_match("f-1h", Sport.FOOTBALL, StatusShort.FT, NOW - timedelta(hours=1)),
                make_match("f-3d", Sport.FOOTBALL, StatusShort.FT, NOW - timedelta(days=3)),
                make_match("f-live", Sport.FOOTBALL, StatusShort.LIVE, NOW - timedelta(minutes=30)),
            ],
        )

        result = await agg.get_recent(window_days=1)

        assert [m.id for m in result] == ["f-1h", "c-6h"]

    @pytest.mark.asyncio
    async def test_upcoming_survives_branch_failure(self) -> None:
        agg = build(
            ValueError("bad payload"),
            [make_match("f1", Sport.FOOTBALL, StatusShort.NS, NOW + timedelta(days=1))],
        )
        assert [m.id for m in await agg.get_upcoming()] == ["f1"]


# ── Per-sport ───────────────────────────────────────────────────────────

class TestPerSport:
    @pytest.mark.asyncio
    async def test_sport_live_accepts_string_key(self) -> None:
        agg = build([make_match("c1", Sport.CRICKET)], [])
        assert [m.id for m in await agg.get_sport_live("Cricket")] == ["c1"]

    @pytest.mark.asyncio
    async def test_per_sport_propagates_provider_errors(self) -> None:
        agg = build(RuntimeError("down"), [])
        with pytest.raises(RuntimeError):
            await agg.get_sport_live(Sport.CRICKET)

    @pytest.mark.asyncio
    async def test_unknown_sport_raises(self) -> None:
        agg = build([], [])
        with pytest.raises(UnsupportedSportError):
            await agg.get_sport_live("curling")
        with pytest.raises(UnsupportedSportError):
            await agg.get_match_details(Sport.TENNIS, "1")

    @pytest.mark.asyncio
    async def test_match_details(self) -> None:
        agg = build([], [make_match("f1", Sport.FOOTBALL), make_match("f2", Sport.FOOTBALL)])
        match = await agg.get_match_details("football", "f2")
        assert match is not None and match.id == "f2"

    @pytest.mark.asyncio
    async def test_reference_data_not_offered_raises(self) -> None:
        agg = build([], [])
        with pytest.raises(UnsupportedSportError):
            await agg.get_leagues(Sport.CRICKET)

    @pytest.mark.asyncio
    async def test_series_defaults_to_empty(self) -> None:
        assert await build([], []).get_series() == []

    def test_supported_sports(self) -> None:
        infos = build([], []).supported_sports()
        assert [i.id for i in infos] == ["cricket", "football"]
        assert infos[0].name == "Cricket"


# ── Helpers ─────────────────────────────────────────────────────────────

def test_breakdown_includes_configured_sports_with_zero() -> None:
    agg = build([], [])
    counts = agg.breakdown([make_match("f1", Sport.FOOTBALL), make_match("f2", Sport.FOOTBALL)])
    assert counts == {"cricket": 0, "football": 2}


def test_live_sort_key_puts_unknown_start_last() -> None:
    a = make_match("a", Sport.FOOTBALL, start=None)
    b = make_match("b", Sport.FOOTBALL)
    assert sorted([a, b], key=live_sort_key) == [b, a]


def test_envelope_shape() -> None:
    ok = envelope([1, 2, 3])
    assert ok.success is True
    assert ok.count == 3
    assert ok.error is None

    failed = envelope([], error="upstream unavailable")
    doc = failed.to_store()
    assert doc["success"] is False
    assert doc["error"] == "upstream unavailable"
    assert isinstance(doc["timestamp"], int)

    assert envelope(None).count == 0
    assert envelope({"id": "1"}).count == 1
