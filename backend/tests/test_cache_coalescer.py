"""
Unit tests for the stale-while-revalidate cache and request coalescing.

Run: pytest backend/tests/test_cache_coalescer.py -v
"""
from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from cache.coalescer import (
    CacheService,
    Freshness,
    generate_cache_key,
    resolve_cache_class,
)
from shared.config import Settings
from shared.models.enums import CacheClass


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheService:
    return CacheService(settings=Settings(), clock=clock)


async def _prime(cache: CacheService, key: str, value: object, cache_class: str = "live") -> None:
    await cache.get_cached_or_fetch(key, AsyncMock(return_value=value), cache_class)


# ── Key generation ──────────────────────────────────────────────────────

def test_cache_key_ignores_param_order() -> None:
    assert generate_cache_key("cricket/live", {"b": 2, "a": 1}) == generate_cache_key(
        "cricket/live", {"a": 1, "b": 2}
    )


def test_cache_key_format() -> None:
    assert generate_cache_key("football/upcoming", {"days": 7, "country": "England"}) == (
        "football/upcoming?country=England&days=7"
    )


def test_cache_key_without_params_is_endpoint() -> None:
    assert generate_cache_key("cricket/series") == "cricket/series"
    assert generate_cache_key("cricket/series", {}) == "cricket/series"


def test_cache_key_drops_none_values() -> None:
    assert generate_cache_key("football/leagues", {"country": None}) == "football/leagues"
    assert generate_cache_key("football/teams", {"league": 39, "search": None}) == (
        "football/teams?league=39"
    )


def test_unknown_cache_class_falls_back_to_upcoming() -> None:
    assert resolve_cache_class("nonsense") is CacheClass.UPCOMING
    assert resolve_cache_class("LIVE") is CacheClass.LIVE


# ── Coalescing ──────────────────────────────────────────────────────────

class TestCoalescing:
    @pytest.mark.asyncio
    async def test_concurrent_cold_callers_share_one_fetch(self, cache: CacheService) -> None:
        gate = asyncio.Event()
        calls = 0

        async def fetch() -> dict[str, int]:
            nonlocal calls
            calls += 1
            await gate.wait()
            return {"matches": 3}

        callers = [
            asyncio.create_task(cache.get_cached_or_fetch("cricket/live", fetch, "live"))
            for _ in range(5)
        ]
        await asyncio.sleep(0)
        assert cache.stats()["in_flight"] == 1
        gate.set()
        results = await asyncio.gather(*callers)

        assert calls == 1
        assert all(r == {"matches": 3} for r in results)
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_coalesced_waiters_share_the_error_on_cold_key(self, cache: CacheService) -> None:
        gate = asyncio.Event()
        fetch_calls = 0

        async def fetch() -> None:
            nonlocal fetch_calls
            fetch_calls += 1
            await gate.wait()
            raise RuntimeError("upstream down")

        callers = [
            asyncio.create_task(cache.get_cached_or_fetch("k", fetch, "live")) for _ in range(3)
        ]
        await asyncio.sleep(0)
        gate.set()
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert fetch_calls == 1
        assert all(isinstance(r, RuntimeError) for r in results)
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_registry_cleared_after_failure_so_next_call_refetches(
        self, cache: CacheService
    ) -> None:
        failing = AsyncMock(side_effect=RuntimeError("boom"))
        with pytest.raises(RuntimeError):
            await cache.get_cached_or_fetch("k", failing, "live")

        ok = AsyncMock(return_value=[1])
        assert await cache.get_cached_or_fetch("k", ok, "live") == [1]
        ok.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancelled_caller_does_not_cancel_fetch(self, cache: CacheService) -> None:
        gate = asyncio.Event()

        async def fetch() -> str:
            await gate.wait()
            return "done"

        caller = asyncio.create_task(cache.get_cached_or_fetch("k", fetch, "live"))
        await asyncio.sleep(0)
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        gate.set()
        await cache.drain()
        entry = cache.peek("k")
        assert entry is not None
        assert entry.data == "done"

    @pytest.mark.asyncio
    async def test_different_keys_fetch_independently(self, cache: CacheService) -> None:
        a = AsyncMock(return_value="a")
        b = AsyncMock(return_value="b")
        results = await asyncio.gather(
            cache.get_cached_or_fetch("football/live", a, "live"),
            cache.get_cached_or_fetch("basketball/live", b, "live"),
        )
        assert results == ["a", "b"]
        a.assert_awaited_once()
        b.assert_awaited_once()


# ── Freshness ───────────────────────────────────────────────────────────

class TestFreshness:
    @pytest.mark.asyncio
    async def test_fresh_hit_returns_without_suspending(self, cache: CacheService) -> None:
        await _prime(cache, "k", ["cached"])
        fetch = AsyncMock(return_value=["new"])

        coro = cache.get_cached_or_fetch("k", fetch, "live")
        with pytest.raises(StopIteration) as done:
            coro.send(None)

        assert done.value.value == ["cached"]
        fetch.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_hit_returns_old_value_and_revalidates_in_background(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "k", "old")
        clock.advance(20)

        gate = asyncio.Event()
        started = asyncio.Event()

        async def slow_fetch() -> str:
            started.set()
            await gate.wait()
            return "new"

        value = await cache.get_cached_or_fetch("k", slow_fetch, "live")
        assert value == "old"
        assert not started.is_set()
        assert cache.stats()["background_tasks"] == 1

        await asyncio.wait_for(started.wait(), timeout=1)
        assert cache.peek("k").data == "old"

        gate.set()
        await cache.drain()
        assert cache.peek("k").data == "new"

    @pytest.mark.asyncio
    async def test_live_entry_is_stale_at_20s_and_expired_at_40s(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "cricket/live", "v1")
        profile = cache.profile("live")
        entry = cache.peek("cricket/live")

        clock.advance(20)
        assert entry.freshness(profile, clock()) is Freshness.STALE
        stale_fetch = AsyncMock(return_value="v2")
        assert await cache.get_cached_or_fetch("cricket/live", stale_fetch, "live") == "v1"
        await cache.drain()
        stale_fetch.assert_awaited_once()

        # v2 was stored at t+20; age it to 40s
        clock.advance(40)
        assert cache.peek("cricket/live").freshness(profile, clock()) is Freshness.EXPIRED
        blocking_fetch = AsyncMock(return_value="v3")
        assert await cache.get_cached_or_fetch("cricket/live", blocking_fetch, "live") == "v3"
        blocking_fetch.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_path_starts_at_most_one_revalidation(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "k", "old")
        clock.advance(20)
        gate = asyncio.Event()
        calls = 0

        async def fetch() -> str:
            nonlocal calls
            calls += 1
            await gate.wait()
            return "new"

        first = await cache.get_cached_or_fetch("k", fetch, "live")
        second = await cache.get_cached_or_fetch("k", fetch, "live")
        assert first == second == "old"

        gate.set()
        await cache.drain()
        assert calls == 1

    @pytest.mark.asyncio
    async def test_background_failure_is_dropped_and_entry_kept(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "k", "old")
        clock.advance(20)
        failing = AsyncMock(side_effect=RuntimeError("upstream 503"))

        assert await cache.get_cached_or_fetch("k", failing, "live") == "old"
        await cache.drain()

        failing.assert_awaited_once()
        assert cache.peek("k").data == "old"
        assert cache.stats()["in_flight"] == 0


# ── Failure policy ──────────────────────────────────────────────────────

class TestFailurePolicy:
    @pytest.mark.asyncio
    async def test_expired_entry_served_when_fetch_fails(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "k", ["stale but better than nothing"])
        clock.advance(3600)
        failing = AsyncMock(side_effect=TimeoutError("slow upstream"))

        result = await cache.get_cached_or_fetch("k", failing, "live")

        assert result == ["stale but better than nothing"]
        failing.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cold_key_propagates_error(self, cache: CacheService) -> None:
        with pytest.raises(ValueError, match="bad payload"):
            await cache.get_cached_or_fetch(
                "k", AsyncMock(side_effect=ValueError("bad payload")), "live"
            )
        assert cache.peek("k") is None

    @pytest.mark.asyncio
    async def test_expired_entry_keeps_original_timestamp_after_failed_refetch(
        self, cache: CacheService, clock: FakeClock
    ) -> None:
        await _prime(cache, "k", "v1")
        stored_at = cache.peek("k").timestamp
        clock.advance(100)
        await cache.get_cached_or_fetch("k", AsyncMock(side_effect=RuntimeError()), "live")
        assert cache.peek("k").timestamp == stored_at


# ── Maintenance ─────────────────────────────────────────────────────────

class TestMaintenance:
    @pytest.mark.asyncio
    async def test_lru_bound_evicts_least_recently_used(self, clock: FakeClock) -> None:
        cache = CacheService(settings=Settings(), max_items=2, clock=clock)
        await _prime(cache, "a", 1)
        await _prime(cache, "b", 2)
        await _prime(cache, "a", 99)  # fresh hit, moves "a" to the back
        await _prime(cache, "c", 3)

        assert cache.peek("b") is None
        assert cache.peek("a").data == 1
        assert cache.peek("c").data == 3

    @pytest.mark.asyncio
    async def test_invalidate_by_pattern(self, cache: CacheService) -> None:
        await _prime(cache, "cricket/live", 1)
        await _prime(cache, "cricket/upcoming?days=7", 2)
        await _prime(cache, "football/live", 3)

        assert cache.invalidate("cricket/") == 2
        assert cache.peek("football/live") is not None
        assert cache.invalidate() == 1
        assert cache.stats()["entries"] == 0

    def test_cache_control_header(self, cache: CacheService) -> None:
        assert cache.cache_control_header("live") == "public, max-age=15, stale-while-revalidate=30"
        assert cache.cache_control_header("standings") == (
            "public, max-age=43200, stale-while-revalidate=86400"
        )
        assert cache.cache_control_header("unknown") == cache.cache_control_header("upcoming")

    def test_profiles_are_overridable(self, clock: FakeClock) -> None:
        cache = CacheService(settings=Settings(), profiles={"live": (5, 10)}, clock=clock)
        assert cache.profile(CacheClass.LIVE).ttl_s == 5
        assert cache.profile(CacheClass.UPCOMING).ttl_s == 120

    @pytest.mark.asyncio
    async def test_aclose_cancels_stuck_fetches(self, cache: CacheService) -> None:
        never = asyncio.Event()

        async def fetch() -> None:
            await never.wait()

        caller = asyncio.create_task(cache.get_cached_or_fetch("k", fetch, "live"))
        await asyncio.sleep(0)
        await cache.aclose(timeout_s=0.01)

        assert cache.stats()["tasks"] == 0
        with pytest.raises(asyncio.CancelledError):
            await caller
