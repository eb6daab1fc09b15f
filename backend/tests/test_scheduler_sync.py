"""
Tests for the sync scheduler and the Redis-backed match store.

Run: pytest backend/tests/test_scheduler_sync.py -v
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from scheduler.service import RedisMatchStore, SyncScheduler, daily_requests_per_host
from shared.config import Settings
from shared.models.domain import Fixture, FixtureStatus, Match, MatchTeams, TeamRef
from shared.models.enums import Sport, StatusShort
from shared.utils.redis_manager import RedisManager


def make_match(match_id: str, sport: Sport = Sport.FOOTBALL) -> Match:
    return Match(
        id=match_id,
        sport=sport,
        teams=MatchTeams(home=TeamRef(name="A"), away=TeamRef(name="B")),
        fixture=Fixture(
            start_time=datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc),
            status=FixtureStatus(short=StatusShort.LIVE, long="Live"),
        ),
    )


@pytest.fixture
def aggregator() -> MagicMock:
    agg = MagicMock()
    agg.get_all_live = AsyncMock(return_value=[make_match("f1"), make_match("c1", Sport.CRICKET)])
    agg.get_upcoming = AsyncMock(return_value=[make_match("f2")])
    agg.get_recent = AsyncMock(return_value=[])
    agg.breakdown = MagicMock(return_value={"football": 1, "cricket": 1})
    return agg


@pytest.fixture
def store() -> MagicMock:
    s = MagicMock()
    s.put_matches = AsyncMock(side_effect=lambda bucket, matches: len(matches))
    return s


@pytest.fixture
def settings() -> Settings:
    return Settings(scheduler_sync_interval_s=0, scheduler_upcoming_every_n=3, scheduler_leader_renew_s=0)


class TestSyncScheduler:
    @pytest.mark.asyncio
    async def test_run_once_full(self, aggregator: MagicMock, store: MagicMock, settings: Settings) -> None:
        scheduler = SyncScheduler(aggregator, store, settings)

        written = await scheduler.run_once(full=True)

        assert written == {"live": 2, "upcoming": 1, "recent": 0}
        buckets = [c.args[0] for c in store.put_matches.await_args_list]
        assert buckets == ["live", "upcoming", "recent"]

    @pytest.mark.asyncio
    async def test_run_once_live_only(self, aggregator: MagicMock, store: MagicMock, settings: Settings) -> None:
        scheduler = SyncScheduler(aggregator, store, settings)

        written = await scheduler.run_once(full=False)

        assert written == {"live": 2}
        aggregator.get_upcoming.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_loop_survives_failed_cycle(
        self, aggregator: MagicMock, store: MagicMock, settings: Settings
    ) -> None:
        scheduler = SyncScheduler(aggregator, store, settings)
        calls = 0

        async def flaky_live() -> list[Match]:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise RuntimeError("store unavailable")
            scheduler.request_shutdown()
            return []

        aggregator.get_all_live = AsyncMock(side_effect=flaky_live)
        await scheduler.run()

        assert calls == 2

    @pytest.mark.asyncio
    async def test_full_sync_every_nth_cycle(
        self, aggregator: MagicMock, store: MagicMock, settings: Settings
    ) -> None:
        scheduler = SyncScheduler(aggregator, store, settings)
        cycles = 0

        async def live() -> list[Match]:
            nonlocal cycles
            cycles += 1
            if cycles == 4:
                scheduler.request_shutdown()
            return []

        aggregator.get_all_live = AsyncMock(side_effect=live)
        await scheduler.run()

        # cycles 0 and 3 are full syncs
        assert aggregator.get_upcoming.await_count == 2
        assert aggregator.get_recent.await_count == 2

    @pytest.mark.asyncio
    async def test_follower_does_not_write(
        self, aggregator: MagicMock, store: MagicMock, settings: Settings
    ) -> None:
        redis = MagicMock()
        scheduler = SyncScheduler(aggregator, store, settings, redis=redis)
        attempts = 0

        async def not_leader(*args: object) -> bool:
            nonlocal attempts
            attempts += 1
            if attempts == 2:
                scheduler.request_shutdown()
            return False

        redis.try_acquire_leader = AsyncMock(side_effect=not_leader)
        redis.release_leader = AsyncMock()
        await scheduler.run()

        store.put_matches.assert_not_awaited()
        redis.release_leader.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_leader_releases_on_shutdown(
        self, aggregator: MagicMock, store: MagicMock, settings: Settings
    ) -> None:
        redis = MagicMock()
        redis.try_acquire_leader = AsyncMock(return_value=True)
        redis.release_leader = AsyncMock(return_value=True)
        scheduler = SyncScheduler(aggregator, store, settings, redis=redis)
        store.put_matches = AsyncMock(side_effect=lambda bucket, matches: scheduler.request_shutdown() or 0)

        await scheduler.run()

        redis.release_leader.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_leader_renews_while_idle(self, aggregator: MagicMock, store: MagicMock) -> None:
        settings = Settings(scheduler_sync_interval_s=5.0, scheduler_leader_renew_s=0.01)
        redis = MagicMock()
        redis.try_acquire_leader = AsyncMock(return_value=True)
        redis.release_leader = AsyncMock(return_value=True)
        scheduler = SyncScheduler(aggregator, store, settings, redis=redis)
        renewals = 0

        async def renew(*args: object) -> bool:
            nonlocal renewals
            renewals += 1
            if renewals == 2:
                scheduler.request_shutdown()
            return True

        redis.renew_leader = AsyncMock(side_effect=renew)
        await scheduler.run()

        assert renewals == 2
        # one full cycle ran before the idle gap
        assert store.put_matches.await_count == 3
        redis.try_acquire_leader.assert_awaited_once()
        redis.release_leader.assert_awaited_once()


class TestSyncBudget:
    def test_default_cadence_fits_daily_quota(self) -> None:
        settings = Settings()
        assert daily_requests_per_host(settings) == 84
        assert daily_requests_per_host(settings) <= settings.provider_daily_limit

    def test_counts_live_every_tick_and_full_every_nth(self) -> None:
        settings = Settings(scheduler_sync_interval_s=30.0, scheduler_upcoming_every_n=10)
        # 2880 live + 2 * 288 full
        assert daily_requests_per_host(settings) == 3456
        assert daily_requests_per_host(settings) > settings.provider_daily_limit


class TestRedisMatchStore:
    @pytest.mark.asyncio
    async def test_put_matches_writes_camel_case_documents(self) -> None:
        redis = MagicMock(spec=RedisManager)
        redis.write_bucket = AsyncMock(return_value=2)
        redis.mark_synced = AsyncMock()
        store = RedisMatchStore(redis, ttl_s=600)

        written = await store.put_matches("live", [make_match("f1"), make_match("c1", Sport.CRICKET)])

        assert written == 2
        bucket, snapshots = redis.write_bucket.await_args.args
        assert bucket == "live"
        assert redis.write_bucket.await_args.kwargs == {"ttl_s": 600}
        keys = [key for key, _ in snapshots]
        assert keys == ["match:football/f1", "match:cricket/c1"]
        doc = json.loads(snapshots[0][1])
        assert doc["fixture"]["startTime"].startswith("2024-03-10T12:00:00")
        assert doc["teams"]["home"]["shortName"] == ""
        redis.mark_synced.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_match(self) -> None:
        redis = MagicMock(spec=RedisManager)
        redis.get_snapshot = AsyncMock(side_effect=[json.dumps({"id": "f1"}), None])
        store = RedisMatchStore(redis, ttl_s=600)

        assert await store.get_match("football", "f1") == {"id": "f1"}
        assert await store.get_match("football", "missing") is None
        redis.get_snapshot.assert_any_await("match:football/f1")


class TestRedisManagerBuckets:
    @pytest.mark.asyncio
    async def test_write_bucket_replaces_index_in_one_transaction(self) -> None:
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[])
        client = MagicMock()
        client.pipeline = MagicMock(return_value=pipe)
        manager = RedisManager(Settings(), client=client)

        written = await manager.write_bucket("live", [("match:football/1", "{}"), ("match:football/2", "{}")], ttl_s=60)

        assert written == 2
        client.pipeline.assert_called_once_with(transaction=True)
        pipe.delete.assert_called_once_with("index:live")
        pipe.sadd.assert_called_once_with("index:live", "match:football/1", "match:football/2")
        pipe.expire.assert_called_once_with("index:live", 60)
        assert pipe.set.call_count == 2
        pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_empty_bucket_clears_index(self) -> None:
        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[])
        client = MagicMock()
        client.pipeline = MagicMock(return_value=pipe)
        manager = RedisManager(Settings(), client=client)

        assert await manager.write_bucket("recent", [], ttl_s=60) == 0
        pipe.delete.assert_called_once_with("index:recent")
        pipe.sadd.assert_not_called()
