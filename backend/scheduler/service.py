"""
Sync scheduler for the MatchArena feed.
Periodically pulls combined live / upcoming / recent lists from the aggregator
and persists them to the shared match store. Uses leader election so only one
instance writes when several are deployed.
"""
from __future__ import annotations

import asyncio
import json
import math
import signal
import time
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from cache.coalescer import CacheService
from shared.config import Settings, get_settings
from shared.models.domain import Match
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import (
    LIVE_MATCHES,
    SYNC_CYCLE,
    SYNC_PERSISTED,
    atrack_latency,
    start_metrics_server,
)
from shared.utils.redis_manager import RedisManager, match_key

from aggregator.service import AggregatorService
from ingest.providers.registry import ProviderRegistry, build_default_registry

logger = get_logger(__name__)

BUCKET_LIVE = "live"
BUCKET_UPCOMING = "upcoming"
BUCKET_RECENT = "recent"
LEADER_ROLE = "sync-scheduler"
SECONDS_PER_DAY = 86400


def daily_requests_per_host(settings: Settings) -> int:
    """
    Worst-case upstream requests one provider host gets from the sync loop per
    UTC day: a live fetch every tick, plus upcoming and recent on every full
    tick. Cache hits only lower this.
    """
    ticks = math.ceil(SECONDS_PER_DAY / max(settings.scheduler_sync_interval_s, 1.0))
    full_ticks = math.ceil(ticks / max(1, settings.scheduler_upcoming_every_n))
    return ticks + 2 * full_ticks


class MatchStore(Protocol):
    """Keyed store the scheduler writes to; one document per match under ``sport/matchId``."""

    async def put_matches(self, bucket: str, matches: Sequence[Match]) -> int:
        ...

    async def get_match(self, sport: str, match_id: str) -> Optional[dict]:
        ...


class RedisMatchStore:
    """MatchStore on Redis: ``match:{sport}/{matchId}`` JSON plus a per-bucket index set."""

    def __init__(self, redis: RedisManager, ttl_s: int) -> None:
        self._redis = redis
        self._ttl_s = ttl_s

    async def put_matches(self, bucket: str, matches: Sequence[Match]) -> int:
        snapshots = [
            (match_key(m.sport.value, m.id), json.dumps(m.to_store(), separators=(",", ":")))
            for m in matches
        ]
        written = await self._redis.write_bucket(bucket, snapshots, ttl_s=self._ttl_s)
        await self._redis.mark_synced(bucket, int(time.time() * 1000))
        return written

    async def get_match(self, sport: str, match_id: str) -> Optional[dict]:
        raw = await self._redis.get_snapshot(match_key(sport, match_id))
        return json.loads(raw) if raw else None


class SyncScheduler:
    """
    Drives the sync loop:
    1. Acquires leadership via Redis-based leader election (when Redis is given)
    2. Every cycle, persists the live bucket
    3. Every Nth cycle, also persists the upcoming and recent buckets
    """

    def __init__(
        self,
        aggregator: AggregatorService,
        store: MatchStore,
        settings: Settings | None = None,
        redis: RedisManager | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._store = store
        self._settings = settings or get_settings()
        self._redis = redis
        self._instance_id = self._settings.instance_id or f"scheduler-{id(self):x}"
        self._shutdown = asyncio.Event()
        self._cycle = 0
        self._is_leader = False

    async def _acquire_leadership(self) -> bool:
        """Attempt to acquire or renew scheduler leadership."""
        if self._redis is None:
            return True
        ttl = self._settings.scheduler_leader_ttl_s
        if self._is_leader:
            if await self._redis.renew_leader(LEADER_ROLE, self._instance_id, ttl):
                return True
            logger.warning("leadership_lost", instance_id=self._instance_id)
            self._is_leader = False
        if await self._redis.try_acquire_leader(LEADER_ROLE, self._instance_id, ttl):
            self._is_leader = True
            logger.info("leadership_acquired", instance_id=self._instance_id)
        return self._is_leader

    async def _sync_bucket(self, bucket: str, matches: list[Match]) -> int:
        written = await self._store.put_matches(bucket, matches)
        SYNC_PERSISTED.labels(bucket=bucket).inc(written)
        return written

    async def sync_live(self) -> int:
        async with atrack_latency(SYNC_CYCLE, bucket=BUCKET_LIVE):
            matches = await self._aggregator.get_all_live()
            counts = self._aggregator.breakdown(matches)
            for sport, count in counts.items():
                LIVE_MATCHES.labels(sport=sport).set(count)
            written = await self._sync_bucket(BUCKET_LIVE, matches)
        logger.info("sync_live_complete", matches=written, breakdown=counts)
        return written

    async def sync_upcoming(self) -> int:
        async with atrack_latency(SYNC_CYCLE, bucket=BUCKET_UPCOMING):
            matches = await self._aggregator.get_upcoming()
            written = await self._sync_bucket(BUCKET_UPCOMING, matches)
        logger.info("sync_upcoming_complete", matches=written)
        return written

    async def sync_recent(self) -> int:
        async with atrack_latency(SYNC_CYCLE, bucket=BUCKET_RECENT):
            matches = await self._aggregator.get_recent()
            written = await self._sync_bucket(BUCKET_RECENT, matches)
        logger.info("sync_recent_complete", matches=written)
        return written

    async def run_once(self, full: bool = True) -> dict[str, int]:
        """One sync cycle. Returns matches written per bucket."""
        written = {BUCKET_LIVE: await self.sync_live()}
        if full:
            written[BUCKET_UPCOMING] = await self.sync_upcoming()
            written[BUCKET_RECENT] = await self.sync_recent()
        return written

    # ── Main loop ───────────────────────────────────────────────────────

    async def run(self) -> None:
        """
        Main scheduler loop.
        Live every tick; upcoming and recent every ``scheduler_upcoming_every_n`` ticks.
        A failed cycle is logged and the loop carries on.
        """
        every_n = max(1, self._settings.scheduler_upcoming_every_n)
        while not self._shutdown.is_set():
            try:
                if not await self._acquire_leadership():
                    await self._wait(self._settings.scheduler_leader_renew_s)
                    continue

                full = self._cycle % every_n == 0
                self._cycle += 1
                await self.run_once(full=full)

            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("sync_cycle_error", error=str(exc), exc_info=True)

            await self._idle(self._settings.scheduler_sync_interval_s)

        if self._is_leader and self._redis is not None:
            await self._redis.release_leader(LEADER_ROLE, self._instance_id)
            self._is_leader = False

    async def _idle(self, seconds: float) -> None:
        """Sleep until the next tick, renewing leadership so the lock outlives the gap."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        step = self._settings.scheduler_leader_renew_s
        while not self._shutdown.is_set():
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            if not (self._is_leader and self._redis is not None and step > 0):
                await self._wait(remaining)
                return
            await self._wait(min(step, remaining))
            if self._shutdown.is_set() or deadline - loop.time() <= 0:
                return
            try:
                await self._acquire_leadership()
            except Exception as exc:
                logger.error("leader_renew_error", error=str(exc), exc_info=True)

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    def request_shutdown(self) -> None:
        self._shutdown.set()


async def main() -> None:
    """Sync scheduler entrypoint."""
    settings = get_settings()
    setup_logging("sync-scheduler")
    start_metrics_server()

    budget = daily_requests_per_host(settings)
    if budget > settings.provider_daily_limit > 0:
        logger.warning(
            "sync_cadence_exceeds_daily_quota",
            requests_per_host=budget,
            daily_limit=settings.provider_daily_limit,
        )

    redis = RedisManager(settings)
    await redis.connect()

    cache = CacheService(settings)
    registry: ProviderRegistry = build_default_registry(cache, settings)
    await registry.start_all()

    aggregator = AggregatorService(registry, settings)
    store = RedisMatchStore(redis, ttl_s=settings.store_match_ttl_s)
    service = SyncScheduler(aggregator, store, settings, redis=redis)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    logger.info(
        "sync_scheduler_started",
        instance_id=settings.instance_id,
        sports=[s.value for s in aggregator.sports],
        started_at=datetime.now(timezone.utc).isoformat(),
    )

    try:
        await service.run()
    finally:
        await cache.aclose()
        await registry.close_all()
        await redis.disconnect()
        logger.info("sync_scheduler_stopped")


if __name__ == "__main__":
    asyncio.run(main())
