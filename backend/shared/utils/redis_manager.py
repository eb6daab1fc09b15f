"""
Redis connection manager for the MatchArena feed.
Provides the async connection pool, match snapshot helpers, bucket index sets
and scheduler leader election.
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

import redis.asyncio as aioredis
from redis.asyncio import Redis

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Key namespaces ──────────────────────────────────────────────────────
MATCH_KEY = "match:{sport}/{match_id}"
BUCKET_INDEX_KEY = "index:{bucket}"
SYNC_STAMP_KEY = "sync:{bucket}:last"
LEADER_KEY = "leader:{role}"


def _fmt(template: str, **kwargs: Any) -> str:
    return template.format(**kwargs)


def match_key(sport: str, match_id: str) -> str:
    return _fmt(MATCH_KEY, sport=sport, match_id=match_id)


class RedisManager:
    """Manages async Redis connection pool and provides typed helpers."""

    def __init__(self, settings: Settings | None = None, client: Redis | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: Optional[Redis] = client

    async def connect(self) -> None:
        """Initialize the connection pool."""
        if self._pool is None:
            self._pool = aioredis.from_url(
                self._settings.redis_url_str,
                max_connections=self._settings.redis_max_connections,
                decode_responses=True,
                socket_connect_timeout=5,
                socket_keepalive=True,
                retry_on_timeout=True,
            )
        await self._pool.ping()
        logger.info("redis_connected", url=self._settings.redis_url_str)

    async def disconnect(self) -> None:
        """Graceful shutdown."""
        if self._pool:
            await self._pool.aclose()
            self._pool = None
            logger.info("redis_disconnected")

    @property
    def client(self) -> Redis:
        if self._pool is None:
            raise RuntimeError("RedisManager not connected. Call connect() first.")
        return self._pool

    # ── Snapshot reads ──────────────────────────────────────────────────
    async def get_snapshot(self, key: str) -> Optional[str]:
        """Retrieve a JSON snapshot."""
        return await self.client.get(key)

    # ── Match buckets ───────────────────────────────────────────────────
    async def write_bucket(
        self,
        bucket: str,
        snapshots: Iterable[tuple[str, str]],
        ttl_s: int,
    ) -> int:
        """
        Write (key, json) pairs and replace the bucket's index set in one
        transaction, so readers never see a half-written bucket.
        """
        items = list(snapshots)
        index_key = _fmt(BUCKET_INDEX_KEY, bucket=bucket)
        pipe = self.client.pipeline(transaction=True)
        for key, data in items:
            pipe.set(key, data, ex=ttl_s)
        pipe.delete(index_key)
        if items:
            pipe.sadd(index_key, *(key for key, _ in items))
            pipe.expire(index_key, ttl_s)
        await pipe.execute()
        return len(items)

    async def mark_synced(self, bucket: str, timestamp_ms: int) -> None:
        await self.client.set(_fmt(SYNC_STAMP_KEY, bucket=bucket), str(timestamp_ms))

    # ── Leader election ─────────────────────────────────────────────────

    # Lua script: atomically renew TTL only if we hold the lock
    _RENEW_LEADER_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("expire", KEYS[1], ARGV[2])
    return 1
end
return 0
"""

    # Lua script: atomically delete only if we hold the lock
    _RELEASE_LEADER_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    redis.call("del", KEYS[1])
    return 1
end
return 0
"""

    async def try_acquire_leader(self, role: str, instance_id: str, ttl_s: int = 30) -> bool:
        """Attempt to acquire leadership using SET NX."""
        key = _fmt(LEADER_KEY, role=role)
        return bool(await self.client.set(key, instance_id, nx=True, ex=ttl_s))

    async def renew_leader(self, role: str, instance_id: str, ttl_s: int = 30) -> bool:
        """Atomically renew leadership if still the current leader."""
        key = _fmt(LEADER_KEY, role=role)
        result = await self.client.eval(
            self._RENEW_LEADER_SCRIPT, 1, key, instance_id, str(ttl_s)
        )
        return bool(result)

    async def release_leader(self, role: str, instance_id: str) -> bool:
        """Atomically release leadership only if we hold it."""
        key = _fmt(LEADER_KEY, role=role)
        result = await self.client.eval(
            self._RELEASE_LEADER_SCRIPT, 1, key, instance_id
        )
        return bool(result)
