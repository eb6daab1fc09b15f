"""
Stale-while-revalidate response cache with request coalescing.

One CacheService is created per process and injected into the providers.
Every lookup goes through ``get_cached_or_fetch``:

* a key with an upstream fetch already in flight joins that fetch;
* a fresh entry is returned without suspending;
* a stale-but-usable entry is returned immediately and refreshed by a
  background task owned by the service;
* an expired or missing entry triggers a blocking fetch.

A failed fetch falls back to whatever entry exists, however old. Only a cold
key propagates the error.

Fetches run as tasks owned by the service and callers await them through
``asyncio.shield``, so a caller that gives up does not cancel the upstream call
and the result still lands in the cache.
"""
from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping, Optional

from shared.config import DEFAULT_CACHE_PROFILES, Settings, get_settings
from shared.models.enums import CacheClass
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    CACHE_ENTRIES,
    CACHE_IN_FLIGHT,
    CACHE_LOOKUPS,
    CACHE_REVALIDATIONS,
)

logger = get_logger(__name__)

FetchFn = Callable[[], Awaitable[Any]]


def generate_cache_key(endpoint: str, params: Mapping[str, Any] | None = None) -> str:
    """
    Deterministic key for an endpoint plus query params.

    Param names are sorted so insertion order never matters; ``None`` values
    are dropped so an unset optional filter does not split the key.
    """
    if not params:
        return endpoint
    parts = [f"{name}={params[name]}" for name in sorted(params) if params[name] is not None]
    if not parts:
        return endpoint
    return f"{endpoint}?{'&'.join(parts)}"


def resolve_cache_class(value: CacheClass | str) -> CacheClass:
    """Map a class name onto CacheClass; unknown names fall back to ``upcoming``."""
    if isinstance(value, CacheClass):
        return value
    try:
        return CacheClass(str(value).lower())
    except ValueError:
        logger.warning("cache_class_unknown", cache_class=value, fallback=CacheClass.UPCOMING.value)
        return CacheClass.UPCOMING


@dataclass(frozen=True)
class CacheProfile:
    ttl_s: float
    stale_window_s: float


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CacheEntry:
    key: str
    data: Any
    timestamp: float
    cache_class: CacheClass

    def age(self, now: float) -> float:
        return now - self.timestamp

    def freshness(self, profile: CacheProfile, now: float) -> Freshness:
        age = self.age(now)
        if age < profile.ttl_s:
            return Freshness.FRESH
        if age < profile.stale_window_s:
            return Freshness.STALE
        return Freshness.EXPIRED


@dataclass
class _InFlight:
    task: "asyncio.Task[Any]"
    background: bool


class CacheService:
    """
    In-process LRU cache plus in-flight registry.

    ``clock`` must be monotonic; tests pass a fake one to age entries.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        max_items: Optional[int] = None,
        profiles: Optional[Mapping[str, tuple[float, float]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        s = settings or get_settings()
        self._max_items = max(1, max_items if max_items is not None else s.cache_max_items)
        merged = {**DEFAULT_CACHE_PROFILES, **(s.cache_profiles or {}), **(profiles or {})}
        self._profiles: dict[CacheClass, CacheProfile] = {}
        for cls in CacheClass:
            ttl_s, stale_s = merged[cls.value]
            self._profiles[cls] = CacheProfile(ttl_s=float(ttl_s), stale_window_s=float(max(ttl_s, stale_s)))
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._in_flight: dict[str, _InFlight] = {}
        self._tasks: set[asyncio.Task[Any]] = set()

    # ── Lookup ──────────────────────────────────────────────────────────

    async def get_cached_or_fetch(
        self,
        key: str,
        fetch_fn: FetchFn,
        cache_class: CacheClass | str = CacheClass.UPCOMING,
    ) -> Any:
        """Return data for ``key``, fetching through ``fetch_fn`` only when needed."""
        cls = resolve_cache_class(cache_class)
        profile = self._profiles[cls]
        entry = self._entries.get(key)
        freshness = entry.freshness(profile, self._clock()) if entry is not None else None

        in_flight = self._in_flight.get(key)
        if in_flight is not None:
            if in_flight.background and freshness in (Freshness.FRESH, Freshness.STALE):
                self._touch(key)
                CACHE_LOOKUPS.labels(cache_class=cls.value, outcome="stale").inc()
                logger.debug("cache_hit_revalidating", key=key)
                return entry.data
            CACHE_LOOKUPS.labels(cache_class=cls.value, outcome="coalesced").inc()
            logger.debug("cache_join_in_flight", key=key, background=in_flight.background)
            return await self._join(key, in_flight.task)

        if freshness is Freshness.FRESH:
            self._touch(key)
            CACHE_LOOKUPS.labels(cache_class=cls.value, outcome="fresh").inc()
            logger.debug("cache_hit_fresh", key=key)
            return entry.data

        if freshness is Freshness.STALE:
            self._touch(key)
            CACHE_LOOKUPS.labels(cache_class=cls.value, outcome="stale").inc()
            logger.info("cache_hit_stale", key=key, age_s=round(entry.age(self._clock()), 1))
            self._spawn_fetch(key, fetch_fn, cls, background=True)
            return entry.data

        CACHE_LOOKUPS.labels(cache_class=cls.value, outcome="miss").inc()
        logger.info("cache_miss", key=key, expired=entry is not None)
        task = self._spawn_fetch(key, fetch_fn, cls, background=False)
        return await self._join(key, task)

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Entry for ``key`` without touching LRU order or triggering fetches."""
        return self._entries.get(key)

    def profile(self, cache_class: CacheClass | str) -> CacheProfile:
        return self._profiles[resolve_cache_class(cache_class)]

    # ── Maintenance ─────────────────────────────────────────────────────

    def invalidate(self, pattern: Optional[str] = None) -> int:
        """Drop every key containing ``pattern`` (all keys when None). Returns the count."""
        if pattern is None:
            count = len(self._entries)
            self._entries.clear()
        else:
            doomed = [k for k in self._entries if pattern in k]
            for k in doomed:
                del self._entries[k]
            count = len(doomed)
        CACHE_ENTRIES.set(len(self._entries))
        logger.info("cache_invalidated", pattern=pattern or "*", removed=count)
        return count

    def cache_control_header(self, cache_class: CacheClass | str = CacheClass.UPCOMING) -> str:
        """Cache-Control value for an HTTP layer serving data of this class."""
        profile = self.profile(cache_class)
        return (
            f"public, max-age={int(profile.ttl_s)}, "
            f"stale-while-revalidate={int(profile.stale_window_s)}"
        )

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "max_items": self._max_items,
            "in_flight": len(self._in_flight),
            "background_tasks": sum(1 for f in self._in_flight.values() if f.background),
            "tasks": len(self._tasks),
        }

    async def drain(self) -> None:
        """Wait for every fetch task the service owns to settle."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self, timeout_s: float = 5.0) -> None:
        """Let outstanding fetches finish for up to ``timeout_s``, then cancel the rest."""
        pending = list(self._tasks)
        if not pending:
            return
        _, still_running = await asyncio.wait(pending, timeout=timeout_s)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
        logger.info("cache_closed", cancelled=len(still_running))

    # ── Internals ───────────────────────────────────────────────────────

    def _touch(self, key: str) -> None:
        self._entries.move_to_end(key)

    def _store(self, key: str, data: Any, cls: CacheClass) -> None:
        self._entries[key] = CacheEntry(key=key, data=data, timestamp=self._clock(), cache_class=cls)
        self._entries.move_to_end(key)
        while len(self._entries) > self._max_items:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)
        CACHE_ENTRIES.set(len(self._entries))

    def _spawn_fetch(
        self, key: str, fetch_fn: FetchFn, cls: CacheClass, background: bool
    ) -> "asyncio.Task[Any]":
        # No await between the registry check in the caller and this insert.
        task = asyncio.get_running_loop().create_task(self._run_fetch(key, fetch_fn, cls))
        self._in_flight[key] = _InFlight(task=task, background=background)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._on_fetch_done(key, cls, background, t))
        CACHE_IN_FLIGHT.set(len(self._in_flight))
        return task

    async def _run_fetch(self, key: str, fetch_fn: FetchFn, cls: CacheClass) -> Any:
        try:
            data = await fetch_fn()
            self._store(key, data, cls)
            return data
        finally:
            current = self._in_flight.get(key)
            if current is not None and current.task is asyncio.current_task():
                del self._in_flight[key]
            CACHE_IN_FLIGHT.set(len(self._in_flight))

    def _on_fetch_done(
        self, key: str, cls: CacheClass, background: bool, task: "asyncio.Task[Any]"
    ) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if background:
            if exc is None:
                CACHE_REVALIDATIONS.labels(cache_class=cls.value, result="ok").inc()
                logger.info("cache_revalidated", key=key)
            else:
                CACHE_REVALIDATIONS.labels(cache_class=cls.value, result="error").inc()
                logger.warning(
                    "cache_revalidation_failed",
                    key=key,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
        elif exc is not None:
            logger.warning(
                "cache_fetch_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def _join(self, key: str, task: "asyncio.Task[Any]") -> Any:
        try:
            return await asyncio.shield(task)
        except Exception as exc:
            entry = self._entries.get(key)
            if entry is None:
                raise
            logger.warning(
                "cache_serving_stale_after_error",
                key=key,
                error_type=type(exc).__name__,
            )
            CACHE_LOOKUPS.labels(cache_class=entry.cache_class.value, outcome="stale_fallback").inc()
            return entry.data
