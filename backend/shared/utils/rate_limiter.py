"""
Per-provider rate limiting: token bucket for the per-minute budget plus a
fixed-window daily quota, and a backoff window after upstream 429s.

Policy (all values from Settings): each provider gets a bucket that refills at
provider_rpm_limit tokens per minute up to provider_burst, and at most
provider_daily_limit requests per UTC day.
"""
from __future__ import annotations

import asyncio
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger
from shared.utils.metrics import PROVIDER_RATE_LIMITED

logger = get_logger(__name__)


class ProviderRateLimited(Exception):
    """Raised when a provider's local budget is exhausted. Treated as transient."""

    def __init__(self, provider: str, window: str, retry_after: float) -> None:
        self.provider = provider
        self.window = window
        self.retry_after = retry_after
        super().__init__(
            f"Rate limit for '{provider}' exhausted ({window}); retry after {retry_after:.0f}s"
        )


class TokenBucket:
    """
    In-process token bucket.
    Refills at rpm / 60 tokens per second; max burst = burst.
    """

    def __init__(
        self,
        rpm: int,
        burst: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rpm = max(1, rpm)
        self._burst = max(1, burst)
        self._clock = clock
        self._tokens = float(self._burst)
        self._last_refill = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        self._tokens = min(self._burst, self._tokens + elapsed * (self._rpm / 60.0))
        self._last_refill = now

    def try_acquire(self) -> bool:
        """Consume one token if available."""
        self._refill()
        if self._tokens >= 1:
            self._tokens -= 1
            return True
        return False

    def seconds_until_token(self) -> float:
        self._refill()
        if self._tokens >= 1:
            return 0.0
        return (1 - self._tokens) * 60.0 / self._rpm


class DailyQuota:
    """Fixed-window counter reset at each UTC midnight."""

    def __init__(
        self,
        limit: int,
        today: Callable[[], str] = lambda: datetime.now(timezone.utc).strftime("%Y-%m-%d"),
    ) -> None:
        self._limit = limit
        self._today = today
        self._window = today()
        self._count = 0

    @property
    def used(self) -> int:
        self._roll()
        return self._count

    def _roll(self) -> None:
        day = self._today()
        if day != self._window:
            self._window = day
            self._count = 0

    def try_acquire(self) -> bool:
        self._roll()
        if self._limit > 0 and self._count >= self._limit:
            return False
        self._count += 1
        return True

    def release(self) -> None:
        """Give back a unit taken by a request that was never sent."""
        if self._count > 0:
            self._count -= 1


class ProviderRateLimiter:
    """Rate limiter for a single upstream provider."""

    def __init__(
        self,
        provider: str,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        s = settings or get_settings()
        self.provider = provider
        self._clock = clock
        self._bucket = TokenBucket(s.provider_rpm_limit, s.provider_burst, clock=clock)
        self._daily = DailyQuota(s.provider_daily_limit)
        self._backoff_s = s.provider_429_backoff_s
        self._backoff_until = 0.0
        self._lock = asyncio.Lock()

    @property
    def daily_used(self) -> int:
        return self._daily.used

    async def acquire(self, retry: bool = False) -> None:
        """
        Take one request slot or raise ProviderRateLimited.

        Never waits: a caller that cannot send now should fall back to cached data.
        ``retry`` marks a resend of a request already in flight. The client paces
        it from Retry-After, so it skips the backoff gate, which only holds back
        new requests. Minute and daily budgets still apply.
        """
        async with self._lock:
            now = self._clock()
            if not retry and now < self._backoff_until:
                self._reject("backoff", self._backoff_until - now)
            if not self._daily.try_acquire():
                self._reject("daily", _seconds_to_utc_midnight())
            if not self._bucket.try_acquire():
                self._daily.release()
                self._reject("minute", self._bucket.seconds_until_token())

    def record_429(self, retry_after: float | None = None) -> None:
        """Upstream said slow down; block this provider for the backoff window."""
        wait = max(retry_after or 0.0, self._backoff_s)
        self._backoff_until = self._clock() + wait
        logger.warning("rate_limit_backoff", provider=self.provider, backoff_s=wait)

    def _reject(self, window: str, retry_after: float) -> None:
        PROVIDER_RATE_LIMITED.labels(provider=self.provider, window=window).inc()
        logger.warning(
            "provider_rate_limited_locally",
            provider=self.provider,
            window=window,
            retry_after_s=round(retry_after, 1),
        )
        raise ProviderRateLimited(self.provider, window, retry_after)


def _seconds_to_utc_midnight() -> float:
    now = datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return 86400.0 - (now - midnight).total_seconds()
