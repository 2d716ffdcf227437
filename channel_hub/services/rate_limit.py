from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, runtime_checkable

import redis.asyncio as redis

log = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


@runtime_checkable
class RateLimiter(Protocol):
    async def acquire(self, key: str, requests_per_minute: int | None) -> None:
        """Wait until one more request for `key` is allowed."""
        ...


class NoopRateLimiter:
    async def acquire(self, key: str, requests_per_minute: int | None) -> None:
        return None


class IntervalPacer:
    """
    Fixed-interval spacer: consecutive requests for one key are at least 60/N seconds apart.
    Simple, but a single process only and never bursts.
    """

    def __init__(self, *, clock: Clock = time.monotonic, sleep: Sleep = asyncio.sleep):
        self._clock = clock
        self._sleep = sleep
        self._next_at: dict[str, float] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    async def acquire(self, key: str, requests_per_minute: int | None) -> None:
        if not requests_per_minute:
            return
        interval = 60.0 / requests_per_minute
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            now = self._clock()
            wait = self._next_at.get(key, now) - now
            if wait > 0:
                await self._sleep(wait)
                now += wait
            self._next_at[key] = now + interval


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


class TokenBucketLimiter:
    """
    In-process token bucket keyed by marketplace.

    Refills at requests_per_minute/60 tokens per second up to `burst` tokens.
    One instance is shared by every adapter built from the same client, so
    concurrent workers on the same marketplace draw from the same bucket.
    """

    def __init__(
        self,
        *,
        burst: dict[str, int] | None = None,
        default_burst: int = 1,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self._burst = dict(burst or {})
        self._default_burst = max(1, default_burst)
        self._clock = clock
        self._sleep = sleep
        self._buckets: dict[str, _Bucket] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def capacity(self, key: str) -> int:
        return max(1, self._burst.get(key, self._default_burst))

    async def acquire(self, key: str, requests_per_minute: int | None) -> None:
        if not requests_per_minute:
            return
        rate = requests_per_minute / 60.0
        cap = self.capacity(key)
        lock = self._locks.setdefault(key, asyncio.Lock())

        async with lock:
            now = self._clock()
            b = self._buckets.get(key)
            if b is None:
                b = self._buckets[key] = _Bucket(tokens=float(cap), updated_at=now)
            b.tokens = min(cap, b.tokens + (now - b.updated_at) * rate)
            b.updated_at = now

            if b.tokens < 1.0:
                wait = (1.0 - b.tokens) / rate
                log.debug("rate limit wait key=%s seconds=%.3f", key, wait)
                await self._sleep(wait)
                b.tokens = 1.0
                b.updated_at = now + wait

            b.tokens -= 1.0


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_seconds: int


class RedisRateLimiter:
    """
    Cross-process fixed-window limiter: every worker sharing the Redis
    instance shares the per-marketplace quota.
    """

    def __init__(self, redis_url: str | None = None, *, client=None, sleep: Sleep = asyncio.sleep, window_seconds: int = 60):
        if client is None and redis_url is None:
            raise ValueError("redis_url or client is required")
        self.r = client if client is not None else redis.from_url(redis_url, decode_responses=True)
        self._sleep = sleep
        self._window = window_seconds

    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = int(time.time())
        window = now // window_seconds
        rkey = f"rl:{key}:{window}"

        # INCR with expiry
        val = await self.r.incr(rkey)
        if val == 1:
            await self.r.expire(rkey, window_seconds)

        remaining = max(0, limit - val)
        reset = window_seconds - (now % window_seconds)
        return RateLimitResult(allowed=val <= limit, remaining=remaining, reset_seconds=reset)

    async def acquire(self, key: str, requests_per_minute: int | None) -> None:
        if not requests_per_minute:
            return
        limit = max(1, round(requests_per_minute * self._window / 60))
        while True:
            res = await self.allow(key=key, limit=limit, window_seconds=self._window)
            if res.allowed:
                return
            log.info("rate limit window exhausted key=%s reset_in=%ss", key, res.reset_seconds)
            await self._sleep(max(1, res.reset_seconds))


def build_rate_limiter(backend: str, *, redis_url: str | None = None, burst: dict[str, int] | None = None) -> RateLimiter:
    if backend == "token_bucket":
        return TokenBucketLimiter(burst=burst)
    if backend == "interval":
        return IntervalPacer()
    if backend == "redis":
        return RedisRateLimiter(redis_url)
    if backend == "none":
        return NoopRateLimiter()
    raise ValueError(f"Unknown rate limiter backend: {backend}")
