import pytest

from channel_hub.services.rate_limit import (
    IntervalPacer,
    NoopRateLimiter,
    RedisRateLimiter,
    TokenBucketLimiter,
    build_rate_limiter,
)


class FakeTime:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def clock(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_token_bucket_allows_burst_then_waits():
    t = FakeTime()
    limiter = TokenBucketLimiter(burst={"shopify": 2}, clock=t.clock, sleep=t.sleep)

    for _ in range(3):
        await limiter.acquire("shopify", 60)

    assert t.sleeps == [pytest.approx(1.0)]


@pytest.mark.asyncio
async def test_token_bucket_keys_are_independent():
    t = FakeTime()
    limiter = TokenBucketLimiter(burst={"shopify": 1}, clock=t.clock, sleep=t.sleep)

    await limiter.acquire("shopify", 60)
    await limiter.acquire("ebay", 60)

    assert t.sleeps == []
    assert limiter.capacity("ebay") == 1


@pytest.mark.asyncio
async def test_token_bucket_refills_over_time():
    t = FakeTime()
    limiter = TokenBucketLimiter(burst={"mirakl": 1}, clock=t.clock, sleep=t.sleep)

    await limiter.acquire("mirakl", 60)
    t.now += 5.0
    await limiter.acquire("mirakl", 60)

    assert t.sleeps == []


@pytest.mark.asyncio
async def test_interval_pacer_spaces_requests():
    t = FakeTime()
    pacer = IntervalPacer(clock=t.clock, sleep=t.sleep)

    for _ in range(3):
        await pacer.acquire("amazon", 120)

    assert t.sleeps == [pytest.approx(0.5), pytest.approx(0.5)]


@pytest.mark.asyncio
async def test_missing_rate_means_no_pacing():
    t = FakeTime()
    await TokenBucketLimiter(clock=t.clock, sleep=t.sleep).acquire("x", None)
    await IntervalPacer(clock=t.clock, sleep=t.sleep).acquire("x", 0)
    await NoopRateLimiter().acquire("x", 10)
    assert t.sleeps == []


@pytest.mark.asyncio
async def test_redis_window_counts_and_expires(fake_redis):
    limiter = RedisRateLimiter(client=fake_redis)

    results = [await limiter.allow(key="amazon", limit=2, window_seconds=60) for _ in range(3)]

    assert [r.allowed for r in results] == [True, True, False]
    assert results[-1].remaining == 0
    assert list(fake_redis.ttl.values()) == [60]


@pytest.mark.asyncio
async def test_redis_acquire_sleeps_until_window_resets(fake_redis):
    slept = []

    async def _sleep(seconds):
        slept.append(seconds)
        fake_redis.store.clear()

    limiter = RedisRateLimiter(client=fake_redis, sleep=_sleep)
    await limiter.acquire("ebay", 1)
    await limiter.acquire("ebay", 1)

    assert len(slept) == 1
    assert slept[0] >= 1


def test_build_rate_limiter_backends():
    assert isinstance(build_rate_limiter("token_bucket", burst={"shopify": 10}), TokenBucketLimiter)
    assert isinstance(build_rate_limiter("interval"), IntervalPacer)
    assert isinstance(build_rate_limiter("none"), NoopRateLimiter)
    assert isinstance(build_rate_limiter("redis", redis_url="redis://localhost:6379/0"), RedisRateLimiter)
    with pytest.raises(ValueError):
        build_rate_limiter("leaky")
