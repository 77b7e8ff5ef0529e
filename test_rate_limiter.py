# -*- coding: utf-8 -*-
"""
レート制限のテスト（時計と sleep を差し替えて実時間を使わない）
"""

import asyncio

import pytest

from rate_limiter import ActionRateLimiter, RateLimitBucket, RateLimitConfig, default_rate_limits


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def test_bucket_cooldown():
    bucket = RateLimitBucket(RateLimitConfig("reaction", cooldown_seconds=0.5))

    assert bucket.check_rate_limit(10.0).allowed
    bucket.record_request(10.0)

    result = bucket.check_rate_limit(10.2)
    assert not result.allowed
    assert result.wait_time == pytest.approx(0.3)
    assert bucket.check_rate_limit(10.5).allowed


def test_bucket_per_minute_cap():
    bucket = RateLimitBucket(RateLimitConfig("message", requests_per_minute=2))
    bucket.record_request(0.0)
    bucket.record_request(1.0)

    result = bucket.check_rate_limit(30.0)
    assert not result.allowed
    assert result.wait_time == pytest.approx(30.0)

    # 最初の記録が1分経過で消える
    assert bucket.check_rate_limit(60.0).allowed
    assert bucket.get_stats()["current_usage"] == "1/2"


def test_default_rate_limits():
    limits = default_rate_limits(0.25)
    assert limits["reaction"].cooldown_seconds == 0.25
    assert set(limits) == {"reaction", "message", "webhook"}


@pytest.mark.asyncio
async def test_acquire_waits_for_cooldown():
    clock = FakeClock()
    limiter = ActionRateLimiter(default_rate_limits(0.5), clock=clock, sleep=clock.sleep)

    for _ in range(3):
        await limiter.acquire("reaction")

    assert clock.sleeps == [0.5, 0.5]
    stats = limiter.get_all_stats()["reaction"]
    assert stats["total_requests"] == 3
    assert stats["delayed_requests"] == 2


@pytest.mark.asyncio
async def test_services_are_independent():
    clock = FakeClock()
    limiter = ActionRateLimiter(default_rate_limits(0.5), clock=clock, sleep=clock.sleep)

    await limiter.acquire("reaction")
    await limiter.acquire("message")
    await limiter.acquire("webhook")

    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_unknown_service_gets_default_bucket():
    clock = FakeClock()
    limiter = ActionRateLimiter({}, clock=clock, sleep=clock.sleep)

    await limiter.acquire("other")

    assert limiter.get_bucket("other").config.requests_per_minute == 60


@pytest.mark.asyncio
async def test_concurrent_acquires_are_serialized():
    clock = FakeClock()
    limiter = ActionRateLimiter(default_rate_limits(0.5), clock=clock, sleep=clock.sleep)

    await asyncio.gather(*(limiter.acquire("reaction") for _ in range(3)))

    assert clock.sleeps == [0.5, 0.5]
