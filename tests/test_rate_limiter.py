"""Tests for per-domain request spacing."""

import pytest

from catalog_crawler.ingest.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.mark.asyncio
async def test_first_request_is_not_delayed():
    clock = FakeClock()
    limiter = RateLimiter(min_interval=2.0, sleep=clock.sleep, clock=clock)

    waited = await limiter.acquire("casoca.com.br")

    assert waited == 0
    assert clock.sleeps == []


@pytest.mark.asyncio
async def test_back_to_back_requests_are_spaced():
    clock = FakeClock()
    limiter = RateLimiter(min_interval=2.0, sleep=clock.sleep, clock=clock)

    await limiter.acquire("casoca.com.br")
    clock.now += 0.5
    waited = await limiter.acquire("casoca.com.br")

    assert waited == pytest.approx(1.5)


@pytest.mark.asyncio
async def test_domains_are_independent():
    clock = FakeClock()
    limiter = RateLimiter(min_interval=2.0, sleep=clock.sleep, clock=clock)

    await limiter.acquire("a.example")
    waited = await limiter.acquire("b.example")

    assert waited == 0


@pytest.mark.asyncio
async def test_cooldown_blocks_domain():
    clock = FakeClock()
    limiter = RateLimiter(min_interval=0, sleep=clock.sleep, clock=clock)

    limiter.set_cooldown("casoca.com.br", 60)
    waited = await limiter.acquire("casoca.com.br")

    assert waited == pytest.approx(60)


def test_shorter_cooldown_does_not_shrink_existing():
    clock = FakeClock()
    limiter = RateLimiter(sleep=clock.sleep, clock=clock)

    limiter.set_cooldown("casoca.com.br", 120)
    limiter.set_cooldown("casoca.com.br", 10)

    assert limiter.domain_cooldowns["casoca.com.br"] == pytest.approx(220)
