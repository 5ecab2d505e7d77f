"""Per-domain request spacing shared by all concurrent category crawls."""

import asyncio
import logging
import random
import time
from collections import defaultdict
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class RateLimiter:
    """Minimum-interval rate limiter per domain with jitter and cooldowns."""

    def __init__(
        self,
        min_interval: float = 1.0,
        jitter: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            min_interval: Minimum seconds between two requests to one domain
            jitter: Extra random delay in seconds (0..jitter) added per request
            sleep: Sleep coroutine (injectable for tests)
            clock: Monotonic clock (injectable for tests)
        """
        self.min_interval = min_interval
        self.jitter = jitter
        self._sleep = sleep
        self._clock = clock
        self.locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.last_request: dict[str, float] = {}
        self.domain_cooldowns: dict[str, float] = {}  # Domain -> cooldown until timestamp

    @classmethod
    def from_settings(cls, settings) -> "RateLimiter":
        return cls(
            min_interval=settings.min_request_interval_seconds,
            jitter=settings.request_jitter_seconds,
        )

    async def acquire(self, domain: str) -> float:
        """
        Wait until a request to `domain` is allowed.

        Returns:
            Seconds waited
        """
        async with self.locks[domain]:
            now = self._clock()
            waited = 0.0

            cooldown_until = self.domain_cooldowns.get(domain, 0.0)
            if now < cooldown_until:
                wait_time = cooldown_until - now
                logger.debug(f"Domain {domain} in cooldown, waiting {wait_time:.1f}s")
                await self._sleep(wait_time)
                waited += wait_time
                now = self._clock()

            last_time = self.last_request.get(domain)
            if last_time is not None:
                interval = self.min_interval
                if self.jitter > 0:
                    interval += random.uniform(0, self.jitter)
                wait_needed = max(0.0, interval - (now - last_time))
                if wait_needed > 0:
                    await self._sleep(wait_needed)
                    waited += wait_needed

            self.last_request[domain] = self._clock()
            return waited

    def set_cooldown(self, domain: str, seconds: float) -> None:
        """
        Block requests for this domain for the given duration.

        Args:
            domain: Domain name
            seconds: Cooldown duration in seconds
        """
        until = self._clock() + seconds
        if until > self.domain_cooldowns.get(domain, 0.0):
            self.domain_cooldowns[domain] = until
