"""Direct HTTP fetcher for server-rendered category pages."""

import asyncio
import logging
import random
from typing import Optional

import httpx

from catalog_crawler.ingest.base import BaseFetcher
from catalog_crawler.ingest.http_client import RetryPolicy, SleepFunc, default_headers
from catalog_crawler.ingest.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# User agents for rotation
USER_AGENTS = [
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/18.1 Safari/605.1.15",
]


def build_timeout(read_timeout: float) -> httpx.Timeout:
    """Structured timeout with a bounded read phase."""
    return httpx.Timeout(connect=10.0, read=read_timeout, write=10.0, pool=5.0)


class DirectHTMLFetcher(BaseFetcher):
    """Fetches category pages straight from the catalog site."""

    name = "direct"

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[RateLimiter] = None,
        timeout: float = 60.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        """
        Args:
            policy: Retry policy
            rate_limiter: Shared per-domain rate limiter
            timeout: Read timeout in seconds
            client: Optional pre-built client (tests pass one with a MockTransport)
            sleep: Sleep coroutine used between retries
        """
        super().__init__(policy=policy, rate_limiter=rate_limiter, sleep=sleep)
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            headers = default_headers()
            headers["User-Agent"] = random.choice(USER_AGENTS)
            self._client = httpx.AsyncClient(
                timeout=build_timeout(self.timeout),
                follow_redirects=True,
                headers=headers,
            )
        return self._client

    async def _send(self, url: str) -> httpx.Response:
        client = self._get_client()
        return await client.get(url)

    async def close(self):
        """Close HTTP client."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
